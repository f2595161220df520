import numpy as np
import pandas as pd
import pytest


def make_long_data(n_subjects=5, n_outcomes=3, n_visits=4, seed=0):
    """Stacked data: one row per subject, outcome and visit."""
    rng = np.random.default_rng(seed)
    rows = []
    for s in range(n_subjects):
        age = 60.0 + 10.0 * rng.standard_normal()
        sex = "F" if s % 2 == 0 else "M"
        for o in range(n_outcomes):
            for v in range(n_visits):
                rows.append(
                    {
                        "id": f"S{s:03d}",
                        "outcome": f"Y{o + 1}",
                        "year": float(v),
                        "age": age,
                        "sex": sex,
                        "Y": rng.standard_normal(),
                    }
                )
    return pd.DataFrame(rows)


@pytest.fixture
def long_data():
    return make_long_data()
