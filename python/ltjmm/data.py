"""Reshape a long-format dataset into the row-aligned arrays used by the model."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import EmptyAfterFiltering, IncompatibleConfiguration, UnresolvedColumn
from .formula import FormulaSpec

__all__ = ["MISSING_POLICIES", "ReshapedData", "reshape", "design_matrix"]

logger = logging.getLogger(__name__)

MISSING_POLICIES = ("response", "any")

Subset = Union[str, Callable[[pd.DataFrame], Any], Sequence[bool], np.ndarray, pd.Series]


@dataclass(frozen=True, eq=False)
class ReshapedData:
    """Row-aligned arrays produced by :func:`reshape`.

    Subject and outcome indices are one-based, numbered by first appearance
    in the filtered data. ``subject_labels[i - 1]`` is the original label of
    subject ``i`` (likewise for outcomes).

    Attributes
    ----------
    subject, outcome : np.ndarray
        Integer indices, one per row.
    time, y : np.ndarray
        Observation time and response.
    X : np.ndarray
        Fixed-effect design matrix, ``(rows, len(covariate_names))``.
    row_index : pd.Index
        Index labels of the kept rows in the input DataFrame.
    dropped : dict
        Number of rows removed per reason (``"subset"``, ``"missing"``).
    """

    subject: np.ndarray
    outcome: np.ndarray
    time: np.ndarray
    y: np.ndarray
    X: np.ndarray
    covariate_names: Tuple[str, ...]
    subject_labels: Tuple[Any, ...]
    outcome_labels: Tuple[Any, ...]
    row_index: pd.Index
    dropped: Dict[str, int] = field(default_factory=dict)

    @property
    def n_obs(self) -> int:
        return int(self.y.shape[0])

    @property
    def n_subjects(self) -> int:
        return len(self.subject_labels)

    @property
    def n_outcomes(self) -> int:
        return len(self.outcome_labels)

    def labels_for(
        self, subject: Optional[np.ndarray] = None, outcome: Optional[np.ndarray] = None
    ) -> pd.DataFrame:
        """Map one-based subject / outcome indices back to the original labels.

        Defaults to the indices of every row, so ``labels_for()`` reproduces
        the identifier columns of the filtered input.
        Indices outside ``[1, count]`` raise :class:`IndexError`.
        """
        subject = self.subject if subject is None else np.asarray(subject)
        outcome = self.outcome if outcome is None else np.asarray(outcome)
        for name, idx, count in (
            ("subject", subject, self.n_subjects),
            ("outcome", outcome, self.n_outcomes),
        ):
            if idx.size and (idx.min() < 1 or idx.max() > count):
                raise IndexError(f"{name} indices must lie in [1, {count}]")
        subj = np.asarray(self.subject_labels, dtype=object)[subject - 1]
        out = np.asarray(self.outcome_labels, dtype=object)[outcome - 1]
        return pd.DataFrame({"subject": subj, "outcome": out})


def reshape(
    data: pd.DataFrame,
    formula: FormulaSpec,
    subset: Optional[Subset] = None,
    missing: str = "response",
) -> ReshapedData:
    """Validate ``data`` against ``formula`` and extract the model arrays.

    Parameters
    ----------
    data:
        Long-format table, one row per observation.
    formula:
        Parsed formula naming the columns.
    subset:
        Optional row filter applied before anything else: a callable taking the
        DataFrame and returning a boolean mask, a boolean array-like aligned
        with the rows, or a :meth:`pandas.DataFrame.eval` expression string.
    missing:
        ``"response"`` drops rows whose response is missing, ``"any"`` drops
        rows with a missing response, time or covariate.
    """
    if missing not in MISSING_POLICIES:
        raise IncompatibleConfiguration(
            f"missing must be one of {MISSING_POLICIES}, got {missing!r}"
        )
    if not isinstance(data, pd.DataFrame):
        data = pd.DataFrame(data)

    absent = [col for col in formula.columns if col not in data.columns]
    if absent:
        raise UnresolvedColumn(f"Data missing columns for variables: {absent}")

    dropped: Dict[str, int] = {}
    df = data[formula.columns]
    if subset is not None:
        df = _apply_subset(df, data, subset)
        dropped["subset"] = len(data) - len(df)

    time = pd.to_numeric(df[formula.time], errors="raise").to_numpy(dtype=float)
    y = pd.to_numeric(df[formula.response], errors="raise").to_numpy(dtype=float)
    no_response = np.isnan(y)
    no_id = df[[formula.subject, formula.outcome]].isna().any(axis=1).to_numpy()
    incomplete = np.isnan(time) | df[list(formula.fixed)].isna().any(axis=1).to_numpy()

    # each dropped row is counted under its first reason only
    reasons = [("missing_response", no_response), ("missing_id", no_id & ~no_response)]
    keep = ~(no_response | no_id)
    if missing == "any":
        reasons.append(("missing_covariate", incomplete & keep))
        keep &= ~incomplete
    for reason, mask in reasons:
        count = int(mask.sum())
        if count:
            dropped[reason] = count
            logger.info(
                "Dropped %d of %d rows: %s (policy=%r)", count, len(df), reason, missing
            )
    retained = int((keep & incomplete).sum())
    if retained:
        logger.warning(
            "%d rows have a missing time or covariate but a response; "
            "use missing='any' to drop them",
            retained,
        )

    if not keep.any():
        raise EmptyAfterFiltering(
            f"No rows left after subsetting and missing-value removal "
            f"({len(data)} rows in, dropped: {dropped})"
        )

    df = df[keep]
    X, names = design_matrix(df, formula)
    subject, subject_labels = _first_occurrence_codes(df[formula.subject])
    outcome, outcome_labels = _first_occurrence_codes(df[formula.outcome])

    return ReshapedData(
        subject=subject,
        outcome=outcome,
        time=time[keep],
        y=y[keep],
        X=X,
        covariate_names=tuple(names),
        subject_labels=subject_labels,
        outcome_labels=outcome_labels,
        row_index=df.index,
        dropped=dropped,
    )


def design_matrix(df: pd.DataFrame, formula: FormulaSpec) -> Tuple[np.ndarray, List[str]]:
    """Build the fixed-effect design matrix for ``formula``.

    Numeric terms are used as-is. Object, category and bool columns are
    treatment coded with :func:`pandas.get_dummies` on sorted levels; the
    first level is the reference when the model has an intercept.
    """
    columns: List[np.ndarray] = []
    names: List[str] = []
    if formula.intercept:
        columns.append(np.ones(len(df)))
        names.append("(Intercept)")

    has_reference = formula.intercept
    for term in formula.fixed:
        col = df[term]
        if _is_categorical(col):
            if isinstance(col.dtype, pd.CategoricalDtype):
                # levels absent from the kept rows would give all-zero columns
                col = col.cat.remove_unused_categories()
            # Without an intercept the first factor keeps all of its levels
            dummies = pd.get_dummies(
                col, prefix=term, prefix_sep="_", drop_first=has_reference, dtype=float
            )
            # get_dummies encodes a missing level as all zeros
            dummies.loc[col.isna().to_numpy(), :] = np.nan
            has_reference = True
            columns.extend(dummies[c].to_numpy() for c in dummies.columns)
            names.extend(str(c) for c in dummies.columns)
        else:
            columns.append(pd.to_numeric(col, errors="raise").to_numpy(dtype=float))
            names.append(term)

    if not columns:
        return np.empty((len(df), 0)), names
    return np.column_stack(columns).astype(float), names


def _is_categorical(col: pd.Series) -> bool:
    return (
        col.dtype == object
        or isinstance(col.dtype, pd.CategoricalDtype)
        or pd.api.types.is_bool_dtype(col)
        or pd.api.types.is_string_dtype(col)
    )


def _first_occurrence_codes(values: pd.Series) -> Tuple[np.ndarray, Tuple[Any, ...]]:
    codes, uniques = pd.factorize(values, sort=False)
    return codes.astype(np.int64) + 1, tuple(uniques)


def _apply_subset(df: pd.DataFrame, data: pd.DataFrame, subset: Subset) -> pd.DataFrame:
    if isinstance(subset, str):
        mask = data.eval(subset)
    elif callable(subset):
        mask = subset(data)
    else:
        mask = subset

    if isinstance(mask, pd.Series):
        mask = mask.reindex(data.index, fill_value=False)
    mask = np.asarray(mask, dtype=bool)
    if mask.shape != (len(data),):
        raise IncompatibleConfiguration(
            f"subset must select from {len(data)} rows, got mask of shape {mask.shape}"
        )
    return df[mask]
