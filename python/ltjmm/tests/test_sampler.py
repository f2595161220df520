from unittest.mock import MagicMock, patch

import numpy as np
import pandas as pd
import pytest

import ltjmm
from ltjmm import (
    LtjmmFit,
    ModelVariant,
    SamplerError,
    SamplerOptions,
    compile_model,
    ltjmm_stan,
    parse_formula,
    run_sampler,
)

FORMULA = "Y ~ year | 1 + age | id | outcome"


@pytest.fixture(autouse=True)
def clear_compile_cache():
    compile_model.cache_clear()
    yield
    compile_model.cache_clear()


@pytest.fixture
def mock_cmdstan():
    with patch("ltjmm.sampler.cmdstanpy.CmdStanModel") as model_cls:
        yield model_cls


def test_sampler_options_forwarded_verbatim(long_data, mock_cmdstan):
    options = SamplerOptions(chains=2, iter_warmup=500, iter_sampling=250, thin=2, seed=7)
    fit = ltjmm.Ltjmm(FORMULA).fit(long_data, options=options, parallel_chains=2, adapt_delta=0.95)

    mock_cmdstan.assert_called_once_with(stan_file=str(ModelVariant.LTJMM.stan_file))
    kwargs = mock_cmdstan.return_value.sample.call_args.kwargs
    assert kwargs.pop("data")["nobs"] == len(long_data)
    assert kwargs == {
        "chains": 2,
        "parallel_chains": 2,
        "iter_warmup": 500,
        "iter_sampling": 250,
        "thin": 2,
        "seed": 7,
        "adapt_delta": 0.95,
    }
    assert isinstance(fit, LtjmmFit)
    assert fit.mcmc is mock_cmdstan.return_value.sample.return_value


def test_sampler_defaults_pass_nothing(long_data, mock_cmdstan):
    md = ltjmm.ltjmm(FORMULA, long_data)
    run_sampler(parse_formula(FORMULA), md)

    kwargs = mock_cmdstan.return_value.sample.call_args.kwargs
    assert list(kwargs) == ["data"]


@pytest.mark.parametrize(
    "lt, random_effects, variant",
    [
        (True, "univariate", ModelVariant.LTJMM),
        (True, "multivariate", ModelVariant.LTJMM_MVNORM),
        (False, "univariate", ModelVariant.MM),
        (False, "multivariate", ModelVariant.JMM_MVNORM),
    ],
)
def test_ltjmm_stan_selects_program(long_data, mock_cmdstan, lt, random_effects, variant):
    fit = ltjmm_stan(FORMULA, long_data, lt=lt, random_effects=random_effects, chains=1)

    mock_cmdstan.assert_called_once_with(stan_file=str(variant.stan_file))
    assert variant.stan_file.exists()
    assert fit.variant is variant


def test_compiled_model_is_reused(long_data, mock_cmdstan):
    ltjmm_stan(FORMULA, long_data)
    ltjmm_stan(FORMULA, long_data)
    assert mock_cmdstan.call_count == 1
    assert mock_cmdstan.return_value.sample.call_count == 2


def test_sampling_failure_surfaces_as_sampler_error(long_data, mock_cmdstan):
    mock_cmdstan.return_value.sample.side_effect = RuntimeError("Error during sampling: chain 1 failed")

    with pytest.raises(SamplerError, match="chain 1 failed") as info:
        ltjmm_stan(FORMULA, long_data)
    assert isinstance(info.value.__cause__, RuntimeError)


def test_compile_failure_surfaces_as_sampler_error(long_data, mock_cmdstan):
    mock_cmdstan.side_effect = ValueError("No CmdStan installation found")

    with pytest.raises(SamplerError, match="CmdStan"):
        ltjmm_stan(FORMULA, long_data)


def test_preparation_failure_never_reaches_sampler(long_data, mock_cmdstan):
    with pytest.raises(ltjmm.UnresolvedColumn):
        ltjmm_stan(FORMULA, long_data.drop(columns=["age"]))
    mock_cmdstan.assert_not_called()


def test_sampler_options_merge():
    base = SamplerOptions(chains=4, extra={"refresh": 100})
    merged = base.merged(chains=1, max_treedepth=12)

    assert merged.chains == 1
    assert merged.to_kwargs() == {"chains": 1, "refresh": 100, "max_treedepth": 12}
    assert base.chains == 4
    assert base.extra == {"refresh": 100}


class _FakeMCMC:
    def __init__(self, draws):
        self._draws = draws

    def stan_variable(self, name):
        return self._draws[name]

    def summary(self):
        return pd.DataFrame({"Mean": [0.0]}, index=["lp__"])


def _fit_with_draws(long_data, lt=True):
    md = ltjmm.ltjmm(FORMULA, long_data, lt=lt)
    n_draws = 4
    rng = np.random.default_rng(0)
    draws = {
        "beta": np.tile(np.arange(6, dtype=float).reshape(1, 3, 2), (n_draws, 1, 1)),
        "delta": np.vstack([np.arange(5, dtype=float) + d for d in (-1.0, 1.0, -1.0, 1.0)]),
        "alpha0": rng.standard_normal((n_draws, 5, 3)),
        "alpha1": rng.standard_normal((n_draws, 5, 3)),
    }
    return LtjmmFit(parse_formula(FORMULA), md, _FakeMCMC(draws)), draws


def test_fit_fixed_effects_attributed_to_outcomes(long_data):
    fit, _ = _fit_with_draws(long_data)
    fe = fit.fixed_effects()

    assert list(fe.index) == ["Y1", "Y2", "Y3"]
    assert fe.index.name == "outcome"
    assert list(fe.columns) == ["(Intercept)", "age"]
    assert fe.loc["Y2", "age"] == 3.0


def test_fit_latent_time_attributed_to_subjects(long_data):
    fit, _ = _fit_with_draws(long_data)
    lt = fit.latent_time()

    assert list(lt.index) == ["S000", "S001", "S002", "S003", "S004"]
    np.testing.assert_allclose(lt["mean"], np.arange(5, dtype=float))
    assert (lt["sd"] > 0).all()


def test_fit_latent_time_requires_latent_time_variant(long_data):
    fit, _ = _fit_with_draws(long_data, lt=False)
    with pytest.raises(ValueError, match="no latent time"):
        fit.latent_time()


def test_fit_random_effects_and_summary(long_data):
    fit, draws = _fit_with_draws(long_data)
    re = fit.random_effects()

    assert re.shape == (5, 6)
    np.testing.assert_allclose(re["alpha1[Y3]"], draws["alpha1"].mean(axis=0)[:, 2])
    assert "Mean" in fit.summary().columns
    assert "ltjmm" in repr(fit)


@pytest.mark.parametrize("column, match", [("age", "age"), ("year", "time")])
def test_missing_covariate_never_reaches_sampler(long_data, mock_cmdstan, column, match):
    df = long_data.copy()
    df.loc[[3, 8], column] = np.nan

    with pytest.raises(ltjmm.IncompatibleConfiguration, match=rf"{match} \(2 rows\)"):
        ltjmm_stan(FORMULA, df)
    mock_cmdstan.assert_not_called()

    # dropping the incomplete rows makes the data usable again
    ltjmm_stan(FORMULA, df, missing="any")
    mock_cmdstan.return_value.sample.assert_called_once()
