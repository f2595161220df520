"""CmdStan backend for the LTJMM Stan programs.

The adapter compiles the Stan program of a :class:`~ltjmm.model.ModelVariant`
once per process, forwards the sampler options verbatim to
``CmdStanModel.sample`` and wraps the result in :class:`LtjmmFit`. Failures
raised by cmdstanpy surface as :class:`~ltjmm.exceptions.SamplerError`; there
is no retry.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

import cmdstanpy
import numpy as np
import pandas as pd

from .exceptions import SamplerError
from .formula import FormulaSpec
from .model import ModelData, ModelVariant

__all__ = ["SamplerOptions", "LtjmmFit", "compile_model", "run_sampler"]

logger = logging.getLogger(__name__)


@dataclass
class SamplerOptions:
    """Options forwarded to ``CmdStanModel.sample``.

    Fields left as ``None`` are not passed, so CmdStan defaults apply.
    ``extra`` carries any other ``sample`` argument (``adapt_delta``,
    ``max_treedepth``, ``refresh``, ...).
    """

    chains: Optional[int] = None
    parallel_chains: Optional[int] = None
    iter_warmup: Optional[int] = None
    iter_sampling: Optional[int] = None
    thin: Optional[int] = None
    seed: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def merged(self, **kwargs: Any) -> "SamplerOptions":
        """Return a copy with ``kwargs`` taking precedence."""
        names = {f.name for f in fields(self)} - {"extra"}
        known = {k: v for k, v in kwargs.items() if k in names}
        extra = dict(self.extra)
        extra.update({k: v for k, v in kwargs.items() if k not in names})
        values = {name: getattr(self, name) for name in names}
        values.update(known)
        return SamplerOptions(extra=extra, **values)

    def to_kwargs(self) -> Dict[str, Any]:
        kwargs = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        kwargs.update(self.extra)
        return kwargs


@functools.lru_cache(maxsize=None)
def compile_model(variant: ModelVariant) -> cmdstanpy.CmdStanModel:
    """Compile (or load the cached executable of) the Stan program for ``variant``."""
    logger.debug("Compiling Stan program %s", variant.stan_file)
    try:
        return cmdstanpy.CmdStanModel(stan_file=str(variant.stan_file))
    except (RuntimeError, ValueError, OSError) as exc:
        raise SamplerError(f"Failed to compile {variant.value}: {exc}") from exc


def run_sampler(
    formula: FormulaSpec,
    data: ModelData,
    options: Optional[SamplerOptions] = None,
) -> "LtjmmFit":
    """Sample the posterior of the program matching ``data.variant``."""
    data.check_complete()
    options = options or SamplerOptions()
    model = compile_model(data.variant)
    kwargs = options.to_kwargs()
    logger.info(
        "Sampling %s: %d observations, %d subjects, %d outcomes",
        data.variant.value,
        data.n_obs,
        data.n_subjects,
        data.n_outcomes,
    )
    try:
        mcmc = model.sample(data=data.to_stan(), **kwargs)
    except (RuntimeError, ValueError, OSError) as exc:
        raise SamplerError(str(exc)) from exc
    return LtjmmFit(formula, data, mcmc)


class LtjmmFit:
    """Posterior draws of a fitted LTJMM with the original labels attached.

    Attributes
    ----------
    formula : FormulaSpec
        The parsed model formula.
    data : ModelData
        The payload passed to the sampler.
    mcmc : cmdstanpy.CmdStanMCMC
        The raw CmdStan result.
    """

    def __init__(self, formula: FormulaSpec, data: ModelData, mcmc: Any) -> None:
        self.formula = formula
        self.data = data
        self.mcmc = mcmc

    @property
    def variant(self) -> ModelVariant:
        return self.data.variant

    def draws(self, name: str) -> np.ndarray:
        """All draws of a Stan variable, chains stacked on the first axis."""
        return np.asarray(self.mcmc.stan_variable(name))

    def summary(self) -> pd.DataFrame:
        """CmdStan summary table (mean, MCSE, quantiles, ESS, R-hat)."""
        return self.mcmc.summary()

    def fixed_effects(self) -> pd.DataFrame:
        """Posterior mean of ``beta``, one row per outcome, one column per covariate."""
        beta = self.draws("beta").reshape(-1, self.data.n_outcomes, self.data.n_covariates)
        return pd.DataFrame(
            beta.mean(axis=0),
            index=pd.Index(self.data.outcome_labels, name=self.formula.outcome),
            columns=list(self.data.covariate_names),
        )

    def latent_time(self) -> pd.DataFrame:
        """Posterior mean and standard deviation of each subject's time shift."""
        if not self.variant.lt:
            raise ValueError(f"Model {self.variant.value} has no latent time")
        delta = self.draws("delta").reshape(-1, self.data.n_subjects)
        return pd.DataFrame(
            {"mean": delta.mean(axis=0), "sd": delta.std(axis=0, ddof=1)},
            index=pd.Index(self.data.subject_labels, name=self.formula.subject),
        )

    def random_effects(self) -> pd.DataFrame:
        """Posterior means of the random intercepts and slopes per subject."""
        shape = (-1, self.data.n_subjects, self.data.n_outcomes)
        alpha0 = self.draws("alpha0").reshape(shape).mean(axis=0)
        alpha1 = self.draws("alpha1").reshape(shape).mean(axis=0)
        frame = pd.DataFrame(index=pd.Index(self.data.subject_labels, name=self.formula.subject))
        for k, label in enumerate(self.data.outcome_labels):
            frame[f"alpha0[{label}]"] = alpha0[:, k]
            frame[f"alpha1[{label}]"] = alpha1[:, k]
        return frame

    def __repr__(self) -> str:
        return (
            f"LtjmmFit(variant={self.variant.value!r}, formula={str(self.formula)!r}, "
            f"nobs={self.data.n_obs}, nsub={self.data.n_subjects}, nout={self.data.n_outcomes})"
        )
