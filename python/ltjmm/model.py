"""High-level front-end for Latent Time Joint Mixed Effect Models.

This module introduces a light-weight :class:`Ltjmm` wrapper that accepts the
four-part LTJMM formula and compiles a long-format dataset into the
:class:`ModelData` payload understood by the Stan programs shipped with the
package.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd

from .data import ReshapedData, Subset, reshape
from .exceptions import IncompatibleConfiguration, UnsupportedVariant
from .formula import FormulaSpec, parse_formula

if TYPE_CHECKING:
    from .sampler import LtjmmFit, SamplerOptions
    from .simulate import SimulatedDataset, SimulationParameters

__all__ = [
    "RandomEffects",
    "ModelVariant",
    "ModelData",
    "Ltjmm",
    "build_model_data",
    "random_effect_dimension",
    "ltjmm",
    "ltjmm_stan",
]

logger = logging.getLogger(__name__)

_STAN_DIR = Path(__file__).with_name("stan")


class RandomEffects(str, Enum):
    """Distribution of the per-subject random intercepts and slopes."""

    UNIVARIATE = "univariate"
    MULTIVARIATE = "multivariate"

    @classmethod
    def parse(cls, value: Any) -> "RandomEffects":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            options = [m.value for m in cls]
            raise IncompatibleConfiguration(
                f"random_effects must be one of {options}, got {value!r}"
            ) from None


class ModelVariant(Enum):
    """The four Stan programs, keyed by ``(lt, random_effects)``."""

    LTJMM = "ltjmm"
    LTJMM_MVNORM = "ltjmm_mvnorm_ranef"
    MM = "mm"
    JMM_MVNORM = "jmm_mvnorm_ranef"

    @property
    def lt(self) -> bool:
        return self in (ModelVariant.LTJMM, ModelVariant.LTJMM_MVNORM)

    @property
    def random_effects(self) -> RandomEffects:
        if self in (ModelVariant.LTJMM, ModelVariant.MM):
            return RandomEffects.UNIVARIATE
        return RandomEffects.MULTIVARIATE

    @property
    def stan_file(self) -> Path:
        return _STAN_DIR / f"{self.value}.stan"

    @classmethod
    def resolve(cls, lt: Any, random_effects: Any) -> "ModelVariant":
        """Select the program for a latent-time flag and random-effects structure."""
        structure = RandomEffects.parse(random_effects)
        if isinstance(lt, (bool, np.bool_)):
            for variant in cls:
                if variant.lt == bool(lt) and variant.random_effects is structure:
                    return variant
        raise UnsupportedVariant(
            f"Invalid specification for lt and/or random_effects: lt={lt!r}, "
            f"random_effects={structure.value!r}"
        )


def random_effect_dimension(n_outcomes: int, lt: bool, random_effects: Any) -> int:
    """Length of the per-subject random-effect vector.

    With latent time and independent random effects the intercept of the
    reference outcome (outcome 1) is fixed at zero, leaving ``2K - 1``
    free components. Every other configuration has ``2K``.
    """
    if lt and RandomEffects.parse(random_effects) is RandomEffects.UNIVARIATE:
        return 2 * n_outcomes - 1
    return 2 * n_outcomes


@dataclass(frozen=True, eq=False)
class ModelData:
    """Structured payload for the Stan programs.

    Subject and outcome indices are one-based. ``X`` has one row per
    observation and ``n_covariates`` columns; the coefficients are specific to
    each outcome.
    """

    n_obs: int
    n_subjects: int
    n_outcomes: int
    n_covariates: int
    subject: np.ndarray
    outcome: np.ndarray
    time: np.ndarray
    X: np.ndarray
    y: np.ndarray
    n_obs_outcome: np.ndarray
    lt: bool
    random_effects: RandomEffects
    variant: ModelVariant
    covariate_names: Tuple[str, ...]
    subject_labels: Tuple[Any, ...]
    outcome_labels: Tuple[Any, ...]
    row_index: pd.Index

    @property
    def n_random_effects(self) -> int:
        return random_effect_dimension(self.n_outcomes, self.lt, self.random_effects)

    def check_complete(self) -> None:
        """Raise if ``time`` or a column of ``X`` holds a missing or non-finite value.

        Rows kept under the ``"response"`` missing-value policy can carry such
        values; neither the sampler nor the simulator accepts them.
        """
        columns = [("time", self.time)]
        columns.extend((name, self.X[:, j]) for j, name in enumerate(self.covariate_names))
        counts = [(name, int((~np.isfinite(values)).sum())) for name, values in columns]
        bad = ", ".join(f"{name} ({n} rows)" for name, n in counts if n)
        if bad:
            raise IncompatibleConfiguration(
                f"Non-finite values in {bad}; use missing='any' to drop these rows"
            )

    def to_stan(self) -> Dict[str, Any]:
        """Return the ``data`` dictionary passed to ``CmdStanModel.sample``."""
        return {
            "nobs": self.n_obs,
            "nsub": self.n_subjects,
            "nout": self.n_outcomes,
            "ncov": self.n_covariates,
            "id": self.subject.astype(int),
            "outcome": self.outcome.astype(int),
            "nobs_outcome": self.n_obs_outcome.astype(int),
            "obs_time": self.time,
            "X": self.X,
            "y": self.y,
        }

    def to_frame(self) -> pd.DataFrame:
        """Long DataFrame of the payload with the original identifier labels."""
        df = pd.DataFrame(
            {
                "subject": np.asarray(self.subject_labels, dtype=object)[self.subject - 1],
                "outcome": np.asarray(self.outcome_labels, dtype=object)[self.outcome - 1],
                "time": self.time,
                "y": self.y,
            },
            index=self.row_index,
        )
        for j, name in enumerate(self.covariate_names):
            df[name] = self.X[:, j]
        return df


def build_model_data(
    reshaped: ReshapedData,
    lt: bool = True,
    random_effects: Any = RandomEffects.UNIVARIATE,
) -> ModelData:
    """Assemble :class:`ModelData` from reshaped arrays and the model configuration."""
    variant = ModelVariant.resolve(lt, random_effects)
    n_out = reshaped.n_outcomes
    return ModelData(
        n_obs=reshaped.n_obs,
        n_subjects=reshaped.n_subjects,
        n_outcomes=n_out,
        n_covariates=int(reshaped.X.shape[1]),
        subject=reshaped.subject,
        outcome=reshaped.outcome,
        time=reshaped.time,
        X=reshaped.X,
        y=reshaped.y,
        n_obs_outcome=np.bincount(reshaped.outcome - 1, minlength=n_out).astype(np.int64),
        lt=variant.lt,
        random_effects=variant.random_effects,
        variant=variant,
        covariate_names=reshaped.covariate_names,
        subject_labels=reshaped.subject_labels,
        outcome_labels=reshaped.outcome_labels,
        row_index=reshaped.row_index,
    )


class Ltjmm:
    """Latent time joint mixed effect model specification.

    Parameters
    ----------
    formula:
        ``"y ~ time | fixed | subject | outcome"``, e.g.
        ``"Y ~ year | 1 + age | id | outcome"``.
    lt:
        Whether the per-subject latent time shift is included.
    random_effects:
        ``"univariate"`` for independent normal random intercepts and slopes,
        ``"multivariate"`` for one joint multivariate normal across outcomes.

    The formula and the configuration are validated on construction, so a
    bad specification fails before any data is touched.
    """

    def __init__(
        self,
        formula: str,
        *,
        lt: bool = True,
        random_effects: str = "univariate",
    ) -> None:
        self._random_effects = RandomEffects.parse(random_effects)
        self._formula = parse_formula(formula)
        self._variant = ModelVariant.resolve(lt, self._random_effects)

    @property
    def formula(self) -> FormulaSpec:
        return self._formula

    @property
    def variant(self) -> ModelVariant:
        return self._variant

    def build(
        self,
        data: pd.DataFrame,
        subset: Optional[Subset] = None,
        missing: str = "response",
    ) -> ModelData:
        """Reshape ``data`` and assemble the sampler payload."""
        reshaped = reshape(data, self._formula, subset=subset, missing=missing)
        model_data = build_model_data(
            reshaped, lt=self._variant.lt, random_effects=self._variant.random_effects
        )
        logger.debug(
            "Built %s data: %d rows, %d subjects, %d outcomes, %d covariates",
            self._variant.value,
            model_data.n_obs,
            model_data.n_subjects,
            model_data.n_outcomes,
            model_data.n_covariates,
        )
        return model_data

    def fit(
        self,
        data: pd.DataFrame,
        subset: Optional[Subset] = None,
        missing: str = "response",
        options: Optional["SamplerOptions"] = None,
        **sampler_kwargs: Any,
    ) -> "LtjmmFit":
        """Build the payload and sample the posterior with CmdStan.

        ``sampler_kwargs`` (``chains``, ``iter_warmup``, ``iter_sampling``,
        ``thin``, ``parallel_chains``, ``seed`` or any other
        ``CmdStanModel.sample`` argument) override ``options``.
        """
        from .sampler import SamplerOptions, run_sampler

        model_data = self.build(data, subset=subset, missing=missing)
        opts = (options or SamplerOptions()).merged(**sampler_kwargs)
        return run_sampler(self._formula, model_data, opts)

    def simulate(
        self,
        data: pd.DataFrame,
        parameters: "SimulationParameters",
        seed: int,
        subset: Optional[Subset] = None,
        missing: str = "response",
    ) -> "SimulatedDataset":
        """Simulate outcomes on the row skeleton of ``data``."""
        from .simulate import simulate

        return simulate(self.build(data, subset=subset, missing=missing), parameters, seed)

    def __repr__(self) -> str:
        return (
            f"Ltjmm({str(self._formula)!r}, lt={self._variant.lt}, "
            f"random_effects={self._variant.random_effects.value!r})"
        )


def ltjmm(
    formula: str,
    data: pd.DataFrame,
    subset: Optional[Subset] = None,
    missing: str = "response",
    lt: bool = True,
    random_effects: str = "univariate",
) -> ModelData:
    """Prepare ``data`` for the LTJMM Stan programs.

    Returns
    -------
    ModelData
        Payload whose :meth:`ModelData.to_stan` is the CmdStan data block.
    """
    return Ltjmm(formula, lt=lt, random_effects=random_effects).build(
        data, subset=subset, missing=missing
    )


def ltjmm_stan(
    formula: str,
    data: pd.DataFrame,
    lt: bool = True,
    random_effects: str = "univariate",
    subset: Optional[Subset] = None,
    missing: str = "response",
    **sampler_kwargs: Any,
) -> "LtjmmFit":
    """Fit a latent time joint mixed effect model with Stan.

    Parameters
    ----------
    formula : str
        ``"Y ~ time | fixed effects | subject id | outcome id"`` addressing
        columns of the stacked (long) dataset.
    data : pd.DataFrame
        Long-format data, one row per subject, outcome and visit.
    lt : bool, optional
        Whether the latent time shift is included (default: True).
    random_effects : str, optional
        ``"univariate"`` (default): random intercepts and slopes for each
        outcome follow independent normal distributions. ``"multivariate"``:
        they follow a single multivariate normal distribution.
    subset : optional
        Row filter applied before fitting.
    missing : str, optional
        Missing-value policy, ``"response"`` (default) or ``"any"``.
    **sampler_kwargs
        Passed to ``CmdStanModel.sample`` (e.g. ``iter_warmup``,
        ``iter_sampling``, ``chains``, ``parallel_chains``, ``seed``).

    Returns
    -------
    LtjmmFit
        Wrapper around the ``cmdstanpy.CmdStanMCMC`` result.
    """
    return Ltjmm(formula, lt=lt, random_effects=random_effects).fit(
        data, subset=subset, missing=missing, **sampler_kwargs
    )
