"""Forward simulation from the LTJMM generative model.

Given the row skeleton of a :class:`~ltjmm.model.ModelData` (subject, outcome,
time and design row of every observation) and a set of parameters, draw

    delta_i            ~ N(0, sigma_delta)
    (alpha0_i, alpha1_i) ~ independent normals or one multivariate normal
    y_n = X_n . beta_k + gamma_k (t_n + delta_i)
          + alpha0_ik + alpha1_ik (t_n + delta_i) + eps_n,   eps_n ~ N(0, sigma_y_k)

Scales are standard deviations, except ``ranef_cov`` which is the covariance
matrix of the multivariate random effects.

Every call owns a fresh ``numpy.random.Generator`` seeded from ``seed`` and
consumes it in this order:

1. ``nsub`` latent time shifts (skipped when the model has no latent time);
2. the random effects, subject by subject: ``nsub x q`` standard normals for
   the univariate structure, ``nsub`` multivariate normal vectors otherwise;
3. ``nobs`` residuals, in row order.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pandas as pd
from scipy.stats import multivariate_normal, norm

from .exceptions import DimensionMismatch, IncompatibleConfiguration
from .model import ModelData, RandomEffects

__all__ = ["SimulationParameters", "SimulatedDataset", "simulate"]


@dataclass(frozen=True, eq=False)
class SimulationParameters:
    """Parameters of the LTJMM generative model.

    Attributes
    ----------
    beta : np.ndarray
        Fixed-effect coefficients, ``(n_outcomes, n_covariates)``.
    gamma : np.ndarray
        Population slope of each outcome on (latent) time, ``(n_outcomes,)``.
    sigma_y : np.ndarray
        Residual standard deviation of each outcome, ``(n_outcomes,)``.
    sigma_delta : float
        Standard deviation of the latent time shift.
    sigma_ranef : np.ndarray, optional
        Standard deviations of the independent random effects, ordered as
        intercepts then slopes. With latent time the intercept of the first
        outcome is fixed at zero and omitted, giving ``2 * n_outcomes - 1``
        entries; otherwise ``2 * n_outcomes``.
    ranef_cov : np.ndarray, optional
        Covariance of the multivariate random effects,
        ``(2 * n_outcomes, 2 * n_outcomes)``, ordered as intercepts then slopes.
    """

    beta: np.ndarray
    gamma: np.ndarray
    sigma_y: np.ndarray
    sigma_delta: float = 1.0
    sigma_ranef: Optional[np.ndarray] = None
    ranef_cov: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "beta", np.atleast_2d(np.asarray(self.beta, dtype=float)))
        object.__setattr__(self, "gamma", np.atleast_1d(np.asarray(self.gamma, dtype=float)))
        object.__setattr__(self, "sigma_y", np.atleast_1d(np.asarray(self.sigma_y, dtype=float)))
        object.__setattr__(self, "sigma_delta", float(self.sigma_delta))
        if self.sigma_ranef is not None:
            object.__setattr__(
                self, "sigma_ranef", np.atleast_1d(np.asarray(self.sigma_ranef, dtype=float))
            )
        if self.ranef_cov is not None:
            object.__setattr__(
                self, "ranef_cov", np.atleast_2d(np.asarray(self.ranef_cov, dtype=float))
            )


@dataclass(frozen=True, eq=False)
class SimulatedDataset:
    """Draws of one simulation, aligned with the skeleton rows and subjects.

    ``delta`` has one entry per subject, ``alpha0`` / ``alpha1`` are
    ``(n_subjects, n_outcomes)`` and ``y`` has one entry per skeleton row.
    Arrays are read-only.
    """

    delta: np.ndarray
    alpha0: np.ndarray
    alpha1: np.ndarray
    y: np.ndarray
    seed: int
    skeleton: ModelData = dataclasses.field(repr=False)

    def __post_init__(self) -> None:
        for arr in (self.delta, self.alpha0, self.alpha1, self.y):
            arr.setflags(write=False)

    def to_frame(self) -> pd.DataFrame:
        """Skeleton rows with the original labels and the simulated response."""
        df = self.skeleton.to_frame()
        df["y"] = self.y
        return df

    def as_model_data(self) -> ModelData:
        """The skeleton payload with ``y`` replaced by the simulated response."""
        return dataclasses.replace(self.skeleton, y=np.array(self.y))

    def random_effects(self) -> pd.DataFrame:
        """Per-subject draws indexed by the original subject labels."""
        frame = pd.DataFrame(
            {"delta": self.delta}, index=pd.Index(self.skeleton.subject_labels, name="subject")
        )
        for k, label in enumerate(self.skeleton.outcome_labels):
            frame[f"alpha0[{label}]"] = self.alpha0[:, k]
            frame[f"alpha1[{label}]"] = self.alpha1[:, k]
        return frame


def simulate(skeleton: ModelData, parameters: SimulationParameters, seed: int) -> SimulatedDataset:
    """Simulate one dataset on the rows of ``skeleton``.

    Raises
    ------
    DimensionMismatch
        If a parameter's shape does not match the number of outcomes,
        covariates or random effects of ``skeleton``. Raised before the
        generator is created.
    IncompatibleConfiguration
        If the skeleton time or design matrix holds a missing value, or a
        scale parameter is invalid.
    """
    skeleton.check_complete()
    _check_parameters(skeleton, parameters)

    rng = np.random.default_rng(seed)
    n_sub, n_out = skeleton.n_subjects, skeleton.n_outcomes

    if skeleton.lt:
        delta = norm.rvs(size=n_sub, random_state=rng) * parameters.sigma_delta
    else:
        delta = np.zeros(n_sub)

    if skeleton.random_effects is RandomEffects.UNIVARIATE:
        q = skeleton.n_random_effects
        ranef = norm.rvs(size=(n_sub, q), random_state=rng) * parameters.sigma_ranef
    else:
        q = 2 * n_out
        ranef = multivariate_normal.rvs(
            mean=np.zeros(q),
            cov=parameters.ranef_cov,
            size=n_sub,
            random_state=rng,
        )
        # rvs squeezes singleton dimensions
        ranef = np.reshape(ranef, (n_sub, q))
    alpha0, alpha1 = _split_random_effects(ranef, n_out, drop_reference=q == 2 * n_out - 1)

    i = skeleton.subject - 1
    k = skeleton.outcome - 1
    eps = norm.rvs(size=skeleton.n_obs, random_state=rng) * parameters.sigma_y[k]

    shifted = skeleton.time + delta[i]
    fixed = np.einsum("np,np->n", skeleton.X, parameters.beta[k])
    y = (
        fixed
        + parameters.gamma[k] * shifted
        + alpha0[i, k]
        + alpha1[i, k] * shifted
        + eps
    )

    return SimulatedDataset(
        delta=np.asarray(delta, dtype=float),
        alpha0=alpha0,
        alpha1=alpha1,
        y=y,
        seed=seed,
        skeleton=skeleton,
    )


def _split_random_effects(
    ranef: np.ndarray, n_out: int, drop_reference: bool
) -> Tuple[np.ndarray, np.ndarray]:
    n_sub = ranef.shape[0]
    if drop_reference:
        # Outcome 1 carries no random intercept
        alpha0 = np.hstack([np.zeros((n_sub, 1)), ranef[:, : n_out - 1]])
        alpha1 = ranef[:, n_out - 1 :]
    else:
        alpha0 = ranef[:, :n_out]
        alpha1 = ranef[:, n_out:]
    return np.ascontiguousarray(alpha0), np.ascontiguousarray(alpha1)


def _check_parameters(skeleton: ModelData, params: SimulationParameters) -> None:
    n_out, n_cov = skeleton.n_outcomes, skeleton.n_covariates

    _expect_shape("beta", params.beta, (n_out, n_cov))
    _expect_shape("gamma", params.gamma, (n_out,))
    _expect_shape("sigma_y", params.sigma_y, (n_out,))
    _expect_nonnegative("sigma_y", params.sigma_y)
    if skeleton.lt:
        _expect_nonnegative("sigma_delta", np.asarray([params.sigma_delta]))

    if skeleton.random_effects is RandomEffects.UNIVARIATE:
        if params.sigma_ranef is None:
            raise DimensionMismatch("sigma_ranef is required for univariate random effects")
        _expect_shape("sigma_ranef", params.sigma_ranef, (skeleton.n_random_effects,))
        _expect_nonnegative("sigma_ranef", params.sigma_ranef)
    else:
        if params.ranef_cov is None:
            raise DimensionMismatch("ranef_cov is required for multivariate random effects")
        cov = params.ranef_cov
        _expect_shape("ranef_cov", cov, (2 * n_out, 2 * n_out))
        if not np.allclose(cov, cov.T):
            raise IncompatibleConfiguration("ranef_cov must be symmetric")
        eigvals = np.linalg.eigvalsh(cov)
        if eigvals.min() < -1e-10 * max(1.0, abs(eigvals.max())):
            raise IncompatibleConfiguration("ranef_cov must be positive semi-definite")


def _expect_shape(name: str, value: np.ndarray, shape: Tuple[int, ...]) -> None:
    if value.shape != shape:
        raise DimensionMismatch(f"{name} must have shape {shape}, got {value.shape}")


def _expect_nonnegative(name: str, value: np.ndarray) -> None:
    if not np.all(np.isfinite(value)) or np.any(value < 0):
        raise IncompatibleConfiguration(f"{name} must be finite standard deviations >= 0")
