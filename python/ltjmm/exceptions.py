"""Error taxonomy for the ltjmm front-end."""

from __future__ import annotations

__all__ = [
    "LtjmmError",
    "MalformedFormula",
    "UnresolvedColumn",
    "EmptyAfterFiltering",
    "IncompatibleConfiguration",
    "DimensionMismatch",
    "UnsupportedVariant",
    "SamplerError",
]


class LtjmmError(ValueError):
    """Base class for all errors raised by ltjmm."""


class MalformedFormula(LtjmmError):
    """Raised when a formula does not have the ``y ~ time | fixed | id | outcome`` shape."""


class UnresolvedColumn(LtjmmError):
    """Raised when a formula references a column that is not in the data."""


class EmptyAfterFiltering(LtjmmError):
    """Raised when subsetting and missing-value removal leave no rows."""


class IncompatibleConfiguration(LtjmmError):
    """Raised for unsupported option values (random effects structure, missing policy)."""


class DimensionMismatch(LtjmmError):
    """Raised when simulation parameters do not match the model dimensions."""


class UnsupportedVariant(LtjmmError):
    """Raised when no Stan program matches the requested configuration."""


class SamplerError(LtjmmError, RuntimeError):
    """Raised when CmdStan fails to compile or sample a model."""
