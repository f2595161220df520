"""Python front-end for Latent Time Joint Mixed Effect Models (LTJMM)."""

from __future__ import annotations

from .exceptions import (
    DimensionMismatch,
    EmptyAfterFiltering,
    IncompatibleConfiguration,
    LtjmmError,
    MalformedFormula,
    SamplerError,
    UnresolvedColumn,
    UnsupportedVariant,
)
from .formula import FormulaSpec, parse_formula
from .data import ReshapedData, reshape
from .model import (
    Ltjmm,
    ModelData,
    ModelVariant,
    RandomEffects,
    build_model_data,
    ltjmm,
    ltjmm_stan,
    random_effect_dimension,
)
from .simulate import SimulatedDataset, SimulationParameters, simulate
from .sampler import LtjmmFit, SamplerOptions, compile_model, run_sampler

__all__ = [
    "__version__",
    "Ltjmm",
    "LtjmmFit",
    "ltjmm",
    "ltjmm_stan",
    "FormulaSpec",
    "parse_formula",
    "ReshapedData",
    "reshape",
    "ModelData",
    "ModelVariant",
    "RandomEffects",
    "build_model_data",
    "random_effect_dimension",
    "SimulationParameters",
    "SimulatedDataset",
    "simulate",
    "SamplerOptions",
    "compile_model",
    "run_sampler",
    "LtjmmError",
    "MalformedFormula",
    "UnresolvedColumn",
    "EmptyAfterFiltering",
    "IncompatibleConfiguration",
    "DimensionMismatch",
    "UnsupportedVariant",
    "SamplerError",
]

__version__ = "0.1.0.dev0"
