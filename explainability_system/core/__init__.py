"""
Core layer for the explainability system.

Contains type definitions, exceptions, per-type feature operations,
reproducibility helpers and shared utilities used across all modules.
"""

from .data_types import (
    BACKGROUND_FEATURE_NAME,
    CategoricalDomain,
    CounterfactualByproduct,
    Feature,
    FeatureImportance,
    FeatureType,
    NumericDomain,
    Output,
    Prediction,
    PredictionInput,
    PredictionOutput,
    Saliency,
    SaliencyResults,
    boolean_feature,
    categorical_feature,
    composite_feature,
    numerical_feature,
    text_feature,
    undefined_feature,
)
from .exceptions import (
    ConfigParseError,
    ConfigurationError,
    ExplainabilityError,
    ExplanationError,
    ExplanationTimeoutError,
    InvalidConfigError,
    ModelError,
    OutputShapeError,
    PredictionError,
    ShapeMismatchError,
    ValidationError,
)
from .feature_ops import FeatureOps, drop_value, linearize_features, perturb_value, values_equal
from .reproducibility import PerturbationContext, blum_blum_shub, child_seed

__all__ = [
    # Data types
    "BACKGROUND_FEATURE_NAME",
    "CategoricalDomain",
    "CounterfactualByproduct",
    "Feature",
    "FeatureImportance",
    "FeatureType",
    "NumericDomain",
    "Output",
    "Prediction",
    "PredictionInput",
    "PredictionOutput",
    "Saliency",
    "SaliencyResults",
    "boolean_feature",
    "categorical_feature",
    "composite_feature",
    "numerical_feature",
    "text_feature",
    "undefined_feature",
    # Exceptions
    "ConfigParseError",
    "ConfigurationError",
    "ExplainabilityError",
    "ExplanationError",
    "ExplanationTimeoutError",
    "InvalidConfigError",
    "ModelError",
    "OutputShapeError",
    "PredictionError",
    "ShapeMismatchError",
    "ValidationError",
    # Feature operations
    "FeatureOps",
    "drop_value",
    "linearize_features",
    "perturb_value",
    "values_equal",
    # Reproducibility
    "PerturbationContext",
    "blum_blum_shub",
    "child_seed",
]
