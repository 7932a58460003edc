"""
Type definitions for prediction inputs, outputs and explanations.

Defines the value objects flowing through the explainers: typed features and
their domains, prediction inputs and outputs, and the saliency structures an
explanation produces. Everything here is immutable; perturbed copies are new
objects that share unchanged features with their source.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterator, Sequence

import numpy as np
import pandas as pd


class FeatureType(str, Enum):
    """Feature type tags."""

    NUMBER = "number"
    CATEGORICAL = "categorical"
    TEXT = "text"
    BOOLEAN = "boolean"
    COMPOSITE = "composite"
    UNDEFINED = "undefined"


BACKGROUND_FEATURE_NAME = "Background"


# =============================================================================
# Domains
# =============================================================================


@dataclass(frozen=True)
class CategoricalDomain:
    """Finite set of admissible values for a categorical feature."""

    categories: tuple[Any, ...]

    @classmethod
    def create(cls, values: Sequence[Any]) -> CategoricalDomain:
        """Build a domain from values, dropping duplicates but keeping order."""
        return cls(tuple(dict.fromkeys(values)))

    def __contains__(self, value: Any) -> bool:
        return value in self.categories

    def __len__(self) -> int:
        return len(self.categories)

    def sample(self, rng: np.random.Generator, exclude: Any = None) -> Any:
        """Draw a category uniformly, avoiding ``exclude`` when possible."""
        candidates = [c for c in self.categories if c != exclude] or list(self.categories)
        if not candidates:
            return None
        return candidates[int(rng.integers(len(candidates)))]


@dataclass(frozen=True)
class NumericDomain:
    """Closed numeric interval for a numerical feature."""

    lower: float
    upper: float

    def __contains__(self, value: Any) -> bool:
        return self.lower <= value <= self.upper

    def sample(self, rng: np.random.Generator, exclude: Any = None) -> float:
        """Draw uniformly from the interval."""
        return float(rng.uniform(self.lower, self.upper))


FeatureDomain = CategoricalDomain | NumericDomain


# =============================================================================
# Features and predictions
# =============================================================================


@dataclass(frozen=True)
class Feature:
    """A named, typed input value."""

    name: str
    type: FeatureType
    value: Any
    domain: FeatureDomain | None = None

    def with_value(self, value: Any) -> Feature:
        """Return a copy of this feature holding ``value``."""
        return replace(self, value=value)

    def as_number(self) -> float:
        """Numeric view of the value (NaN when not numeric)."""
        return _as_number(self.value)


def numerical_feature(name: str, value: float, domain: NumericDomain | None = None) -> Feature:
    """Create a numerical feature."""
    return Feature(name, FeatureType.NUMBER, value, domain)


def categorical_feature(name: str, value: Any, categories: Sequence[Any] | None = None) -> Feature:
    """Create a categorical feature, optionally with its domain."""
    domain = CategoricalDomain.create(categories) if categories is not None else None
    return Feature(name, FeatureType.CATEGORICAL, value, domain)


def boolean_feature(name: str, value: bool) -> Feature:
    """Create a boolean feature."""
    return Feature(name, FeatureType.BOOLEAN, bool(value))


def text_feature(name: str, value: str) -> Feature:
    """Create a free-text feature."""
    return Feature(name, FeatureType.TEXT, value)


def composite_feature(name: str, features: Sequence[Feature]) -> Feature:
    """Create a composite feature grouping nested features."""
    return Feature(name, FeatureType.COMPOSITE, tuple(features))


def undefined_feature(name: str, value: Any) -> Feature:
    """Create a feature of undefined type."""
    return Feature(name, FeatureType.UNDEFINED, value)


@dataclass(frozen=True)
class PredictionInput:
    """Ordered, immutable collection of features (one model input row)."""

    features: tuple[Feature, ...]

    def __post_init__(self) -> None:
        if not isinstance(self.features, tuple):
            object.__setattr__(self, "features", tuple(self.features))

    @classmethod
    def from_values(
        cls,
        values: Sequence[float],
        names: Sequence[str] | None = None,
    ) -> PredictionInput:
        """Build a numerical input from raw values."""
        if names is None:
            names = [f"Feature {i}" for i in range(len(values))]
        return cls(tuple(numerical_feature(n, float(v)) for n, v in zip(names, values)))

    def __len__(self) -> int:
        return len(self.features)

    def __iter__(self) -> Iterator[Feature]:
        return iter(self.features)

    def __getitem__(self, index: int) -> Feature:
        return self.features[index]

    @property
    def feature_names(self) -> list[str]:
        """Names of the features, in column order."""
        return [f.name for f in self.features]

    def to_numpy(self) -> np.ndarray:
        """Numeric view of the row."""
        return np.array([f.as_number() for f in self.features], dtype=np.float64)


@dataclass(frozen=True)
class Output:
    """A single named model output."""

    name: str
    type: FeatureType
    value: Any
    score: float = 1.0

    def as_number(self) -> float:
        """Numeric view of the value (NaN when not numeric)."""
        return _as_number(self.value)


@dataclass(frozen=True)
class PredictionOutput:
    """Ordered, immutable collection of outputs for one input row."""

    outputs: tuple[Output, ...]

    def __post_init__(self) -> None:
        if not isinstance(self.outputs, tuple):
            object.__setattr__(self, "outputs", tuple(self.outputs))

    @classmethod
    def from_values(
        cls,
        values: Sequence[float],
        names: Sequence[str] | None = None,
    ) -> PredictionOutput:
        """Build a numerical output from raw values."""
        if names is None:
            names = [f"o{i}" for i in range(len(values))]
        return cls(tuple(Output(n, FeatureType.NUMBER, float(v)) for n, v in zip(names, values)))

    def __len__(self) -> int:
        return len(self.outputs)

    def __iter__(self) -> Iterator[Output]:
        return iter(self.outputs)

    def __getitem__(self, index: int) -> Output:
        return self.outputs[index]

    def by_name(self, name: str) -> Output | None:
        """Get the first output called ``name``."""
        for output in self.outputs:
            if output.name == name:
                return output
        return None

    def to_numpy(self) -> np.ndarray:
        """Numeric view of the outputs."""
        return np.array([o.as_number() for o in self.outputs], dtype=np.float64)


@dataclass(frozen=True)
class Prediction:
    """An input together with the output the model produced for it."""

    input: PredictionInput
    output: PredictionOutput


# =============================================================================
# Explanations
# =============================================================================


@dataclass(frozen=True)
class FeatureImportance:
    """Attribution of one feature to one output."""

    feature: Feature
    score: float
    confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "feature_name": self.feature.name,
            "score": self.score,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class Saliency:
    """Per-feature attributions of a single output."""

    output: Output
    per_feature_importance: tuple[FeatureImportance, ...]

    def __post_init__(self) -> None:
        if not isinstance(self.per_feature_importance, tuple):
            object.__setattr__(self, "per_feature_importance", tuple(self.per_feature_importance))

    @property
    def feature_importances(self) -> list[FeatureImportance]:
        """Attributions of the real features (without the background entry)."""
        return [
            fi for fi in self.per_feature_importance
            if fi.feature.name != BACKGROUND_FEATURE_NAME
        ]

    def top_features(self, k: int) -> list[FeatureImportance]:
        """Get the k features with the largest absolute attribution."""
        return sorted(self.feature_importances, key=lambda fi: abs(fi.score), reverse=True)[:k]

    def positive_features(self, k: int) -> list[FeatureImportance]:
        """Get the k most positive contributors."""
        positives = [fi for fi in self.feature_importances if fi.score > 0]
        return sorted(positives, key=lambda fi: fi.score, reverse=True)[:k]

    def negative_features(self, k: int) -> list[FeatureImportance]:
        """Get the k most negative contributors."""
        negatives = [fi for fi in self.feature_importances if fi.score < 0]
        return sorted(negatives, key=lambda fi: fi.score)[:k]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "output_name": self.output.name,
            "output_value": self.output.value,
            "per_feature_importance": [fi.to_dict() for fi in self.per_feature_importance],
        }


@dataclass(frozen=True)
class CounterfactualByproduct:
    """A perturbed input whose prediction disagrees with the explained one."""

    input: PredictionInput
    output: PredictionOutput
    coalition_index: int
    background_index: int


@dataclass(frozen=True)
class SaliencyResults:
    """Result of a local saliency explanation, keyed by output name."""

    saliencies: dict[str, Saliency]
    counterfactuals: tuple[CounterfactualByproduct, ...] = field(default_factory=tuple)
    source_explainer: str = "SHAP"

    @property
    def available_cfs(self) -> list[CounterfactualByproduct]:
        """Counterfactual byproducts collected during the explanation."""
        return list(self.counterfactuals)

    def to_dataframe(self) -> pd.DataFrame:
        """Flatten the attributions into one row per (output, feature)."""
        rows = []
        for output_name, saliency in self.saliencies.items():
            for fi in saliency.per_feature_importance:
                rows.append({
                    "output": output_name,
                    "feature": fi.feature.name,
                    "value": _display_value(fi.feature.value),
                    "score": fi.score,
                    "confidence": fi.confidence,
                })
        return pd.DataFrame(rows, columns=["output", "feature", "value", "score", "confidence"])

    def as_table(self, decimal_places: int = 3) -> str:
        """Render the attributions of every output as a text table."""
        fmt = f"{{:.{decimal_places}f}}"
        blocks = []
        for output_name, saliency in self.saliencies.items():
            frame = pd.DataFrame(
                {
                    "Feature": [fi.feature.name for fi in saliency.per_feature_importance],
                    "Value": [_display_value(fi.feature.value) for fi in saliency.per_feature_importance],
                    "SHAP Value": [fmt.format(fi.score) for fi in saliency.per_feature_importance],
                    "Confidence": [f"+/- {fmt.format(fi.confidence)}" for fi in saliency.per_feature_importance],
                }
            )
            total = sum(fi.score for fi in saliency.per_feature_importance)
            header = f"=== {output_name} {self.source_explainer} Values ==="
            footer = f"Prediction: {_display_value(saliency.output.value)} | Sum of attributions: {fmt.format(total)}"
            blocks.append("\n".join([header, frame.to_string(index=False), footer]))
        return "\n\n".join(blocks)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "source_explainer": self.source_explainer,
            "saliencies": {name: s.to_dict() for name, s in self.saliencies.items()},
            "num_counterfactuals": len(self.counterfactuals),
        }


def _as_number(value: Any) -> float:
    if isinstance(value, (bool, np.bool_)):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float, np.integer, np.floating)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _display_value(value: Any) -> Any:
    if isinstance(value, tuple):
        return "[" + ", ".join(str(_display_value(getattr(v, "value", v))) for v in value) + "]"
    if isinstance(value, float):
        return round(value, 6)
    return value
