"""
Per-type feature operations.

Each FeatureType maps to a FeatureOps record holding the three operations the
explainers need from a value: perturbation, dropping (the type's neutral
value), and equality. Composite features are handled by flattening them into
their leaves with linearize_features before an explanation starts.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import numpy as np

from explainability_system.core.data_types import (
    CategoricalDomain,
    Feature,
    FeatureType,
    NumericDomain,
    PredictionInput,
)
from explainability_system.core.exceptions import ValidationError
from explainability_system.core.reproducibility import PerturbationContext

MAX_COMPOSITE_DEPTH = 64


@dataclass(frozen=True)
class FeatureOps:
    """Operations bound to a feature type."""

    perturb: Callable[[Feature, np.random.Generator, PerturbationContext], Any]
    drop: Callable[[Any], Any]
    equals: Callable[[Any, Any], bool]


# =============================================================================
# Perturbation
# =============================================================================


def _perturb_number(feature: Feature, rng: np.random.Generator, context: PerturbationContext) -> Any:
    if isinstance(feature.domain, NumericDomain):
        return feature.domain.sample(rng)
    value = feature.as_number()
    if math.isnan(value):
        return feature.value
    scale = abs(value) * context.noise_scale if value != 0 else context.noise_scale
    perturbed = value + float(rng.normal(0.0, scale))
    if perturbed == value:
        perturbed = value + scale
    return perturbed


def _perturb_categorical(feature: Feature, rng: np.random.Generator, context: PerturbationContext) -> Any:
    if isinstance(feature.domain, CategoricalDomain) and len(feature.domain) > 0:
        return feature.domain.sample(rng, exclude=feature.value)
    return _drop_text(feature.value)


def _perturb_boolean(feature: Feature, rng: np.random.Generator, context: PerturbationContext) -> Any:
    return not bool(feature.value)


def _perturb_text(feature: Feature, rng: np.random.Generator, context: PerturbationContext) -> Any:
    words = str(feature.value).split()
    if len(words) <= 1:
        return ""
    drop_count = max(1, min(context.no_of_perturbations, len(words) - 1))
    dropped = set(rng.choice(len(words), size=drop_count, replace=False).tolist())
    return " ".join(w for i, w in enumerate(words) if i not in dropped)


def _perturb_composite(feature: Feature, rng: np.random.Generator, context: PerturbationContext) -> Any:
    nested = tuple(feature.value)
    if not nested:
        return nested
    index = int(rng.integers(len(nested)))
    target = nested[index]
    changed = target.with_value(perturb_value(target, rng, context))
    return nested[:index] + (changed,) + nested[index + 1:]


def _perturb_undefined(feature: Feature, rng: np.random.Generator, context: PerturbationContext) -> Any:
    return feature.value


# =============================================================================
# Drop and equality
# =============================================================================


def _drop_number(value: Any) -> Any:
    return 0.0


def _drop_text(value: Any) -> Any:
    return ""


def _drop_boolean(value: Any) -> Any:
    return False


def _drop_composite(value: Any) -> Any:
    return tuple(f.with_value(drop_value(f)) for f in value)


def _drop_undefined(value: Any) -> Any:
    return None


def _numbers_equal(a: Any, b: Any) -> bool:
    try:
        fa, fb = float(a), float(b)
    except (TypeError, ValueError):
        return a == b
    if math.isnan(fa) and math.isnan(fb):
        return True
    return fa == fb


def _generic_equal(a: Any, b: Any) -> bool:
    return bool(a == b)


FEATURE_OPS: dict[FeatureType, FeatureOps] = {
    FeatureType.NUMBER: FeatureOps(_perturb_number, _drop_number, _numbers_equal),
    FeatureType.CATEGORICAL: FeatureOps(_perturb_categorical, _drop_text, _generic_equal),
    FeatureType.TEXT: FeatureOps(_perturb_text, _drop_text, _generic_equal),
    FeatureType.BOOLEAN: FeatureOps(_perturb_boolean, _drop_boolean, _generic_equal),
    FeatureType.COMPOSITE: FeatureOps(_perturb_composite, _drop_composite, _generic_equal),
    FeatureType.UNDEFINED: FeatureOps(_perturb_undefined, _drop_undefined, _generic_equal),
}


def ops_for(feature_type: FeatureType) -> FeatureOps:
    """Get the operations registered for a feature type."""
    return FEATURE_OPS[FeatureType(feature_type)]


def perturb_value(
    feature: Feature,
    rng: np.random.Generator,
    context: PerturbationContext | None = None,
) -> Any:
    """Return a perturbed value for ``feature``."""
    return ops_for(feature.type).perturb(feature, rng, context or PerturbationContext())


def drop_value(feature: Feature) -> Any:
    """Return the neutral ("dropped") value for ``feature``."""
    return ops_for(feature.type).drop(feature.value)


def values_equal(feature_type: FeatureType, a: Any, b: Any) -> bool:
    """Compare two values with the semantics of ``feature_type``."""
    return ops_for(feature_type).equals(a, b)


# =============================================================================
# Linearization
# =============================================================================


def linearize_features(
    features: Sequence[Feature],
    max_depth: int = MAX_COMPOSITE_DEPTH,
) -> list[Feature]:
    """Flatten composite (and wrapped undefined) features into their leaves.

    Uses an explicit stack, so nesting depth is bounded by ``max_depth``
    rather than by the interpreter's recursion limit.

    Raises:
        ValidationError: If a feature nests deeper than ``max_depth``.
    """
    flat: list[Feature] = []
    stack: list[tuple[Feature, int]] = [(f, 0) for f in reversed(features)]
    while stack:
        feature, depth = stack.pop()
        if depth > max_depth:
            raise ValidationError(
                f"Feature nesting deeper than {max_depth} levels",
                field_name=feature.name,
            )
        if feature.type == FeatureType.COMPOSITE and isinstance(feature.value, (tuple, list)):
            stack.extend((child, depth + 1) for child in reversed(feature.value))
        elif feature.type == FeatureType.UNDEFINED and isinstance(feature.value, Feature):
            stack.append((feature.value, depth + 1))
        else:
            flat.append(feature)
    return flat


def linearize_input(prediction_input: PredictionInput) -> PredictionInput:
    """Return ``prediction_input`` with every composite feature flattened."""
    if not any(f.type in (FeatureType.COMPOSITE, FeatureType.UNDEFINED) for f in prediction_input):
        return prediction_input
    return PredictionInput(tuple(linearize_features(prediction_input.features)))
