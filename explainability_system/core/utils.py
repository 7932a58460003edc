"""
Utilities for working with feature lists and predictions.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence, TypeVar

import numpy as np

from explainability_system.core.data_types import (
    Feature,
    FeatureType,
    Prediction,
    PredictionInput,
    PredictionOutput,
    composite_feature,
)
from explainability_system.core.feature_ops import drop_value, linearize_features, perturb_value
from explainability_system.core.reproducibility import PerturbationContext

T = TypeVar("T")


def perturb_features(
    features: Sequence[Feature],
    context: PerturbationContext,
    distributions: Mapping[str, Sequence[Any]] | None = None,
    rng: np.random.Generator | None = None,
) -> tuple[list[Feature], np.ndarray]:
    """Perturb a random subset of features.

    The number of perturbed features is drawn between
    ``min(no_of_perturbations, n/2)`` and ``max(no_of_perturbations, n/2)``,
    never below one. A feature whose name appears in ``distributions`` takes a
    value sampled from it; every other feature uses its type's perturbation.

    Args:
        features: Features to perturb.
        context: Perturbation context (seed and perturbation size).
        distributions: Optional per-feature value pools.
        rng: Generator to draw from; a fresh one from ``context`` if omitted.

    Returns:
        The perturbed copy and a preservation mask (True = untouched).
    """
    rng = rng if rng is not None else context.generator()
    new_features = list(features)
    preserved = np.ones(len(new_features), dtype=bool)
    if not new_features:
        return new_features, preserved

    half = 0.5 * len(new_features)
    lower = max(1, int(min(context.no_of_perturbations, half)))
    upper = min(int(max(context.no_of_perturbations, half)), len(new_features))
    size = lower if upper <= lower else int(rng.integers(lower, upper + 1))

    distributions = distributions or {}
    for index in rng.choice(len(new_features), size=size, replace=False):
        feature = new_features[int(index)]
        pool = distributions.get(feature.name)
        if pool:
            value = pool[int(rng.integers(len(pool)))]
        else:
            value = perturb_value(feature, rng, context)
        new_features[int(index)] = feature.with_value(value)
        preserved[int(index)] = False
    return new_features, preserved


def drop_feature(features: Sequence[Feature], target: Feature) -> list[Feature]:
    """Replace ``target`` with its dropped value, searching into composites."""
    result = []
    for feature in features:
        if feature.name == target.name:
            if feature.type == target.type and feature.value == target.value:
                result.append(feature.with_value(drop_value(feature)))
            else:
                result.append(_drop_in_leaves(feature, target))
        elif feature.type == FeatureType.COMPOSITE:
            result.append(composite_feature(feature.name, drop_feature(feature.value, target)))
        else:
            result.append(feature)
    return result


def _drop_in_leaves(source: Feature, target: Feature) -> Feature:
    leaves = linearize_features([source])
    for i, leaf in enumerate(leaves):
        if leaf.value == target.value:
            leaves[i] = leaf.with_value(drop_value(leaf))
            return composite_feature(target.name, leaves)
    return source


def replace_features(replacement: Feature, features: Sequence[Feature]) -> list[Feature]:
    """Copy ``features`` with every same-named feature taking ``replacement``'s value."""
    result = []
    for feature in features:
        if feature.name == replacement.name:
            result.append(feature.with_value(replacement.value))
        elif feature.type == FeatureType.COMPOSITE:
            result.append(composite_feature(feature.name, replace_features(replacement, feature.value)))
        else:
            result.append(feature)
    return result


def sample_with_replacement(
    values: Sequence[T],
    sample_size: int,
    rng: np.random.Generator,
) -> list[T]:
    """Draw ``sample_size`` values uniformly with replacement."""
    if sample_size <= 0 or not values:
        return []
    return [values[int(i)] for i in rng.integers(0, len(values), size=sample_size)]


def get_predictions(
    inputs: Sequence[PredictionInput],
    outputs: Sequence[PredictionOutput],
) -> list[Prediction]:
    """Pair inputs with outputs positionally."""
    return [Prediction(inputs[i], outputs[i]) for i in range(len(outputs))]
