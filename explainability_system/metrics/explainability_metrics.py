"""
Metrics for evaluating the quality of local explanations.

Provides:
- A quantitative explainability score from the size of an explanation
- Impact score: how much dropping the top features changes a prediction
- Classification fidelity of saliencies on boolean outputs
- Saliency precision, recall and F1 from masking high and low scored inputs
- Stability of the top positive / negative features across repeated runs
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from explainability_system.core.data_types import (
    FeatureImportance,
    FeatureType,
    Output,
    Prediction,
    PredictionInput,
    PredictionOutput,
    Saliency,
)
from explainability_system.core.exceptions import ExplanationTimeoutError, PredictionError, ValidationError
from explainability_system.core.utils import drop_feature, replace_features
from explainability_system.models.prediction_provider import PredictionProvider

logger = logging.getLogger(__name__)

# Output scores below this share of the original score count as impacted
CONFIDENCE_DROP_RATIO = 0.2


def quantify_explainability(
    input_cognitive_chunks: int,
    output_cognitive_chunks: int,
    interaction_ratio: float,
) -> float:
    """Quantitative explainability of an explanation (Islam et al.).

    Args:
        input_cognitive_chunks: Pieces of information needed to produce the
            explanation, e.g. the number of inputs.
        output_cognitive_chunks: Pieces of information in the explanation.
        interaction_ratio: Share of interaction required, in [0, 1].
    """
    if input_cognitive_chunks + output_cognitive_chunks <= 0:
        return 0.0
    if input_cognitive_chunks == 0 or output_cognitive_chunks == 0:
        return math.inf
    return (
        0.333 / input_cognitive_chunks
        + 0.333 / output_cognitive_chunks
        + 0.333 * (1.0 - interaction_ratio)
    )


def impact_score(
    model: PredictionProvider,
    prediction: Prediction,
    top_features: Sequence[FeatureImportance],
    timeout_seconds: float = 30.0,
) -> float:
    """Impact of dropping ``top_features`` from the prediction's input.

    Every output that changes value, or whose score falls below
    ``CONFIDENCE_DROP_RATIO`` of the original score, adds ``1 / n_outputs``.

    Raises:
        PredictionError: If the model cannot produce a prediction.
        ExplanationTimeoutError: If the prediction does not arrive in time.
    """
    features = list(prediction.input.features)
    for importance in top_features:
        features = drop_feature(features, importance.feature)

    outputs = _predict(model, PredictionInput(tuple(features)), timeout_seconds)

    impact = 0.0
    for modified_output in outputs:
        size = len(modified_output)
        for original, modified in zip(prediction.output, modified_output):
            changed = str(original.value) != str(modified.value)
            dropped = modified.score < original.score * CONFIDENCE_DROP_RATIO
            if changed or dropped:
                impact += 1.0 / size
    return impact


def _predict(
    model: PredictionProvider,
    prediction_input: PredictionInput,
    timeout_seconds: float,
) -> list[PredictionOutput]:
    try:
        return model.predict_async([prediction_input]).result(timeout=timeout_seconds)
    except FutureTimeoutError as e:
        logger.error(f"Impossible to obtain prediction within {timeout_seconds}s")
        raise ExplanationTimeoutError("Impossible to obtain prediction", timeout_seconds=timeout_seconds) from e
    except PredictionError:
        raise
    except Exception as e:
        logger.error(f"Impossible to obtain prediction: {e}")
        raise PredictionError("Impossible to obtain prediction", model_name=model.name) from e


def classification_fidelity(pairs: Sequence[tuple[Saliency, Prediction]]) -> float:
    """Accuracy of ``sign(sum(scores))`` as a predictor of boolean outputs."""
    correct = 0
    evaluated = 0
    for saliency, prediction in pairs:
        for output in prediction.output:
            if output.type != FeatureType.BOOLEAN:
                continue
            predictor = sum(fi.score for fi in saliency.per_feature_importance)
            value = output.as_number()
            if (value >= 0 and predictor >= 0) or (value < 0 and predictor < 0):
                correct += 1
            evaluated += 1
    return correct / evaluated if evaluated else 0.0


# =============================================================================
# Saliency precision / recall
# =============================================================================


def sort_predictions_by_score(output_name: str, predictions: Sequence[Prediction]) -> list[Prediction]:
    """Sort predictions by the score of ``output_name``, highest first.

    Predictions without that output keep their relative order, after the
    scored ones.
    """

    def key(prediction: Prediction) -> float:
        output = prediction.output.by_name(output_name)
        return -output.score if output is not None else math.inf

    return sorted(predictions, key=key)


def _score_chunks(
    output_name: str,
    predictions: Sequence[Prediction],
    chunk_size: int,
) -> tuple[list[Prediction], list[Prediction]]:
    if chunk_size < 1:
        raise ValidationError("chunk_size must be positive", field_name="chunk_size", invalid_value=chunk_size)
    ranked = sort_predictions_by_score(output_name, predictions)
    size = min(chunk_size, len(ranked))
    return ranked[:size], ranked[len(ranked) - size:]


def _mask_input(importances: Sequence[FeatureImportance], prediction_input: PredictionInput) -> PredictionInput:
    features = list(prediction_input.features)
    for importance in importances:
        features = replace_features(importance.feature, features)
    return PredictionInput(tuple(features))


def _masked_output(
    model: PredictionProvider,
    masked: PredictionInput,
    output_name: str,
    timeout_seconds: float,
) -> Output | None:
    outputs = _predict(model, masked, timeout_seconds)
    return outputs[0].by_name(output_name) if outputs else None


def local_saliency_recall(
    output_name: str,
    model: PredictionProvider,
    explainer: Any,
    predictions: Sequence[Prediction],
    k: int,
    chunk_size: int,
    timeout_seconds: float = 30.0,
) -> float:
    """Recall of a local saliency explainer on ``model``.

    The ``chunk_size`` highest scored predictions for ``output_name`` are
    paired with the ``chunk_size`` lowest scored ones. The k most important
    features of each high prediction are pasted onto its paired low input; the
    pair is a true positive when the masked input reproduces the high output
    value and a false negative otherwise.

    Returns:
        ``tp / (tp + fn)``, or NaN when no pair could be evaluated.
    """
    top_chunk, bottom_chunk = _score_chunks(output_name, predictions, chunk_size)

    true_positives = 0
    false_negatives = 0
    current = 0
    for prediction in top_chunk:
        output = prediction.output.by_name(output_name)
        if output is None:
            continue
        saliency = explainer.explain(prediction, model).saliencies.get(output_name)
        if saliency is None:
            continue
        top_features = sorted(saliency.feature_importances, key=lambda fi: fi.score, reverse=True)[:k]
        masked = _mask_input(top_features, bottom_chunk[current].input)
        current += 1

        new_output = _masked_output(model, masked, output_name, timeout_seconds)
        if new_output is None:
            continue
        if new_output.value == output.value:
            true_positives += 1
        else:
            false_negatives += 1

    evaluated = true_positives + false_negatives
    logger.debug(f"Saliency recall for '{output_name}': {true_positives}/{evaluated} true positives")
    return true_positives / evaluated if evaluated else math.nan


def local_saliency_precision(
    output_name: str,
    model: PredictionProvider,
    explainer: Any,
    predictions: Sequence[Prediction],
    k: int,
    chunk_size: int,
    timeout_seconds: float = 30.0,
) -> float:
    """Precision of a local saliency explainer on ``model``.

    The k least important features of each of the ``chunk_size`` lowest
    scored predictions are pasted onto its paired high scored input. The pair
    is a true positive when the high output value survives the masking and a
    false positive when it changes.

    Returns:
        ``tp / (tp + fp)``, or NaN when no pair could be evaluated.
    """
    top_chunk, bottom_chunk = _score_chunks(output_name, predictions, chunk_size)

    true_positives = 0
    false_positives = 0
    current = 0
    for prediction in bottom_chunk:
        saliency = explainer.explain(prediction, model).saliencies.get(output_name)
        if saliency is None:
            continue
        bottom_features = sorted(saliency.feature_importances, key=lambda fi: fi.score)[:k]
        paired = top_chunk[current]
        masked = _mask_input(bottom_features, paired.input)
        current += 1

        new_output = _masked_output(model, masked, output_name, timeout_seconds)
        output = paired.output.by_name(output_name)
        if new_output is None or output is None:
            continue
        if new_output.value == output.value:
            true_positives += 1
        else:
            false_positives += 1

    evaluated = true_positives + false_positives
    logger.debug(f"Saliency precision for '{output_name}': {true_positives}/{evaluated} true positives")
    return true_positives / evaluated if evaluated else math.nan


def local_saliency_f1(
    output_name: str,
    model: PredictionProvider,
    explainer: Any,
    predictions: Sequence[Prediction],
    k: int,
    chunk_size: int,
    timeout_seconds: float = 30.0,
) -> float:
    """Harmonic mean of saliency precision and recall (NaN when undefined)."""
    precision = local_saliency_precision(output_name, model, explainer, predictions, k, chunk_size, timeout_seconds)
    recall = local_saliency_recall(output_name, model, explainer, predictions, k, chunk_size, timeout_seconds)
    total = precision + recall
    if math.isfinite(total) and total > 0:
        return 2 * precision * recall / total
    return math.nan


# =============================================================================
# Stability
# =============================================================================


@dataclass(frozen=True)
class SaliencyFrequency:
    """Most frequent top-k feature list and how often it occurred."""

    feature_names: tuple[str, ...]
    frequency_rate: float


@dataclass
class LocalSaliencyStability:
    """Stability of the top-k positive and negative features per output."""

    positive: dict[str, dict[int, SaliencyFrequency]] = field(default_factory=dict)
    negative: dict[str, dict[int, SaliencyFrequency]] = field(default_factory=dict)

    @property
    def decisions(self) -> list[str]:
        return list(self.positive)

    def positive_stability(self, decision: str, k: int) -> SaliencyFrequency:
        return self.positive[decision][k]

    def negative_stability(self, decision: str, k: int) -> SaliencyFrequency:
        return self.negative[decision][k]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            decision: {
                k: {
                    "positive": list(self.positive[decision][k].feature_names),
                    "positive_rate": self.positive[decision][k].frequency_rate,
                    "negative": list(self.negative[decision][k].feature_names),
                    "negative_rate": self.negative[decision][k].frequency_rate,
                }
                for k in self.positive[decision]
            }
            for decision in self.positive
        }


def local_saliency_stability(
    model: PredictionProvider,
    prediction: Prediction,
    explainer: Any,
    top_k: int,
    runs: int,
) -> LocalSaliencyStability:
    """Measure how often repeated explanations agree on their top features.

    Args:
        model: Model to explain.
        prediction: Prediction explained ``runs`` times.
        explainer: Object with ``explain(prediction, model)`` returning
            SaliencyResults.
        top_k: Largest k evaluated.
        runs: Number of explanations generated.
    """
    per_decision: dict[str, list[Saliency]] = {}
    skipped = 0
    for _ in range(runs):
        results = explainer.explain(prediction, model)
        for name, saliency in results.saliencies.items():
            top = saliency.top_features(1)
            if top and top[0].score != 0:
                per_decision.setdefault(name, []).append(saliency)
            else:
                skipped += 1
    logger.debug(f"Skipped {skipped} empty or zero-valued saliencies")

    stability = LocalSaliencyStability()
    for decision, saliencies in per_decision.items():
        stability.positive[decision] = {}
        stability.negative[decision] = {}
        for k in range(1, top_k + 1):
            stability.positive[decision][k] = _most_frequent(saliencies, lambda s: s.positive_features(k))
            stability.negative[decision][k] = _most_frequent(saliencies, lambda s: s.negative_features(k))
    return stability


def _most_frequent(
    saliencies: Sequence[Saliency],
    select: Callable[[Saliency], list[FeatureImportance]],
) -> SaliencyFrequency:
    counts = Counter(tuple(fi.feature.name for fi in select(s)) for s in saliencies)
    names, count = counts.most_common(1)[0]
    return SaliencyFrequency(feature_names=names, frequency_rate=count / len(saliencies))
