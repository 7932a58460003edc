"""
Explanation quality metrics.
"""

from .explainability_metrics import (
    CONFIDENCE_DROP_RATIO,
    LocalSaliencyStability,
    SaliencyFrequency,
    classification_fidelity,
    impact_score,
    local_saliency_f1,
    local_saliency_precision,
    local_saliency_recall,
    local_saliency_stability,
    quantify_explainability,
    sort_predictions_by_score,
)

__all__ = [
    "CONFIDENCE_DROP_RATIO",
    "LocalSaliencyStability",
    "SaliencyFrequency",
    "classification_fidelity",
    "impact_score",
    "local_saliency_f1",
    "local_saliency_precision",
    "local_saliency_recall",
    "local_saliency_stability",
    "quantify_explainability",
    "sort_predictions_by_score",
]
