"""
Model adapters.

Wraps black-box prediction functions behind the asynchronous
PredictionProvider contract used by the explainers.
"""

from .prediction_provider import (
    ArrayPredictionProvider,
    CallablePredictionProvider,
    PredictionProvider,
    ProviderMetrics,
)

__all__ = [
    "ArrayPredictionProvider",
    "CallablePredictionProvider",
    "PredictionProvider",
    "ProviderMetrics",
]
