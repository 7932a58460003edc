"""
Kernel SHAP explanations.

Samples feature coalitions, evaluates them against a background dataset
through a prediction provider, and fits constrained weighted regressions
whose coefficients are the Shapley value estimates.
"""

from .coalitions import CoalitionSample, kernel_weight, sample_coalitions, unrank_combination
from .config import LinkType, RegularizerType, ShapConfig
from .counterfactuals import CounterfactualTracker
from .explainer import ExplainerState, ShapKernelExplainer

__all__ = [
    "CoalitionSample",
    "CounterfactualTracker",
    "ExplainerState",
    "LinkType",
    "RegularizerType",
    "ShapConfig",
    "ShapKernelExplainer",
    "kernel_weight",
    "sample_coalitions",
    "unrank_combination",
]
