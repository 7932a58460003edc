"""
Explainability System - Kernel SHAP attributions for black-box models

Explains individual predictions of arbitrary prediction functions by
estimating per-feature Shapley values against a background dataset, with
confidence bounds and counterfactual byproducts.
"""

__version__ = "1.0.0"
__author__ = "Explainability System"
