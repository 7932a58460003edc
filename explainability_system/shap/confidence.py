"""
Confidence bounds for Kernel SHAP attributions.

Model outputs are treated as carrying homoscedastic noise of variance
sigma². The noise level is estimated from the unweighted residuals of the
weighted fit, corrected by its effective degrees of freedom

    df = n - 2p + tr(P⁻¹ Q P⁻¹ R),   P = ZᵀWZ,  Q = ZᵀZ,  R = ZᵀW²Z.

The reduced coefficients then have the sandwich covariance sigma² P⁻¹RP⁻¹.
The baseline is a mean of noisy outputs too, and it enters every coefficient
through the regression target, so its variance is propagated as well. The
eliminated coefficient follows from the sum constraint.
"""

from __future__ import annotations

import logging
import math

import numpy as np
from scipy import stats

from explainability_system.shap.evaluator import DesignStatistics
from explainability_system.shap.regression import RegressionResult, reduce_system

logger = logging.getLogger(__name__)


def effective_degrees_of_freedom(P: np.ndarray, Q: np.ndarray, R: np.ndarray, n: int) -> float:
    """Residual degrees of freedom of a weighted fit with ``p`` parameters."""
    p = P.shape[0]
    if p == 0:
        return float(n)
    P_inv = np.linalg.pinv(P)
    return float(n - 2 * p + np.trace(P_inv @ Q @ P_inv @ R))


def attribution_covariance(
    statistics: DesignStatistics,
    result: RegressionResult,
    output: int,
    fnull: float,
    fx: float,
) -> tuple[np.ndarray, float]:
    """Covariance of the selected attributions, in ``result.subset`` order.

    Returns:
        Tuple of (covariance matrix, effective degrees of freedom).
    """
    subset = result.subset
    delta = fx - fnull
    beta = result.reduced_coefficients
    weighted = reduce_system(statistics.W, subset, output, fnull, delta)
    unit = reduce_system(statistics.I, subset, output, fnull, delta)
    squared = reduce_system(statistics.W2, subset, output, fnull, delta)

    n = statistics.n_rows
    df = effective_degrees_of_freedom(weighted.A, unit.A, squared.A, n)
    if df <= 0:
        return np.zeros((len(subset), len(subset))), df
    sigma2 = unit.rss(beta) / df

    p = len(subset) - 1
    P_inv = np.linalg.pinv(weighted.A) if p else np.zeros((0, 0))
    reduced_cov = sigma2 * (P_inv @ squared.A @ P_inv)

    # Constraint map from the reduced coefficients to the full subset
    T = np.vstack([np.eye(p), -np.ones((1, p))])
    # Sensitivity of the subset coefficients to the baseline
    g_reduced = -P_inv @ (weighted.z1 - weighted.zl)
    g = np.append(g_reduced, -1.0 - g_reduced.sum())

    covariance = T @ reduced_cov @ T.T + sigma2 * np.outer(g, g)
    return covariance, df


def confidence_widths(
    statistics: DesignStatistics | None,
    result: RegressionResult | None,
    output: int,
    fnull: float,
    fx: float,
    confidence: float,
) -> np.ndarray:
    """Half-width of the confidence interval of every varying column.

    Columns outside the selected subset get width 0, as does everything
    when no residual degrees of freedom are left.
    """
    if statistics is None or result is None:
        return np.zeros(0)
    n_features = statistics.W.G.shape[0]
    widths = np.zeros(n_features)
    covariance, df = attribution_covariance(statistics, result, output, fnull, fx)
    if df <= 0:
        logger.debug(f"No residual degrees of freedom (df={df:.3g}); confidence widths are 0")
        return widths
    quantile = stats.t.ppf((1.0 + confidence) / 2.0, max(df, 1.0))
    variances = np.clip(np.diag(covariance), 0.0, None)
    widths[list(result.subset)] = quantile * np.sqrt(variances)
    if not math.isfinite(float(quantile)):
        widths[:] = 0.0
    return widths
