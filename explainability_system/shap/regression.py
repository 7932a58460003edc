"""
Constrained weighted least squares with feature selection.

For one output the attributions solve

    min  sum_i w_i (y_i - fnull - X_i beta)^2    subject to  sum(beta) = delta

where ``delta = fx - fnull``. The constraint is eliminated by writing the
last selected coefficient as ``delta`` minus the others, which turns the
problem into an ordinary weighted regression on ``Z = X_S' - x_l 1ᵀ``.

Everything here works on DesignStatistics, never on the design matrix, so
the cost of a fit depends on the number of features rather than on the
number of coalitions.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from explainability_system.monitoring.logger import TRACE
from explainability_system.shap.config import RegularizerType
from explainability_system.shap.evaluator import DesignStatistics, WeightedMoments

logger = logging.getLogger(__name__)

# Sampled share of the coalition space above which AUTO skips selection
AUTO_SAMPLED_FRACTION = 0.2


@dataclass(frozen=True)
class ReducedSystem:
    """Moments of the constraint-eliminated regression for one subset.

    Attributes:
        A: ``ZᵀMZ``, shape ``(p, p)`` with ``p = |S| - 1``.
        b: ``ZᵀMt`` with ``t = y - fnull - delta * x_l``.
        tt: ``tᵀMt``.
        z1: ``ZᵀM1``.
        zl: ``ZᵀM x_l``.
    """

    A: np.ndarray
    b: np.ndarray
    tt: float
    z1: np.ndarray
    zl: np.ndarray

    def rss(self, beta: np.ndarray) -> float:
        """Residual sum of squares of ``beta`` under this weighting, clamped at 0."""
        value = self.tt - 2.0 * float(beta @ self.b) + float(beta @ self.A @ beta)
        return max(value, 0.0)


def reduce_system(
    moments: WeightedMoments,
    subset: Sequence[int],
    output: int,
    fnull: float,
    delta: float,
) -> ReducedSystem:
    """Eliminate the last feature of ``subset`` from the weighted moments."""
    last = subset[-1]
    rest = list(subset[:-1])
    G = moments.G
    g_ll = G[last, last]
    g_rl = G[rest, last]
    g_lr = G[last, rest]

    A = G[np.ix_(rest, rest)] - g_rl[:, None] - g_lr[None, :] + g_ll
    zy = moments.h[rest, output] - moments.h[last, output]
    z1 = moments.s[rest] - moments.s[last]
    zl = g_rl - g_ll
    b = zy - fnull * z1 - delta * zl
    tt = (
        moments.c[output]
        + fnull * fnull * moments.n
        + delta * delta * g_ll
        - 2.0 * fnull * moments.ty[output]
        - 2.0 * delta * moments.h[last, output]
        + 2.0 * fnull * delta * moments.s[last]
    )
    return ReducedSystem(A=A, b=b, tt=float(tt), z1=z1, zl=zl)


def solve_reduced(system: ReducedSystem) -> np.ndarray:
    """Least-squares solution of ``A beta = b`` (minimum norm if singular)."""
    if system.b.size == 0:
        return np.zeros(0)
    return np.linalg.lstsq(system.A, system.b, rcond=None)[0]


@dataclass(frozen=True)
class RegressionResult:
    """Attributions of one output.

    Attributes:
        coefficients: Attribution per varying column (0 where not selected).
        subset: Selected columns; the last one was eliminated by the constraint.
        reduced_coefficients: Solution of the reduced system for ``subset``.
        rss_weighted: Weighted residual sum of squares of the fit.
    """

    coefficients: np.ndarray
    subset: tuple[int, ...]
    reduced_coefficients: np.ndarray
    rss_weighted: float


class ConstrainedRegression:
    """Solves the constrained regression for one output of one explanation."""

    def __init__(
        self,
        statistics: DesignStatistics,
        output: int,
        fnull: float,
        fx: float,
    ) -> None:
        self.statistics = statistics
        self.output = output
        self.fnull = float(fnull)
        self.delta = float(fx) - float(fnull)
        self.n_features = statistics.W.G.shape[0]

    def fit_subset(self, subset: Sequence[int]) -> RegressionResult:
        """Fit the constrained regression restricted to ``subset``."""
        system = reduce_system(self.statistics.W, subset, self.output, self.fnull, self.delta)
        beta = solve_reduced(system)
        coefficients = np.zeros(self.n_features)
        coefficients[list(subset[:-1])] = beta
        coefficients[subset[-1]] = self.delta - float(beta.sum())
        return RegressionResult(
            coefficients=coefficients,
            subset=tuple(subset),
            reduced_coefficients=beta,
            rss_weighted=system.rss(beta),
        )

    def forward_path(self, max_features: int) -> list[RegressionResult]:
        """Greedy forward selection by weighted residual sum of squares.

        Returns the best fit of every size from 1 to ``max_features``.
        """
        max_features = min(max_features, self.n_features)
        selected: list[int] = []
        path = []
        candidates = list(range(self.n_features))
        for _ in range(max_features):
            best: RegressionResult | None = None
            for feature in candidates:
                fit = self.fit_subset(selected + [feature])
                if best is None or fit.rss_weighted < best.rss_weighted:
                    best = fit
            selected = list(best.subset)
            candidates.remove(selected[-1])
            path.append(best)
            logger.log(TRACE, f"Forward step {len(selected)}: feature {selected[-1]}, rss={best.rss_weighted:.6g}")
        return path

    def information_scores(self, path: Sequence[RegressionResult], penalty: float) -> np.ndarray:
        """Score ``n ln(RSS_w / sum(w)) + penalty * k`` for every path step."""
        n = self.statistics.n_rows
        total_weight = self.statistics.W.n
        mse = np.array([fit.rss_weighted / total_weight for fit in path])
        floor = max(1e-12 * mse[0], 1e-300) if mse.size else 1e-300
        sizes = np.arange(1, len(path) + 1)
        return n * np.log(np.maximum(mse, floor)) + penalty * sizes

    def corrected_aic(self, fit: RegressionResult) -> float:
        """Small-sample corrected AIC of a fit."""
        n = self.statistics.n_rows
        k = len(fit.subset)
        if n - k - 1 <= 0:
            return math.inf
        mse = max(fit.rss_weighted / self.statistics.W.n, 1e-300)
        return n * math.log(mse) + 2 * k + 2 * k * (k + 1) / (n - k - 1)

    def fit(
        self,
        regularizer: RegularizerType | int,
        exhaustive: bool = False,
        sampled_fraction: float = 1.0,
    ) -> RegressionResult:
        """Select features with ``regularizer`` and fit them."""
        everything = list(range(self.n_features))
        if isinstance(regularizer, int):
            if regularizer >= self.n_features:
                return self.fit_subset(everything)
            return self.forward_path(regularizer)[-1]

        regularizer = RegularizerType(regularizer)
        if regularizer == RegularizerType.NONE:
            return self.fit_subset(everything)
        if regularizer == RegularizerType.AUTO and (exhaustive or sampled_fraction >= AUTO_SAMPLED_FRACTION):
            return self.fit_subset(everything)

        path = self.forward_path(self.n_features)
        n = self.statistics.n_rows
        if regularizer == RegularizerType.AIC:
            return path[int(np.argmin(self.information_scores(path, 2.0)))]
        if regularizer == RegularizerType.BIC:
            return path[int(np.argmin(self.information_scores(path, math.log(n))))]

        # AUTO on a sparse sample
        k_aic = int(np.argmin(self.information_scores(path, 2.0))) + 1
        k_bic = int(np.argmin(self.information_scores(path, math.log(n)))) + 1
        k_half = math.ceil(self.n_features / 2)
        candidates = sorted({k_aic, k_bic, k_half})
        scores = [self.corrected_aic(path[k - 1]) for k in candidates]
        chosen = candidates[int(np.argmin(scores))]
        logger.debug(f"AUTO regularizer chose {chosen} of {self.n_features} features from {candidates}")
        return path[chosen - 1]

    def is_finite(self) -> bool:
        """Whether the output's linked values are all finite."""
        moments = self.statistics.I
        return bool(
            math.isfinite(self.fnull)
            and math.isfinite(self.delta)
            and np.isfinite(moments.c[self.output])
            and np.all(np.isfinite(moments.h[:, self.output]))
        )
