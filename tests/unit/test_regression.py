"""
Unit tests for shap/regression.py and shap/confidence.py
"""

import numpy as np
import pytest

from explainability_system.shap.coalitions import enumerate_coalitions, sample_coalitions
from explainability_system.shap.confidence import (
    attribution_covariance,
    confidence_widths,
    effective_degrees_of_freedom,
)
from explainability_system.shap.config import RegularizerType
from explainability_system.shap.evaluator import DesignStatistics
from explainability_system.shap.regression import ConstrainedRegression, reduce_system


def linear_statistics(beta, fnull=0.0, noise=0.0, seed=0, n_features=None, n_samples=None):
    """Statistics of a linear model over coalitions of len(beta) features."""
    beta = np.asarray(beta, dtype=np.float64)
    m = n_features or beta.size
    if n_samples is None:
        coalitions = enumerate_coalitions(m)
    else:
        coalitions = sample_coalitions(m, n_samples, np.random.default_rng(seed))
    X = coalitions.design_matrix()
    y = fnull + X @ beta
    if noise:
        y = y + np.random.default_rng(seed).normal(0.0, noise, size=y.size)
    statistics = DesignStatistics.from_design(X, y[:, None], coalitions.weights)
    fx = fnull + beta.sum()
    return statistics, fx, coalitions


class TestDesignStatistics:
    """Tests for sufficient statistics."""

    def test_moments(self):
        """Test the moments against their definitions."""
        X = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
        y = np.array([[1.0], [2.0], [4.0]])
        w = np.array([0.5, 1.0, 2.0])
        statistics = DesignStatistics.from_design(X, y, w)
        np.testing.assert_allclose(statistics.W.G, X.T @ np.diag(w) @ X)
        np.testing.assert_allclose(statistics.W.h[:, 0], X.T @ (w * y[:, 0]))
        assert statistics.W.n == pytest.approx(3.5)
        assert statistics.I.n == pytest.approx(3.0)
        np.testing.assert_allclose(statistics.W2.s, X.T @ (w * w))
        assert statistics.W.c[0] == pytest.approx(0.5 + 4.0 + 32.0)
        assert statistics.n_rows == 3

    def test_reduced_rss_matches_direct(self):
        """Test the eliminated system reproduces the constrained residuals."""
        statistics, fx, coalitions = linear_statistics([1.0, -2.0, 0.5, 3.0], fnull=1.0, noise=0.3)
        delta = fx - 1.0
        system = reduce_system(statistics.W, [0, 1, 2, 3], 0, 1.0, delta)
        beta = np.array([0.2, -0.1, 0.4])
        full = np.append(beta, delta - beta.sum())

        X = coalitions.design_matrix()
        y = 1.0 + X @ np.array([1.0, -2.0, 0.5, 3.0])
        y = y + np.random.default_rng(0).normal(0.0, 0.3, size=y.size)
        residual = y - 1.0 - X @ full
        assert system.rss(beta) == pytest.approx(float(coalitions.weights @ residual ** 2))


class TestConstrainedRegression:
    """Tests for the constrained weighted regression."""

    def test_exact_recovery(self):
        """Test a linear model is recovered exactly."""
        beta = [1.5, -2.0, 0.0, 4.0, 0.25]
        statistics, fx, _ = linear_statistics(beta, fnull=2.0)
        result = ConstrainedRegression(statistics, 0, 2.0, fx).fit(RegularizerType.NONE)
        np.testing.assert_allclose(result.coefficients, beta, atol=1e-9)
        assert result.rss_weighted == pytest.approx(0.0, abs=1e-9)

    def test_constraint_holds(self):
        """Test coefficients add up to fx - fnull for noisy data."""
        statistics, fx, _ = linear_statistics([1.0, 2.0, 3.0, 4.0], noise=0.5, seed=3)
        result = ConstrainedRegression(statistics, 0, 0.0, fx).fit(RegularizerType.NONE)
        assert result.coefficients.sum() == pytest.approx(fx)

    def test_fit_subset_zeroes_other_features(self):
        """Test features outside the subset get no attribution."""
        statistics, fx, _ = linear_statistics([1.0, 2.0, 3.0, 4.0])
        result = ConstrainedRegression(statistics, 0, 0.0, fx).fit_subset([3, 1])
        assert result.subset == (3, 1)
        assert result.coefficients[0] == 0.0
        assert result.coefficients[2] == 0.0
        assert result.coefficients.sum() == pytest.approx(fx)

    def test_forward_path(self):
        """Test the path grows one feature at a time with non-increasing residuals."""
        statistics, fx, _ = linear_statistics([5.0, 0.0, -3.0, 0.0, 1.0, 0.0])
        regression = ConstrainedRegression(statistics, 0, 0.0, fx)
        path = regression.forward_path(6)
        assert [len(fit.subset) for fit in path] == [1, 2, 3, 4, 5, 6]
        rss = [fit.rss_weighted for fit in path]
        assert all(later <= earlier + 1e-9 for earlier, later in zip(rss, rss[1:]))
        assert rss[-1] == pytest.approx(0.0, abs=1e-9)

    def test_feature_count_regularizer(self):
        """Test an integer regularizer keeps at most that many features."""
        statistics, fx, _ = linear_statistics([5.0, 0.1, -3.0, 0.2, 1.0, 0.0], noise=0.1)
        result = ConstrainedRegression(statistics, 0, 0.0, fx).fit(2)
        assert len(result.subset) == 2
        assert np.count_nonzero(result.coefficients) <= 2
        assert result.coefficients.sum() == pytest.approx(fx)

    @pytest.mark.parametrize("regularizer", [RegularizerType.AIC, RegularizerType.BIC, RegularizerType.AUTO])
    def test_information_criteria(self, regularizer):
        """Test selection by information criteria on a sparse sample keeps the constraint."""
        beta = np.zeros(14)
        beta[[0, 5, 9]] = [4.0, -3.0, 2.0]
        statistics, fx, coalitions = linear_statistics(beta, noise=0.05, n_samples=150, seed=1)
        result = ConstrainedRegression(statistics, 0, 0.0, fx).fit(
            regularizer, coalitions.exhaustive, coalitions.sampled_fraction
        )
        assert 1 <= len(result.subset) <= 14
        assert result.coefficients.sum() == pytest.approx(fx)

    def test_auto_on_exhaustive_uses_everything(self):
        """Test AUTO skips selection when the space is covered."""
        statistics, fx, coalitions = linear_statistics([1.0, 0.0, 2.0, 0.0])
        result = ConstrainedRegression(statistics, 0, 0.0, fx).fit(RegularizerType.AUTO, exhaustive=True)
        assert result.subset == (0, 1, 2, 3)

    def test_is_finite(self):
        """Test non-finite linked values are detected."""
        statistics, fx, _ = linear_statistics([1.0, 2.0, 3.0])
        assert ConstrainedRegression(statistics, 0, 0.0, fx).is_finite()
        assert not ConstrainedRegression(statistics, 0, float("inf"), fx).is_finite()


class TestConfidence:
    """Tests for confidence bounds of attributions."""

    def test_degrees_of_freedom_unweighted(self):
        """Test unit weights reduce to n - p."""
        P = np.array([[2.0, 0.5], [0.5, 1.0]])
        assert effective_degrees_of_freedom(P, P, P, 20) == pytest.approx(18.0)
        assert effective_degrees_of_freedom(np.zeros((0, 0)), None, None, 7) == 7.0

    def test_exact_fit_has_zero_width(self):
        """Test a noiseless fit has zero-width bounds."""
        statistics, fx, _ = linear_statistics([1.0, 2.0, 3.0, 4.0, 5.0])
        result = ConstrainedRegression(statistics, 0, 0.0, fx).fit(RegularizerType.NONE)
        widths = confidence_widths(statistics, result, 0, 0.0, fx, 0.95)
        np.testing.assert_allclose(widths, 0.0, atol=1e-4)

    def test_noisy_fit_has_positive_width(self):
        """Test noise widens the bounds, and higher confidence widens them further."""
        statistics, fx, _ = linear_statistics([1.0, 2.0, 3.0, 4.0, 5.0], noise=0.5, seed=2)
        result = ConstrainedRegression(statistics, 0, 0.0, fx).fit(RegularizerType.NONE)
        narrow = confidence_widths(statistics, result, 0, 0.0, fx, 0.9)
        wide = confidence_widths(statistics, result, 0, 0.0, fx, 0.99)
        assert np.all(narrow > 0)
        assert np.all(wide > narrow)

    def test_covariance_is_symmetric(self):
        """Test the attribution covariance is a symmetric positive semi-definite matrix."""
        statistics, fx, _ = linear_statistics([1.0, -1.0, 2.0, 0.5], noise=0.2, seed=4)
        result = ConstrainedRegression(statistics, 0, 0.0, fx).fit(RegularizerType.NONE)
        covariance, df = attribution_covariance(statistics, result, 0, 0.0, fx)
        assert df > 0
        np.testing.assert_allclose(covariance, covariance.T, atol=1e-12)
        assert np.all(np.linalg.eigvalsh(covariance) >= -1e-10)

    def test_unselected_features_have_zero_width(self):
        """Test features dropped by selection get width 0."""
        statistics, fx, _ = linear_statistics([3.0, 0.0, -2.0, 0.0, 1.0], noise=0.2, seed=6)
        result = ConstrainedRegression(statistics, 0, 0.0, fx).fit(2)
        widths = confidence_widths(statistics, result, 0, 0.0, fx, 0.95)
        outside = [i for i in range(5) if i not in result.subset]
        np.testing.assert_array_equal(widths[outside], 0.0)

    def test_no_regression(self):
        """Test the trivial cases produce no widths."""
        assert confidence_widths(None, None, 0, 0.0, 1.0, 0.95).size == 0
