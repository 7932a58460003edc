"""
Unit tests for shap/coalitions.py and shap/counterfactuals.py
"""

import logging
import math
from itertools import combinations

import numpy as np
import pytest

from explainability_system.core.data_types import (
    FeatureType,
    Output,
    PredictionInput,
    PredictionOutput,
)
from explainability_system.core.reproducibility import PerturbationContext, blum_blum_shub, child_seed
from explainability_system.monitoring.logger import TRACE
from explainability_system.shap.coalitions import (
    enumerate_coalitions,
    kernel_weight,
    sample_coalitions,
    unrank_combination,
)
from explainability_system.shap.counterfactuals import CounterfactualTracker, outputs_differ


class TestKernelWeight:
    """Tests for the Shapley kernel."""

    def test_symmetric(self):
        """Test a size and its complement weigh the same."""
        for size in range(1, 9):
            assert kernel_weight(9, size) == pytest.approx(kernel_weight(9, 9 - size))

    def test_values(self):
        """Test the closed form."""
        assert kernel_weight(4, 1) == pytest.approx(3 / (4 * 1 * 3))
        assert kernel_weight(4, 2) == pytest.approx(3 / (6 * 2 * 2))

    def test_trivial_coalitions_are_infinite(self):
        """Test empty and full coalitions carry infinite weight."""
        assert math.isinf(kernel_weight(5, 0))
        assert math.isinf(kernel_weight(5, 5))


class TestUnrankCombination:
    """Tests for lexicographic combination unranking."""

    def test_matches_itertools_order(self):
        """Test every index maps to the itertools combination of the same rank."""
        expected = list(combinations(range(7), 3))
        assert [unrank_combination(7, 3, i) for i in range(len(expected))] == expected

    def test_out_of_range(self):
        """Test invalid indices are rejected."""
        with pytest.raises(ValueError):
            unrank_combination(5, 2, 10)
        with pytest.raises(ValueError):
            unrank_combination(5, 2, -1)

    def test_large_space(self):
        """Test unranking works beyond machine integers."""
        n, k = 200, 100
        last = unrank_combination(n, k, math.comb(n, k) - 1)
        assert last == tuple(range(100, 200))


class TestEnumeration:
    """Tests for exhaustive coalition enumeration."""

    def test_counts_and_weights(self):
        """Test every non-trivial coalition appears once with its kernel weight."""
        sample = enumerate_coalitions(4)
        assert len(sample) == 14
        assert sample.exhaustive
        assert sample.sampled_fraction == 1.0
        sizes = sample.masks.sum(axis=1)
        assert sizes.min() == 1 and sizes.max() == 3
        assert len({m.tobytes() for m in sample.masks}) == 14
        for mask, weight in zip(sample.masks, sample.weights):
            assert weight == pytest.approx(kernel_weight(4, int(mask.sum())))

    def test_small_space_is_enumerated(self):
        """Test a budget covering the space enumerates it."""
        sample = sample_coalitions(5, 100, np.random.default_rng(0))
        assert len(sample) == 30
        assert sample.exhaustive

    def test_exhaustive_limit(self):
        """Test the limit forces sampling even with a large budget."""
        sample = sample_coalitions(5, 100, np.random.default_rng(0), exhaustive_limit=10)
        assert len(sample) <= 100
        assert sample.design_matrix().dtype == np.float64

    def test_needs_two_features(self):
        """Test coalitions need at least two varying columns."""
        with pytest.raises(ValueError):
            sample_coalitions(1, 10, np.random.default_rng(0))


class TestSampling:
    """Tests for sampled coalitions."""

    def test_budget_respected(self):
        """Test the sample never exceeds its budget."""
        sample = sample_coalitions(20, 500, np.random.default_rng(1))
        assert len(sample) <= 500
        assert not sample.exhaustive
        assert sample.sampled_fraction < 0.01

    def test_no_duplicates_or_trivial_coalitions(self):
        """Test every coalition is unique and non-trivial."""
        sample = sample_coalitions(16, 400, np.random.default_rng(2))
        sizes = sample.masks.sum(axis=1)
        assert np.all((sizes > 0) & (sizes < 16))
        assert len({m.tobytes() for m in sample.masks}) == len(sample)

    def test_weights_normalized(self):
        """Test sampled weights are positive and share the full kernel mass."""
        sample = sample_coalitions(16, 400, np.random.default_rng(3))
        assert np.all(sample.weights > 0)
        assert sample.weights.sum() == pytest.approx(1.0)

    def test_smallest_layers_enumerated_first(self):
        """Test size 1 and size M-1 coalitions are all present."""
        sample = sample_coalitions(12, 300, np.random.default_rng(4))
        sizes = sample.masks.sum(axis=1)
        assert (sizes == 1).sum() == 12
        assert (sizes == 11).sum() == 12

    def test_complements_are_paired(self):
        """Test sampled coalitions come with their complement."""
        sample = sample_coalitions(15, 300, np.random.default_rng(5))
        keys = {m.tobytes() for m in sample.masks}
        paired = sum((~m).tobytes() in keys for m in sample.masks)
        assert paired >= len(sample) - 1

    def test_layer_allocation_logged_at_trace(self, caplog):
        """Test layer allocation detail is logged below DEBUG."""
        name = "explainability_system.shap.coalitions"
        with caplog.at_level(logging.DEBUG, logger=name):
            sample_coalitions(12, 300, np.random.default_rng(4))
        assert not any("coalition sizes" in r.getMessage() for r in caplog.records)

        with caplog.at_level(TRACE, logger=name):
            sample_coalitions(12, 300, np.random.default_rng(4))
        allocation = [r for r in caplog.records if "coalition sizes" in r.getMessage()]
        assert allocation
        assert all(r.levelno == TRACE for r in allocation)

    def test_deterministic_for_seed(self):
        """Test equal contexts give identical samples."""
        context = PerturbationContext(seed=17)
        first = sample_coalitions(18, 600, context.generator())
        second = sample_coalitions(18, 600, context.generator())
        assert np.array_equal(first.masks, second.masks)
        assert np.array_equal(first.weights, second.weights)


class TestReproducibility:
    """Tests for core/reproducibility.py."""

    def test_child_seed(self):
        """Test child seeds are derived deterministically."""
        assert child_seed(10, 3) == 13
        assert child_seed(None, 3) is None
        assert PerturbationContext(seed=1).child(4).seed == 5

    def test_generator_restarts_stream(self):
        """Test each generator starts at the beginning of the stream."""
        context = PerturbationContext(seed=8)
        assert context.generator().random() == context.generator().random()

    def test_blum_blum_shub(self):
        """Test the deterministic matrix generator."""
        matrix = blum_blum_shub(3, 4, 5021)
        assert matrix.shape == (3, 4)
        assert matrix[0, 0] == pow(5021, 2, 26017 * 98893) / 1e9
        assert np.array_equal(matrix, blum_blum_shub(3, 4, 5021))


class TestCounterfactuals:
    """Tests for counterfactual tracking."""

    def test_outputs_differ_numeric(self):
        """Test numeric outputs compare with a tolerance."""
        ref = Output("y", FeatureType.NUMBER, 1.0)
        assert not outputs_differ(ref, Output("y", FeatureType.NUMBER, 1.0 + 1e-12))
        assert outputs_differ(ref, Output("y", FeatureType.NUMBER, 1.1))
        assert outputs_differ(ref, Output("y", FeatureType.NUMBER, 1.1), tolerance=0.05)
        assert not outputs_differ(ref, Output("y", FeatureType.NUMBER, 1.1), tolerance=0.5)

    def test_outputs_differ_nan(self):
        """Test two NaNs are equal and NaN differs from a number."""
        nan = Output("y", FeatureType.NUMBER, math.nan)
        assert not outputs_differ(nan, Output("y", FeatureType.NUMBER, math.nan))
        assert outputs_differ(nan, Output("y", FeatureType.NUMBER, 0.0))

    def test_outputs_differ_categorical(self):
        """Test non-numeric outputs compare by equality."""
        ref = Output("label", FeatureType.CATEGORICAL, "cat")
        assert outputs_differ(ref, Output("label", FeatureType.CATEGORICAL, "dog"))
        assert not outputs_differ(ref, Output("label", FeatureType.CATEGORICAL, "cat"))

    def test_tracker_orders_results(self):
        """Test results are ordered by coalition, then background row."""
        tracker = CounterfactualTracker(PredictionOutput.from_values([1.0]))
        row = PredictionInput.from_values([0.0])
        assert tracker.observe(3, 1, row, PredictionOutput.from_values([2.0]))
        assert tracker.observe(1, 2, row, PredictionOutput.from_values([3.0]))
        assert not tracker.observe(0, 0, row, PredictionOutput.from_values([1.0]))
        assert tracker.observe(1, 0, row, PredictionOutput.from_values([4.0]))

        assert len(tracker) == 3
        assert tracker.observed == 4
        keys = [(cf.coalition_index, cf.background_index) for cf in tracker.results()]
        assert keys == [(1, 0), (1, 2), (3, 1)]

    def test_tracker_needs_outputs(self):
        """Test an empty reference prediction is rejected."""
        with pytest.raises(ValueError):
            CounterfactualTracker(PredictionOutput(()))
