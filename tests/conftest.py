"""
Pytest fixtures for the Explainability System tests.
"""

import sys
import threading
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from explainability_system.core.data_types import (  # noqa: E402
    FeatureType,
    Output,
    PredictionInput,
    PredictionOutput,
    categorical_feature,
    numerical_feature,
)
from explainability_system.models.prediction_provider import (  # noqa: E402
    ArrayPredictionProvider,
    CallablePredictionProvider,
)
from explainability_system.shap.explainer import ShapKernelExplainer  # noqa: E402


BACKGROUND_RAW = [
    [1.0, 2.0, 3.0, -4.0, 5.0],
    [10.0, 11.0, 12.0, -4.0, 13.0],
    [2.0, 3.0, 4.0, -4.0, 6.0],
]

TO_EXPLAIN_RAW = [
    [5.0, 6.0, 7.0, -4.0, 8.0],
    [11.0, 12.0, 13.0, -5.0, 14.0],
    [0.0, 0.0, 1.0, 4.0, 2.0],
]

FRUIT_CALORIES = {"avocado": 322, "banana": 105, "carrot": 25, "dragonfruit": 61, "": 0}


def _sum_skip(inputs, skip):
    return [
        sum(f.value for i, f in enumerate(x.features) if i != skip)
        for x in inputs
    ]


@pytest.fixture
def inputs_from_matrix():
    """Build numerical PredictionInputs from a matrix, every feature named 'f'."""

    def build(matrix, name="f"):
        return [
            PredictionInput(tuple(numerical_feature(name, float(v)) for v in row))
            for row in matrix
        ]

    return build


@pytest.fixture
def background_raw():
    """Three-row background of the reference scenarios."""
    return [list(row) for row in BACKGROUND_RAW]


@pytest.fixture
def to_explain_raw():
    """Instances explained against the reference background."""
    return [list(row) for row in TO_EXPLAIN_RAW]


@pytest.fixture
def sum_skip_model():
    """Single-output model summing every feature except index 1."""
    provider = CallablePredictionProvider(
        lambda inputs: [PredictionOutput.from_values([s], ["sum-but1"]) for s in _sum_skip(inputs, 1)],
        name="sum_skip",
    )
    yield provider
    provider.shutdown()


@pytest.fixture
def sum_skip_two_output_model():
    """Two-output model: twice the skip-1 sum, then the skip-1 sum."""
    provider = CallablePredictionProvider(
        lambda inputs: [
            PredictionOutput.from_values([2 * s, s], ["sum-but1*2", "sum-but1"])
            for s in _sum_skip(inputs, 1)
        ],
        name="sum_skip_two_output",
    )
    yield provider
    provider.shutdown()


@pytest.fixture
def linear_model():
    """Factory of numpy linear models ``X @ weights``."""
    providers = []

    def build(weights, output_names=("linear",)):
        w = np.asarray(weights, dtype=np.float64)
        provider = ArrayPredictionProvider(lambda X: X @ w, output_names=list(output_names), name="linear")
        providers.append(provider)
        return provider

    yield build
    for provider in providers:
        provider.shutdown()


@pytest.fixture
def noisy_sum_model():
    """Factory of sum models with additive Gaussian noise."""
    providers = []

    def build(noise_std, seed):
        rng = np.random.default_rng(seed)
        lock = threading.Lock()

        def predict(X):
            with lock:
                noise = rng.normal(0.0, noise_std, size=X.shape[0])
            return X.sum(axis=1) + noise

        provider = ArrayPredictionProvider(predict, output_names=["noisy_sum"], name="noisy_sum", max_workers=1)
        providers.append(provider)
        return provider

    yield build
    for provider in providers:
        provider.shutdown()


@pytest.fixture
def categorical_regressor():
    """Model of calories eaten and number of fruits eaten from categorical features."""

    def predict(inputs):
        outputs = []
        for x in inputs:
            calories = sum(FRUIT_CALORIES[f.value] for f in x.features)
            eaten = sum(1 for f in x.features if f.value != "")
            outputs.append(
                PredictionOutput((
                    Output("calories", FeatureType.NUMBER, float(calories)),
                    Output("fruit_eaten", FeatureType.NUMBER, float(eaten)),
                ))
            )
        return outputs

    provider = CallablePredictionProvider(predict, name="categorical_regressor")
    yield provider
    provider.shutdown()


@pytest.fixture
def fruit_inputs():
    """Factory of fruit inputs with either shared or distinct feature names."""

    def build(values, shared_name=True):
        return PredictionInput(tuple(
            categorical_feature("Fruit" if shared_name else f"Fruit_OHE_{j}", v, FRUIT_CALORIES.keys())
            for j, v in enumerate(values)
        ))

    return build


@pytest.fixture
def explainer():
    """Explainer without a default configuration."""
    instance = ShapKernelExplainer(max_workers=2)
    yield instance
    instance.shutdown()
