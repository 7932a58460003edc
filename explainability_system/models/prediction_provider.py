"""
Prediction providers: the asynchronous contract between explainers and models.

An explainer never calls a model directly. It hands batches of inputs to a
PredictionProvider and receives a Future of outputs, one PredictionOutput per
input, in input order. Providers own the worker pool their model runs on.

Usage:
    from explainability_system.models.prediction_provider import (
        ArrayPredictionProvider, CallablePredictionProvider
    )

    # Wrap a numpy model
    provider = ArrayPredictionProvider(lambda X: X.sum(axis=1), output_names=["sum"])

    # Wrap a function over PredictionInputs
    provider = CallablePredictionProvider(my_predict_fn, name="my_model")

    outputs = provider.predict_async(inputs).result()
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import numpy as np

from explainability_system.core.data_types import (
    FeatureType,
    Output,
    PredictionInput,
    PredictionOutput,
)
from explainability_system.core.exceptions import OutputShapeError

logger = logging.getLogger(__name__)


@dataclass
class ProviderMetrics:
    """Metrics of a prediction provider.

    Attributes:
        total_requests: Total number of inputs predicted.
        total_batches: Total number of predict calls completed.
        failed_batches: Number of predict calls that raised.
        avg_batch_size: Running average batch size.
        avg_latency_ms: Running average latency of a predict call.
        throughput_per_second: Inputs predicted per second since creation.
    """

    total_requests: int = 0
    total_batches: int = 0
    failed_batches: int = 0
    avg_batch_size: float = 0.0
    avg_latency_ms: float = 0.0
    throughput_per_second: float = 0.0
    _start_time: float = field(default_factory=time.time)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_batch(self, batch_size: int, latency_ms: float) -> None:
        """Record a batch completion."""
        with self._lock:
            self.total_requests += batch_size
            self.total_batches += 1

            # Exponential moving average
            alpha = 0.1
            if self.total_batches == 1:
                self.avg_batch_size = float(batch_size)
                self.avg_latency_ms = latency_ms
            else:
                self.avg_batch_size = alpha * batch_size + (1 - alpha) * self.avg_batch_size
                self.avg_latency_ms = alpha * latency_ms + (1 - alpha) * self.avg_latency_ms

            elapsed = time.time() - self._start_time
            if elapsed > 0:
                self.throughput_per_second = self.total_requests / elapsed

    def record_failure(self) -> None:
        """Record a failed predict call."""
        with self._lock:
            self.failed_batches += 1

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_requests": self.total_requests,
            "total_batches": self.total_batches,
            "failed_batches": self.failed_batches,
            "avg_batch_size": round(self.avg_batch_size, 2),
            "avg_latency_ms": round(self.avg_latency_ms, 2),
            "throughput_per_second": round(self.throughput_per_second, 2),
        }


class PredictionProvider(ABC):
    """Asynchronous prediction function over PredictionInputs."""

    def __init__(self, name: str = "model") -> None:
        self.name = name
        self.metrics = ProviderMetrics()

    @abstractmethod
    def predict_async(self, inputs: Sequence[PredictionInput]) -> Future[list[PredictionOutput]]:
        """Predict a batch of inputs.

        Args:
            inputs: Inputs to predict.

        Returns:
            Future resolving to one PredictionOutput per input, in order.
        """

    def predict(self, inputs: Sequence[PredictionInput], timeout: float | None = None) -> list[PredictionOutput]:
        """Predict a batch of inputs and wait for the result."""
        return self.predict_async(inputs).result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        """Release the provider's resources."""

    def __enter__(self) -> PredictionProvider:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()


class _PooledPredictionProvider(PredictionProvider):
    """Provider running a synchronous batch function on its own thread pool."""

    def __init__(self, name: str, max_workers: int) -> None:
        super().__init__(name)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=f"provider_{name}",
        )

    def predict_async(self, inputs: Sequence[PredictionInput]) -> Future[list[PredictionOutput]]:
        batch = list(inputs)
        return self._executor.submit(self._timed_predict, batch)

    def _timed_predict(self, batch: list[PredictionInput]) -> list[PredictionOutput]:
        start = time.perf_counter()
        try:
            outputs = self._predict_batch(batch)
        except Exception:
            self.metrics.record_failure()
            raise
        latency_ms = (time.perf_counter() - start) * 1000
        self.metrics.record_batch(len(batch), latency_ms)
        logger.debug(f"{self.name}: predicted {len(batch)} inputs in {latency_ms:.2f}ms")
        return outputs

    @abstractmethod
    def _predict_batch(self, batch: list[PredictionInput]) -> list[PredictionOutput]:
        """Predict synchronously on a worker thread."""

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        logger.info(f"Prediction provider {self.name} shut down")


class CallablePredictionProvider(_PooledPredictionProvider):
    """Provider wrapping a function from PredictionInputs to PredictionOutputs.

    Example:
        def predict(inputs):
            return [PredictionOutput.from_values([sum(f.value for f in x)]) for x in inputs]

        provider = CallablePredictionProvider(predict, name="sum")
    """

    def __init__(
        self,
        predict_fn: Callable[[list[PredictionInput]], Sequence[PredictionOutput]],
        name: str = "callable_model",
        max_workers: int = 2,
    ) -> None:
        super().__init__(name, max_workers)
        self._predict_fn = predict_fn

    def _predict_batch(self, batch: list[PredictionInput]) -> list[PredictionOutput]:
        return list(self._predict_fn(batch))


class ArrayPredictionProvider(_PooledPredictionProvider):
    """Provider wrapping a numpy model ``f(X) -> y``.

    ``X`` has one row per input and one column per feature. ``y`` has shape
    ``(n,)`` for single-output models or ``(n, k)`` for ``k`` outputs.
    """

    def __init__(
        self,
        predict_fn: Callable[[np.ndarray], np.ndarray],
        output_names: Sequence[str] | None = None,
        name: str = "array_model",
        max_workers: int = 2,
    ) -> None:
        super().__init__(name, max_workers)
        self._predict_fn = predict_fn
        self.output_names = list(output_names) if output_names is not None else None

    def _predict_batch(self, batch: list[PredictionInput]) -> list[PredictionOutput]:
        if not batch:
            return []
        X = np.vstack([x.to_numpy() for x in batch])
        y = np.asarray(self._predict_fn(X), dtype=np.float64)
        if y.ndim == 1:
            y = y[:, None]
        if y.shape[0] != len(batch):
            raise OutputShapeError(
                f"{self.name} returned {y.shape[0]} rows for {len(batch)} inputs",
                expected_outputs=len(batch),
                actual_outputs=y.shape[0],
                model_name=self.name,
            )
        names = self.output_names or [f"o{j}" for j in range(y.shape[1])]
        if len(names) != y.shape[1]:
            raise OutputShapeError(
                f"{self.name} returned {y.shape[1]} outputs, expected {len(names)}",
                expected_outputs=len(names),
                actual_outputs=y.shape[1],
                model_name=self.name,
            )
        return [
            PredictionOutput(tuple(Output(n, FeatureType.NUMBER, float(v)) for n, v in zip(names, row)))
            for row in y
        ]
