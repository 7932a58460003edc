"""
Batched evaluation of coalitions against the explained model.

Every coalition is combined with every background row: present columns take
the explained instance's values, absent columns the row's values. The
model's outputs for those synthetic inputs are averaged over the background
rows and passed through the link. The baseline is the mean model output over
the background itself.

Coalitions are split into contiguous batches, one prediction request each,
all in flight at once. Results land in slots indexed by coalition and the
regression statistics are built afterwards in coalition order, so neither
the number of batches nor their completion order can change the result.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from concurrent.futures import CancelledError, Future, as_completed
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from explainability_system.core.data_types import (
    Feature,
    PredictionInput,
    PredictionOutput,
    composite_feature,
)
from explainability_system.core.exceptions import (
    ExplainabilityError,
    ExplanationTimeoutError,
    OutputShapeError,
    PredictionError,
)
from explainability_system.core.feature_ops import values_equal
from explainability_system.models.prediction_provider import PredictionProvider
from explainability_system.monitoring.logger import TRACE
from explainability_system.shap.coalitions import CoalitionSample
from explainability_system.shap.config import LinkType
from explainability_system.shap.counterfactuals import CounterfactualTracker

logger = logging.getLogger(__name__)


# =============================================================================
# Feature layout
# =============================================================================


@dataclass(frozen=True)
class FeatureLayout:
    """Mapping between coalition columns and instance features.

    Attributes:
        instance: The (linearized) explained instance.
        groups: Feature indices behind each coalition column.
        varying: Indices of the groups whose value differs from the instance
            in at least one background row.
    """

    instance: PredictionInput
    groups: tuple[tuple[int, ...], ...]
    varying: tuple[int, ...]

    @property
    def n_varying(self) -> int:
        return len(self.varying)

    def group_feature(self, group: int) -> Feature:
        """Feature representing a coalition column."""
        members = self.groups[group]
        if len(members) == 1:
            return self.instance[members[0]]
        return composite_feature(
            self.instance[members[0]].name,
            [self.instance[i] for i in members],
        )

    def compose(self, mask: np.ndarray, row: PredictionInput) -> PredictionInput:
        """Build the synthetic input of a coalition against one background row."""
        features = list(self.instance.features)
        for position, present in enumerate(mask):
            if not present:
                for index in self.groups[self.varying[position]]:
                    features[index] = row.features[index]
        return PredictionInput(tuple(features))


def build_layout(
    instance: PredictionInput,
    background: Sequence[PredictionInput],
    group_by_name: bool = False,
) -> FeatureLayout:
    """Group the instance's features into coalition columns and find the varying ones."""
    if group_by_name:
        by_name: OrderedDict[str, list[int]] = OrderedDict()
        for index, feature in enumerate(instance):
            by_name.setdefault(feature.name, []).append(index)
        groups = tuple(tuple(members) for members in by_name.values())
    else:
        groups = tuple((index,) for index in range(len(instance)))

    varying = []
    for g, members in enumerate(groups):
        if any(
            not values_equal(instance[i].type, instance[i].value, row[i].value)
            for row in background
            for i in members
        ):
            varying.append(g)
    return FeatureLayout(instance=instance, groups=groups, varying=tuple(varying))


# =============================================================================
# Sufficient statistics
# =============================================================================


@dataclass(frozen=True)
class WeightedMoments:
    """Weighted moments of a design ``X``, targets ``y`` and weights ``v``.

    Attributes:
        G: ``XᵀVX``, shape ``(M, M)``.
        s: ``XᵀV1``, shape ``(M,)``.
        n: ``1ᵀV1``.
        h: ``XᵀVy``, shape ``(M, k)``.
        ty: ``1ᵀVy``, shape ``(k,)``.
        c: ``yᵀVy`` per output, shape ``(k,)``.
    """

    G: np.ndarray
    s: np.ndarray
    n: float
    h: np.ndarray
    ty: np.ndarray
    c: np.ndarray

    @classmethod
    def accumulate(cls, X: np.ndarray, y: np.ndarray, v: np.ndarray) -> WeightedMoments:
        Xv = X * v[:, None]
        with np.errstate(invalid="ignore", over="ignore"):
            return cls(
                G=X.T @ Xv,
                s=X.T @ v,
                n=float(v.sum()),
                h=Xv.T @ y,
                ty=v @ y,
                c=(v[:, None] * y * y).sum(axis=0),
            )


@dataclass(frozen=True)
class DesignStatistics:
    """Moments under the kernel weights W, their squares W² and unit weights I."""

    W: WeightedMoments
    W2: WeightedMoments
    I: WeightedMoments
    n_rows: int

    @classmethod
    def from_design(cls, X: np.ndarray, y: np.ndarray, weights: np.ndarray) -> DesignStatistics:
        return cls(
            W=WeightedMoments.accumulate(X, y, weights),
            W2=WeightedMoments.accumulate(X, y, weights * weights),
            I=WeightedMoments.accumulate(X, y, np.ones_like(weights)),
            n_rows=int(X.shape[0]),
        )


@dataclass(frozen=True)
class EvaluationResult:
    """Model outputs of the coalitions and of the background.

    Attributes:
        raw_outputs: Mean model output per coalition, shape ``(n, k)``.
        linked_outputs: ``raw_outputs`` through the link.
        baseline_raw: Mean model output over the background, shape ``(k,)``.
        baseline_linked: ``baseline_raw`` through the link.
        statistics: Sufficient statistics of the linked outputs.
    """

    raw_outputs: np.ndarray
    linked_outputs: np.ndarray
    baseline_raw: np.ndarray
    baseline_linked: np.ndarray
    statistics: DesignStatistics | None


# =============================================================================
# Evaluator
# =============================================================================


class BatchedEvaluator:
    """Queries the model for every coalition and gathers the results."""

    def __init__(
        self,
        provider: PredictionProvider,
        layout: FeatureLayout,
        background: Sequence[PredictionInput],
        n_outputs: int,
        link: LinkType = LinkType.IDENTITY,
        batch_count: int = 1,
        timeout_seconds: float = 30.0,
        tracker: CounterfactualTracker | None = None,
    ) -> None:
        self.provider = provider
        self.layout = layout
        self.background = tuple(background)
        self.n_outputs = n_outputs
        self.link = link
        self.batch_count = batch_count
        self.timeout_seconds = timeout_seconds
        self.tracker = tracker

    def evaluate(self, coalitions: CoalitionSample | None) -> EvaluationResult:
        """Evaluate the background and every coalition.

        Raises:
            OutputShapeError: If the model returns the wrong number of rows
                or outputs.
            PredictionError: If the model fails.
            ExplanationTimeoutError: If predictions do not arrive in time.
            CancelledError: If a prediction was cancelled.
        """
        deadline = time.monotonic() + self.timeout_seconds
        n_coalitions = len(coalitions) if coalitions is not None else 0
        n_rows = len(self.background)

        futures: dict[Future, tuple[np.ndarray | None, list[PredictionInput]]] = {}
        try:
            futures[self.provider.predict_async(self.background)] = (None, list(self.background))
            if n_coalitions:
                for chunk in np.array_split(np.arange(n_coalitions), min(self.batch_count, n_coalitions)):
                    if chunk.size == 0:
                        continue
                    inputs = [
                        self.layout.compose(coalitions.masks[c], row)
                        for c in chunk
                        for row in self.background
                    ]
                    futures[self.provider.predict_async(inputs)] = (chunk, inputs)
            logger.log(
                TRACE,
                f"Submitted {len(futures)} prediction batches for {n_coalitions} coalitions "
                f"x {n_rows} background rows"
            )

            slots = np.empty((n_coalitions, self.n_outputs), dtype=np.float64)
            baseline = np.empty(self.n_outputs, dtype=np.float64)
            for future in as_completed(futures, timeout=max(deadline - time.monotonic(), 0.0)):
                chunk, inputs = futures[future]
                outputs = self._result(future)
                expected_rows = n_rows if chunk is None else chunk.size * n_rows
                values = self._to_matrix(outputs, expected_rows)
                if chunk is None:
                    baseline[:] = np.mean(values, axis=0)
                    continue
                per_coalition = values.reshape(chunk.size, n_rows, self.n_outputs)
                for offset, c in enumerate(chunk):
                    slots[c] = np.mean(per_coalition[offset], axis=0)
                if self.tracker is not None:
                    self._track(chunk, inputs, outputs)
        except FutureTimeoutError as e:
            self._cancel(futures)
            raise ExplanationTimeoutError(
                f"Predictions did not complete within {self.timeout_seconds}s",
                timeout_seconds=self.timeout_seconds,
            ) from e
        except BaseException:
            self._cancel(futures)
            raise

        linked = self.link.apply(slots)
        baseline_linked = self.link.apply(baseline)
        statistics = None
        if n_coalitions:
            statistics = DesignStatistics.from_design(
                coalitions.design_matrix(), linked, coalitions.weights
            )
        return EvaluationResult(
            raw_outputs=slots,
            linked_outputs=linked,
            baseline_raw=baseline,
            baseline_linked=baseline_linked,
            statistics=statistics,
        )

    def _result(self, future: Future) -> list[PredictionOutput]:
        try:
            return future.result()
        except (CancelledError, ExplainabilityError):
            raise
        except Exception as e:
            raise PredictionError(
                f"Model {self.provider.name} failed: {e}",
                model_name=self.provider.name,
            ) from e

    def _to_matrix(self, outputs: Sequence[PredictionOutput], expected_rows: int) -> np.ndarray:
        if len(outputs) != expected_rows:
            raise OutputShapeError(
                f"Model {self.provider.name} returned {len(outputs)} predictions for {expected_rows} inputs",
                expected_outputs=expected_rows,
                actual_outputs=len(outputs),
                model_name=self.provider.name,
            )
        values = np.empty((expected_rows, self.n_outputs), dtype=np.float64)
        for r, output in enumerate(outputs):
            if len(output) != self.n_outputs:
                raise OutputShapeError(
                    f"Model {self.provider.name} returned {len(output)} outputs, expected {self.n_outputs}",
                    expected_outputs=self.n_outputs,
                    actual_outputs=len(output),
                    model_name=self.provider.name,
                )
            values[r] = [o.as_number() for o in output]
        return values

    def _track(
        self,
        chunk: np.ndarray,
        inputs: Sequence[PredictionInput],
        outputs: Sequence[PredictionOutput],
    ) -> None:
        n_rows = len(self.background)
        for offset, c in enumerate(chunk):
            for b in range(n_rows):
                position = offset * n_rows + b
                self.tracker.observe(int(c), b, inputs[position], outputs[position])

    @staticmethod
    def _cancel(futures: dict[Future, tuple]) -> None:
        for future in futures:
            future.cancel()
