"""
Kernel SHAP explainer.

Explains one prediction of a black-box model: how much each input feature
moved each output away from the model's average output over a background
dataset. The attributions of an output always add up to the difference
between the linked explained output and the linked baseline.

Usage:
    from explainability_system.shap import ShapConfig, ShapKernelExplainer

    config = ShapConfig(background=background_inputs)
    with ShapKernelExplainer(config) as explainer:
        results = explainer.explain(prediction, provider)
        print(results.as_table())
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import numpy as np

from explainability_system.core.data_types import (
    FeatureImportance,
    Prediction,
    PredictionInput,
    Saliency,
    SaliencyResults,
    BACKGROUND_FEATURE_NAME,
    numerical_feature,
)
from explainability_system.core.exceptions import (
    ExplanationTimeoutError,
    InvalidConfigError,
    ShapeMismatchError,
    ValidationError,
)
from explainability_system.core.feature_ops import linearize_input
from explainability_system.models.prediction_provider import PredictionProvider
from explainability_system.monitoring.logger import (
    ContextLogger,
    ExplanationLogEntry,
    LogCategory,
    log_explanation,
    new_explanation_logger,
    trace_latency,
)
from explainability_system.shap.coalitions import CoalitionSample, sample_coalitions
from explainability_system.shap.confidence import confidence_widths
from explainability_system.shap.config import ShapConfig
from explainability_system.shap.counterfactuals import CounterfactualTracker
from explainability_system.shap.evaluator import BatchedEvaluator, EvaluationResult, FeatureLayout, build_layout
from explainability_system.shap.regression import ConstrainedRegression


class ExplainerState(str, Enum):
    """Stages of one explanation."""

    VALIDATING = "validating"
    SAMPLING = "sampling"
    EVALUATING = "evaluating"
    REGRESSING = "regressing"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"


StateListener = Callable[[ExplainerState], None]


@dataclass(frozen=True)
class _PreparedExplanation:
    """Validated inputs of one explanation call."""

    prediction: Prediction
    background: tuple[PredictionInput, ...]
    layout: FeatureLayout
    config: ShapConfig


class ShapKernelExplainer:
    """Kernel SHAP explainer over asynchronous prediction providers.

    The explainer holds no per-call state. Each call takes a snapshot of the
    configuration when it starts; swapping ``config`` later only affects
    calls made after the swap. Pipelines run on the explainer's own thread
    pool while model predictions run on the provider's pool.
    """

    def __init__(self, config: ShapConfig | None = None, max_workers: int | None = None) -> None:
        """Initialize the explainer.

        Args:
            config: Default configuration of explanations.
            max_workers: Concurrent explanation pipelines; from settings if omitted.
        """
        if max_workers is None:
            from explainability_system.config.settings import get_settings

            max_workers = get_settings().explainer.max_workers
        self._config = config
        self._config_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="shap_explainer",
        )

    @property
    def config(self) -> ShapConfig | None:
        """Configuration used by calls that do not pass their own."""
        with self._config_lock:
            return self._config

    @config.setter
    def config(self, value: ShapConfig) -> None:
        with self._config_lock:
            self._config = value

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def explain_async(
        self,
        prediction: Prediction,
        model: PredictionProvider,
        config: ShapConfig | None = None,
        listener: StateListener | None = None,
    ) -> Future[SaliencyResults]:
        """Start explaining ``prediction``.

        Validation happens before this method returns; everything else runs
        asynchronously.

        Raises:
            ShapeMismatchError: If the instance and background rows differ in
                feature count.
            ValidationError: If the prediction has no outputs.
            InvalidConfigError: If no configuration is available.
        """
        snapshot = config if config is not None else self.config
        if snapshot is None:
            raise InvalidConfigError("No explainer configuration given", config_key="config")
        log = new_explanation_logger(__name__, model_name=getattr(model, "name", None))
        _notify(listener, ExplainerState.VALIDATING)
        try:
            prepared = self._validate(prediction, snapshot, log)
        except Exception:
            _notify(listener, ExplainerState.FAILED)
            raise
        return self._executor.submit(self._run, prepared, model, listener, log)

    def explain(
        self,
        prediction: Prediction,
        model: PredictionProvider,
        config: ShapConfig | None = None,
        listener: StateListener | None = None,
    ) -> SaliencyResults:
        """Explain ``prediction`` and wait for the result.

        Raises:
            ExplanationTimeoutError: If the result is not ready within the
                configured timeout.
        """
        snapshot = config if config is not None else self.config
        future = self.explain_async(prediction, model, snapshot, listener)
        try:
            return future.result(timeout=snapshot.timeout_seconds)
        except FutureTimeoutError as e:
            future.cancel()
            raise ExplanationTimeoutError(
                f"Explanation did not complete within {snapshot.timeout_seconds}s",
                timeout_seconds=snapshot.timeout_seconds,
            ) from e

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting explanations and release the worker pool."""
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def __enter__(self) -> ShapKernelExplainer:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    @staticmethod
    def _validate(prediction: Prediction, config: ShapConfig, log: ContextLogger) -> _PreparedExplanation:
        if len(prediction.output) == 0:
            raise ValidationError("Prediction has no outputs", field_name="prediction.output")
        instance = linearize_input(prediction.input)
        background = tuple(linearize_input(row) for row in config.background)
        for index, row in enumerate(background):
            if len(row) != len(instance):
                log.with_context(category=LogCategory.VALIDATION).warning(
                    f"Background row {index} has {len(row)} features, instance has {len(instance)}"
                )
                raise ShapeMismatchError(
                    f"Background row {index} has {len(row)} features but the explained instance has {len(instance)}",
                    expected=len(instance),
                    actual=len(row),
                    field_name="background",
                )
            for column, (feature, reference) in enumerate(zip(row.features, instance.features)):
                if feature.type != reference.type:
                    log.with_context(category=LogCategory.VALIDATION).warning(
                        f"Background row {index} column {column} is {feature.type.value}, "
                        f"instance has {reference.type.value}"
                    )
                    raise ShapeMismatchError(
                        f"Background row {index} feature '{feature.name}' has type {feature.type.value} "
                        f"but the explained instance has {reference.type.value}",
                        field_name="background",
                        invalid_value=feature.type.value,
                    )
        layout = build_layout(instance, background, config.group_by_name)
        return _PreparedExplanation(
            prediction=Prediction(instance, prediction.output),
            background=background,
            layout=layout,
            config=config,
        )

    def _run(
        self,
        prepared: _PreparedExplanation,
        model: PredictionProvider,
        listener: StateListener | None,
        log: ContextLogger,
    ) -> SaliencyResults:
        start = time.perf_counter()
        config = prepared.config
        layout = prepared.layout
        try:
            _notify(listener, ExplainerState.SAMPLING)
            coalitions = self._sample(layout, config, log)

            _notify(listener, ExplainerState.EVALUATING)
            tracker = None
            if config.track_counterfactuals:
                tracker = CounterfactualTracker(prepared.prediction.output, config.counterfactual_tolerance)
            evaluator = BatchedEvaluator(
                provider=model,
                layout=layout,
                background=prepared.background,
                n_outputs=len(prepared.prediction.output),
                link=config.link,
                batch_count=config.batch_count,
                timeout_seconds=config.timeout_seconds,
                tracker=tracker,
            )
            evaluation = evaluator.evaluate(coalitions)
            log.with_context(category=LogCategory.EVALUATION).debug(
                f"Evaluated {len(coalitions) if coalitions is not None else 0} coalitions"
            )

            _notify(listener, ExplainerState.REGRESSING)
            scores, widths = self._regress(prepared, coalitions, evaluation, log)

            _notify(listener, ExplainerState.ASSEMBLING)
            results = self._assemble(prepared, evaluation, scores, widths, tracker)
        except BaseException as e:
            log.error(f"Explanation failed: {e}")
            _notify(listener, ExplainerState.FAILED)
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        trace_latency("shap_explanation", duration_ms, component="ShapKernelExplainer")
        log_explanation(
            ExplanationLogEntry(
                correlation_id=log.correlation_id,
                model_name=getattr(model, "name", type(model).__name__),
                n_features=len(layout.instance),
                n_varying=layout.n_varying,
                n_coalitions=len(coalitions) if coalitions is not None else 0,
                exhaustive=coalitions.exhaustive if coalitions is not None else True,
                duration_ms=duration_ms,
                outputs={
                    name: {"baseline": float(s.per_feature_importance[-1].score)}
                    for name, s in results.saliencies.items()
                },
                counterfactuals=len(results.counterfactuals),
            ),
            level="DEBUG",
        )
        _notify(listener, ExplainerState.DONE)
        return results

    @staticmethod
    def _sample(layout: FeatureLayout, config: ShapConfig, log: ContextLogger) -> CoalitionSample | None:
        m = layout.n_varying
        if m < 2:
            return None
        coalitions = sample_coalitions(
            m,
            config.resolve_n_samples(m),
            config.perturbation_context.generator(),
            config.exhaustive_limit,
        )
        log.with_context(category=LogCategory.SAMPLING).debug(
            f"{len(coalitions)} coalitions over {m} varying features "
            f"({'exhaustive' if coalitions.exhaustive else f'{coalitions.sampled_fraction:.2%} sampled'})"
        )
        return coalitions

    @staticmethod
    def _regress(
        prepared: _PreparedExplanation,
        coalitions: CoalitionSample | None,
        evaluation: EvaluationResult,
        log: ContextLogger,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Attributions and confidence widths per output and varying column."""
        config = prepared.config
        m = prepared.layout.n_varying
        n_outputs = len(prepared.prediction.output)
        fx = config.link.apply(prepared.prediction.output.to_numpy())
        fnull = evaluation.baseline_linked
        scores = np.zeros((n_outputs, m))
        widths = np.zeros((n_outputs, m))

        for j in range(n_outputs):
            delta = fx[j] - fnull[j]
            if m == 0:
                continue
            if not np.isfinite(delta):
                scores[j] = np.nan
                widths[j] = np.nan
                continue
            if m == 1:
                scores[j, 0] = delta
                continue
            regression = ConstrainedRegression(evaluation.statistics, j, fnull[j], fx[j])
            if not regression.is_finite():
                log.with_context(category=LogCategory.REGRESSION).warning(
                    f"Output {prepared.prediction.output[j].name} has non-finite linked values"
                )
                scores[j] = np.nan
                widths[j] = np.nan
                continue
            result = regression.fit(config.regularizer, coalitions.exhaustive, coalitions.sampled_fraction)
            scores[j] = result.coefficients
            widths[j] = confidence_widths(
                evaluation.statistics, result, j, fnull[j], fx[j], config.confidence
            )
        return scores, widths

    @staticmethod
    def _assemble(
        prepared: _PreparedExplanation,
        evaluation: EvaluationResult,
        scores: np.ndarray,
        widths: np.ndarray,
        tracker: CounterfactualTracker | None,
    ) -> SaliencyResults:
        layout = prepared.layout
        position = {group: v for v, group in enumerate(layout.varying)}
        saliencies = {}
        for j, output in enumerate(prepared.prediction.output):
            importances = []
            for group in range(len(layout.groups)):
                feature = layout.group_feature(group)
                v = position.get(group)
                if v is None:
                    importances.append(FeatureImportance(feature, 0.0, 0.0))
                else:
                    importances.append(FeatureImportance(feature, float(scores[j, v]), float(widths[j, v])))
            importances.append(
                FeatureImportance(
                    numerical_feature(BACKGROUND_FEATURE_NAME, float(evaluation.baseline_raw[j])),
                    float(evaluation.baseline_linked[j]),
                    0.0,
                )
            )
            saliencies[output.name] = Saliency(output, tuple(importances))
        counterfactuals = tracker.results() if tracker is not None else ()
        return SaliencyResults(saliencies=saliencies, counterfactuals=counterfactuals)


def _notify(listener: StateListener | None, state: ExplainerState) -> None:
    if listener is not None:
        listener(state)
