"""
Configuration of the Kernel SHAP explainer.

ShapConfig is an immutable, validated value object. Explainers read it once
per call, so replacing an explainer's configuration never affects an
explanation already in flight.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Sequence

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from explainability_system.core.data_types import PredictionInput
from explainability_system.core.exceptions import InvalidConfigError
from explainability_system.core.reproducibility import PerturbationContext


class LinkType(str, Enum):
    """Link applied to model outputs before the regression."""

    IDENTITY = "identity"
    LOGIT = "logit"

    def apply(self, values: Any) -> Any:
        """Apply the link elementwise.

        LOGIT maps values outside (0, 1) to non-finite numbers without
        raising; callers decide what a non-finite output means.
        """
        values = np.asarray(values, dtype=np.float64)
        if self is LinkType.IDENTITY:
            return values
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.log(values / (1.0 - values))


class RegularizerType(str, Enum):
    """Feature selection applied before the constrained regression."""

    NONE = "none"
    AIC = "aic"
    BIC = "bic"
    AUTO = "auto"


class ShapConfig(BaseModel):
    """Immutable configuration of one Kernel SHAP explanation.

    Attributes:
        background: Reference inputs replacing absent features.
        link: Link applied to model outputs.
        n_samples: Coalition budget; ``2M + 2048`` for M varying features
            when unset.
        regularizer: Selection strategy, or a positive number of features
            to keep.
        confidence: Level of the attribution confidence bounds.
        batch_count: Number of concurrent prediction batches.
        track_counterfactuals: Collect perturbed inputs whose prediction
            changed.
        counterfactual_tolerance: Minimum absolute change of a numeric
            output counted as a counterfactual.
        perturbation_context: Seed of the coalition sampler.
        group_by_name: Treat equally-named features as one coalition column.
        timeout_seconds: Bound on waits for model predictions and results.
        exhaustive_limit: Largest coalition space enumerated exhaustively.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    background: tuple[PredictionInput, ...]
    link: LinkType = LinkType.IDENTITY
    n_samples: int | None = Field(default=None, description="Coalition budget")
    regularizer: RegularizerType | int = Field(default=RegularizerType.AUTO, description="Feature selection")
    confidence: float = Field(default=0.95, description="Confidence level of bounds")
    batch_count: int = Field(default=1, description="Concurrent prediction batches")
    track_counterfactuals: bool = False
    counterfactual_tolerance: float = Field(default=1e-9, description="Numeric counterfactual tolerance")
    perturbation_context: PerturbationContext = Field(default_factory=PerturbationContext)
    group_by_name: bool = False
    timeout_seconds: float = Field(default=30.0, description="Bounded wait in seconds")
    exhaustive_limit: int = Field(default=65536, description="Max exhaustively enumerated coalitions")

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            key = ".".join(str(part) for part in first.get("loc", ())) or None
            raise InvalidConfigError(
                f"Invalid explainer configuration: {first.get('msg')}",
                config_key=key,
                config_value=first.get("input"),
            ) from e

    @field_validator("background", mode="before")
    @classmethod
    def validate_background(cls, v: Any) -> tuple[PredictionInput, ...]:
        """Background must be a non-empty collection of inputs."""
        rows = tuple(v)
        if not rows:
            raise ValueError("background must contain at least one input")
        for row in rows:
            if not isinstance(row, PredictionInput):
                raise ValueError("background rows must be PredictionInput instances")
        return rows

    @field_validator("regularizer", mode="before")
    @classmethod
    def validate_regularizer(cls, v: Any) -> RegularizerType | int:
        """Accept a regularizer name or a positive feature count."""
        if isinstance(v, bool):
            raise ValueError("regularizer must be a name or a positive integer")
        if isinstance(v, (int, np.integer)):
            if v < 1:
                raise ValueError("regularizer feature count must be >= 1")
            return int(v)
        if isinstance(v, str):
            try:
                return RegularizerType(v.lower())
            except ValueError:
                raise ValueError(f"unknown regularizer '{v}'") from None
        return v

    @field_validator("n_samples")
    @classmethod
    def validate_n_samples(cls, v: int | None) -> int | None:
        """Coalition budget must be positive when set."""
        if v is not None and v < 1:
            raise ValueError("n_samples must be >= 1")
        return v

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        """Confidence must lie strictly between 0 and 1."""
        if not 0.0 < v < 1.0:
            raise ValueError("confidence must be in (0, 1)")
        return v

    @field_validator("batch_count", "exhaustive_limit")
    @classmethod
    def validate_positive_count(cls, v: int) -> int:
        """Counts must be positive."""
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("counterfactual_tolerance")
    @classmethod
    def validate_tolerance(cls, v: float) -> float:
        """Tolerance cannot be negative."""
        if v < 0:
            raise ValueError("counterfactual_tolerance must be >= 0")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Timeout must be positive."""
        if v <= 0:
            raise ValueError("timeout_seconds must be > 0")
        return v

    def with_updates(self, **changes: Any) -> ShapConfig:
        """Return a validated copy with ``changes`` applied."""
        data = {name: getattr(self, name) for name in type(self).model_fields}
        data.update(changes)
        return ShapConfig(**data)

    def resolve_n_samples(self, n_varying: int) -> int:
        """Coalition budget for ``n_varying`` varying features."""
        if self.n_samples is not None:
            return self.n_samples
        return 2 * n_varying + 2048

    @classmethod
    def from_settings(
        cls,
        background: Sequence[PredictionInput],
        settings: Any = None,
        **overrides: Any,
    ) -> ShapConfig:
        """Build a configuration from application settings.

        Args:
            background: Reference inputs.
            settings: Application settings; the cached settings if omitted.
            **overrides: Fields taking precedence over the settings.
        """
        if settings is None:
            from explainability_system.config.settings import get_settings

            settings = get_settings()
        defaults = settings.explainer
        data: dict[str, Any] = {
            "background": background,
            "confidence": defaults.confidence,
            "batch_count": defaults.batch_count,
            "timeout_seconds": defaults.timeout_seconds,
            "exhaustive_limit": defaults.exhaustive_limit,
            "track_counterfactuals": defaults.track_counterfactuals,
            "counterfactual_tolerance": defaults.counterfactual_tolerance,
            "perturbation_context": PerturbationContext(seed=defaults.seed),
        }
        data.update(overrides)
        return cls(**data)
