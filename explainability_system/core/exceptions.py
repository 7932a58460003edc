"""
Custom exception hierarchy for the explainability system.

Provides a structured exception hierarchy for different error categories:
- Validation errors (shape mismatches, invalid inputs)
- Configuration errors (invalid, unparseable)
- Model errors (failed or malformed predictions)
- Explanation errors (timeouts while waiting on an explanation)
"""

from __future__ import annotations

from typing import Any


class ExplainabilityError(Exception):
    """Base exception for all explainability system errors.

    All custom exceptions in the system should inherit from this class.
    Provides structured error information including error code, message,
    and additional context.
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
            error_code: Optional error code for programmatic handling.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def __str__(self) -> str:
        """Return formatted error string."""
        if self.details:
            return f"[{self.error_code}] {self.message} - Details: {self.details}"
        return f"[{self.error_code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(ExplainabilityError):
    """Raised when parameter or input validation fails.

    Examples:
        - Background rows with a different number of features
        - A prediction without outputs
        - Unsupported feature values
    """

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        invalid_value: Any = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the validation error.

        Args:
            message: Human-readable error message.
            field_name: Name of the field that failed validation.
            invalid_value: The value that failed validation.
            **kwargs: Additional context passed to parent.
        """
        details = kwargs.pop("details", {})
        if field_name:
            details["field_name"] = field_name
        if invalid_value is not None:
            details["invalid_value"] = str(invalid_value)
        super().__init__(message, details=details, **kwargs)
        self.field_name = field_name
        self.invalid_value = invalid_value


class ShapeMismatchError(ValidationError):
    """Raised when the explained instance and the background disagree in shape.

    This is always raised synchronously, before any model call is scheduled.
    """

    def __init__(
        self,
        message: str,
        expected: int | None = None,
        actual: int | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if expected is not None:
            details["expected"] = expected
        if actual is not None:
            details["actual"] = actual
        super().__init__(message, details=details, **kwargs)
        self.expected = expected
        self.actual = actual


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(ExplainabilityError):
    """Base exception for configuration errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Raised when configuration values are invalid.

    Examples:
        - Confidence level outside (0, 1)
        - Non-positive batch count
        - Unknown regularizer name
    """

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        config_value: Any = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if config_value is not None:
            details["config_value"] = str(config_value)
        super().__init__(message, details=details, **kwargs)
        self.config_key = config_key
        self.config_value = config_value


class ConfigParseError(ConfigurationError):
    """Raised when a configuration file cannot be parsed."""

    def __init__(
        self,
        message: str,
        file_path: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if file_path:
            details["file_path"] = file_path
        super().__init__(message, details=details, **kwargs)
        self.file_path = file_path


# =============================================================================
# Model Errors
# =============================================================================


class ModelError(ExplainabilityError):
    """Base exception for errors raised by the explained model."""

    pass


class PredictionError(ModelError):
    """Raised when the external prediction function fails.

    Examples:
        - The prediction function raised
        - The provider returned a different number of rows than requested
    """

    def __init__(
        self,
        message: str,
        model_name: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if model_name:
            details["model_name"] = model_name
        super().__init__(message, details=details, **kwargs)
        self.model_name = model_name


class OutputShapeError(PredictionError):
    """Raised when the model's output arity differs from the explained output.

    Can only be detected after the model was invoked, so it always surfaces
    through the explanation future.
    """

    def __init__(
        self,
        message: str,
        expected_outputs: int | None = None,
        actual_outputs: int | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if expected_outputs is not None:
            details["expected_outputs"] = expected_outputs
        if actual_outputs is not None:
            details["actual_outputs"] = actual_outputs
        super().__init__(message, details=details, **kwargs)
        self.expected_outputs = expected_outputs
        self.actual_outputs = actual_outputs


# =============================================================================
# Explanation Errors
# =============================================================================


class ExplanationError(ExplainabilityError):
    """Base exception for failures of the explanation pipeline itself."""

    pass


class ExplanationTimeoutError(ExplanationError):
    """Raised when a bounded wait on an explanation expires.

    A timeout never yields a partial result.
    """

    def __init__(
        self,
        message: str,
        timeout_seconds: float | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(message, details=details, **kwargs)
        self.timeout_seconds = timeout_seconds
