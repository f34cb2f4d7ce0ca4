"""Error taxonomy for reconciliation cycles."""

import logging
from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass


class ErrorCategory(Enum):
    """Categories of errors that can occur during a reconciliation cycle."""
    LOCK = "lock"
    EVALUATION = "evaluation"
    APPLY = "apply"
    CONVERGENCE = "convergence"
    NOTIFICATION = "notification"
    TIMEOUT = "timeout"
    CANCELLATION = "cancellation"
    STATE = "state"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Needs an operator
    ERROR = "error"  # Cycle step failed, cycle continues
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


@dataclass
class ErrorContext:
    """Context information for an error."""
    environment: Optional[str] = None
    operation: Optional[str] = None
    exit_code: Optional[int] = None
    fingerprint: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize reconciliation error.

        Args:
            message: Human-readable error message
            category: Error category
            severity: Error severity
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = [f"{self.severity.value.upper()}: {self.message}"]

        if self.context.environment:
            lines.append(f"   Environment: {self.context.environment}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")
        if self.context.exit_code is not None:
            lines.append(f"   Exit code: {self.context.exit_code}")

        if self.cause:
            lines.append(f"   Cause: {str(self.cause)}")

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error
        """
        return {
            'type': type(self).__name__,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': {
                'environment': self.context.environment,
                'operation': self.context.operation,
                'exit_code': self.context.exit_code,
                'fingerprint': self.context.fingerprint,
                'additional_info': self.context.additional_info
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class LockContention(ReconciliationError):
    """Another run holds a live lock for the environment."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.LOCK,
            severity=ErrorSeverity.INFO,
            **kwargs
        )


class EvaluationError(ReconciliationError):
    """The plan executor failed or produced unusable output."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.EVALUATION,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class ApplyFailure(ReconciliationError):
    """The apply executor failed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.APPLY,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class ConvergenceFailure(ReconciliationError):
    """Apply succeeded but the confirmation plan still shows drift."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CONVERGENCE,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class NotificationFailure(ReconciliationError):
    """A notification sink could not be reached."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.NOTIFICATION,
            severity=ErrorSeverity.WARNING,
            **kwargs
        )


class ExecutorTimeout(ReconciliationError):
    """An external process exceeded its timeout and was killed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.TIMEOUT,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class CycleCancelled(ReconciliationError):
    """The cycle was cancelled while an external process was running."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CANCELLATION,
            severity=ErrorSeverity.WARNING,
            **kwargs
        )


class StateStoreError(ReconciliationError):
    """The state store could not be read or written."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class ConfigurationError(ReconciliationError):
    """Error in configuration file or settings."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


def log_error(logger: logging.Logger, error: ReconciliationError) -> None:
    """Log an error with the level its severity calls for.

    Args:
        logger: Logger to write to
        error: The error to log
    """
    extra = {'environment': error.context.environment} if error.context.environment else None
    log_message = error.to_user_message()

    if error.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR):
        logger.error(log_message, extra=extra)
    elif error.severity == ErrorSeverity.WARNING:
        logger.warning(log_message, extra=extra)
    else:
        logger.info(log_message, extra=extra)

    logger.debug(f"Error details: {error.to_dict()}", extra=extra)
