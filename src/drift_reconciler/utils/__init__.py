"""Utility modules for logging, error handling, and retries."""

from drift_reconciler.utils.retry import RetryStrategy, CircuitBreaker
from drift_reconciler.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ReconciliationError,
    LockContention,
    EvaluationError,
    ApplyFailure,
    ConvergenceFailure,
    NotificationFailure,
    ExecutorTimeout,
    CycleCancelled,
    StateStoreError,
    ConfigurationError,
    log_error
)
from drift_reconciler.utils.logging import get_logger, setup_logging

__all__ = [
    # Retry
    'RetryStrategy',
    'CircuitBreaker',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ReconciliationError',
    'LockContention',
    'EvaluationError',
    'ApplyFailure',
    'ConvergenceFailure',
    'NotificationFailure',
    'ExecutorTimeout',
    'CycleCancelled',
    'StateStoreError',
    'ConfigurationError',
    'log_error',

    # Logging
    'get_logger',
    'setup_logging',
]
