"""Remediation: apply a drifted change-set once and confirm convergence."""

import threading
from datetime import datetime
from typing import Callable, Optional

from drift_reconciler.config.models import EnvironmentConfig
from drift_reconciler.incidents.models import Incident
from drift_reconciler.planning.evaluator import PlanEvaluator
from drift_reconciler.planning.executor import ApplyExecutor
from drift_reconciler.planning.models import PlanOutcome
from drift_reconciler.remediation.models import RemediationAttempt, RemediationOutcome
from drift_reconciler.utils.clock import utc_now
from drift_reconciler.utils.errors import (
    ApplyFailure,
    ConvergenceFailure,
    ErrorContext,
    EvaluationError,
    ExecutorTimeout,
    ReconciliationError,
    log_error,
)
from drift_reconciler.utils.logging import get_logger

logger = get_logger(__name__)


class RemediationEngine:
    """Runs the apply executor for a drifted environment, then re-plans.

    Apply is never retried within a cycle. The caller must hold the
    environment's lock.
    """

    def __init__(
        self,
        apply_executor: ApplyExecutor,
        evaluator: PlanEvaluator,
        clock: Callable[[], datetime] = utc_now
    ):
        """Initialize remediation engine.

        Args:
            apply_executor: Apply executor backend
            evaluator: Evaluator used for the confirmation plan
            clock: Source of timezone-aware current time
        """
        self.apply_executor = apply_executor
        self.evaluator = evaluator
        self.clock = clock

    def remediate(
        self,
        environment: EnvironmentConfig,
        outcome: PlanOutcome,
        on_start: Optional[Callable[[str], Optional[Incident]]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> RemediationAttempt:
        """Attempt to remediate drift.

        Args:
            environment: Environment to remediate
            outcome: The drifted outcome that triggered remediation
            on_start: Called with the environment name just before apply runs;
                its return value is kept as the attempt's incident snapshot
            cancel_event: Set to abort the apply or confirmation run

        Returns:
            The attempt, with its confirmation outcome when one was produced

        Raises:
            ValueError: If the outcome is not drifted
            CycleCancelled: If cancel_event was set during a run
        """
        if not outcome.is_drifted:
            raise ValueError(f"Cannot remediate a {outcome.status.value} outcome")

        started_at = self.clock()
        extra = {
            'environment': environment.name,
            'fingerprint': outcome.fingerprint,
            'operation': 'apply',
        }

        if not environment.auto_remediate:
            logger.info("Auto-remediation disabled; leaving drift in place", extra=extra)
            return RemediationAttempt(
                environment=environment.name,
                started_at=started_at,
                triggering_fingerprint=outcome.fingerprint,
                outcome=RemediationOutcome.SKIPPED_BY_POLICY,
                finished_at=started_at,
            )

        incident = on_start(environment.name) if on_start is not None else None

        context = ErrorContext(
            environment=environment.name,
            operation="apply",
            fingerprint=outcome.fingerprint,
        )

        logger.info(f"Applying {len(outcome.changes)} change(s)", extra=extra)
        try:
            result = self.apply_executor.apply(environment, outcome.changes, cancel_event)
        except ExecutorTimeout as e:
            return self._failed(
                outcome,
                started_at,
                incident,
                ApplyFailure(f"Apply timed out: {e.message}", context=context, cause=e),
            )
        except OSError as e:
            return self._failed(
                outcome,
                started_at,
                incident,
                ApplyFailure(f"Apply executor could not be started: {e}", context=context, cause=e),
            )

        if not result.succeeded():
            context.exit_code = result.exit_code
            message = f"Apply exited with {result.exit_code}"
            tail = result.stderr_tail()
            if tail:
                message = f"{message}: {tail}"
            return self._failed(outcome, started_at, incident, ApplyFailure(message, context=context))

        logger.info(
            f"Apply finished in {result.duration:.1f}s; confirming",
            extra={**extra, 'duration': result.duration},
        )
        confirmation = self.evaluator.evaluate(environment, cancel_event)

        if confirmation.is_clean:
            logger.info("Remediation confirmed", extra=extra)
            return RemediationAttempt(
                environment=environment.name,
                started_at=started_at,
                triggering_fingerprint=outcome.fingerprint,
                outcome=RemediationOutcome.SUCCEEDED,
                incident=incident,
                finished_at=self.clock(),
                confirmation=confirmation,
            )

        if confirmation.is_drifted:
            error: ReconciliationError = ConvergenceFailure(
                "Apply succeeded but the environment is still drifted",
                context=ErrorContext(
                    environment=environment.name,
                    operation="confirm",
                    fingerprint=confirmation.fingerprint,
                ),
                suggestions=["Inspect the resources listed in the incident for out-of-band changes"],
            )
        else:
            error = EvaluationError(
                f"Confirmation plan failed: {confirmation.error}",
                context=ErrorContext(
                    environment=environment.name,
                    operation="confirm",
                    exit_code=confirmation.exit_code,
                ),
            )
        return self._failed(outcome, started_at, incident, error, confirmation)

    def _failed(
        self,
        outcome: PlanOutcome,
        started_at: datetime,
        incident: Optional[Incident],
        error: ReconciliationError,
        confirmation: Optional[PlanOutcome] = None
    ) -> RemediationAttempt:
        log_error(logger, error)
        return RemediationAttempt(
            environment=outcome.environment,
            started_at=started_at,
            triggering_fingerprint=outcome.fingerprint,
            outcome=RemediationOutcome.FAILED,
            incident=incident,
            finished_at=self.clock(),
            confirmation=confirmation,
            error=error,
        )
