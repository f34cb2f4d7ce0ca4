"""One reconciliation cycle: lock, plan, track, remediate, notify, unlock."""

import threading
from datetime import datetime
from typing import Callable, Optional

from drift_reconciler.config.models import EnvironmentConfig
from drift_reconciler.controller.models import CycleResult, CycleStatus
from drift_reconciler.incidents.models import IncidentTransition
from drift_reconciler.incidents.tracker import IncidentTracker
from drift_reconciler.lock.manager import LockManager
from drift_reconciler.notifications.dispatcher import NotificationDispatcher
from drift_reconciler.notifications.models import NotificationEvent, NotificationKind
from drift_reconciler.planning.evaluator import PlanEvaluator
from drift_reconciler.remediation.engine import RemediationEngine
from drift_reconciler.remediation.models import RemediationAttempt, RemediationOutcome
from drift_reconciler.utils.clock import utc_now
from drift_reconciler.utils.errors import (
    ConvergenceFailure,
    CycleCancelled,
    ErrorContext,
    EvaluationError,
    LockContention,
    log_error,
)
from drift_reconciler.utils.logging import get_logger

logger = get_logger(__name__)


class ReconciliationController:
    """Runs reconciliation cycles for single environments.

    A cycle holds the environment's lock from the first plan to the last
    notification and releases it on every exit path. Only lock contention and
    cancellation end a cycle early; evaluation, apply and sink failures are
    recorded and the cycle completes.
    """

    def __init__(
        self,
        lock_manager: LockManager,
        evaluator: PlanEvaluator,
        engine: RemediationEngine,
        tracker: IncidentTracker,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utc_now
    ):
        """Initialize controller.

        Args:
            lock_manager: Per-environment lock manager
            evaluator: Plan evaluator
            engine: Remediation engine
            tracker: Incident tracker
            dispatcher: Notification dispatcher
            clock: Source of timezone-aware current time
        """
        self.lock_manager = lock_manager
        self.evaluator = evaluator
        self.engine = engine
        self.tracker = tracker
        self.dispatcher = dispatcher
        self.clock = clock

    def reconcile(
        self,
        environment: EnvironmentConfig,
        cancel_event: Optional[threading.Event] = None
    ) -> CycleResult:
        """Run one reconciliation cycle.

        Args:
            environment: Environment to reconcile
            cancel_event: Set to abort the cycle

        Returns:
            The cycle result

        Raises:
            StateStoreError: If lock or incident records cannot be read or written
        """
        result = CycleResult(
            environment=environment.name,
            status=CycleStatus.COMPLETED,
            started_at=self.clock(),
        )
        extra = {'environment': environment.name}

        if cancel_event is not None and cancel_event.is_set():
            return self._finish(result, CycleStatus.CANCELLED)

        try:
            token = self.lock_manager.acquire(environment.name)
        except LockContention as e:
            logger.info(f"Skipping cycle: {e.message}", extra=extra)
            result.error = e.message
            return self._finish(result, CycleStatus.SKIPPED_LOCKED)

        try:
            self._run(environment, result, cancel_event)
        except CycleCancelled as e:
            log_error(logger, e)
            result.error = e.message
            return self._finish(result, CycleStatus.CANCELLED)
        finally:
            self.lock_manager.release(token)

        self._finish(result, CycleStatus.COMPLETED)
        logger.info(
            f"Cycle finished: {result.summary()}",
            extra={**extra, 'duration': result.duration},
        )
        return result

    def _run(
        self,
        environment: EnvironmentConfig,
        result: CycleResult,
        cancel_event: Optional[threading.Event]
    ) -> None:
        outcome = self.evaluator.evaluate(environment, cancel_event)
        result.outcome = outcome

        if outcome.is_error:
            error = EvaluationError(
                outcome.error or "Plan evaluation failed",
                context=ErrorContext(
                    environment=environment.name,
                    operation="plan",
                    exit_code=outcome.exit_code,
                ),
            )
            result.error = error.message
            self._notify(
                result,
                NotificationEvent.from_error(
                    NotificationKind.EVALUATION_FAILED, environment.name, error
                ),
            )
            return

        change = self.tracker.reconcile(environment, outcome)
        result.transition = change.transition
        self._notify(result, NotificationEvent.from_incident_change(environment.name, change))

        if not outcome.is_drifted:
            return

        attempt = self.engine.remediate(
            environment,
            outcome,
            on_start=self.tracker.begin_resolution,
            cancel_event=cancel_event,
        )
        result.attempt = attempt
        self._settle(environment, result, attempt)

    def _settle(
        self,
        environment: EnvironmentConfig,
        result: CycleResult,
        attempt: RemediationAttempt
    ) -> None:
        """Bring the incident in line with a remediation attempt."""
        if attempt.outcome == RemediationOutcome.SKIPPED_BY_POLICY:
            return

        if attempt.succeeded:
            change = self.tracker.reconcile(environment, attempt.confirmation)
            result.transition = change.transition
            self._notify(result, NotificationEvent.from_incident_change(environment.name, change))
            return

        result.error = attempt.error.message if attempt.error else None

        if isinstance(attempt.error, ConvergenceFailure):
            # The confirmation plan is the latest view of the drift; the
            # incident returns to Open with its content.
            change = self.tracker.reconcile(environment, attempt.confirmation)
            if change.transition != IncidentTransition.NONE:
                result.transition = change.transition
            kind = NotificationKind.CONVERGENCE_FAILED
        else:
            self.tracker.reopen(environment.name)
            kind = NotificationKind.REMEDIATION_FAILED

        if attempt.error is not None:
            self._notify(result, NotificationEvent.from_error(kind, environment.name, attempt.error))

    def _notify(self, result: CycleResult, event: Optional[NotificationEvent]) -> None:
        if event is None:
            return
        self.dispatcher.notify(result.environment, event)
        result.notifications.append(event.kind)

    def _finish(self, result: CycleResult, status: CycleStatus) -> CycleResult:
        result.status = status
        result.finished_at = self.clock()
        return result
