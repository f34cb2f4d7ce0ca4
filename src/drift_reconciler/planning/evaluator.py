"""Plan evaluation: run the plan executor and classify its result."""

import threading
from datetime import datetime
from typing import Callable, Optional

from drift_reconciler.config.models import EnvironmentConfig
from drift_reconciler.planning.changeset import (
    ChangeSetParseError,
    fingerprint,
    parse_change_set,
    summarize,
)
from drift_reconciler.planning.executor import PlanExecutor
from drift_reconciler.planning.models import PlanOutcome, PlanStatus
from drift_reconciler.utils.clock import utc_now
from drift_reconciler.utils.errors import ExecutorTimeout
from drift_reconciler.utils.logging import get_logger

logger = get_logger(__name__)

# Plan executor exit contract
EXIT_CLEAN = 0
EXIT_DRIFTED = 2


class PlanEvaluator:
    """Maps plan executor runs to ``PlanOutcome``s."""

    def __init__(
        self,
        executor: PlanExecutor,
        clock: Callable[[], datetime] = utc_now
    ):
        """Initialize plan evaluator.

        Args:
            executor: Plan executor backend
            clock: Source of timezone-aware current time
        """
        self.executor = executor
        self.clock = clock

    def evaluate(
        self,
        environment: EnvironmentConfig,
        cancel_event: Optional[threading.Event] = None
    ) -> PlanOutcome:
        """Evaluate an environment.

        Exit code 0 is clean, 2 is drifted, anything else is an error. A
        timeout, a program that cannot be started, and a drifted run whose
        change-set cannot be parsed are errors too. Error outcomes carry no
        fingerprint.

        Args:
            environment: Environment to evaluate
            cancel_event: Set to abort the plan run

        Returns:
            The classified outcome

        Raises:
            CycleCancelled: If cancel_event was set during the run
        """
        timestamp = self.clock()
        extra = {'environment': environment.name, 'operation': 'plan'}

        try:
            result = self.executor.plan(environment, cancel_event)
        except ExecutorTimeout as e:
            logger.error(f"Plan timed out: {e.message}", extra=extra)
            return self._error(environment, timestamp, e.message)
        except OSError as e:
            logger.error(f"Plan executor could not be started: {e}", extra=extra)
            return self._error(environment, timestamp, f"Plan executor could not be started: {e}")

        if result.exit_code == EXIT_CLEAN:
            logger.info("No drift detected", extra=extra)
            return PlanOutcome(
                environment=environment.name,
                timestamp=timestamp,
                status=PlanStatus.CLEAN,
                change_summary="No changes.",
                exit_code=result.exit_code,
            )

        if result.exit_code != EXIT_DRIFTED:
            message = f"Plan executor exited with {result.exit_code}"
            tail = result.stderr_tail()
            if tail:
                message = f"{message}: {tail}"
            logger.error(message, extra=extra)
            return self._error(environment, timestamp, message, exit_code=result.exit_code)

        try:
            changes = parse_change_set(result.stdout)
        except ChangeSetParseError as e:
            logger.error(f"Change-set could not be parsed: {e}", extra=extra)
            return self._error(
                environment,
                timestamp,
                f"Change-set could not be parsed: {e}",
                exit_code=result.exit_code,
            )

        digest = fingerprint(changes)
        logger.info(
            f"Drift detected: {len(changes)} change(s)",
            extra={**extra, 'fingerprint': digest},
        )
        return PlanOutcome(
            environment=environment.name,
            timestamp=timestamp,
            status=PlanStatus.DRIFTED,
            change_summary=summarize(changes),
            fingerprint=digest,
            changes=changes,
            exit_code=result.exit_code,
        )

    @staticmethod
    def _error(
        environment: EnvironmentConfig,
        timestamp: datetime,
        message: str,
        exit_code: Optional[int] = None
    ) -> PlanOutcome:
        return PlanOutcome(
            environment=environment.name,
            timestamp=timestamp,
            status=PlanStatus.ERROR,
            change_summary="Evaluation failed.",
            exit_code=exit_code,
            error=message,
        )
