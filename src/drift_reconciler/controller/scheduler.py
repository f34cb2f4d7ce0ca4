"""Per-environment scheduling of reconciliation cycles on a thread pool."""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

from drift_reconciler.config.models import EnvironmentConfig
from drift_reconciler.controller.models import CycleResult
from drift_reconciler.controller.reconciler import ReconciliationController
from drift_reconciler.utils.logging import get_logger

logger = get_logger(__name__)


class ReconciliationScheduler:
    """Triggers cycles for each enabled environment on its own interval.

    Cycles for different environments run concurrently. An environment with a
    cycle in flight is never submitted again until that cycle finishes; the
    environment lock covers other processes. Environments with drift detection
    disabled are never reconciled.
    """

    def __init__(
        self,
        controller: ReconciliationController,
        environments: List[EnvironmentConfig],
        max_workers: int = 4,
        clock: Callable[[], float] = time.monotonic
    ):
        """Initialize scheduler.

        Args:
            controller: Controller running the cycles
            environments: All configured environments
            max_workers: Maximum concurrent cycles
            clock: Monotonic time source in seconds
        """
        self.controller = controller
        self.environments: Dict[str, EnvironmentConfig] = {
            env.name: env for env in environments if env.drift_detection_enabled
        }
        self.disabled = sorted(env.name for env in environments if not env.drift_detection_enabled)
        self.clock = clock

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="reconcile")
        self._lock = threading.Lock()
        self._in_flight: Dict[str, Future] = {}
        self._cancel_events: Dict[str, threading.Event] = {}
        self._next_due: Dict[str, float] = {name: clock() for name in self.environments}
        self._stopped = threading.Event()

        for name in self.disabled:
            logger.info("Drift detection disabled; not scheduling", extra={'environment': name})

    def due(self, now: Optional[float] = None) -> List[str]:
        """Names of environments whose next cycle is due and not in flight."""
        now = self.clock() if now is None else now
        with self._lock:
            return sorted(
                name
                for name, due_at in self._next_due.items()
                if due_at <= now and not self._is_running(name)
            )

    def run_pending(self) -> Dict[str, Future]:
        """Submit every due environment.

        Returns:
            Futures of the cycles submitted by this call
        """
        now = self.clock()
        submitted = {}
        for name in self.due(now):
            env = self.environments[name]
            with self._lock:
                self._next_due[name] = now + env.schedule_interval_seconds
            future = self._submit(name)
            if future is not None:
                submitted[name] = future
        return submitted

    def trigger(self, name: str) -> Optional[Future]:
        """Run a cycle for an environment now.

        Returns the in-flight cycle if one is already running.

        Args:
            name: Environment name

        Returns:
            Future of the cycle, or None if the environment is unknown or disabled
        """
        if name not in self.environments:
            logger.warning(
                "On-demand trigger ignored: environment unknown or drift detection disabled",
                extra={'environment': name},
            )
            return None
        return self._submit(name)

    def cancel(self, name: str) -> bool:
        """Ask the in-flight cycle of an environment to abort.

        Returns:
            True if a cycle was in flight
        """
        with self._lock:
            event = self._cancel_events.get(name)
        if event is None:
            return False
        event.set()
        logger.info("Cancellation requested", extra={'environment': name})
        return True

    def run_forever(self, stop_event: Optional[threading.Event] = None, tick: float = 1.0) -> None:
        """Run due cycles until ``stop_event`` is set or ``stop`` is called."""
        stop_event = stop_event or self._stopped
        logger.info(
            f"Scheduler started for {len(self.environments)} environment(s): "
            f"{', '.join(sorted(self.environments)) or 'none'}"
        )
        while not stop_event.is_set() and not self._stopped.is_set():
            self.run_pending()
            stop_event.wait(tick)
        self.stop()

    def stop(self, cancel_running: bool = True, wait: bool = True) -> None:
        """Stop scheduling and shut down the worker pool.

        Args:
            cancel_running: Cancel in-flight cycles (their locks are still released)
            wait: Block until in-flight cycles have finished
        """
        self._stopped.set()
        if cancel_running:
            with self._lock:
                events = list(self._cancel_events.values())
            for event in events:
                event.set()
        self._executor.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    def _submit(self, name: str) -> Optional[Future]:
        with self._lock:
            if self._is_running(name):
                logger.debug("Cycle already in flight", extra={'environment': name})
                return self._in_flight[name]
            if self._stopped.is_set():
                return None

            cancel_event = threading.Event()
            future = self._executor.submit(self._run_cycle, self.environments[name], cancel_event)
            self._in_flight[name] = future
            self._cancel_events[name] = cancel_event

        future.add_done_callback(lambda _: self._finished(name, future))
        return future

    def _is_running(self, name: str) -> bool:
        # Caller holds self._lock; a done future may still await its callback
        future = self._in_flight.get(name)
        return future is not None and not future.done()

    def _finished(self, name: str, future: Future) -> None:
        with self._lock:
            if self._in_flight.get(name) is future:
                del self._in_flight[name]
                self._cancel_events.pop(name, None)

    def _run_cycle(
        self,
        environment: EnvironmentConfig,
        cancel_event: threading.Event
    ) -> Optional[CycleResult]:
        try:
            return self.controller.reconcile(environment, cancel_event)
        except Exception:
            logger.exception(
                "Reconciliation cycle failed unexpectedly",
                extra={'environment': environment.name},
            )
            return None
