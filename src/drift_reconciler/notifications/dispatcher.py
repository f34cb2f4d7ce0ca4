"""Best-effort delivery of notification events to chat sinks."""

from typing import Dict, List, Optional

from drift_reconciler.notifications.models import NotificationEvent
from drift_reconciler.notifications.sinks import ChatSink
from drift_reconciler.utils.errors import ErrorContext, NotificationFailure, log_error
from drift_reconciler.utils.logging import get_logger
from drift_reconciler.utils.retry import CircuitBreaker

logger = get_logger(__name__)


class NotificationDispatcher:
    """Sends each event to every sink at most once and never raises.

    Each sink sits behind a circuit breaker; a sink that keeps failing is
    skipped until its recovery timeout elapses.
    """

    def __init__(
        self,
        sinks: Optional[List[ChatSink]] = None,
        failure_threshold: int = 3,
        recovery_timeout: float = 300.0
    ):
        """Initialize dispatcher.

        Args:
            sinks: Chat sinks to deliver to
            failure_threshold: Consecutive failures before a sink is skipped
            recovery_timeout: Seconds before a skipped sink is tried again
        """
        self.sinks = list(sinks or [])
        self._breakers = [
            CircuitBreaker(failure_threshold=failure_threshold, recovery_timeout=recovery_timeout)
            for _ in self.sinks
        ]

    def notify(self, environment: str, event: Optional[NotificationEvent]) -> Dict[str, bool]:
        """Deliver an event.

        Args:
            environment: Environment name
            event: Event to deliver (None is ignored)

        Returns:
            Delivery result per sink name
        """
        if event is None:
            return {}

        text = event.render_text()
        results: Dict[str, bool] = {}
        extra = {'environment': environment, 'operation': event.kind.value}

        for sink, breaker in zip(self.sinks, self._breakers):
            if not breaker.allow_request():
                logger.warning(f"Skipping {sink.name} notification: circuit open", extra=extra)
                results[sink.name] = False
                continue

            try:
                delivered = bool(sink.post_message(text, event.severity))
            except Exception as e:
                breaker.record_failure()
                log_error(
                    logger,
                    NotificationFailure(
                        f"Failed to send {event.kind.value} notification to {sink.name}",
                        context=ErrorContext(environment=environment, operation="notify"),
                        cause=e,
                    ),
                )
                results[sink.name] = False
                continue

            if delivered:
                breaker.record_success()
            else:
                breaker.record_failure()
            results[sink.name] = delivered

        logger.debug(f"Notification {event.kind.value} delivered: {results}", extra=extra)
        return results
