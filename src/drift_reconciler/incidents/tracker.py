"""Incident tracking: one drift incident per environment, updated idempotently."""

from datetime import datetime
from typing import Callable, List, Optional, Tuple

from pydantic import ValidationError

from drift_reconciler.config.models import EnvironmentConfig
from drift_reconciler.incidents.models import (
    Incident,
    IncidentChange,
    IncidentState,
    IncidentTransition,
)
from drift_reconciler.incidents.sinks import IssueSink
from drift_reconciler.planning.models import PlanOutcome
from drift_reconciler.state.store import ABSENT, StateStore
from drift_reconciler.utils.clock import utc_now
from drift_reconciler.utils.errors import (
    ErrorContext,
    NotificationFailure,
    StateStoreError,
    log_error,
)
from drift_reconciler.utils.logging import get_logger

logger = get_logger(__name__)


class IncidentTracker:
    """Keeps the incident record of each environment in step with plan outcomes.

    The record in the state store is authoritative; the issue sink mirrors it.
    Every change is a read of the single record followed by a conditional
    write, so there is never more than one active incident per environment.

    State machine::

        CLOSED    --drifted-->               OPEN      (OPENED)
        OPEN      --drifted, same print-->   OPEN      (UPDATED, timestamp only)
        OPEN      --drifted, new print-->    OPEN      (UPDATED, content replaced)
        OPEN      --begin_resolution-->      RESOLVING
        RESOLVING --clean-->                 CLOSED    (CLOSED)
        RESOLVING --drifted-->               OPEN      (UPDATED)
        OPEN      --clean-->                 CLOSED    (CLOSED)
        any       --error-->                 unchanged (NONE)
    """

    def __init__(
        self,
        store: StateStore,
        issue_sink: Optional[IssueSink] = None,
        labels: Optional[List[str]] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """Initialize incident tracker.

        Args:
            store: State store holding incident records
            issue_sink: Issue tracker to mirror incidents to
            labels: Labels for new issues (an ``env:<name>`` label is added)
            clock: Source of timezone-aware current time
        """
        self.store = store
        self.issue_sink = issue_sink
        self.labels = labels if labels is not None else ["drift"]
        self.clock = clock

    @staticmethod
    def key_for(environment: str) -> str:
        return f"incidents/{environment}"

    def get(self, environment: str) -> Optional[Incident]:
        """Return the incident record of an environment, active or closed."""
        incident, _ = self._load(environment)
        return incident

    def reconcile(self, environment: EnvironmentConfig, outcome: PlanOutcome) -> IncidentChange:
        """Apply a plan outcome to the environment's incident.

        Args:
            environment: Environment the outcome belongs to
            outcome: Plan outcome

        Returns:
            The transition taken and the resulting incident
        """
        current, version = self._load(environment.name)
        extra = {'environment': environment.name, 'fingerprint': outcome.fingerprint}

        if outcome.is_error:
            logger.debug("Evaluation failed; incident left unchanged", extra=extra)
            return IncidentChange(IncidentTransition.NONE, current)

        active = current if current is not None and current.is_active else None
        now = self.clock()

        if outcome.is_clean:
            if active is None:
                return IncidentChange(IncidentTransition.NONE, current)

            closed = active.model_copy(
                update={'state': IncidentState.CLOSED, 'closed_at': now, 'last_updated_at': now}
            )
            self._save(closed, version)
            logger.info("Incident closed", extra=extra)
            self._close_issue(closed)
            return IncidentChange(
                IncidentTransition.CLOSED, closed, previous_state=active.state
            )

        if active is None:
            incident = Incident(
                environment=environment.name,
                state=IncidentState.OPEN,
                last_fingerprint=outcome.fingerprint,
                change_summary=outcome.change_summary,
                opened_at=now,
                last_updated_at=now,
            )
            self._save(incident, version)
            logger.info("Incident opened", extra=extra)
            incident = self._attach_issue(incident, version + 1)
            return IncidentChange(
                IncidentTransition.OPENED,
                incident,
                content_changed=True,
                previous_state=current.state if current else None,
            )

        content_changed = active.last_fingerprint != outcome.fingerprint
        update = {'state': IncidentState.OPEN, 'last_updated_at': now}
        if content_changed:
            update['last_fingerprint'] = outcome.fingerprint
            update['change_summary'] = outcome.change_summary

        updated = active.model_copy(update=update)
        self._save(updated, version)
        logger.info(
            "Incident updated with new drift" if content_changed else "Incident refreshed",
            extra=extra,
        )

        if updated.external_id is None:
            updated = self._attach_issue(updated, version + 1)
        elif content_changed:
            self._update_issue(updated)

        return IncidentChange(
            IncidentTransition.UPDATED,
            updated,
            content_changed=content_changed,
            previous_state=active.state,
        )

    def begin_resolution(self, environment: str) -> Optional[Incident]:
        """Mark the open incident as being remediated.

        Returns:
            The resolving incident, or None if there is no active incident
        """
        return self._move(environment, IncidentState.OPEN, IncidentState.RESOLVING)

    def reopen(self, environment: str) -> Optional[Incident]:
        """Return a resolving incident to open after a failed remediation.

        Returns:
            The reopened incident, or None if no incident was resolving
        """
        return self._move(environment, IncidentState.RESOLVING, IncidentState.OPEN)

    def _move(
        self,
        environment: str,
        from_state: IncidentState,
        to_state: IncidentState
    ) -> Optional[Incident]:
        current, version = self._load(environment)
        if current is None or current.state != from_state:
            return current if current is not None and current.state == to_state else None

        moved = current.model_copy(update={'state': to_state, 'last_updated_at': self.clock()})
        self._save(moved, version)
        logger.info(
            f"Incident {from_state.value} -> {to_state.value}",
            extra={'environment': environment},
        )
        return moved

    def _load(self, environment: str) -> Tuple[Optional[Incident], int]:
        stored = self.store.get(self.key_for(environment))
        if stored is None:
            return None, ABSENT
        try:
            return Incident.from_bytes(stored.data), stored.version
        except ValidationError as e:
            raise StateStoreError(
                f"Corrupt incident record for '{environment}': {e}",
                context=ErrorContext(environment=environment, operation="load_incident"),
                cause=e,
            )

    def _save(self, incident: Incident, expected_version: int) -> None:
        if not self.store.conditional_put(
            self.key_for(incident.environment), expected_version, incident.to_bytes()
        ):
            raise StateStoreError(
                f"Incident record for '{incident.environment}' was modified concurrently",
                context=ErrorContext(environment=incident.environment, operation="save_incident"),
                suggestions=["Check that only lock holders write incident records"],
            )

    def _attach_issue(self, incident: Incident, version: int) -> Incident:
        """Create the external issue for an incident that has none yet."""
        if self.issue_sink is None:
            return incident

        try:
            external_id = self.issue_sink.create_incident(
                title=f"Infrastructure drift detected in {incident.environment}",
                body=self.render_body(incident),
                labels=self.labels + [f"env:{incident.environment}"],
            )
        except Exception as e:
            self._sink_failed(incident, "create_incident", e)
            return incident

        attached = incident.model_copy(update={'external_id': external_id})
        self._save(attached, version)
        return attached

    def _update_issue(self, incident: Incident) -> None:
        if self.issue_sink is None:
            return
        try:
            self.issue_sink.update_incident(incident.external_id, self.render_body(incident))
        except Exception as e:
            self._sink_failed(incident, "update_incident", e)

    def _close_issue(self, incident: Incident) -> None:
        if self.issue_sink is None or incident.external_id is None:
            return
        try:
            self.issue_sink.close_incident(incident.external_id)
        except Exception as e:
            self._sink_failed(incident, "close_incident", e)

    @staticmethod
    def _sink_failed(incident: Incident, operation: str, error: Exception) -> None:
        log_error(
            logger,
            NotificationFailure(
                f"Issue sink {operation} failed",
                context=ErrorContext(environment=incident.environment, operation=operation),
                cause=error,
            ),
        )

    @staticmethod
    def render_body(incident: Incident) -> str:
        """Markdown body of the external issue."""
        return "\n".join(
            [
                f"Drift detected in environment `{incident.environment}`.",
                "",
                f"**Fingerprint:** `{incident.last_fingerprint}`",
                f"**Opened:** {incident.opened_at.isoformat()}",
                f"**Last updated:** {incident.last_updated_at.isoformat()}",
                "",
                "```",
                incident.change_summary,
                "```",
            ]
        )
