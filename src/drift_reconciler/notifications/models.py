"""Notification events."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from drift_reconciler.incidents.models import IncidentChange, IncidentTransition
from drift_reconciler.utils.errors import ReconciliationError


class NotificationKind(Enum):
    """Events worth telling an operator about."""
    INCIDENT_OPENED = "incident_opened"
    INCIDENT_UPDATED = "incident_updated"
    INCIDENT_CLOSED = "incident_closed"
    EVALUATION_FAILED = "evaluation_failed"
    REMEDIATION_FAILED = "remediation_failed"
    CONVERGENCE_FAILED = "convergence_failed"


class NotificationSeverity(Enum):
    """How loudly an event is announced."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


DEFAULT_SEVERITY = {
    NotificationKind.INCIDENT_OPENED: NotificationSeverity.WARNING,
    NotificationKind.INCIDENT_UPDATED: NotificationSeverity.WARNING,
    NotificationKind.INCIDENT_CLOSED: NotificationSeverity.INFO,
    NotificationKind.EVALUATION_FAILED: NotificationSeverity.ERROR,
    NotificationKind.REMEDIATION_FAILED: NotificationSeverity.ERROR,
    NotificationKind.CONVERGENCE_FAILED: NotificationSeverity.CRITICAL,
}

TRANSITION_KINDS = {
    IncidentTransition.OPENED: NotificationKind.INCIDENT_OPENED,
    IncidentTransition.UPDATED: NotificationKind.INCIDENT_UPDATED,
    IncidentTransition.CLOSED: NotificationKind.INCIDENT_CLOSED,
}


@dataclass(frozen=True)
class NotificationEvent:
    """Something that happened to an environment during a cycle."""

    kind: NotificationKind
    environment: str
    summary: str = ""
    details: Dict[str, str] = field(default_factory=dict)

    @property
    def severity(self) -> NotificationSeverity:
        return DEFAULT_SEVERITY[self.kind]

    @property
    def title(self) -> str:
        return f"{self.kind.value.replace('_', ' ').title()}: {self.environment}"

    @classmethod
    def from_incident_change(cls, environment: str, change: IncidentChange) -> Optional["NotificationEvent"]:
        """Event for an incident transition, or None if the transition is not announced.

        Timestamp-only refreshes are not announced.
        """
        kind = TRANSITION_KINDS.get(change.transition)
        if kind is None:
            return None
        if kind == NotificationKind.INCIDENT_UPDATED and not change.content_changed:
            return None

        details: Dict[str, str] = {}
        summary = ""
        if change.incident is not None:
            summary = change.incident.change_summary
            if change.incident.last_fingerprint:
                details['fingerprint'] = change.incident.last_fingerprint[:12]
            if change.incident.external_id:
                details['issue'] = change.incident.external_id
        if kind == NotificationKind.INCIDENT_CLOSED:
            summary = "Live infrastructure matches the declared spec again."
        return cls(kind=kind, environment=environment, summary=summary, details=details)

    @classmethod
    def from_error(
        cls,
        kind: NotificationKind,
        environment: str,
        error: ReconciliationError
    ) -> "NotificationEvent":
        """Event for a failed evaluation or remediation."""
        details = {'error': type(error).__name__}
        if error.context.exit_code is not None:
            details['exit_code'] = str(error.context.exit_code)
        if error.context.fingerprint:
            details['fingerprint'] = error.context.fingerprint[:12]
        return cls(kind=kind, environment=environment, summary=error.message, details=details)

    def render_text(self) -> str:
        """Plain-text rendering for chat sinks."""
        lines = [self.title]
        if self.summary:
            lines.append(self.summary)
        for key, value in self.details.items():
            lines.append(f"{key.replace('_', ' ').title()}: {value}")
        return "\n".join(lines)
