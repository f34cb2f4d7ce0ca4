"""Data models for reconciliation cycles."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from drift_reconciler.incidents.models import IncidentTransition
from drift_reconciler.notifications.models import NotificationKind
from drift_reconciler.planning.models import PlanOutcome
from drift_reconciler.remediation.models import RemediationAttempt


class CycleStatus(Enum):
    """How a reconciliation cycle ended."""
    COMPLETED = "completed"
    SKIPPED_LOCKED = "skipped_locked"  # Another holder owns the environment
    CANCELLED = "cancelled"


@dataclass
class CycleResult:
    """Audit record of one reconciliation cycle."""

    environment: str
    status: CycleStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    outcome: Optional[PlanOutcome] = None
    transition: IncidentTransition = IncidentTransition.NONE
    attempt: Optional[RemediationAttempt] = None
    notifications: List[NotificationKind] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def duration(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def summary(self) -> str:
        """One-line description for logs and the CLI."""
        if self.status != CycleStatus.COMPLETED:
            return f"{self.environment}: {self.status.value}"

        parts = [f"{self.environment}: {self.outcome.status.value if self.outcome else 'unknown'}"]
        if self.transition != IncidentTransition.NONE:
            parts.append(f"incident {self.transition.value}")
        if self.attempt is not None:
            parts.append(f"remediation {self.attempt.outcome.value}")
        return ", ".join(parts)
