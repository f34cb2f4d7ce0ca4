"""Data models for remediation attempts."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from drift_reconciler.incidents.models import Incident
from drift_reconciler.planning.models import PlanOutcome
from drift_reconciler.utils.errors import ReconciliationError


class RemediationOutcome(Enum):
    """Result of one remediation attempt."""
    SUCCEEDED = "succeeded"  # Apply ran and the confirmation plan was clean
    FAILED = "failed"  # Apply failed or the environment did not converge
    SKIPPED_BY_POLICY = "skipped_by_policy"  # Auto-remediation disabled


@dataclass(frozen=True)
class RemediationAttempt:
    """One attempt to bring an environment back to its declared spec."""

    environment: str
    started_at: datetime
    triggering_fingerprint: Optional[str]
    outcome: RemediationOutcome
    incident: Optional[Incident] = None  # Snapshot taken when apply began
    finished_at: Optional[datetime] = None
    confirmation: Optional[PlanOutcome] = None
    error: Optional[ReconciliationError] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == RemediationOutcome.SUCCEEDED

    @property
    def skipped(self) -> bool:
        return self.outcome == RemediationOutcome.SKIPPED_BY_POLICY

    @property
    def duration(self) -> float:
        """Seconds from start to finish, 0 if not finished."""
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()
