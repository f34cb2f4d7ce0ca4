"""Drift remediation."""

from drift_reconciler.remediation.engine import RemediationEngine
from drift_reconciler.remediation.models import RemediationAttempt, RemediationOutcome

__all__ = [
    "RemediationAttempt",
    "RemediationEngine",
    "RemediationOutcome",
]
