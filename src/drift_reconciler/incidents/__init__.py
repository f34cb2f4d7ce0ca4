"""Drift incident tracking."""

from drift_reconciler.incidents.models import (
    Incident,
    IncidentChange,
    IncidentState,
    IncidentTransition,
)
from drift_reconciler.incidents.sinks import GitHubIssueSink, IssueSink
from drift_reconciler.incidents.tracker import IncidentTracker

__all__ = [
    "GitHubIssueSink",
    "Incident",
    "IncidentChange",
    "IncidentState",
    "IncidentTracker",
    "IncidentTransition",
    "IssueSink",
]
