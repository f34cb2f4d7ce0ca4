"""Reconciliation cycles and their scheduling."""

from drift_reconciler.controller.models import CycleResult, CycleStatus
from drift_reconciler.controller.reconciler import ReconciliationController
from drift_reconciler.controller.scheduler import ReconciliationScheduler

__all__ = [
    "CycleResult",
    "CycleStatus",
    "ReconciliationController",
    "ReconciliationScheduler",
]
