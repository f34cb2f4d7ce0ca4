"""Plan evaluation: executors, change-set parsing and fingerprints."""

from drift_reconciler.planning.changeset import (
    ChangeSetParseError,
    fingerprint,
    normalize_changes,
    parse_change_set,
    summarize,
)
from drift_reconciler.planning.evaluator import EXIT_CLEAN, EXIT_DRIFTED, PlanEvaluator
from drift_reconciler.planning.executor import (
    ApplyExecutor,
    PlanExecutor,
    SubprocessApplyExecutor,
    SubprocessPlanExecutor,
    SubprocessRunner,
)
from drift_reconciler.planning.models import (
    ActionKind,
    ExecutorResult,
    PlanOutcome,
    PlanStatus,
    ResourceChange,
)

__all__ = [
    "ActionKind",
    "ApplyExecutor",
    "ChangeSetParseError",
    "EXIT_CLEAN",
    "EXIT_DRIFTED",
    "ExecutorResult",
    "PlanEvaluator",
    "PlanExecutor",
    "PlanOutcome",
    "PlanStatus",
    "ResourceChange",
    "SubprocessApplyExecutor",
    "SubprocessPlanExecutor",
    "SubprocessRunner",
    "fingerprint",
    "normalize_changes",
    "parse_change_set",
    "summarize",
]
