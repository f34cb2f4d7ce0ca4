"""Data models for plan evaluation."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ActionKind(Enum):
    """Kind of change the plan executor proposes for a resource."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PlanStatus(Enum):
    """Classification of a plan run."""
    CLEAN = "clean"  # Live state matches the declared spec
    DRIFTED = "drifted"  # Changes pending
    ERROR = "error"  # Executor failed, timed out, or output was unusable


class ResourceChange(BaseModel):
    """One ``(resource_id, action)`` pair of a change-set."""

    model_config = ConfigDict(frozen=True)

    resource_id: str = Field(..., min_length=1)
    action: ActionKind

    def sort_key(self):
        return (self.resource_id, self.action.value)


class PlanOutcome(BaseModel):
    """Result of evaluating one environment. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    environment: str
    timestamp: datetime
    status: PlanStatus
    change_summary: str = ""
    fingerprint: Optional[str] = Field(None, description="Hash of the normalized change-set")
    changes: List[ResourceChange] = Field(default_factory=list)
    exit_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_clean(self) -> bool:
        return self.status == PlanStatus.CLEAN

    @property
    def is_drifted(self) -> bool:
        return self.status == PlanStatus.DRIFTED

    @property
    def is_error(self) -> bool:
        return self.status == PlanStatus.ERROR


@dataclass
class ExecutorResult:
    """Exit status and output of an external executor run."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0  # seconds

    def succeeded(self) -> bool:
        return self.exit_code == 0

    def stderr_tail(self, lines: int = 20) -> str:
        """Last lines of stderr, for error messages."""
        return "\n".join(self.stderr.strip().splitlines()[-lines:])
