"""Data models for drift incidents."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class IncidentState(Enum):
    """Lifecycle state of an incident."""
    OPEN = "open"
    RESOLVING = "resolving"  # A remediation attempt is in flight
    CLOSED = "closed"


class IncidentTransition(Enum):
    """What a reconcile call did to the environment's incident."""
    NONE = "none"
    OPENED = "opened"
    UPDATED = "updated"
    CLOSED = "closed"


class Incident(BaseModel):
    """The drift incident of one environment."""

    environment: str = Field(..., description="Environment name")
    external_id: Optional[str] = Field(None, description="ID in the issue sink")
    state: IncidentState = Field(IncidentState.OPEN)
    last_fingerprint: Optional[str] = Field(None, description="Fingerprint of the latest drift")
    change_summary: str = Field("", description="Summary of the latest drift")
    opened_at: datetime
    last_updated_at: datetime
    closed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        """Open or resolving."""
        return self.state != IncidentState.CLOSED

    def to_bytes(self) -> bytes:
        """Serialize for the state store."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "Incident":
        """Deserialize a stored record."""
        return cls.model_validate_json(data)


@dataclass(frozen=True)
class IncidentChange:
    """Result of reconciling an outcome against the incident record."""

    transition: IncidentTransition
    incident: Optional[Incident] = None
    content_changed: bool = False
    previous_state: Optional[IncidentState] = None
