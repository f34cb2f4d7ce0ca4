"""Lock record models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LockRecord(BaseModel):
    """Mutual-exclusion record for one environment, stored in the state store."""

    model_config = ConfigDict(frozen=True)

    environment: str = Field(..., description="Locked environment")
    holder_id: str = Field(..., description="Identity of the run holding the lock")
    acquired_at: datetime = Field(..., description="When the lock was taken")
    expires_at: datetime = Field(..., description="When the lock may be reclaimed")

    def to_bytes(self) -> bytes:
        """Serialize for the state store."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> Optional["LockRecord"]:
        """Deserialize a stored record. An empty payload is a released lock."""
        if not data:
            return None
        return cls.model_validate_json(data)


@dataclass(frozen=True)
class LockToken:
    """Proof of lock ownership handed to the acquiring run."""

    record: LockRecord
    version: int

    @property
    def environment(self) -> str:
        return self.record.environment

    @property
    def holder_id(self) -> str:
        return self.record.holder_id
