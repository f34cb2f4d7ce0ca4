"""State store backends holding lock and incident records."""

from .dynamodb import DynamoDBStateStore
from .store import ABSENT, FileStateStore, InMemoryStateStore, StateStore, VersionedValue

__all__ = [
    "ABSENT",
    "StateStore",
    "VersionedValue",
    "InMemoryStateStore",
    "FileStateStore",
    "DynamoDBStateStore",
]
