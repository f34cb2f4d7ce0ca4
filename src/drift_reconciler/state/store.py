"""Versioned key/value stores with conditional writes."""

import base64
import fcntl
import json
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote

from drift_reconciler.utils.errors import ErrorContext, StateStoreError
from drift_reconciler.utils.logging import get_logger

logger = get_logger(__name__)

# Expected version for a key that must not exist yet
ABSENT = 0


@dataclass(frozen=True)
class VersionedValue:
    """A stored payload and the version it was written at."""

    data: bytes
    version: int


class StateStore(ABC):
    """Durable, versioned key/value backend.

    Versions start at 1 for the first write of a key and increase by one on
    every successful ``conditional_put``. A missing key behaves as version 0.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[VersionedValue]:
        """Read a key.

        Args:
            key: Record key

        Returns:
            The stored value, or None if the key was never written
        """
        pass

    @abstractmethod
    def conditional_put(self, key: str, expected_version: int, data: bytes) -> bool:
        """Write a key only if its current version matches.

        Args:
            key: Record key
            expected_version: Version the caller last read (``ABSENT`` for a new key)
            data: Payload to store

        Returns:
            True if written, False on a version conflict

        Raises:
            StateStoreError: If the backend fails
        """
        pass


class InMemoryStateStore(StateStore):
    """Thread-safe store for a single process."""

    def __init__(self):
        self._items: Dict[str, VersionedValue] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[VersionedValue]:
        with self._lock:
            return self._items.get(key)

    def conditional_put(self, key: str, expected_version: int, data: bytes) -> bool:
        with self._lock:
            current = self._items.get(key)
            current_version = current.version if current else ABSENT
            if current_version != expected_version:
                return False
            self._items[key] = VersionedValue(data=bytes(data), version=current_version + 1)
            return True


class FileStateStore(StateStore):
    """Store keeping one JSON envelope per key in a directory.

    Compare-and-swap runs under an exclusive ``fcntl`` lock on a sidecar lock
    file, and writes go through a temporary file and an atomic rename, so
    concurrent processes on one host see a consistent version sequence.
    """

    def __init__(self, root: str):
        """
        Initialize FileStateStore.

        Args:
            root: Directory holding the records
        """
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}.json"

    def _read(self, path: Path) -> Optional[VersionedValue]:
        if not path.exists():
            return None
        try:
            with open(path, "r") as f:
                envelope = json.load(f)
            return VersionedValue(
                data=base64.b64decode(envelope["data"]),
                version=int(envelope["version"]),
            )
        except (OSError, ValueError, KeyError) as e:
            raise StateStoreError(
                f"Failed to read state record {path.name}: {e}",
                context=ErrorContext(operation="get"),
                cause=e,
            )

    def get(self, key: str) -> Optional[VersionedValue]:
        return self._read(self._path_for(key))

    def conditional_put(self, key: str, expected_version: int, data: bytes) -> bool:
        path = self._path_for(key)
        lock_path = path.with_suffix(".lock")

        try:
            lock_fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR)
        except OSError as e:
            raise StateStoreError(
                f"Failed to open lock file for {key}: {e}",
                context=ErrorContext(operation="conditional_put"),
                cause=e,
            )

        try:
            fcntl.flock(lock_fd, fcntl.LOCK_EX)
            current = self._read(path)
            current_version = current.version if current else ABSENT
            if current_version != expected_version:
                return False

            envelope = {
                "key": key,
                "version": current_version + 1,
                "data": base64.b64encode(data).decode("ascii"),
            }
            temp_path = path.with_suffix(".tmp")
            with open(temp_path, "w") as f:
                json.dump(envelope, f)
                f.flush()
                os.fsync(f.fileno())
            # Atomic rename
            temp_path.replace(path)
            return True
        except OSError as e:
            raise StateStoreError(
                f"Failed to write state record {key}: {e}",
                context=ErrorContext(operation="conditional_put"),
                cause=e,
            )
        finally:
            try:
                fcntl.flock(lock_fd, fcntl.LOCK_UN)
            finally:
                os.close(lock_fd)
