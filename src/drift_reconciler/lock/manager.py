"""Per-environment locking on top of the state store."""

import os
import socket
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional

from pydantic import ValidationError

from drift_reconciler.lock.models import LockRecord, LockToken
from drift_reconciler.state.store import ABSENT, StateStore, VersionedValue
from drift_reconciler.utils.clock import utc_now
from drift_reconciler.utils.errors import ErrorContext, LockContention, StateStoreError
from drift_reconciler.utils.logging import get_logger

logger = get_logger(__name__)


class LockManager:
    """Acquires and releases environment locks with compare-and-swap writes.

    A lock is live until its ``expires_at``. Expired locks are treated as left
    behind by a crashed run and may be reclaimed; because reclamation is a
    conditional write against the stale record's version, only one caller can
    win it.
    """

    def __init__(
        self,
        store: StateStore,
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = utc_now,
        holder_prefix: Optional[str] = None
    ):
        """
        Initialize LockManager.

        Args:
            store: State store holding lock records
            ttl_seconds: Lifetime of an acquired lock
            clock: Source of timezone-aware current time
            holder_prefix: Prefix for holder IDs (defaults to host:pid)
        """
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self.holder_prefix = holder_prefix or f"{socket.gethostname()}:{os.getpid()}"

    @staticmethod
    def key_for(environment: str) -> str:
        return f"locks/{environment}"

    def is_stale(self, lock: LockRecord, now: Optional[datetime] = None) -> bool:
        """Check whether a lock has expired.

        Args:
            lock: Lock record
            now: Reference time (defaults to the manager's clock)

        Returns:
            True if ``expires_at`` is in the past
        """
        return lock.expires_at < (now or self.clock())

    def inspect(self, environment: str) -> Optional[LockRecord]:
        """Return the current lock record for an environment, or None if unlocked."""
        current = self.store.get(self.key_for(environment))
        if current is None:
            return None
        return self._decode(environment, current)

    def acquire(self, environment: str) -> LockToken:
        """Take the lock for an environment with a single conditional write.

        Args:
            environment: Environment name

        Returns:
            Token to pass to ``release``

        Raises:
            LockContention: If a live lock exists or another caller won the write
            StateStoreError: If the store fails
        """
        key = self.key_for(environment)
        current = self.store.get(key)

        expected_version = ABSENT
        stale: Optional[LockRecord] = None
        if current is not None:
            expected_version = current.version
            existing = self._decode(environment, current)
            if existing is not None:
                if not self.is_stale(existing):
                    raise LockContention(
                        f"Environment '{environment}' is locked by {existing.holder_id} "
                        f"until {existing.expires_at.isoformat()}",
                        context=ErrorContext(environment=environment, operation="acquire"),
                    )
                stale = existing

        now = self.clock()
        record = LockRecord(
            environment=environment,
            holder_id=f"{self.holder_prefix}:{uuid.uuid4().hex[:8]}",
            acquired_at=now,
            expires_at=now + self.ttl,
        )

        if not self.store.conditional_put(key, expected_version, record.to_bytes()):
            raise LockContention(
                f"Environment '{environment}' was locked by another run during acquisition",
                context=ErrorContext(environment=environment, operation="acquire"),
            )

        extra = {'environment': environment, 'holder_id': record.holder_id}
        if stale is not None:
            logger.warning(
                f"Reclaimed stale lock held by {stale.holder_id} "
                f"(expired {stale.expires_at.isoformat()})",
                extra=extra,
            )
        logger.debug(f"Lock acquired until {record.expires_at.isoformat()}", extra=extra)

        return LockToken(record=record, version=expected_version + 1)

    def release(self, token: LockToken) -> bool:
        """Release a held lock.

        Never raises: a release that cannot be written is logged and the lock
        is left to expire.

        Args:
            token: Token returned by ``acquire``

        Returns:
            True if the lock record was cleared by this call
        """
        extra = {'environment': token.environment, 'holder_id': token.holder_id}
        key = self.key_for(token.environment)

        try:
            current = self.store.get(key)
            if current is None or current.version != token.version:
                logger.warning(
                    "Lock is no longer held by this run (expired and reclaimed); leaving it",
                    extra=extra,
                )
                return False

            if not self.store.conditional_put(key, token.version, b""):
                logger.warning("Lock changed hands during release; leaving it", extra=extra)
                return False
        except StateStoreError as e:
            logger.error(
                f"Failed to release lock, it will expire at "
                f"{token.record.expires_at.isoformat()}: {e}",
                extra=extra,
            )
            return False

        logger.debug("Lock released", extra=extra)
        return True

    @contextmanager
    def hold(self, environment: str) -> Iterator[LockToken]:
        """Hold the lock for the duration of a ``with`` block.

        Raises:
            LockContention: If the lock cannot be acquired
        """
        token = self.acquire(environment)
        try:
            yield token
        finally:
            self.release(token)

    def force_release(self, environment: str, only_if_stale: bool = False) -> bool:
        """Clear a lock regardless of its holder.

        Args:
            environment: Environment name
            only_if_stale: Refuse to clear a lock that has not expired

        Returns:
            True if a lock record was cleared
        """
        key = self.key_for(environment)
        current = self.store.get(key)
        if current is None:
            return False

        existing = self._decode(environment, current)
        if existing is None:
            return False
        if only_if_stale and not self.is_stale(existing):
            return False

        if not self.store.conditional_put(key, current.version, b""):
            return False

        logger.warning(
            f"Lock held by {existing.holder_id} was forcibly released",
            extra={'environment': environment, 'holder_id': existing.holder_id},
        )
        return True

    def _decode(self, environment: str, value: VersionedValue) -> Optional[LockRecord]:
        try:
            return LockRecord.from_bytes(value.data)
        except ValidationError as e:
            raise StateStoreError(
                f"Corrupt lock record for '{environment}': {e}",
                context=ErrorContext(environment=environment, operation="decode_lock"),
                cause=e,
            )
