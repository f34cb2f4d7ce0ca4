import logging
import threading

import pytest

from drift_reconciler.lock.manager import LockManager
from drift_reconciler.state.store import InMemoryStateStore
from drift_reconciler.utils.errors import LockContention, StateStoreError


def manager(store, clock, prefix="host-a:100"):
    return LockManager(store, ttl_seconds=600, clock=clock, holder_prefix=prefix)


def test_acquire_and_release(store, clock):
    locks = manager(store, clock)

    token = locks.acquire("prod")
    record = locks.inspect("prod")
    assert record == token.record
    assert token.holder_id.startswith("host-a:100:")
    assert record.acquired_at == clock.now
    assert record.expires_at == clock.now + locks.ttl

    assert locks.release(token) is True
    assert locks.inspect("prod") is None

    again = locks.acquire("prod")
    assert again.version == token.version + 2


def test_live_lock_is_contended(store, clock):
    first = manager(store, clock, "host-a:1")
    second = manager(store, clock, "host-b:2")

    token = first.acquire("prod")
    with pytest.raises(LockContention) as excinfo:
        second.acquire("prod")

    assert token.holder_id in str(excinfo.value)
    assert first.inspect("prod") == token.record


def test_locks_are_per_environment(store, clock):
    locks = manager(store, clock)
    prod = locks.acquire("prod")
    staging = locks.acquire("staging")
    assert prod.environment == "prod"
    assert staging.environment == "staging"


def test_stale_lock_is_reclaimed_with_warning(store, clock, caplog):
    crashed = manager(store, clock, "host-a:1")
    crashed.acquire("prod")
    clock.advance(seconds=601)

    with caplog.at_level(logging.WARNING, logger="drift_reconciler.lock.manager"):
        token = manager(store, clock, "host-b:2").acquire("prod")

    assert token.holder_id.startswith("host-b:2:")
    assert any("Reclaimed stale lock" in r.getMessage() for r in caplog.records)


def test_lock_is_stale_only_after_expiry(store, clock):
    locks = manager(store, clock)
    token = locks.acquire("prod")

    clock.advance(seconds=600)
    assert not locks.is_stale(token.record)
    clock.advance(seconds=1)
    assert locks.is_stale(token.record)


class BarrierStore(InMemoryStateStore):
    """Makes two acquirers read the same record before either writes."""

    def __init__(self):
        super().__init__()
        self.barrier = None

    def get(self, key):
        value = super().get(key)
        if self.barrier is not None:
            self.barrier.wait(timeout=5)
        return value


def test_exactly_one_caller_reclaims_stale_lock(clock):
    store = BarrierStore()
    manager(store, clock, "crashed:1").acquire("prod")
    clock.advance(hours=1)

    store.barrier = threading.Barrier(2)
    results = []

    def contend(prefix):
        try:
            results.append(manager(store, clock, prefix).acquire("prod"))
        except LockContention as e:
            results.append(e)

    threads = [threading.Thread(target=contend, args=(f"host-{i}:{i}",)) for i in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    winners = [r for r in results if not isinstance(r, LockContention)]
    assert len(results) == 2
    assert len(winners) == 1
    store.barrier = None
    assert manager(store, clock).inspect("prod") == winners[0].record


def test_release_after_reclaim_leaves_new_holder(store, clock):
    slow = manager(store, clock, "slow:1")
    token = slow.acquire("prod")
    clock.advance(seconds=601)
    fresh = manager(store, clock, "fresh:2").acquire("prod")

    assert slow.release(token) is False
    assert slow.inspect("prod") == fresh.record


def test_hold_releases_on_exception(store, clock):
    locks = manager(store, clock)

    with pytest.raises(RuntimeError):
        with locks.hold("prod"):
            assert locks.inspect("prod") is not None
            raise RuntimeError("apply exploded")

    assert locks.inspect("prod") is None


class FailingStore(InMemoryStateStore):
    def __init__(self):
        super().__init__()
        self.broken = False

    def get(self, key):
        if self.broken:
            raise StateStoreError("store unavailable")
        return super().get(key)


def test_release_never_raises(clock):
    store = FailingStore()
    locks = manager(store, clock)
    token = locks.acquire("prod")

    store.broken = True
    assert locks.release(token) is False


def test_force_release(store, clock):
    locks = manager(store, clock)
    locks.acquire("prod")

    assert locks.force_release("prod", only_if_stale=True) is False
    assert locks.inspect("prod") is not None

    assert locks.force_release("prod") is True
    assert locks.inspect("prod") is None
    assert locks.force_release("prod") is False


def test_corrupt_lock_record(store, clock):
    store.conditional_put("locks/prod", 0, b"not json")
    with pytest.raises(StateStoreError):
        manager(store, clock).acquire("prod")
