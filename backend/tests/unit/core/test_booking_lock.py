# backend/tests/unit/core/test_booking_lock.py
"""Booking mutex behavior with the in-process fallback (no REDIS_URL in tests)."""

import threading

import redis

from studiobook.core import booking_lock
from studiobook.core.booking_lock import booking_lock_sync, creation_lock_sync


def test_lock_is_exclusive_per_booking():
    with booking_lock_sync("bk-1") as first:
        assert first is True
        with booking_lock_sync("bk-1") as second:
            assert second is False
        with booking_lock_sync("bk-2") as other:
            assert other is True


def test_lock_released_after_block():
    with booking_lock_sync("bk-3") as acquired:
        assert acquired
    with booking_lock_sync("bk-3") as again:
        assert again


def test_lock_released_when_body_raises():
    try:
        with booking_lock_sync("bk-4"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    with booking_lock_sync("bk-4") as acquired:
        assert acquired


def test_creation_lock_waits_for_holder():
    results = []

    def contender():
        with creation_lock_sync(wait_s=2.0) as acquired:
            results.append(acquired)

    with creation_lock_sync() as held:
        assert held
        worker = threading.Thread(target=contender)
        worker.start()
    worker.join(timeout=5)
    assert results == [True]


def test_creation_lock_gives_up_after_wait():
    results = []

    def contender():
        with creation_lock_sync(wait_s=0.05) as acquired:
            results.append(acquired)

    with creation_lock_sync():
        worker = threading.Thread(target=contender)
        worker.start()
        worker.join(timeout=5)
    assert results == [False]


def test_redis_not_used_without_url():
    assert booking_lock._get_sync_redis() is None


def test_local_registry_drops_released_locks():
    for n in range(50):
        with booking_lock_sync(f"bk-churn-{n}") as acquired:
            assert acquired
    assert not [key for key in booking_lock._LOCAL_LOCKS if key.startswith("booking:bk-churn")]


def test_local_registry_keeps_entry_while_waited_on():
    results = []

    def contender():
        with creation_lock_sync(wait_s=2.0) as acquired:
            results.append(acquired)

    with creation_lock_sync():
        worker = threading.Thread(target=contender)
        worker.start()
        with booking_lock_sync("bk-unrelated"):
            pass
        assert booking_lock.CREATION_LOCK_KEY in booking_lock._LOCAL_LOCKS
    worker.join(timeout=5)
    assert results == [True]
    assert booking_lock.CREATION_LOCK_KEY not in booking_lock._LOCAL_LOCKS


class _BrokenRedis:
    def set(self, *args, **kwargs):
        raise redis.ConnectionError("connection reset")


def test_redis_error_fails_closed(monkeypatch):
    monkeypatch.setattr(booking_lock.settings, "redis_url", "redis://cache:6379/0")
    monkeypatch.setattr(booking_lock, "_get_sync_redis", lambda: _BrokenRedis())

    with booking_lock_sync("bk-5") as acquired:
        assert acquired is False
    assert "booking:bk-5:mutex" not in booking_lock._LOCAL_LOCKS


def test_unreachable_redis_fails_closed(monkeypatch):
    monkeypatch.setattr(booking_lock.settings, "redis_url", "redis://cache:6379/0")
    monkeypatch.setattr(booking_lock, "_get_sync_redis", lambda: None)

    with creation_lock_sync(wait_s=0.05) as acquired:
        assert acquired is False
