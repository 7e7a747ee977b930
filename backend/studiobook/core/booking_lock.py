from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Dict, Iterator, Optional
import uuid

from redis import Redis

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()

# Process-local locks used when Redis is not configured. An entry lives only
# while someone holds or waits for it.
_LOCAL_LOCKS: Dict[str, "_LocalLock"] = {}
_LOCAL_LOCKS_GUARD = threading.Lock()

_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

CREATION_LOCK_KEY = "studio:bookings:create"
_POLL_INTERVAL_S = 0.05
LOCAL_TOKEN = "local"


def _lock_key(booking_id: str) -> str:
    return f"booking:{booking_id}:mutex"


def _namespaced_key(key: str) -> str:
    return f"{settings.lock_namespace}:lock:{key}"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if not settings.redis_url:
        return None
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            client.ping()
        except Exception as exc:
            logger.warning("booking_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


class _LocalLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


def _checkout_local(key: str) -> _LocalLock:
    with _LOCAL_LOCKS_GUARD:
        entry = _LOCAL_LOCKS.get(key)
        if entry is None:
            entry = _LocalLock()
            _LOCAL_LOCKS[key] = entry
        entry.users += 1
        return entry


def _checkin_local(key: str, entry: _LocalLock) -> None:
    with _LOCAL_LOCKS_GUARD:
        entry.users -= 1
        if entry.users <= 0 and _LOCAL_LOCKS.get(key) is entry:
            del _LOCAL_LOCKS[key]


def _acquire_local(key: str, wait_s: float) -> Optional[str]:
    entry = _checkout_local(key)
    lock = entry.lock
    acquired = lock.acquire(timeout=wait_s) if wait_s > 0 else lock.acquire(blocking=False)
    if not acquired:
        _checkin_local(key, entry)
    prometheus_metrics.record_booking_lock("acquire", "success" if acquired else "blocked")
    return LOCAL_TOKEN if acquired else None


def _release_local(key: str) -> None:
    with _LOCAL_LOCKS_GUARD:
        entry = _LOCAL_LOCKS.get(key)
    if entry is None or not entry.lock.locked():
        prometheus_metrics.record_booking_lock("release", "not_found")
        return
    entry.lock.release()
    _checkin_local(key, entry)
    prometheus_metrics.record_booking_lock("release", "success")


def acquire_lock_sync(key: str, ttl_s: int, wait_s: float = 0.0) -> Optional[str]:
    """
    Try to take the mutex for ``key``.

    Returns an ownership token when acquired, ``None`` when another holder
    kept it for the whole ``wait_s`` window or a configured Redis failed.
    """
    if not settings.redis_url:
        return _acquire_local(key, wait_s)

    # Configured but unreachable Redis never degrades to a process-local lock.
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_booking_lock("acquire", "redis_unavailable")
        logger.warning("booking_lock_redis_unavailable", extra={"lock_key": key})
        return None

    token = uuid.uuid4().hex
    deadline = time.monotonic() + max(wait_s, 0.0)
    while True:
        try:
            acquired = bool(client.set(_namespaced_key(key), token, nx=True, ex=ttl_s))
        except Exception as exc:
            prometheus_metrics.record_booking_lock("acquire", "error")
            logger.warning(
                "booking_lock_acquire_failed",
                extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            return None
        if acquired:
            prometheus_metrics.record_booking_lock("acquire", "success")
            return token
        if time.monotonic() >= deadline:
            prometheus_metrics.record_booking_lock("acquire", "blocked")
            logger.info("booking_lock_blocked", extra={"lock_key": key})
            return None
        time.sleep(_POLL_INTERVAL_S)


def release_lock_sync(key: str, token: str) -> None:
    if token == LOCAL_TOKEN:
        _release_local(key)
        return

    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_booking_lock("release", "redis_unavailable")
        logger.warning("booking_lock_release_redis_unavailable", extra={"lock_key": key})
        return
    try:
        deleted = client.eval(_RELEASE_SCRIPT, 1, _namespaced_key(key), token)
        prometheus_metrics.record_booking_lock("release", "success" if deleted else "not_found")
    except Exception as exc:
        # The key still expires after its TTL.
        prometheus_metrics.record_booking_lock("release", "error")
        logger.warning(
            "booking_lock_release_failed",
            extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
        )


@contextmanager
def booking_lock_sync(booking_id: str, ttl_s: Optional[int] = None) -> Iterator[bool]:
    """Per-booking mutex for captures, refunds and admin transitions."""
    key = _lock_key(booking_id)
    token = acquire_lock_sync(key, ttl_s or settings.booking_lock_ttl_seconds)
    try:
        yield token is not None
    finally:
        if token is not None:
            release_lock_sync(key, token)


@contextmanager
def creation_lock_sync(wait_s: float = 5.0, ttl_s: Optional[int] = None) -> Iterator[bool]:
    """Studio-wide mutex serializing the authoritative conflict check at booking creation."""
    token = acquire_lock_sync(
        CREATION_LOCK_KEY, ttl_s or settings.booking_lock_ttl_seconds, wait_s=wait_s
    )
    try:
        yield token is not None
    finally:
        if token is not None:
            release_lock_sync(CREATION_LOCK_KEY, token)
