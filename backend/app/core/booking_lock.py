"""Keyed exclusive locks for instructors, sessions and credit packages.

Every ledger read-modify-write and every capacity-check-then-insert runs
under one of these locks, held until the surrounding transaction commits.
Locks are taken in instructor, session, package order. A process-local
``threading.Lock`` per key is always taken; when ``settings.redis_url`` is
configured a Redis ``SET NX EX`` mutex is layered on top so that separate
worker processes serialize as well.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Dict, Iterator, Optional
import uuid

from redis import Redis

from app.core.config import settings
from app.core.exceptions import LockTimeoutException
from app.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()
_REDIS_DISABLED = False

class _LocalLockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # Threads holding or waiting on the lock; the entry is dropped at zero.
        self.users = 0


_LOCAL_LOCKS: Dict[str, _LocalLockEntry] = {}
_LOCAL_LOCKS_GUARD = threading.Lock()

# Keys held by the current thread; nested acquisition of the same key is a no-op.
_HELD = threading.local()

# Delete the key only if we still own it.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def package_lock_key(package_id: str) -> str:
    return f"package:{package_id}:mutex"


def session_lock_key(session_id: str) -> str:
    return f"session:{session_id}:mutex"


def instructor_lock_key(instructor_id: str) -> str:
    return f"instructor:{instructor_id}:mutex"


def _held_keys() -> set[str]:
    keys = getattr(_HELD, "keys", None)
    if keys is None:
        keys = set()
        _HELD.keys = keys
    return keys


def is_lock_held(key: str) -> bool:
    """True when the calling thread already holds ``key``."""
    return key in _held_keys()


def _namespaced_key(key: str) -> str:
    return f"{settings.lock_namespace}:lock:{key}"


def _checkout_local_lock(key: str) -> threading.Lock:
    with _LOCAL_LOCKS_GUARD:
        entry = _LOCAL_LOCKS.get(key)
        if entry is None:
            entry = _LocalLockEntry()
            _LOCAL_LOCKS[key] = entry
        entry.users += 1
        return entry.lock


def _checkin_local_lock(key: str) -> None:
    with _LOCAL_LOCKS_GUARD:
        entry = _LOCAL_LOCKS.get(key)
        if entry is None:
            return
        entry.users -= 1
        if entry.users <= 0:
            del _LOCAL_LOCKS[key]


def local_lock_count() -> int:
    """Number of keys currently held or awaited in this process."""
    with _LOCAL_LOCKS_GUARD:
        return len(_LOCAL_LOCKS)


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS, _REDIS_DISABLED
    if not settings.redis_url or _REDIS_DISABLED:
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
            logger.warning("booking_lock_sync_redis_unavailable: %s", exc)
            _REDIS_DISABLED = True
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def reset_lock_state() -> None:
    """Drop cached Redis client and local lock registry (used by tests)."""
    global _SYNC_REDIS, _REDIS_DISABLED
    with _SYNC_REDIS_LOCK:
        _SYNC_REDIS = None
        _REDIS_DISABLED = False
    with _LOCAL_LOCKS_GUARD:
        _LOCAL_LOCKS.clear()


def _acquire_redis(client: Redis, key: str, token: str, deadline: float, ttl_s: int) -> bool:
    """Spin on SET NX until acquired or the deadline passes.

    Returns False when Redis itself fails, in which case the caller proceeds
    with the local lock only.
    """
    namespaced = _namespaced_key(key)
    while True:
        try:
            if client.set(namespaced, token, nx=True, ex=ttl_s):
                return True
        except Exception as exc:
            prometheus_metrics.record_lock(key, "acquire", "redis_unavailable")
            logger.warning(
                "booking_lock_sync_failed",
                extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            return False
        if time.monotonic() >= deadline:
            raise LockTimeoutException(key, settings.lock_wait_timeout_seconds)
        time.sleep(settings.lock_poll_interval_seconds)


def _release_redis(client: Redis, key: str, token: str) -> None:
    try:
        deleted = client.eval(_RELEASE_SCRIPT, 1, _namespaced_key(key), token)
        prometheus_metrics.record_lock(key, "release", "success" if deleted else "not_found")
    except Exception as exc:
        prometheus_metrics.record_lock(key, "release", "error")
        logger.warning(
            "booking_lock_sync_release_failed",
            extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
        )


@contextmanager
def resource_lock(key: str, timeout_s: Optional[float] = None, ttl_s: Optional[int] = None) -> Iterator[None]:
    """Hold an exclusive lock on ``key`` for the duration of the block.

    Raises:
        LockTimeoutException: when the lock cannot be acquired within
            ``timeout_s`` (defaults to ``settings.lock_wait_timeout_seconds``).
    """
    held = _held_keys()
    if key in held:
        yield
        return

    wait = settings.lock_wait_timeout_seconds if timeout_s is None else timeout_s
    ttl = ttl_s or settings.lock_ttl_seconds
    started = time.monotonic()
    deadline = started + wait

    local = _checkout_local_lock(key)
    try:
        if not local.acquire(timeout=wait):
            waited = time.monotonic() - started
            prometheus_metrics.record_lock(key, "acquire", "timeout", waited)
            logger.warning("booking_lock_timeout", extra={"lock_key": key, "waited": waited})
            raise LockTimeoutException(key, waited)

        client: Optional[Redis] = None
        token: Optional[str] = None
        try:
            client = _get_sync_redis()
            if client is not None:
                candidate = uuid.uuid4().hex
                if _acquire_redis(client, key, candidate, deadline, ttl):
                    token = candidate
        except LockTimeoutException:
            prometheus_metrics.record_lock(key, "acquire", "timeout", time.monotonic() - started)
            local.release()
            raise
        except BaseException:
            local.release()
            raise

        prometheus_metrics.record_lock(key, "acquire", "success", time.monotonic() - started)
        held.add(key)
        try:
            yield
        finally:
            held.discard(key)
            if client is not None and token is not None:
                _release_redis(client, key, token)
            local.release()
    finally:
        _checkin_local_lock(key)


@contextmanager
def package_lock(package_id: str, timeout_s: Optional[float] = None) -> Iterator[None]:
    with resource_lock(package_lock_key(package_id), timeout_s=timeout_s):
        yield


@contextmanager
def session_lock(session_id: str, timeout_s: Optional[float] = None) -> Iterator[None]:
    with resource_lock(session_lock_key(session_id), timeout_s=timeout_s):
        yield


@contextmanager
def instructor_lock(instructor_id: str, timeout_s: Optional[float] = None) -> Iterator[None]:
    """Serializes ad-hoc slot creation for one instructor."""
    with resource_lock(instructor_lock_key(instructor_id), timeout_s=timeout_s):
        yield


@contextmanager
def booking_locks(session_id: str, package_id: Optional[str] = None) -> Iterator[None]:
    """Session lock, then the paying package's lock when there is one."""
    with session_lock(session_id):
        if package_id is None:
            yield
        else:
            with package_lock(package_id):
                yield
