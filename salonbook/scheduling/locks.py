from contextlib import contextmanager
from datetime import date
from threading import Lock

import redis
import structlog

from ..config import settings
from ..errors import StoreError

log = structlog.get_logger(__name__)


def booking_lock_key(salon_id: int, day: date | str) -> str:
    # salon-wide key: serializes the capacity count as well as each staff member's day
    day_str = day.isoformat() if isinstance(day, date) else str(day)
    return f"{settings.BOOKING_LOCK_PREFIX}:{int(salon_id)}:{day_str}"


def _redis_client(redis_url: str) -> redis.Redis | None:
    if not redis_url:
        return None
    try:
        return redis.from_url(redis_url, decode_responses=True)
    except (redis.RedisError, ValueError):
        log.warning("booking_lock_redis_unavailable", redis_url=redis_url)
        return None


class KeyedLock:
    """Mutual exclusion per key.

    Always takes an in-process lock; when a Redis URL is configured it also
    takes a Redis lock so that several API processes serialize on the same key.
    """

    def __init__(self, redis_url: str | None = None, timeout_seconds: int | None = None):
        self._guard = Lock()
        self._locks: dict[str, Lock] = {}
        self._refs: dict[str, int] = {}
        self._timeout = max(1, int(timeout_seconds or settings.BOOKING_LOCK_TIMEOUT_SECONDS))
        url = settings.REDIS_URL if redis_url is None else redis_url
        self._redis = _redis_client((url or "").strip())

    def _acquire_local(self, key: str) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
            self._refs[key] = self._refs.get(key, 0) + 1
        lock.acquire()
        return lock

    def _release_local(self, key: str, lock: Lock) -> None:
        lock.release()
        with self._guard:
            remaining = self._refs.get(key, 1) - 1
            if remaining <= 0:
                self._refs.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._refs[key] = remaining

    @contextmanager
    def hold(self, key: str):
        local = self._acquire_local(key)
        try:
            if self._redis is None:
                yield
                return
            try:
                remote = self._redis.lock(
                    key, timeout=self._timeout, blocking_timeout=self._timeout
                )
                acquired = remote.acquire()
            except redis.RedisError as exc:
                raise StoreError(details={"lock": key}) from exc
            if not acquired:
                raise StoreError("Booking is busy, try again", details={"lock": key})
            try:
                yield
            finally:
                try:
                    remote.release()
                except redis.exceptions.LockError:
                    log.warning("booking_lock_expired", key=key)
        finally:
            self._release_local(key, local)

    def active_keys(self) -> list[str]:
        with self._guard:
            return sorted(self._locks)
