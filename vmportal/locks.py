# vmportal/locks.py
import threading
import time
from contextlib import contextmanager
from typing import Dict, Optional

import redis

from vmportal.config import settings
from vmportal.errors import BusyError


class RedisLock:
    """
    Simple redis-based advisory lock with blocking wait.
    Usage:
        with RedisLock("vm:web-01-<uuid>", ttl=1800, wait=30, sleep=0.1):
            # critical section
    """

    def __init__(self, key: str, ttl: int = 300, wait: int = 10, sleep: float = 0.1,
                 redis_url: Optional[str] = None, client=None):
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.wait = wait
        self.sleep = sleep
        self.redis_url = redis_url
        self._redis = client
        self._locked = False

    def _get_redis(self):
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url or settings.redis_url)
        return self._redis

    def acquire(self) -> bool:
        r = self._get_redis()
        deadline = time.time() + self.wait
        while True:
            # setnx with expiry
            if r.set(self.key, "1", nx=True, ex=self.ttl):
                self._locked = True
                return True
            if time.time() >= deadline:
                break
            time.sleep(self.sleep)
        raise BusyError(f"failed to acquire lock {self.key} within {self.wait}s")

    def release(self):
        if self._locked:
            try:
                self._get_redis().delete(self.key)
            finally:
                self._locked = False

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class LocalLockRegistry:
    """
    One threading.Lock per name, shared by every thread of this process.
    A name is tracked only while some thread holds or waits for it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # name -> [lock, holders + waiters]
        self._locks: Dict[str, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, wait: float):
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=wait):
                raise BusyError(f"failed to acquire lock {key} within {wait}s")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)


_local_registry = LocalLockRegistry()


def name_lock(key: str, wait: Optional[int] = None):
    """
    Serialize operations on one name (a domain's internal name or a request
    id). Backend is chosen by LOCK_BACKEND.
    """
    wait = settings.lock_wait_seconds if wait is None else wait
    if settings.lock_backend == "redis":
        return RedisLock(key, ttl=settings.lock_ttl_seconds, wait=wait)
    return _local_registry.hold(key, wait)
