"""
Run guards - single-flight markers for sync runs.

One run per key (channel database id) at a time. try_acquire() never blocks:
a caller that loses simply skips its run.

LocalRunGuard covers one process. RedisLeaseGuard uses a SET NX PX lease so
several instances share the marker; the TTL bounds how long a crashed
instance can hold a channel. A live run calls extend() as it makes progress,
so only a run that stalls for a whole TTL can lose its lease.
"""

import logging
import threading
import uuid
from typing import Dict, Optional, Set

from ordersync.config import get_settings

logger = logging.getLogger(__name__)


class RunGuard:
    def try_acquire(self, key: str) -> bool:
        raise NotImplementedError

    def release(self, key: str) -> None:
        raise NotImplementedError

    def is_running(self, key: str) -> bool:
        raise NotImplementedError

    def extend(self, key: str) -> bool:
        """Push out the expiry of a held marker. Local markers never expire."""
        return True


class LocalRunGuard(RunGuard):
    """Process-local set of running keys."""

    def __init__(self):
        self._running: Set[str] = set()
        self._lock = threading.Lock()

    def try_acquire(self, key: str) -> bool:
        with self._lock:
            if key in self._running:
                return False
            self._running.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._running.discard(key)

    def is_running(self, key: str) -> bool:
        with self._lock:
            return key in self._running


# Delete the lease only if we still own it
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

# Refresh the TTL only if we still own the lease
_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class RedisLeaseGuard(RunGuard):
    """
    Redis lease per key. The token stored in the key identifies the holder,
    so an expired-and-reacquired lease is never released by the old holder.
    """

    KEY_PREFIX = "ordersync:sync-lease:"

    def __init__(self, redis_client, ttl_seconds: Optional[int] = None):
        self.redis = redis_client
        self.ttl_ms = int((ttl_seconds or get_settings().SYNC_LOCK_TTL_SECONDS) * 1000)
        self._tokens: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    def try_acquire(self, key: str) -> bool:
        token = uuid.uuid4().hex
        acquired = self.redis.set(self._key(key), token, nx=True, px=self.ttl_ms)
        if not acquired:
            return False
        with self._lock:
            self._tokens[key] = token
        return True

    def release(self, key: str) -> None:
        with self._lock:
            token = self._tokens.pop(key, None)
        if token is None:
            return
        released = self.redis.eval(_RELEASE_SCRIPT, 1, self._key(key), token)
        if not released:
            logger.warning(f"Sync lease for {key} expired before release")

    def is_running(self, key: str) -> bool:
        return bool(self.redis.exists(self._key(key)))

    def extend(self, key: str) -> bool:
        with self._lock:
            token = self._tokens.get(key)
        if token is None:
            return False
        extended = bool(self.redis.eval(_EXTEND_SCRIPT, 1, self._key(key), token, self.ttl_ms))
        if not extended:
            logger.warning(f"Sync lease for {key} lost mid-run; another instance may start a sync")
        return extended


def build_run_guard() -> RunGuard:
    """Guard selected by SYNC_LOCK_BACKEND."""
    settings = get_settings()
    if settings.SYNC_LOCK_BACKEND == "redis":
        from ordersync.redis import get_redis_client
        logger.info("Using Redis sync lease guard")
        return RedisLeaseGuard(get_redis_client(), settings.SYNC_LOCK_TTL_SECONDS)
    return LocalRunGuard()
