"""
Single-run guard for reminder runs.

Only one reminder run may be active at a time. The guard is owned by the
ReminderScheduler instance rather than being a module-level flag.

- InProcessRunGuard: a non-blocking lock acquire, i.e. an atomic compare-and-set
  on "is a run active". Protects one process only.
- RedisRunGuard: SET NX PX with a random token, released only by the holder
  (token-checked delete). Protects every process sharing the Redis instance.
"""
import logging
import secrets
import threading
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

# delete the key only if we still own it
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class RunGuard(Protocol):
    async def acquire(self) -> bool:
        ...

    async def release(self) -> None:
        ...

    @property
    def active(self) -> bool:
        ...


class InProcessRunGuard:
    def __init__(self):
        self._lock = threading.Lock()

    async def acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    async def release(self) -> None:
        if self._lock.locked():
            self._lock.release()

    @property
    def active(self) -> bool:
        return self._lock.locked()


class RedisRunGuard:
    """
    Distributed guard. The local guard is always taken first so that two triggers
    in the same process never race on Redis; if Redis is unreachable the guard
    degrades to the local one and logs a warning.
    """

    def __init__(self, client, key: str = "lock:reminder-run", ttl_seconds: int = 600):
        self.client = client
        self.key = key
        self.ttl_ms = int(ttl_seconds * 1000)
        self._local = InProcessRunGuard()
        self._token: Optional[str] = None

    async def acquire(self) -> bool:
        if not await self._local.acquire():
            return False
        if self.client is None:
            logger.warning("No Redis client; reminder lock is process-local only")
            return True
        token = secrets.token_hex(16)
        try:
            acquired = await self.client.set(self.key, token, nx=True, px=self.ttl_ms)
        except Exception as e:
            logger.warning("Redis lock unavailable (%s); reminder lock is process-local only", e)
            return True
        if not acquired:
            await self._local.release()
            return False
        self._token = token
        return True

    async def release(self) -> None:
        token, self._token = self._token, None
        try:
            if token is not None and self.client is not None:
                await self.client.eval(_RELEASE_SCRIPT, 1, self.key, token)
        except Exception as e:
            # the TTL frees the key eventually
            logger.warning("Failed to release Redis reminder lock: %s", e)
        finally:
            await self._local.release()

    @property
    def active(self) -> bool:
        return self._local.active
