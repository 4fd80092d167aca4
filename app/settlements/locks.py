"""
Redis-based distributed lock serialising settlements per retailer.

Two settlements for the same retailer must never read the same balance
snapshot, so the whole read-compute-write runs while holding a lock keyed
on the retailer. Settlements for different retailers use different keys
and never wait on each other.

Usage:
    from settlements.locks import retailer_settlement_lock

    with retailer_settlement_lock(retailer_id):
        with transaction.atomic():
            ...  # read eligible entries, allocate, write

Note:
    The lock complements, not replaces, the row locks and conditional
    updates taken inside the transaction.
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING

from django.conf import settings
from django_redis import get_redis_connection

from .exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Features:
        - TTL releases the lock if the holder crashes
        - Token-based ownership; only the holder can release
        - Blocking (with timeout) and non-blocking acquisition
        - Context manager support

    Example:
        lock = DistributedLock("settlement:retailer:r-1", ttl=30, timeout=5.0)
        try:
            with lock:
                execute()
        except LockAcquisitionError:
            handle_contention()

    Args:
        key: Lock identifier (prefixed with "lock:")
        ttl: Lock TTL in seconds
        blocking: If True, acquire() waits until the lock is free
        timeout: Maximum wait in seconds (blocking mode only)
    """

    # Delete the key only if we still own it
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Returns:
            True once the lock is held

        Raises:
            LockAcquisitionError: If the lock couldn't be acquired
        """
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            end_time = time.monotonic() + self.timeout
            while time.monotonic() < end_time:
                if self._try_acquire(redis):
                    return True
                time.sleep(0.05)

            self._token = None
            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis):
            self._token = None
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def _try_acquire(self, redis: Redis) -> bool:
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Returns:
            True if released, False if we didn't hold it (never acquired,
            already released, or expired and taken by someone else)
        """
        if self._token is None:
            return False

        redis = self._get_redis()
        result = redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


def retailer_settlement_lock(retailer_id: str) -> DistributedLock:
    """Build the lock guarding settlement execution for one retailer."""
    return DistributedLock(
        f"settlement:retailer:{retailer_id}",
        ttl=settings.SETTLEMENT_LOCK_TTL_SECONDS,
        timeout=settings.SETTLEMENT_LOCK_TIMEOUT_SECONDS,
    )
