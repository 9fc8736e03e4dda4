"""Single-writer lock around detection and valuation passes.

Within one process an ``asyncio.Lock`` is enough. When a Redis client is
supplied the lock is taken with ``SET NX EX`` instead, so several tracker
processes sharing a database still serialize their passes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_LOCK_KEY = "hl_tracker:pass_lock"
DEFAULT_LOCK_TTL_SECONDS = 300
DEFAULT_ACQUIRE_TIMEOUT_SECONDS = 60.0
DEFAULT_POLL_INTERVAL_SECONDS = 0.25


class PassLockTimeoutError(TimeoutError):
    """Raised when the pass lock could not be acquired in time."""


class PassLock:
    """Serializes the passes that read and replace the stored collections."""

    def __init__(
        self,
        redis: Redis | None = None,
        *,
        key: str = DEFAULT_LOCK_KEY,
        ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
        acquire_timeout_seconds: float = DEFAULT_ACQUIRE_TIMEOUT_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        """Initialize the lock.

        Args:
            redis: Optional Redis client for a cross-process lock.
            key: Redis key holding the current owner token.
            ttl_seconds: Expiry of the Redis key if the owner dies mid-pass.
            acquire_timeout_seconds: How long to wait for the lock.
            poll_interval_seconds: Delay between Redis acquisition attempts.
        """
        self._redis = redis
        self._key = key
        self._ttl = ttl_seconds
        self._acquire_timeout = acquire_timeout_seconds
        self._poll_interval = poll_interval_seconds
        self._local = asyncio.Lock()

    @property
    def is_distributed(self) -> bool:
        return self._redis is not None

    async def _acquire_redis(self, token: str) -> None:
        assert self._redis is not None
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._acquire_timeout
        while True:
            was_set = await self._redis.set(self._key, token, nx=True, ex=self._ttl)
            if was_set:
                return
            if loop.time() >= deadline:
                raise PassLockTimeoutError(f"Could not acquire {self._key} within {self._acquire_timeout}s")
            await asyncio.sleep(self._poll_interval)

    async def _release_redis(self, token: str) -> None:
        assert self._redis is not None
        try:
            owner = await self._redis.get(self._key)
            if isinstance(owner, bytes):
                owner = owner.decode()
            if owner == token:
                await self._redis.delete(self._key)
            else:
                logger.warning("Pass lock %s expired before release", self._key)
        except Exception as e:
            logger.warning("Failed to release pass lock %s: %s", self._key, e)

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        """Hold the lock for the duration of the block."""
        async with self._local:
            if self._redis is None:
                yield
                return

            token = uuid.uuid4().hex
            await self._acquire_redis(token)
            try:
                yield
            finally:
                await self._release_redis(token)
