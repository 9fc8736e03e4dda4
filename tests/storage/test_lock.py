"""Tests for the pass lock."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from hyperliquid_consensus_tracker.storage.lock import PassLock, PassLockTimeoutError


@pytest.fixture
def mock_redis():
    """Redis double that grants the lock and remembers the token."""
    redis = AsyncMock()
    stored: dict[str, str] = {}

    async def set_(key, value, nx=False, ex=None):
        if nx and key in stored:
            return None
        stored[key] = value
        return True

    async def get(key):
        value = stored.get(key)
        return value.encode() if value is not None else None

    async def delete(key):
        stored.pop(key, None)
        return 1

    redis.set.side_effect = set_
    redis.get.side_effect = get
    redis.delete.side_effect = delete
    redis.stored = stored
    return redis


class TestLocalLock:
    """Tests for the in-process lock."""

    async def test_not_distributed_without_redis(self) -> None:
        assert PassLock().is_distributed is False

    async def test_serializes_holders(self) -> None:
        lock = PassLock()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with lock.hold():
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]


class TestRedisLock:
    """Tests for the Redis-backed lock."""

    async def test_acquires_with_nx_and_ttl(self, mock_redis) -> None:
        lock = PassLock(mock_redis, key="test:lock", ttl_seconds=30)

        async with lock.hold():
            assert "test:lock" in mock_redis.stored

        assert lock.is_distributed is True
        _, kwargs = mock_redis.set.call_args
        assert kwargs == {"nx": True, "ex": 30}
        assert "test:lock" not in mock_redis.stored

    async def test_times_out_when_held_elsewhere(self, mock_redis) -> None:
        mock_redis.stored["test:lock"] = "someone-else"
        lock = PassLock(
            mock_redis,
            key="test:lock",
            acquire_timeout_seconds=0.05,
            poll_interval_seconds=0.01,
        )

        with pytest.raises(PassLockTimeoutError):
            async with lock.hold():
                pass

        assert mock_redis.stored["test:lock"] == "someone-else"

    async def test_does_not_delete_foreign_token(self, mock_redis) -> None:
        lock = PassLock(mock_redis, key="test:lock")

        async with lock.hold():
            # Our key expired and another process took over.
            mock_redis.stored["test:lock"] = "other-owner"

        assert mock_redis.stored["test:lock"] == "other-owner"

    async def test_release_error_is_logged(self, mock_redis, caplog) -> None:
        mock_redis.get.side_effect = ConnectionError("redis down")
        lock = PassLock(mock_redis, key="test:lock")

        async with lock.hold():
            pass

        assert "Failed to release pass lock" in caplog.text

    async def test_released_on_error(self, mock_redis) -> None:
        lock = PassLock(mock_redis, key="test:lock")

        with pytest.raises(RuntimeError):
            async with lock.hold():
                raise RuntimeError("pass failed")

        assert "test:lock" not in mock_redis.stored
