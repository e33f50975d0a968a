"""Tests for the counter store and block list backends."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.models import WindowCount
from src.ratelimit.store import (
    InMemoryBlockList,
    InMemoryCounterStore,
    RedisBlockList,
    RedisCounterStore,
)


class TestInMemoryCounterStore:
    @pytest.mark.asyncio
    async def test_increment_counts_within_window(self) -> None:
        store = InMemoryCounterStore()
        with patch("src.ratelimit.store.time") as mock_time:
            mock_time.time.return_value = 1000.0
            first = await store.increment("k", 60_000)
            second = await store.increment("k", 60_000)
        assert first == WindowCount(count=1, reset_at_ms=1_060_000)
        assert second == WindowCount(count=2, reset_at_ms=1_060_000)

    @pytest.mark.asyncio
    async def test_window_expiry_starts_fresh(self) -> None:
        store = InMemoryCounterStore()
        with patch("src.ratelimit.store.time") as mock_time:
            mock_time.time.return_value = 1000.0
            await store.increment("k", 60_000)
            await store.increment("k", 60_000)
            mock_time.time.return_value = 1060.0
            window = await store.increment("k", 60_000)
        assert window == WindowCount(count=1, reset_at_ms=1_120_000)

    @pytest.mark.asyncio
    async def test_keys_are_independent(self) -> None:
        store = InMemoryCounterStore()
        await store.increment("a", 60_000)
        window = await store.increment("b", 60_000)
        assert window.count == 1

    @pytest.mark.asyncio
    async def test_peek_does_not_consume(self) -> None:
        store = InMemoryCounterStore()
        assert await store.peek("k") is None
        await store.increment("k", 60_000)
        assert (await store.peek("k")).count == 1  # type: ignore[union-attr]
        assert (await store.peek("k")).count == 1  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_peek_after_expiry(self) -> None:
        store = InMemoryCounterStore()
        with patch("src.ratelimit.store.time") as mock_time:
            mock_time.time.return_value = 1000.0
            await store.increment("k", 1_000)
            mock_time.time.return_value = 1001.0
            assert await store.peek("k") is None

    @pytest.mark.asyncio
    async def test_reset(self) -> None:
        store = InMemoryCounterStore()
        await store.increment("k", 60_000)
        await store.reset("k")
        await store.reset("missing")
        assert await store.peek("k") is None

    @pytest.mark.asyncio
    async def test_expired_windows_swept_on_increment(self) -> None:
        store = InMemoryCounterStore()
        with patch("src.ratelimit.store.time") as mock_time:
            mock_time.time.return_value = 1000.0
            for i in range(100):
                await store.increment(f"ip-{i}", 1_000)
            await store.increment("long", 60_000)
            mock_time.time.return_value = 1002.0
            await store.increment("fresh", 1_000)
        assert set(store._windows) == {"long", "fresh"}

    @pytest.mark.asyncio
    async def test_sweep_waits_for_interval(self) -> None:
        store = InMemoryCounterStore(sweep_interval_ms=10_000)
        with patch("src.ratelimit.store.time") as mock_time:
            mock_time.time.return_value = 1000.0
            await store.increment("a", 1_000)
            mock_time.time.return_value = 1002.0
            await store.increment("b", 1_000)
            assert "a" in store._windows
            mock_time.time.return_value = 1010.0
            await store.increment("c", 1_000)
        assert set(store._windows) == {"c"}


class TestInMemoryBlockList:
    @pytest.mark.asyncio
    async def test_block_and_unblock(self) -> None:
        blocklist = InMemoryBlockList()
        assert await blocklist.is_blocked("1.2.3.4") is False
        await blocklist.block("1.2.3.4", 60)
        assert await blocklist.is_blocked("1.2.3.4") is True
        await blocklist.unblock("1.2.3.4")
        assert await blocklist.is_blocked("1.2.3.4") is False

    @pytest.mark.asyncio
    async def test_block_expires(self) -> None:
        blocklist = InMemoryBlockList()
        with patch("src.ratelimit.store.time") as mock_time:
            mock_time.time.return_value = 1000.0
            await blocklist.block("id", 60)
            mock_time.time.return_value = 1059.0
            assert await blocklist.is_blocked("id") is True
            mock_time.time.return_value = 1060.0
            assert await blocklist.is_blocked("id") is False

    @pytest.mark.asyncio
    async def test_expired_entries_swept_on_block(self) -> None:
        blocklist = InMemoryBlockList()
        with patch("src.ratelimit.store.time") as mock_time:
            mock_time.time.return_value = 1000.0
            for i in range(100):
                await blocklist.block(f"ip-{i}", 1)
            await blocklist.block("long", 3600)
            mock_time.time.return_value = 1002.0
            await blocklist.block("fresh", 60)
        assert set(blocklist._blocked_until) == {"long", "fresh"}


def _redis_mock() -> tuple[MagicMock, AsyncMock]:
    redis = MagicMock()
    script = AsyncMock()
    redis.register_script.return_value = script
    redis.delete = AsyncMock()
    redis.get = AsyncMock()
    redis.setex = AsyncMock()
    return redis, script


class TestRedisCounterStore:
    def test_registers_script_once(self) -> None:
        redis, _ = _redis_mock()
        RedisCounterStore(redis)
        redis.register_script.assert_called_once()
        source = redis.register_script.call_args.args[0]
        assert "INCR" in source
        assert "PEXPIRE" in source

    @pytest.mark.asyncio
    async def test_increment_runs_script(self) -> None:
        redis, script = _redis_mock()
        script.return_value = [3, 45_000]
        store = RedisCounterStore(redis)
        with patch("src.ratelimit.store.time") as mock_time:
            mock_time.time.return_value = 1000.0
            window = await store.increment("ratelimit:api-read:1.2.3.4", 60_000)
        script.assert_awaited_once_with(keys=["ratelimit:api-read:1.2.3.4"], args=[60_000])
        assert window == WindowCount(count=3, reset_at_ms=1_045_000)

    @pytest.mark.asyncio
    async def test_peek_reads_count_and_ttl(self) -> None:
        redis, _ = _redis_mock()
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=["7", 10_000])
        redis.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipe)
        redis.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)
        store = RedisCounterStore(redis)
        with patch("src.ratelimit.store.time") as mock_time:
            mock_time.time.return_value = 1000.0
            window = await store.peek("k")
        pipe.get.assert_called_once_with("k")
        pipe.pttl.assert_called_once_with("k")
        assert window == WindowCount(count=7, reset_at_ms=1_010_000)

    @pytest.mark.asyncio
    async def test_peek_missing_key(self) -> None:
        redis, _ = _redis_mock()
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[None, -2])
        redis.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipe)
        redis.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)
        assert await RedisCounterStore(redis).peek("k") is None

    @pytest.mark.asyncio
    async def test_reset_deletes_key(self) -> None:
        redis, _ = _redis_mock()
        await RedisCounterStore(redis).reset("k")
        redis.delete.assert_awaited_once_with("k")


class TestRedisBlockList:
    @pytest.mark.asyncio
    async def test_block_sets_key_with_ttl(self) -> None:
        redis, _ = _redis_mock()
        await RedisBlockList(redis).block("1.2.3.4", 3600)
        redis.setex.assert_awaited_once_with("ratelimit:blocked:1.2.3.4", 3600, "1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("value", "expected"), [("1", True), (b"1", True), (None, False)])
    async def test_is_blocked(self, value: object, expected: bool) -> None:
        redis, _ = _redis_mock()
        redis.get.return_value = value
        assert await RedisBlockList(redis).is_blocked("id") is expected
        redis.get.assert_awaited_once_with("ratelimit:blocked:id")

    @pytest.mark.asyncio
    async def test_unblock_deletes_key(self) -> None:
        redis, _ = _redis_mock()
        await RedisBlockList(redis).unblock("id")
        redis.delete.assert_awaited_once_with("ratelimit:blocked:id")
