"""Unit tests for the admission locks."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from bluegreen.config import RedisSettings
from bluegreen.infrastructure.locking.memory_lock import InMemoryDistributedLock
from bluegreen.infrastructure.locking.redis_lock import create_redis_client, RedisDistributedLock


class TestInMemoryDistributedLock:
    @pytest.mark.asyncio
    async def test_acquire_and_release(self, lock_service: InMemoryDistributedLock) -> None:
        assert await lock_service.acquire("deploy:checkout")
        assert await lock_service.is_locked("deploy:checkout")
        assert not await lock_service.acquire("deploy:checkout")
        assert await lock_service.release("deploy:checkout")
        assert not await lock_service.is_locked("deploy:checkout")
        assert await lock_service.acquire("deploy:checkout")

    @pytest.mark.asyncio
    async def test_independent_resources(self, lock_service: InMemoryDistributedLock) -> None:
        assert await lock_service.acquire("deploy:checkout")
        assert await lock_service.acquire("deploy:payments")

    @pytest.mark.asyncio
    async def test_release_unheld(self, lock_service: InMemoryDistributedLock) -> None:
        assert not await lock_service.release("deploy:checkout")

    @pytest.mark.asyncio
    async def test_expired_lock_is_free(self, lock_service: InMemoryDistributedLock) -> None:
        assert await lock_service.acquire("deploy:checkout", ttl_seconds=0)
        await asyncio.sleep(0.001)
        assert not await lock_service.is_locked("deploy:checkout")
        assert await lock_service.acquire("deploy:checkout")


class TestRedisDistributedLock:
    @pytest.mark.asyncio
    async def test_acquire_uses_set_nx(self) -> None:
        client = AsyncMock()
        client.set.return_value = True
        lock = RedisDistributedLock(client)

        assert await lock.acquire("deploy:checkout", ttl_seconds=15)

        args, kwargs = client.set.call_args
        assert args[0] == "bluegreen:lock:deploy:checkout"
        assert kwargs == {"nx": True, "ex": 15}

    @pytest.mark.asyncio
    async def test_acquire_contended(self) -> None:
        client = AsyncMock()
        client.set.return_value = None
        lock = RedisDistributedLock(client)
        assert not await lock.acquire("deploy:checkout")

    @pytest.mark.asyncio
    async def test_release_checks_ownership(self) -> None:
        client = AsyncMock()
        client.set.return_value = True
        client.eval.return_value = 1
        lock = RedisDistributedLock(client)
        await lock.acquire("deploy:checkout")
        token = client.set.call_args.args[1]

        assert await lock.release("deploy:checkout")
        args = client.eval.call_args.args
        assert args[1:] == (1, "bluegreen:lock:deploy:checkout", token)

    @pytest.mark.asyncio
    async def test_release_after_expiry(self) -> None:
        client = AsyncMock()
        client.set.return_value = True
        client.eval.return_value = 0
        lock = RedisDistributedLock(client)
        await lock.acquire("deploy:checkout")
        assert not await lock.release("deploy:checkout")

    @pytest.mark.asyncio
    async def test_release_without_acquire(self) -> None:
        client = AsyncMock()
        lock = RedisDistributedLock(client)
        assert not await lock.release("deploy:checkout")
        client.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_is_locked(self) -> None:
        client = AsyncMock()
        client.exists.return_value = 1
        lock = RedisDistributedLock(client, key_prefix="test")
        assert await lock.is_locked("deploy:checkout")
        client.exists.assert_awaited_once_with("test:deploy:checkout")

    def test_client_factory(self) -> None:
        client = create_redis_client(RedisSettings(host="redis.internal", port=6380))
        kwargs = client.connection_pool.connection_kwargs
        assert kwargs["host"] == "redis.internal"
        assert kwargs["port"] == 6380
