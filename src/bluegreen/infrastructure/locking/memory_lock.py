"""In-process lock with expiry, for single-replica deployments and tests."""

from __future__ import annotations

import time

import structlog

from bluegreen.domain.ports.services import DistributedLock


logger = structlog.get_logger(__name__)


class InMemoryDistributedLock(DistributedLock):
    """Lock table held in process memory. Expired entries count as free."""

    def __init__(self) -> None:
        self._expiries: dict[str, float] = {}

    async def acquire(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        now = time.monotonic()
        expires_at = self._expiries.get(resource_id)
        if expires_at is not None and expires_at > now:
            logger.debug("lock_not_acquired", resource_id=resource_id)
            return False
        self._expiries[resource_id] = now + ttl_seconds
        return True

    async def release(self, resource_id: str) -> bool:
        return self._expiries.pop(resource_id, None) is not None

    async def is_locked(self, resource_id: str) -> bool:
        expires_at = self._expiries.get(resource_id)
        return expires_at is not None and expires_at > time.monotonic()
