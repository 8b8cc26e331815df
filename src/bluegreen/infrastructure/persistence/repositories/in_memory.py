"""In-memory repository implementation for development and testing."""

from __future__ import annotations

import asyncio

from bluegreen.domain.errors import (
    ConflictError,
    DeploymentConflictError,
    DeploymentNotFoundError,
)
from bluegreen.domain.models.deployment import Deployment
from bluegreen.domain.ports.repositories import DeploymentRepository


# Module-level shared store enables cross-instance access in the demo API
# while keeping a single clear point for test isolation.
_deployment_store: dict[str, Deployment] = {}


class InMemoryDeploymentRepository(DeploymentRepository):
    """In-memory deployment store with the same semantics as the database one.

    Records go in and come out as deep copies, so a caller can never mutate
    stored state without going through ``update`` and its version check.
    """

    def __init__(self) -> None:
        self._store = _deployment_store
        self._lock = asyncio.Lock()

    async def save(self, deployment: Deployment) -> Deployment:
        async with self._lock:
            for existing in self._store.values():
                if existing.service_name == deployment.service_name and not existing.is_terminal:
                    raise DeploymentConflictError(
                        f"Deployment {existing.id} of {deployment.service_name} is still active"
                    )
            self._store[deployment.id] = deployment.clone()
        return deployment.clone()

    async def get_by_id(self, deployment_id: str) -> Deployment | None:
        stored = self._store.get(deployment_id)
        return stored.clone() if stored else None

    async def update(self, deployment: Deployment, expected_version: int) -> Deployment:
        async with self._lock:
            stored = self._store.get(deployment.id)
            if stored is None:
                raise DeploymentNotFoundError(f"Deployment {deployment.id} not found")
            if stored.version != expected_version:
                raise ConflictError(
                    f"Deployment {deployment.id} is at version {stored.version}, "
                    f"expected {expected_version}"
                )
            updated = deployment.clone()
            updated.version = expected_version + 1
            self._store[deployment.id] = updated
        return updated.clone()

    async def get_active_for_service(self, service_name: str) -> Deployment | None:
        for deployment in self._store.values():
            if deployment.service_name == service_name and not deployment.is_terminal:
                return deployment.clone()
        return None

    async def list_active(self, limit: int = 100) -> list[Deployment]:
        items = [d for d in self._store.values() if not d.is_terminal]
        return [d.clone() for d in sorted(items, key=lambda d: d.created_at)[:limit]]

    async def list_deployments(
        self,
        service_name: str | None = None,
        active_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Deployment]:
        items = [
            d for d in self._store.values()
            if (service_name is None or d.service_name == service_name)
            and (not active_only or not d.is_terminal)
        ]
        items.sort(key=lambda d: d.created_at, reverse=True)
        return [d.clone() for d in items[offset:offset + limit]]

    async def list_with_orphans(self, limit: int = 50) -> list[Deployment]:
        items = [d for d in self._store.values() if d.is_terminal and d.orphaned_task_set_ids]
        return [d.clone() for d in sorted(items, key=lambda d: d.updated_at)[:limit]]

    @classmethod
    def clear(cls) -> None:
        """Clear the shared store. Used by test fixtures for isolation."""
        _deployment_store.clear()
