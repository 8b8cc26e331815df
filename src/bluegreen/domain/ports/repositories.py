"""Repository port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod

from bluegreen.domain.models.deployment import Deployment


class DeploymentRepository(ABC):
    """Port for the deployment store.

    Records are never deleted; terminal deployments stay for audit and for
    crash-resume disambiguation.
    """

    @abstractmethod
    async def save(self, deployment: Deployment) -> Deployment:
        """Persist a new deployment."""

    @abstractmethod
    async def get_by_id(self, deployment_id: str) -> Deployment | None:
        """Retrieve a deployment by ID."""

    @abstractmethod
    async def update(self, deployment: Deployment, expected_version: int) -> Deployment:
        """Write ``deployment`` if the stored version is still ``expected_version``.

        Raises ConflictError otherwise.
        """

    @abstractmethod
    async def get_active_for_service(self, service_name: str) -> Deployment | None:
        """The non-terminal deployment of a service, if any."""

    @abstractmethod
    async def list_active(self, limit: int = 100) -> list[Deployment]:
        """List non-terminal deployments, oldest first."""

    @abstractmethod
    async def list_deployments(
        self,
        service_name: str | None = None,
        active_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Deployment]:
        """List deployments, newest first."""

    @abstractmethod
    async def list_with_orphans(self, limit: int = 50) -> list[Deployment]:
        """Terminal deployments that still reference unterminated task sets."""
