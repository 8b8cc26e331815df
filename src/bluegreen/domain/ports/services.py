"""Service port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from bluegreen.domain.models.health import HealthPolicy, HealthSnapshot
from bluegreen.domain.models.task_set import Instance, TaskSet, TaskSetDescription
from bluegreen.domain.models.traffic import TrafficAssignment
from bluegreen.domain.services.mailbox import SnapshotMailbox


class ContainerPlatform(ABC):
    """Narrow interface to a container-orchestration backend."""

    @abstractmethod
    async def resolve_image(self, image_ref: str) -> bool:
        """Whether the image reference can be pulled."""

    @abstractmethod
    async def available_capacity(self) -> int:
        """Number of additional instances the platform can schedule."""

    @abstractmethod
    async def launch(
        self,
        task_set_id: str,
        service_name: str,
        image_ref: str,
        count: int,
        idempotency_key: str,
    ) -> None:
        """Start ``count`` instances for a task set. No-op if it already exists."""

    @abstractmethod
    async def describe(self, task_set_id: str) -> TaskSetDescription:
        """Current view of a task set. Raises TaskSetNotFoundError."""

    @abstractmethod
    async def find_by_key(self, idempotency_key: str) -> str | None:
        """Id of the task set launched under an idempotency key."""

    @abstractmethod
    async def list_task_sets(self, service_name: str) -> list[TaskSetDescription]:
        """All task sets of a service, including removed ones."""

    @abstractmethod
    async def drain(self, task_set_id: str) -> None:
        """Stop sending new work to a task set's instances."""

    @abstractmethod
    async def remove(self, task_set_id: str) -> None:
        """Stop and delete a task set's instances."""


class LoadBalancerBackend(ABC):
    """Backend that applies a weight map to real traffic."""

    @abstractmethod
    async def apply(self, service_name: str, weights: dict[str, float]) -> None:
        """Accept a new weight map. Raises RouterError on rejection."""


class InstanceProbe(ABC):
    """Liveness check of a single instance."""

    @abstractmethod
    async def check(self, instance: Instance) -> bool:
        """Return True if the instance reports healthy."""


class TaskSetManager(ABC):
    """Creates, scales and terminates task sets."""

    @abstractmethod
    async def create(
        self,
        service_name: str,
        image_ref: str,
        desired_count: int,
        idempotency_key: str,
    ) -> str:
        """Materialize a task set and return its id.

        Raises CapacityError or ImageError. Repeated calls with the same
        idempotency key return the same id.
        """

    @abstractmethod
    async def terminate(self, task_set_id: str) -> None:
        """Drain then remove. No-op on terminated or unknown sets."""

    @abstractmethod
    async def status(self, task_set_id: str) -> TaskSet:
        """Best-known state, served from cache with ``stale=True`` on timeout."""

    @abstractmethod
    async def lookup(self, idempotency_key: str) -> str | None:
        """Task set id created under an idempotency key, if any."""

    @abstractmethod
    async def list_for_service(self, service_name: str) -> list[TaskSet]:
        """All known task sets of a service."""


class TrafficRouter(ABC):
    """Owner of the weighted service-to-task-set mapping."""

    @abstractmethod
    async def shift(self, service_name: str, weights: dict[str, float]) -> TrafficAssignment:
        """Replace the weight map atomically. Raises RouterError."""

    @abstractmethod
    async def current(self, service_name: str) -> TrafficAssignment | None:
        """The full assignment currently in effect."""

    @abstractmethod
    async def clear(self, service_name: str) -> None:
        """Remove the service's assignment entirely."""


class HealthObserver(ABC):
    """Port for the health prober as seen by the controller."""

    @abstractmethod
    async def observe(self, task_set_id: str) -> HealthSnapshot:
        """Latest health verdict for a task set."""

    @abstractmethod
    async def subscribe(self, task_set_id: str, policy: HealthPolicy) -> SnapshotMailbox:
        """Start probing (once) and return a latest-value mailbox."""

    @abstractmethod
    async def unsubscribe(self, task_set_id: str, mailbox: SnapshotMailbox) -> None:
        """Detach a mailbox."""

    @abstractmethod
    async def stop(self, task_set_id: str) -> None:
        """Stop probing a task set and detach all mailboxes."""


class EventPublisher(ABC):
    """Port for publishing domain events."""

    @abstractmethod
    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        """Publish an event."""

    @abstractmethod
    async def publish_batch(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        """Publish a batch of events."""


class DistributedLock(ABC):
    """Port for distributed locking."""

    @abstractmethod
    async def acquire(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        """Acquire a distributed lock."""

    @abstractmethod
    async def release(self, resource_id: str) -> bool:
        """Release a distributed lock."""

    @abstractmethod
    async def is_locked(self, resource_id: str) -> bool:
        """Check if a resource is locked."""
