"""Task set domain model: a named, versioned group of running instances."""

from __future__ import annotations

from enum import Enum

from pydantic import Field

from bluegreen.domain.models.base import DomainEntity, ValueObject


class TaskSetLifecycle(str, Enum):
    """Task set lifecycle states."""

    PROVISIONING = "provisioning"
    STEADY = "steady"
    DRAINING = "draining"
    TERMINATED = "terminated"


class TaskSetRole(str, Enum):
    """Role a task set plays within one deployment."""

    BLUE = "blue"
    GREEN = "green"


class Instance(ValueObject):
    """One running container instance as reported by the platform."""

    instance_id: str
    endpoint: str = ""
    running: bool = True
    healthy: bool = False


class TaskSetDescription(ValueObject):
    """Raw view of a task set as returned by the container platform."""

    task_set_id: str
    service_name: str
    image_ref: str
    desired_count: int
    idempotency_key: str = ""
    instances: list[Instance] = Field(default_factory=list)
    draining: bool = False
    removed: bool = False


class TaskSet(DomainEntity):
    """Best-known state of a task set.

    ``stale`` is set when the platform did not answer within the status
    timeout and this is the last cached observation.
    """

    service_name: str
    image_ref: str
    desired_count: int = Field(ge=0)
    observed_healthy_count: int = 0
    observed_total_count: int = 0
    lifecycle_state: TaskSetLifecycle = TaskSetLifecycle.PROVISIONING
    idempotency_key: str = ""
    instances: list[Instance] = Field(default_factory=list)
    stale: bool = False

    @property
    def is_live(self) -> bool:
        """Steady with non-zero desired capacity."""
        return self.lifecycle_state == TaskSetLifecycle.STEADY and self.desired_count > 0

    @property
    def is_terminated(self) -> bool:
        return self.lifecycle_state == TaskSetLifecycle.TERMINATED

    @property
    def running_instances(self) -> list[Instance]:
        return [i for i in self.instances if i.running]


def idempotency_key_for(deployment_id: str, role: TaskSetRole) -> str:
    """Idempotency key of the task set created for ``role`` in a deployment."""
    return f"{deployment_id}:{role.value}"
