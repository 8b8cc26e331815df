"""Domain models package."""

from bluegreen.domain.models.base import (
    AggregateRoot,
    DomainEntity,
    DomainEvent,
    generate_id,
    utc_now,
    ValueObject,
)
from bluegreen.domain.models.deployment import (
    Deployment,
    DeploymentState,
    ROLLBACK_ON_CANCEL,
    StateTransition,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
)
from bluegreen.domain.models.health import HealthPolicy, HealthSnapshot
from bluegreen.domain.models.task_set import (
    idempotency_key_for,
    Instance,
    TaskSet,
    TaskSetLifecycle,
    TaskSetRole,
)
from bluegreen.domain.models.traffic import TrafficAssignment


__all__ = [
    "AggregateRoot",
    "Deployment",
    "DeploymentState",
    "DomainEntity",
    "DomainEvent",
    "HealthPolicy",
    "HealthSnapshot",
    "Instance",
    "ROLLBACK_ON_CANCEL",
    "StateTransition",
    "TERMINAL_STATES",
    "TaskSet",
    "TaskSetLifecycle",
    "TaskSetRole",
    "TrafficAssignment",
    "VALID_TRANSITIONS",
    "ValueObject",
    "generate_id",
    "idempotency_key_for",
    "utc_now",
]
