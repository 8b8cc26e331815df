"""Deployment domain events."""

from __future__ import annotations

from bluegreen.domain.models.base import DomainEvent


class DeploymentRequested(DomainEvent):
    """Emitted when a deployment is accepted."""

    deployment_id: str
    service_name: str
    image_ref: str
    event_type: str = "deployment.requested"


class DeploymentStateChanged(DomainEvent):
    """Emitted on every state machine transition."""

    deployment_id: str
    service_name: str
    from_state: str
    to_state: str
    reason: str = ""
    event_type: str = "deployment.state_changed"


class DeploymentCancelRequested(DomainEvent):
    """Emitted when an operator asks for cancellation."""

    deployment_id: str
    state: str
    event_type: str = "deployment.cancel_requested"


class DeploymentCompleted(DomainEvent):
    """Emitted when green is live and blue has been retired."""

    deployment_id: str
    service_name: str
    live_task_set_id: str
    duration_seconds: float = 0.0
    event_type: str = "deployment.completed"


class DeploymentRolledBack(DomainEvent):
    """Emitted when traffic is back on blue and green has been retired."""

    deployment_id: str
    service_name: str
    reason: str
    live_task_set_id: str | None = None
    duration_seconds: float = 0.0
    event_type: str = "deployment.rolled_back"


class DeploymentFailed(DomainEvent):
    """Emitted when a deployment reaches FAILED."""

    deployment_id: str
    service_name: str
    failure_reason: str
    live_task_set_id: str | None = None
    degraded: bool = False
    duration_seconds: float = 0.0
    event_type: str = "deployment.failed"


class DegradedRollbackAlert(DomainEvent):
    """Operator alert: rollback could not restore traffic, capacity is single-sided."""

    deployment_id: str
    service_name: str
    blue_task_set_id: str | None
    green_task_set_id: str | None
    failure_reason: str
    event_type: str = "deployment.degraded_rollback"
