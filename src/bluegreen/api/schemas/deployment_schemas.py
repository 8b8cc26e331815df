"""API schemas for deployment, traffic and task set endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from bluegreen.domain.models.deployment import Deployment, DeploymentState
from bluegreen.domain.models.task_set import TaskSet, TaskSetLifecycle
from bluegreen.domain.models.traffic import TrafficAssignment


class HealthPolicyRequest(BaseModel):
    """Overrides of the controller's default health policy; omitted fields keep the default."""

    min_healthy_fraction: float | None = Field(default=None, gt=0.0, le=1.0)
    evaluation_window: int | None = Field(default=None, ge=1)
    probe_interval: float | None = Field(default=None, gt=0.0)
    probe_timeout: float | None = Field(default=None, gt=0.0)
    deployment_timeout: float | None = Field(default=None, gt=0.0)
    propagation_grace_period: float | None = Field(default=None, ge=0.0)
    post_shift_cycles: int | None = Field(default=None, ge=1)


class CreateDeploymentRequest(BaseModel):
    service_name: str = Field(..., min_length=1, max_length=255, pattern=r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
    image_ref: str = Field(..., min_length=1, max_length=1000)
    health_policy: HealthPolicyRequest | None = None
    desired_count: int | None = Field(default=None, ge=1, le=1000)


class DeploymentAcceptedResponse(BaseModel):
    id: str
    service_name: str
    state: DeploymentState


class StateTransitionResponse(BaseModel):
    from_state: DeploymentState
    to_state: DeploymentState
    reason: str = ""
    at: datetime


class DeploymentResponse(BaseModel):
    id: str
    service_name: str
    target_image_ref: str
    state: DeploymentState
    blue_task_set_id: str | None = None
    green_task_set_id: str | None = None
    live_task_set_id: str | None = None
    desired_count: int
    failure_reason: str = ""
    rollback_reason: str = ""
    cancel_requested: bool = False
    degraded: bool = False
    traffic_shifted: bool = False
    orphaned_task_set_ids: list[str] = Field(default_factory=list)
    health_policy: dict[str, float | int]
    history: list[StateTransitionResponse] = Field(default_factory=list)
    state_entered_at: datetime
    created_at: datetime
    updated_at: datetime
    version: int

    @classmethod
    def from_domain(cls, deployment: Deployment) -> DeploymentResponse:
        return cls(
            id=deployment.id,
            service_name=deployment.service_name,
            target_image_ref=deployment.target_image_ref,
            state=deployment.state,
            blue_task_set_id=deployment.blue_task_set_id,
            green_task_set_id=deployment.green_task_set_id,
            live_task_set_id=deployment.live_task_set_id,
            desired_count=deployment.desired_count,
            failure_reason=deployment.failure_reason,
            rollback_reason=deployment.rollback_reason,
            cancel_requested=deployment.cancel_requested,
            degraded=deployment.degraded,
            traffic_shifted=deployment.traffic_shifted,
            orphaned_task_set_ids=list(deployment.orphaned_task_set_ids),
            health_policy=deployment.health_policy.model_dump(),
            history=[StateTransitionResponse(**t.model_dump()) for t in deployment.history],
            state_entered_at=deployment.state_entered_at,
            created_at=deployment.created_at,
            updated_at=deployment.updated_at,
            version=deployment.version,
        )


class DeploymentListResponse(BaseModel):
    items: list[DeploymentResponse]
    total: int
    limit: int
    offset: int


class TrafficResponse(BaseModel):
    service_name: str
    weights: dict[str, float]
    revision: int
    updated_at: datetime

    @classmethod
    def from_domain(cls, assignment: TrafficAssignment) -> TrafficResponse:
        return cls(**assignment.model_dump())


class InstanceResponse(BaseModel):
    instance_id: str
    endpoint: str
    running: bool
    healthy: bool


class TaskSetResponse(BaseModel):
    id: str
    service_name: str
    image_ref: str
    desired_count: int
    observed_healthy_count: int
    observed_total_count: int
    lifecycle_state: TaskSetLifecycle
    stale: bool = False
    instances: list[InstanceResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, task_set: TaskSet) -> TaskSetResponse:
        return cls(
            id=task_set.id,
            service_name=task_set.service_name,
            image_ref=task_set.image_ref,
            desired_count=task_set.desired_count,
            observed_healthy_count=task_set.observed_healthy_count,
            observed_total_count=task_set.observed_total_count,
            lifecycle_state=task_set.lifecycle_state,
            stale=task_set.stale,
            instances=[InstanceResponse(**i.model_dump()) for i in task_set.instances],
        )
