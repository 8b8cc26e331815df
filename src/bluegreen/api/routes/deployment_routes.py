"""Deployment API routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    status,
)
from pydantic import ValidationError

from bluegreen.api.dependencies.services import get_controller
from bluegreen.api.schemas.deployment_schemas import (
    CreateDeploymentRequest,
    DeploymentAcceptedResponse,
    DeploymentListResponse,
    DeploymentResponse,
)
from bluegreen.domain.errors import (
    CancellationRejectedError,
    ConflictError,
    DeploymentConflictError,
    DeploymentNotFoundError,
)
from bluegreen.domain.models.health import HealthPolicy
from bluegreen.domain.services.deployment_controller import DeploymentController


router = APIRouter(prefix="/deployments", tags=["deployments"])

Controller = Annotated[DeploymentController, Depends(get_controller)]


@router.post(
    "",
    response_model=DeploymentAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_deployment(
    request: CreateDeploymentRequest,
    controller: Controller,
) -> DeploymentAcceptedResponse:
    """Request a blue/green deployment of a new image for a service."""
    policy = None
    if request.health_policy is not None:
        overrides = request.health_policy.model_dump(exclude_none=True)
        try:
            policy = HealthPolicy(**{**controller.default_policy.model_dump(), **overrides})
        except ValidationError as e:
            raise HTTPException(
                status_code=422,
                detail=e.errors(include_url=False, include_context=False),
            ) from e

    try:
        deployment = await controller.request_deployment(
            service_name=request.service_name,
            image_ref=request.image_ref,
            health_policy=policy,
            desired_count=request.desired_count,
        )
    except DeploymentConflictError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    return DeploymentAcceptedResponse(
        id=deployment.id,
        service_name=deployment.service_name,
        state=deployment.state,
    )


@router.get("", response_model=DeploymentListResponse)
async def list_deployments(
    controller: Controller,
    service_name: str | None = None,
    active_only: bool = False,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DeploymentListResponse:
    """List deployments, newest first."""
    deployments = await controller.list_deployments(
        service_name=service_name,
        active_only=active_only,
        limit=limit,
        offset=offset,
    )
    return DeploymentListResponse(
        items=[DeploymentResponse.from_domain(d) for d in deployments],
        total=len(deployments),
        limit=limit,
        offset=offset,
    )


@router.get("/{deployment_id}", response_model=DeploymentResponse)
async def get_deployment(deployment_id: str, controller: Controller) -> DeploymentResponse:
    """Get a deployment's persisted state."""
    try:
        deployment = await controller.get(deployment_id)
    except DeploymentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return DeploymentResponse.from_domain(deployment)


@router.post(
    "/{deployment_id}/cancel",
    response_model=DeploymentResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def cancel_deployment(deployment_id: str, controller: Controller) -> DeploymentResponse:
    """Ask the controller to abandon a deployment."""
    try:
        deployment = await controller.cancel(deployment_id)
    except DeploymentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except CancellationRejectedError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ConflictError as e:
        raise HTTPException(
            status_code=503,
            detail="Deployment is being updated concurrently; retry the cancel",
            headers={"Retry-After": "1"},
        ) from e
    return DeploymentResponse.from_domain(deployment)
