"""Traffic assignment and task set routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from bluegreen.api.dependencies.services import get_service_container, ServiceContainer
from bluegreen.api.schemas.deployment_schemas import TaskSetResponse, TrafficResponse
from bluegreen.domain.errors import PlatformError, TaskSetNotFoundError


router = APIRouter(tags=["traffic"])

Container = Annotated[ServiceContainer, Depends(get_service_container)]


@router.get("/services/{service_name}/traffic", response_model=TrafficResponse)
async def get_traffic(service_name: str, container: Container) -> TrafficResponse:
    """The weight map currently in effect for a service."""
    assignment = await container.router.current(service_name)
    if assignment is None:
        raise HTTPException(status_code=404, detail=f"No traffic assignment for {service_name}")
    return TrafficResponse.from_domain(assignment)


@router.get("/task-sets/{task_set_id}", response_model=TaskSetResponse)
async def get_task_set(task_set_id: str, container: Container) -> TaskSetResponse:
    """Best-known status of a task set."""
    try:
        task_set = await container.task_sets.status(task_set_id)
    except TaskSetNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except PlatformError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    return TaskSetResponse.from_domain(task_set)
