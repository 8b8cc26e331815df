"""Weighted traffic router."""

from __future__ import annotations

import asyncio
from collections import defaultdict

import structlog
from pydantic import ValidationError

from bluegreen.domain.errors import PlatformError, RouterError, TaskSetNotFoundError
from bluegreen.domain.models.base import utc_now
from bluegreen.domain.models.task_set import TaskSetLifecycle
from bluegreen.domain.models.traffic import TrafficAssignment
from bluegreen.domain.ports.services import LoadBalancerBackend, TaskSetManager, TrafficRouter
from bluegreen.infrastructure.observability.metrics import TRAFFIC_SHIFTS_TOTAL


logger = structlog.get_logger(__name__)


class WeightedTrafficRouter(TrafficRouter):
    """Exclusive owner of each service's traffic assignment.

    Assignments are immutable; a shift builds a new one and swaps the
    reference only after the backend accepted it, so readers always get a
    complete pre-shift or post-shift map.
    """

    def __init__(
        self,
        task_sets: TaskSetManager,
        backend: LoadBalancerBackend | None = None,
    ) -> None:
        self._task_sets = task_sets
        self._backend = backend
        self._assignments: dict[str, TrafficAssignment] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def shift(self, service_name: str, weights: dict[str, float]) -> TrafficAssignment:
        try:
            candidate = TrafficAssignment(service_name=service_name, weights=weights)
        except ValidationError as e:
            TRAFFIC_SHIFTS_TOTAL.labels(result="invalid").inc()
            raise RouterError(f"Invalid weight map for {service_name}: {e}") from e

        async with self._locks[service_name]:
            for task_set_id in candidate.weights:
                await self._require_steady(task_set_id)

            previous = self._assignments.get(service_name)
            assignment = candidate.model_copy(update={
                "revision": previous.revision + 1 if previous else 1,
                "updated_at": utc_now(),
            })

            if self._backend is not None:
                try:
                    await self._backend.apply(service_name, dict(assignment.weights))
                except RouterError:
                    TRAFFIC_SHIFTS_TOTAL.labels(result="rejected").inc()
                    raise

            self._assignments[service_name] = assignment

        TRAFFIC_SHIFTS_TOTAL.labels(result="accepted").inc()
        logger.info(
            "traffic_shifted",
            service_name=service_name,
            weights=assignment.weights,
            revision=assignment.revision,
        )
        return assignment.model_copy(deep=True)

    async def current(self, service_name: str) -> TrafficAssignment | None:
        assignment = self._assignments.get(service_name)
        return assignment.model_copy(deep=True) if assignment else None

    async def clear(self, service_name: str) -> None:
        async with self._locks[service_name]:
            self._assignments.pop(service_name, None)
        logger.info("traffic_cleared", service_name=service_name)

    async def _require_steady(self, task_set_id: str) -> None:
        try:
            task_set = await self._task_sets.status(task_set_id)
        except (TaskSetNotFoundError, PlatformError) as e:
            TRAFFIC_SHIFTS_TOTAL.labels(result="rejected").inc()
            raise RouterError(f"Task set {task_set_id} is unavailable: {e}") from e
        if task_set.lifecycle_state != TaskSetLifecycle.STEADY:
            TRAFFIC_SHIFTS_TOTAL.labels(result="rejected").inc()
            raise RouterError(
                f"Task set {task_set_id} is {task_set.lifecycle_state.value}, not steady"
            )
