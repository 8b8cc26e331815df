"""Task set manager on top of a container platform backend."""

from __future__ import annotations

import asyncio
import uuid

import structlog

from bluegreen.domain.errors import (
    CapacityError,
    ImageError,
    PlatformError,
    TaskSetNotFoundError,
)
from bluegreen.domain.models.task_set import (
    TaskSet,
    TaskSetDescription,
    TaskSetLifecycle,
)
from bluegreen.domain.ports.services import ContainerPlatform, TaskSetManager
from bluegreen.infrastructure.observability.metrics import TASK_SET_OPERATIONS


logger = structlog.get_logger(__name__)


class PlatformTaskSetManager(TaskSetManager):
    """Creates and retires task sets, caching the last-known status of each
    until the set is confirmed removed.

    Idempotency keys are stored on the platform itself, so a repeated
    ``create`` after a controller restart still finds the original set.
    """

    def __init__(self, platform: ContainerPlatform, status_timeout: float = 3.0) -> None:
        self._platform = platform
        self._status_timeout = status_timeout
        self._cache: dict[str, TaskSet] = {}
        self._create_lock = asyncio.Lock()

    async def create(
        self,
        service_name: str,
        image_ref: str,
        desired_count: int,
        idempotency_key: str,
    ) -> str:
        async with self._create_lock:
            existing = await self._platform.find_by_key(idempotency_key)
            if existing is not None:
                logger.info(
                    "task_set_create_deduplicated",
                    task_set_id=existing,
                    idempotency_key=idempotency_key,
                )
                TASK_SET_OPERATIONS.labels(operation="create", result="deduplicated").inc()
                return existing

            if not await self._platform.resolve_image(image_ref):
                TASK_SET_OPERATIONS.labels(operation="create", result="image_error").inc()
                raise ImageError(f"Image reference {image_ref!r} cannot be resolved")

            capacity = await self._platform.available_capacity()
            if capacity < desired_count:
                TASK_SET_OPERATIONS.labels(operation="create", result="capacity_error").inc()
                raise CapacityError(
                    f"Platform can schedule {capacity} more instances, "
                    f"{desired_count} requested"
                )

            task_set_id = f"ts-{uuid.uuid4().hex[:12]}"
            await self._platform.launch(
                task_set_id, service_name, image_ref, desired_count, idempotency_key
            )
            self._cache[task_set_id] = TaskSet(
                id=task_set_id,
                service_name=service_name,
                image_ref=image_ref,
                desired_count=desired_count,
                idempotency_key=idempotency_key,
            )

        TASK_SET_OPERATIONS.labels(operation="create", result="created").inc()
        logger.info(
            "task_set_created",
            task_set_id=task_set_id,
            service_name=service_name,
            image_ref=image_ref,
            desired_count=desired_count,
        )
        return task_set_id

    async def terminate(self, task_set_id: str) -> None:
        try:
            description = await self._platform.describe(task_set_id)
        except TaskSetNotFoundError:
            logger.info("task_set_terminate_unknown", task_set_id=task_set_id)
            return

        if description.removed:
            self._remember(description)
            return

        await self._platform.drain(task_set_id)
        self._remember(description, lifecycle=TaskSetLifecycle.DRAINING)
        await self._platform.remove(task_set_id)
        self._remember(description, lifecycle=TaskSetLifecycle.TERMINATED)

        TASK_SET_OPERATIONS.labels(operation="terminate", result="terminated").inc()
        logger.info("task_set_terminated", task_set_id=task_set_id)

    async def status(self, task_set_id: str) -> TaskSet:
        try:
            description = await asyncio.wait_for(
                self._platform.describe(task_set_id), timeout=self._status_timeout
            )
        except asyncio.TimeoutError:
            cached = self._cache.get(task_set_id)
            if cached is None:
                raise PlatformError(
                    f"Status of task set {task_set_id} unavailable after "
                    f"{self._status_timeout}s and nothing cached"
                ) from None
            logger.warning("task_set_status_stale", task_set_id=task_set_id)
            return cached.model_copy(update={"stale": True})
        return self._remember(description)

    async def lookup(self, idempotency_key: str) -> str | None:
        return await self._platform.find_by_key(idempotency_key)

    async def list_for_service(self, service_name: str) -> list[TaskSet]:
        descriptions = await self._platform.list_task_sets(service_name)
        return [self._remember(d) for d in descriptions]

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _remember(
        self,
        description: TaskSetDescription,
        lifecycle: TaskSetLifecycle | None = None,
    ) -> TaskSet:
        previous = self._cache.get(description.task_set_id)
        running = [i for i in description.instances if i.running]
        task_set = TaskSet(
            id=description.task_set_id,
            service_name=description.service_name,
            image_ref=description.image_ref,
            desired_count=description.desired_count,
            observed_total_count=len(running),
            observed_healthy_count=sum(1 for i in running if i.healthy),
            lifecycle_state=lifecycle or self._derive_lifecycle(description, previous),
            idempotency_key=description.idempotency_key,
            instances=description.instances,
        )
        if previous is not None:
            task_set.created_at = previous.created_at
        if task_set.is_terminated:
            self._cache.pop(task_set.id, None)
        else:
            self._cache[task_set.id] = task_set
        return task_set

    @staticmethod
    def _derive_lifecycle(
        description: TaskSetDescription, previous: TaskSet | None
    ) -> TaskSetLifecycle:
        if description.removed:
            return TaskSetLifecycle.TERMINATED
        if description.draining:
            return TaskSetLifecycle.DRAINING
        # Steady is sticky: an instance crash later does not reopen provisioning.
        if previous is not None and previous.lifecycle_state == TaskSetLifecycle.STEADY:
            return TaskSetLifecycle.STEADY
        running = sum(1 for i in description.instances if i.running)
        if running >= description.desired_count:
            return TaskSetLifecycle.STEADY
        return TaskSetLifecycle.PROVISIONING
