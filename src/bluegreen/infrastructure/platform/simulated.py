"""In-process container platform and load balancer for development and testing."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

import structlog

from bluegreen.domain.errors import PlatformError, RouterError, TaskSetNotFoundError
from bluegreen.domain.models.task_set import Instance, TaskSetDescription
from bluegreen.domain.ports.services import ContainerPlatform, LoadBalancerBackend


logger = structlog.get_logger(__name__)


@dataclass
class _SimInstance:
    instance_id: str
    endpoint: str
    running: bool = True


@dataclass
class _SimTaskSet:
    task_set_id: str
    service_name: str
    image_ref: str
    desired_count: int
    idempotency_key: str
    launched_at: float
    instances: list[_SimInstance] = field(default_factory=list)
    draining: bool = False
    removed: bool = False


class SimulatedContainerPlatform(ContainerPlatform):
    """Simulated container platform.

    Instances become running ``startup_delay`` seconds after launch. Every
    image resolves unless marked unresolvable; instance health is controlled
    per image (``set_image_health``) or per task set (``set_healthy_count``),
    and any operation can be made to fail with ``fail_next``.
    """

    def __init__(
        self,
        capacity: int = 64,
        startup_delay: float = 0.0,
        endpoint_template: str = "http://{task_set_id}-{index}.internal:8080",
    ) -> None:
        self._capacity = capacity
        self._startup_delay = startup_delay
        self._endpoint_template = endpoint_template
        self._task_sets: dict[str, _SimTaskSet] = {}
        self._unresolvable: set[str] = set()
        self._image_healthy_limit: dict[str, int] = {}
        self._task_set_healthy_limit: dict[str, int] = {}
        self._failures: dict[str, int] = {}
        self.describe_delay = 0.0
        self.launch_count = 0

    # ------------------------------------------------------------------
    # Fault injection and test controls
    # ------------------------------------------------------------------

    def mark_unresolvable(self, image_ref: str) -> None:
        self._unresolvable.add(image_ref)

    def set_image_health(self, image_ref: str, healthy_count: int | None) -> None:
        """Limit how many instances of each task set running ``image_ref`` are healthy."""
        if healthy_count is None:
            self._image_healthy_limit.pop(image_ref, None)
        else:
            self._image_healthy_limit[image_ref] = healthy_count

    def set_healthy_count(self, task_set_id: str, healthy_count: int | None) -> None:
        if healthy_count is None:
            self._task_set_healthy_limit.pop(task_set_id, None)
        else:
            self._task_set_healthy_limit[task_set_id] = healthy_count

    def crash_instance(self, task_set_id: str, index: int = 0) -> None:
        self._get(task_set_id).instances[index].running = False

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise PlatformError."""
        self._failures[operation] = times

    def seed(self, task_set_id: str, service_name: str, image_ref: str, count: int) -> str:
        """Register an already-running task set (e.g. the live blue revision)."""
        record = self._new_record(task_set_id, service_name, image_ref, count, "")
        record.launched_at -= self._startup_delay
        self._task_sets[task_set_id] = record
        return task_set_id

    def is_removed(self, task_set_id: str) -> bool:
        return self._get(task_set_id).removed

    # ------------------------------------------------------------------
    # ContainerPlatform
    # ------------------------------------------------------------------

    async def resolve_image(self, image_ref: str) -> bool:
        self._maybe_fail("resolve_image")
        return bool(image_ref) and image_ref not in self._unresolvable

    async def available_capacity(self) -> int:
        self._maybe_fail("available_capacity")
        used = sum(
            len(ts.instances) for ts in self._task_sets.values() if not ts.removed
        )
        return max(self._capacity - used, 0)

    async def launch(
        self,
        task_set_id: str,
        service_name: str,
        image_ref: str,
        count: int,
        idempotency_key: str,
    ) -> None:
        self._maybe_fail("launch")
        if task_set_id in self._task_sets:
            return
        self._task_sets[task_set_id] = self._new_record(
            task_set_id, service_name, image_ref, count, idempotency_key
        )
        self.launch_count += 1
        logger.info(
            "simulated_task_set_launched",
            task_set_id=task_set_id,
            image_ref=image_ref,
            count=count,
        )

    async def describe(self, task_set_id: str) -> TaskSetDescription:
        if self.describe_delay:
            await asyncio.sleep(self.describe_delay)
        self._maybe_fail("describe")
        record = self._get(task_set_id)
        started = time.monotonic() - record.launched_at >= self._startup_delay
        healthy_limit = self._task_set_healthy_limit.get(
            task_set_id, self._image_healthy_limit.get(record.image_ref)
        )

        instances: list[Instance] = []
        healthy_so_far = 0
        for sim in record.instances:
            running = started and sim.running and not record.removed
            healthy = running and (healthy_limit is None or healthy_so_far < healthy_limit)
            if healthy:
                healthy_so_far += 1
            instances.append(Instance(
                instance_id=sim.instance_id,
                endpoint=sim.endpoint,
                running=running,
                healthy=healthy,
            ))

        return TaskSetDescription(
            task_set_id=record.task_set_id,
            service_name=record.service_name,
            image_ref=record.image_ref,
            desired_count=record.desired_count,
            idempotency_key=record.idempotency_key,
            instances=instances,
            draining=record.draining,
            removed=record.removed,
        )

    async def find_by_key(self, idempotency_key: str) -> str | None:
        for record in self._task_sets.values():
            if idempotency_key and record.idempotency_key == idempotency_key:
                return record.task_set_id
        return None

    async def list_task_sets(self, service_name: str) -> list[TaskSetDescription]:
        return [
            await self.describe(ts.task_set_id)
            for ts in self._task_sets.values()
            if ts.service_name == service_name
        ]

    async def drain(self, task_set_id: str) -> None:
        self._maybe_fail("drain")
        self._get(task_set_id).draining = True

    async def remove(self, task_set_id: str) -> None:
        self._maybe_fail("remove")
        record = self._get(task_set_id)
        record.removed = True
        for instance in record.instances:
            instance.running = False
        logger.info("simulated_task_set_removed", task_set_id=task_set_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _new_record(
        self,
        task_set_id: str,
        service_name: str,
        image_ref: str,
        count: int,
        idempotency_key: str,
    ) -> _SimTaskSet:
        return _SimTaskSet(
            task_set_id=task_set_id,
            service_name=service_name,
            image_ref=image_ref,
            desired_count=count,
            idempotency_key=idempotency_key,
            launched_at=time.monotonic(),
            instances=[
                _SimInstance(
                    instance_id=f"{task_set_id}-{index}",
                    endpoint=self._endpoint_template.format(
                        task_set_id=task_set_id, index=index
                    ),
                )
                for index in range(count)
            ],
        )

    def _get(self, task_set_id: str) -> _SimTaskSet:
        record = self._task_sets.get(task_set_id)
        if record is None:
            raise TaskSetNotFoundError(f"Task set {task_set_id} not found")
        return record

    def _maybe_fail(self, operation: str) -> None:
        remaining = self._failures.get(operation, 0)
        if remaining > 0:
            self._failures[operation] = remaining - 1
            raise PlatformError(f"simulated {operation} failure")


class SimulatedLoadBalancer(LoadBalancerBackend):
    """Records applied weight maps; can be told to reject the next N updates."""

    def __init__(self) -> None:
        self._applied: dict[str, dict[str, float]] = {}
        self._failures_remaining = 0
        self.apply_calls = 0

    def fail_next(self, times: int) -> None:
        self._failures_remaining = times

    async def apply(self, service_name: str, weights: dict[str, float]) -> None:
        self.apply_calls += 1
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            raise RouterError(f"load balancer rejected weight update for {service_name}")
        self._applied[service_name] = dict(weights)

    def applied(self, service_name: str) -> dict[str, float] | None:
        weights = self._applied.get(service_name)
        return dict(weights) if weights is not None else None
