"""Health prober: one polling loop per task set, fanned out to mailboxes."""

from __future__ import annotations

import asyncio
import time

import structlog

from bluegreen.domain.errors import BlueGreenError
from bluegreen.domain.models.base import utc_now
from bluegreen.domain.models.health import HealthPolicy, HealthSnapshot
from bluegreen.domain.models.task_set import Instance
from bluegreen.domain.ports.services import HealthObserver, InstanceProbe, TaskSetManager
from bluegreen.domain.services.mailbox import SnapshotMailbox
from bluegreen.infrastructure.health.probes import PlatformInstanceProbe
from bluegreen.infrastructure.observability.metrics import (
    HEALTH_PROBES_TOTAL,
    PROBE_CYCLE_DURATION,
)
from bluegreen.workers.base import BackgroundWorker


logger = structlog.get_logger(__name__)


class ProbeLoop(BackgroundWorker):
    """Probes every running instance of one task set each ``probe_interval``.

    A cycle succeeds only when at least ``desired_count`` instances pass;
    the success streak resets on any other outcome, including a stale or
    unavailable task set status.
    """

    def __init__(
        self,
        task_set_id: str,
        policy: HealthPolicy,
        task_sets: TaskSetManager,
        probe: InstanceProbe,
    ) -> None:
        super().__init__(worker_id=f"probe-{task_set_id}", poll_interval=policy.probe_interval)
        self._task_set_id = task_set_id
        self._policy = policy
        self._task_sets = task_sets
        self._probe = probe
        self._mailboxes: list[SnapshotMailbox] = []
        self._consecutive = 0
        self._cycle = 0
        self.latest: HealthSnapshot | None = None

    @property
    def subscriber_count(self) -> int:
        return len(self._mailboxes)

    def attach(self, mailbox: SnapshotMailbox) -> None:
        self._mailboxes.append(mailbox)
        if self.latest is not None:
            mailbox.put(self.latest)

    def detach(self, mailbox: SnapshotMailbox) -> None:
        if mailbox in self._mailboxes:
            self._mailboxes.remove(mailbox)

    async def run_once(self) -> None:
        snapshot = await self.probe_cycle()
        for mailbox in list(self._mailboxes):
            mailbox.put(snapshot)

    async def probe_cycle(self) -> HealthSnapshot:
        """Run one probe cycle and return its snapshot."""
        observed_at = utc_now()
        started = time.monotonic()
        self._cycle += 1

        try:
            task_set = await self._task_sets.status(self._task_set_id)
        except BlueGreenError as e:
            logger.warning(
                "probe_status_unavailable",
                task_set_id=self._task_set_id,
                cycle=self._cycle,
                error=str(e),
            )
            self._consecutive = 0
            snapshot = HealthSnapshot(
                task_set_id=self._task_set_id,
                cycle=self._cycle,
                observed_at=observed_at,
            )
        else:
            instances = task_set.running_instances
            results = await asyncio.gather(*(self._check(i) for i in instances))
            healthy = sum(1 for ok in results if ok)
            expected = task_set.desired_count

            if not task_set.stale and expected > 0 and healthy >= expected:
                self._consecutive += 1
            else:
                self._consecutive = 0

            snapshot = HealthSnapshot(
                task_set_id=self._task_set_id,
                healthy_count=healthy,
                total_count=len(instances),
                expected_count=expected,
                consecutive_success_cycles=self._consecutive,
                cycle=self._cycle,
                observed_at=observed_at,
            )

        PROBE_CYCLE_DURATION.observe(time.monotonic() - started)
        self.latest = snapshot
        logger.debug(
            "probe_cycle_completed",
            task_set_id=self._task_set_id,
            cycle=snapshot.cycle,
            healthy=snapshot.healthy_count,
            total=snapshot.total_count,
            consecutive=snapshot.consecutive_success_cycles,
        )
        return snapshot

    async def _check(self, instance: Instance) -> bool:
        try:
            healthy = await asyncio.wait_for(
                self._probe.check(instance), timeout=self._policy.probe_timeout
            )
        except asyncio.TimeoutError:
            HEALTH_PROBES_TOTAL.labels(result="timeout").inc()
            return False
        except Exception as e:
            # A probe that raises counts as a failed probe, not a failed loop.
            logger.warning(
                "probe_raised",
                task_set_id=self._task_set_id,
                instance_id=instance.instance_id,
                error=str(e),
            )
            HEALTH_PROBES_TOTAL.labels(result="error").inc()
            return False
        HEALTH_PROBES_TOTAL.labels(result="healthy" if healthy else "unhealthy").inc()
        return bool(healthy)


class HealthProber(HealthObserver):
    """Owns the probe loops; each task set is probed by at most one loop."""

    def __init__(
        self,
        task_sets: TaskSetManager,
        probe: InstanceProbe | None = None,
        default_policy: HealthPolicy | None = None,
    ) -> None:
        self._task_sets = task_sets
        self._probe = probe or PlatformInstanceProbe()
        self._default_policy = default_policy or HealthPolicy()
        self._loops: dict[str, ProbeLoop] = {}
        self._lock = asyncio.Lock()

    def is_probing(self, task_set_id: str) -> bool:
        return task_set_id in self._loops

    async def observe(self, task_set_id: str) -> HealthSnapshot:
        loop = self._loops.get(task_set_id)
        if loop is not None and loop.latest is not None:
            return loop.latest
        ad_hoc = ProbeLoop(task_set_id, self._default_policy, self._task_sets, self._probe)
        return await ad_hoc.probe_cycle()

    async def subscribe(self, task_set_id: str, policy: HealthPolicy) -> SnapshotMailbox:
        mailbox = SnapshotMailbox()
        async with self._lock:
            loop = self._loops.get(task_set_id)
            if loop is None:
                loop = ProbeLoop(task_set_id, policy, self._task_sets, self._probe)
                self._loops[task_set_id] = loop
                loop.spawn()
                logger.info(
                    "probe_loop_started",
                    task_set_id=task_set_id,
                    probe_interval=policy.probe_interval,
                )
            loop.attach(mailbox)
        return mailbox

    async def unsubscribe(self, task_set_id: str, mailbox: SnapshotMailbox) -> None:
        """Detach a mailbox; the loop stops once nobody is listening."""
        async with self._lock:
            loop = self._loops.get(task_set_id)
            if loop is None:
                return
            loop.detach(mailbox)
            if loop.subscriber_count:
                return
            del self._loops[task_set_id]
        await loop.stop()

    async def stop(self, task_set_id: str) -> None:
        async with self._lock:
            loop = self._loops.pop(task_set_id, None)
        if loop is not None:
            await loop.stop()
            logger.info("probe_loop_stopped", task_set_id=task_set_id)

    async def stop_all(self) -> None:
        async with self._lock:
            loops = list(self._loops.values())
            self._loops.clear()
        for loop in loops:
            await loop.stop()
