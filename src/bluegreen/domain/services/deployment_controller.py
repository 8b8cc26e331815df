"""Deployment controller: drives each deployment through the blue/green state machine."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import TypeVar

import structlog
from opentelemetry import trace

from bluegreen.domain.errors import (
    BlueGreenError,
    CapacityError,
    ConflictError,
    DegradedRollbackError,
    DeploymentConflictError,
    DeploymentNotFoundError,
    HealthTimeoutError,
    ImageError,
    RouterError,
)
from bluegreen.domain.models.base import AggregateRoot, DomainEvent, utc_now
from bluegreen.domain.models.deployment import (
    Deployment,
    DeploymentState,
    ROLLBACK_ON_CANCEL,
)
from bluegreen.domain.models.health import HealthPolicy, HealthSnapshot
from bluegreen.domain.models.task_set import idempotency_key_for, TaskSetRole
from bluegreen.domain.ports.repositories import DeploymentRepository
from bluegreen.domain.ports.services import (
    DistributedLock,
    EventPublisher,
    HealthObserver,
    TaskSetManager,
    TrafficRouter,
)
from bluegreen.domain.services.mailbox import SnapshotMailbox
from bluegreen.domain.services.retry import call_with_retry, RetryPolicy


logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

MAX_CONFLICT_RETRIES = 5
CANCEL_REASON = "cancelled by operator"

Handler = Callable[[Deployment], Awaitable[Deployment]]


class DeploymentController:
    """Runs one asyncio task per deployment, each a sequential state machine.

    The controller is the only writer of deployment state. The one other
    write is the operator's cancel flag; both go through the store's
    version check, so a cancel either lands before a transition (and the
    transition is abandoned) or after it (and is judged against the new
    state).
    """

    def __init__(
        self,
        deployment_repo: DeploymentRepository,
        task_sets: TaskSetManager,
        router: TrafficRouter,
        health: HealthObserver,
        event_publisher: EventPublisher,
        lock_service: DistributedLock,
        retry_policy: RetryPolicy | None = None,
        default_policy: HealthPolicy | None = None,
        default_desired_count: int = 2,
        admission_lock_ttl: int = 30,
        on_retry: Callable[[str], None] | None = None,
    ) -> None:
        self._deployment_repo = deployment_repo
        self._task_sets = task_sets
        self._router = router
        self._health = health
        self._event_publisher = event_publisher
        self._lock_service = lock_service
        self._retry_policy = retry_policy or RetryPolicy()
        self._default_policy = default_policy or HealthPolicy()
        self._default_desired_count = default_desired_count
        self._admission_lock_ttl = admission_lock_ttl
        self._on_retry = on_retry
        self._runners: dict[str, asyncio.Task[Deployment]] = {}
        self._cancel_signals: dict[str, asyncio.Event] = {}
        self._handlers: dict[DeploymentState, Handler] = {
            DeploymentState.REQUESTED: self._resolve_blue,
            DeploymentState.PROVISIONING_GREEN: self._provision_green,
            DeploymentState.AWAITING_HEALTH: self._await_health,
            DeploymentState.SHIFTING_TRAFFIC: self._shift_traffic,
            DeploymentState.POST_SHIFT_VERIFY: self._verify_after_shift,
            DeploymentState.DRAINING_BLUE: self._drain_blue,
            DeploymentState.ROLLING_BACK: self._roll_back,
        }

    @property
    def default_policy(self) -> HealthPolicy:
        return self._default_policy

    @property
    def active_count(self) -> int:
        """Deployments with a runner in this process."""
        return len(self._runners)

    # ------------------------------------------------------------------
    # Operator operations
    # ------------------------------------------------------------------

    async def request_deployment(
        self,
        service_name: str,
        image_ref: str,
        health_policy: HealthPolicy | None = None,
        desired_count: int | None = None,
        start: bool = True,
    ) -> Deployment:
        """Admit a deployment, or raise DeploymentConflictError if one is active."""
        lock_key = f"deploy:{service_name}"
        acquired = await self._lock_service.acquire(lock_key, ttl_seconds=self._admission_lock_ttl)
        if not acquired:
            raise DeploymentConflictError(
                f"Another deployment of {service_name} is being admitted"
            )

        try:
            active = await self._deployment_repo.get_active_for_service(service_name)
            if active is not None:
                raise DeploymentConflictError(
                    f"Deployment {active.id} of {service_name} is still {active.state.value}"
                )
            deployment = Deployment(
                service_name=service_name,
                target_image_ref=image_ref,
                health_policy=health_policy or self._default_policy,
                desired_count=desired_count or 0,
            )
            deployment.mark_requested()
            saved = await self._deployment_repo.save(deployment)
        finally:
            await self._lock_service.release(lock_key)

        await self._publish_events(deployment)
        logger.info(
            "deployment_requested",
            deployment_id=saved.id,
            service_name=service_name,
            image_ref=image_ref,
        )
        if start:
            self.start(saved.id)
        return saved

    async def get(self, deployment_id: str) -> Deployment:
        deployment = await self._deployment_repo.get_by_id(deployment_id)
        if deployment is None:
            raise DeploymentNotFoundError(f"Deployment {deployment_id} not found")
        return deployment

    async def list_deployments(
        self,
        service_name: str | None = None,
        active_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Deployment]:
        return await self._deployment_repo.list_deployments(
            service_name=service_name,
            active_only=active_only,
            limit=limit,
            offset=offset,
        )

    async def cancel(self, deployment_id: str) -> Deployment:
        """Flag a deployment for cancellation.

        Raises CancellationRejectedError for terminal deployments. A cancel
        that lands while blue is draining or a rollback runs is a no-op.
        """
        for _ in range(MAX_CONFLICT_RETRIES):
            deployment = await self.get(deployment_id)
            expected_version = deployment.version
            if not deployment.request_cancel():
                return deployment

            events = deployment.collect_events()
            try:
                saved = await self._deployment_repo.update(deployment, expected_version)
            except ConflictError:
                continue

            await self._publish(events)
            signal = self._cancel_signals.get(deployment_id)
            if signal is not None:
                signal.set()
            logger.info(
                "deployment_cancel_requested",
                deployment_id=deployment_id,
                state=saved.state.value,
            )
            return saved

        raise ConflictError(f"Deployment {deployment_id} kept changing; cancel not recorded")

    # ------------------------------------------------------------------
    # Runner management
    # ------------------------------------------------------------------

    def start(self, deployment_id: str) -> asyncio.Task[Deployment]:
        """Start (or return) the runner task of a deployment."""
        runner = self._runners.get(deployment_id)
        if runner is not None and not runner.done():
            return runner
        self._cancel_signals.setdefault(deployment_id, asyncio.Event())
        runner = asyncio.create_task(self.run(deployment_id), name=f"deployment-{deployment_id}")
        self._runners[deployment_id] = runner
        runner.add_done_callback(lambda task: self._runner_done(deployment_id, task))
        return runner

    async def wait_for(self, deployment_id: str, timeout: float | None = None) -> Deployment:
        """Wait until the deployment's runner finishes, then return the stored record."""
        runner = self._runners.get(deployment_id)
        if runner is not None:
            await asyncio.wait_for(asyncio.shield(runner), timeout)
        return await self.get(deployment_id)

    async def resume_all(self) -> list[str]:
        """Restart runners for every non-terminal deployment in the store."""
        active = await self._deployment_repo.list_active(limit=1000)
        for deployment in active:
            logger.info(
                "deployment_resuming",
                deployment_id=deployment.id,
                service_name=deployment.service_name,
                state=deployment.state.value,
            )
            self.start(deployment.id)
        return [d.id for d in active]

    async def shutdown(self) -> None:
        """Stop all runners; their deployments stay resumable in the store."""
        runners = list(self._runners.values())
        for runner in runners:
            runner.cancel()
        await asyncio.gather(*runners, return_exceptions=True)
        self._runners.clear()
        self._cancel_signals.clear()
        logger.info("controller_stopped", runners=len(runners))

    async def run(self, deployment_id: str) -> Deployment:
        """Drive a deployment from its persisted state to a terminal state."""
        deployment = await self.get(deployment_id)
        self._cancel_signals.setdefault(deployment_id, asyncio.Event())

        with structlog.contextvars.bound_contextvars(
            deployment_id=deployment.id,
            service_name=deployment.service_name,
        ):
            try:
                while not deployment.is_terminal:
                    if self._cancel_pending(deployment):
                        deployment = await self._apply_cancel(deployment)
                        continue
                    handler = self._handlers[deployment.state]
                    with tracer.start_as_current_span(
                        f"deployment.{deployment.state.value}",
                        attributes={
                            "deployment.id": deployment.id,
                            "deployment.service": deployment.service_name,
                        },
                    ):
                        deployment = await handler(deployment)
            finally:
                if deployment.green_task_set_id:
                    await self._health.stop(deployment.green_task_set_id)

            logger.info(
                "deployment_finished",
                state=deployment.state.value,
                live_task_set_id=deployment.live_task_set_id,
                failure_reason=deployment.failure_reason or None,
            )
        return deployment

    def _runner_done(self, deployment_id: str, task: asyncio.Task[Deployment]) -> None:
        if self._runners.get(deployment_id) is task:
            del self._runners[deployment_id]
            self._cancel_signals.pop(deployment_id, None)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "deployment_runner_crashed",
                deployment_id=deployment_id,
                error=str(error),
                error_type=type(error).__name__,
            )

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    async def _resolve_blue(self, deployment: Deployment) -> Deployment:
        current = await self._router.current(deployment.service_name)
        blue_id = current.primary_task_set_id if current else None
        desired = deployment.desired_count or self._default_desired_count

        if blue_id is not None:
            try:
                blue = await self._call(
                    "task_set.status", lambda: self._task_sets.status(blue_id)
                )
            except BlueGreenError as e:
                reason = f"live task set {blue_id} could not be inspected: {e}"
                return await self._commit(
                    deployment, lambda d: d.fail(reason, live_task_set_id=blue_id)
                )
            desired = blue.desired_count or desired

        logger.info("blue_resolved", blue_task_set_id=blue_id, desired_count=desired)
        return await self._commit(
            deployment, lambda d: d.start_provisioning(blue_id, desired)
        )

    async def _provision_green(self, deployment: Deployment) -> Deployment:
        key = idempotency_key_for(deployment.id, TaskSetRole.GREEN)
        try:
            green_id = await self._call(
                "task_set.create",
                lambda: self._task_sets.create(
                    deployment.service_name,
                    deployment.target_image_ref,
                    deployment.desired_count,
                    key,
                ),
            )
        except (CapacityError, ImageError) as e:
            logger.warning("green_provisioning_rejected", error=str(e))
            reason = f"{type(e).__name__}: {e}"
            return await self._commit(
                deployment, lambda d: d.fail(reason, live_task_set_id=d.blue_task_set_id)
            )
        except BlueGreenError as e:
            # The outcome of the last create is unknown; clean up by key.
            logger.warning("green_provisioning_failed", error=str(e))
            orphan = await self._cleanup_green(deployment)
            reason = f"green provisioning failed: {e}"
            return await self._commit(
                deployment,
                lambda d: self._fail_with_orphan(d, reason, orphan),
            )

        return await self._commit(deployment, lambda d: d.green_provisioned(green_id))

    async def _await_health(self, deployment: Deployment) -> Deployment:
        green_id = self._green_of(deployment)
        policy = deployment.health_policy
        mailbox = await self._health.subscribe(green_id, policy)
        try:
            while True:
                remaining = deployment.remaining_budget()
                if remaining <= 0:
                    error = HealthTimeoutError(
                        f"green {green_id} did not become healthy within "
                        f"{policy.deployment_timeout}s"
                    )
                    logger.warning("green_health_timeout", error=str(error))
                    return await self._commit(
                        deployment, lambda d: d.start_rollback(str(error))
                    )

                snapshot, deployment = await self._next_snapshot(deployment, mailbox, remaining)
                if deployment.cancel_requested:
                    return deployment
                if snapshot is not None and policy.is_satisfied_by(snapshot):
                    logger.info(
                        "green_healthy",
                        healthy=snapshot.healthy_count,
                        total=snapshot.total_count,
                        cycles=snapshot.consecutive_success_cycles,
                    )
                    return await self._commit(deployment, lambda d: d.start_traffic_shift())
        finally:
            await self._health.unsubscribe(green_id, mailbox)

    async def _shift_traffic(self, deployment: Deployment) -> Deployment:
        green_id = self._green_of(deployment)
        try:
            await self._call(
                "router.shift",
                lambda: self._router.shift(deployment.service_name, {green_id: 1.0}),
            )
        except RouterError as e:
            logger.warning("traffic_shift_failed", error=str(e))
            reason = f"traffic shift to green rejected: {e}"
            return await self._commit(deployment, lambda d: d.start_rollback(reason))
        return await self._commit(deployment, lambda d: d.start_post_shift_verification())

    async def _verify_after_shift(self, deployment: Deployment) -> Deployment:
        green_id = self._green_of(deployment)
        policy = deployment.health_policy
        grace_ends_at = deployment.state_entered_at + timedelta(
            seconds=policy.propagation_grace_period
        )

        deployment = await self._pause(
            deployment, (grace_ends_at - utc_now()).total_seconds()
        )
        if deployment.cancel_requested:
            return deployment

        mailbox = await self._health.subscribe(green_id, policy)
        mailbox.clear()
        passed = 0
        try:
            while passed < policy.post_shift_cycles:
                remaining = deployment.remaining_budget()
                if remaining <= 0:
                    error = HealthTimeoutError(
                        f"post-shift verification of {green_id} did not finish within "
                        f"{policy.deployment_timeout}s"
                    )
                    logger.warning("post_shift_timeout", error=str(error))
                    return await self._commit(
                        deployment, lambda d: d.start_rollback(str(error))
                    )

                snapshot, deployment = await self._next_snapshot(deployment, mailbox, remaining)
                if deployment.cancel_requested:
                    return deployment
                if snapshot is None or snapshot.observed_at < grace_ends_at:
                    continue
                if not policy.cycle_is_healthy(snapshot):
                    reason = (
                        f"green regressed after traffic shift: {snapshot.healthy_count}"
                        f"/{snapshot.expected_count} instances healthy"
                    )
                    logger.warning("post_shift_regression", reason=reason)
                    return await self._commit(deployment, lambda d: d.start_rollback(reason))
                passed += 1
        finally:
            await self._health.unsubscribe(green_id, mailbox)

        return await self._commit(deployment, lambda d: d.start_draining_blue())

    async def _drain_blue(self, deployment: Deployment) -> Deployment:
        blue_id = deployment.blue_task_set_id
        orphan: str | None = None
        if blue_id is not None:
            try:
                await self._call(
                    "task_set.terminate", lambda: self._task_sets.terminate(blue_id)
                )
            except BlueGreenError as e:
                logger.error("blue_termination_failed", task_set_id=blue_id, error=str(e))
                orphan = blue_id

        def finish(d: Deployment) -> None:
            if orphan is not None:
                d.record_orphan(orphan)
            d.complete()

        return await self._commit(deployment, finish)

    async def _roll_back(self, deployment: Deployment) -> Deployment:
        blue_id = deployment.blue_task_set_id
        green_id = deployment.green_task_set_id

        if deployment.traffic_shifted:
            try:
                await self._restore_traffic(deployment)
            except RouterError as e:
                current = await self._router.current(deployment.service_name)
                live_id = current.primary_task_set_id if current else green_id
                error = DegradedRollbackError(
                    f"traffic could not be restored to blue {blue_id}: {e}"
                )
                logger.critical(
                    "degraded_rollback",
                    blue_task_set_id=blue_id,
                    green_task_set_id=green_id,
                    live_task_set_id=live_id,
                    error=str(error),
                )
                return await self._commit(
                    deployment,
                    lambda d: d.fail(str(error), live_task_set_id=live_id, degraded=True),
                )

        orphan: str | None = None
        if green_id is not None:
            try:
                await self._call(
                    "task_set.terminate", lambda: self._task_sets.terminate(green_id)
                )
            except BlueGreenError as e:
                logger.error("green_termination_failed", task_set_id=green_id, error=str(e))
                orphan = green_id

        def finish(d: Deployment) -> None:
            if orphan is not None:
                d.record_orphan(orphan)
            d.complete_rollback()

        return await self._commit(deployment, finish)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @staticmethod
    def _cancel_pending(deployment: Deployment) -> bool:
        return deployment.cancel_requested and (
            deployment.state in ROLLBACK_ON_CANCEL
            or deployment.state in (
                DeploymentState.REQUESTED,
                DeploymentState.PROVISIONING_GREEN,
            )
        )

    async def _apply_cancel(self, deployment: Deployment) -> Deployment:
        logger.info("deployment_cancelling", state=deployment.state.value)

        if deployment.state == DeploymentState.REQUESTED:
            current = await self._router.current(deployment.service_name)
            live_id = current.primary_task_set_id if current else None
            return await self._commit(
                deployment, lambda d: d.fail(CANCEL_REASON, live_task_set_id=live_id)
            )

        if deployment.state == DeploymentState.PROVISIONING_GREEN:
            orphan = await self._cleanup_green(deployment)
            return await self._commit(
                deployment, lambda d: self._fail_with_orphan(d, CANCEL_REASON, orphan)
            )

        return await self._commit(deployment, lambda d: d.start_rollback(CANCEL_REASON))

    async def _cleanup_green(self, deployment: Deployment) -> str | None:
        """Terminate a green set whose creation may or may not have happened.

        Returns the id of a set that could not be terminated.
        """
        key = idempotency_key_for(deployment.id, TaskSetRole.GREEN)
        try:
            green_id = deployment.green_task_set_id or await self._call(
                "task_set.lookup", lambda: self._task_sets.lookup(key)
            )
        except BlueGreenError as e:
            logger.error("green_lookup_failed", idempotency_key=key, error=str(e))
            return None
        if green_id is None:
            return None

        try:
            await self._call("task_set.terminate", lambda: self._task_sets.terminate(green_id))
        except BlueGreenError as e:
            logger.error("green_termination_failed", task_set_id=green_id, error=str(e))
            return green_id
        logger.info("green_cleaned_up", task_set_id=green_id)
        return None

    @staticmethod
    def _fail_with_orphan(deployment: Deployment, reason: str, orphan: str | None) -> None:
        if orphan is not None:
            deployment.record_orphan(orphan)
        deployment.fail(reason, live_task_set_id=deployment.blue_task_set_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _restore_traffic(self, deployment: Deployment) -> None:
        blue_id = deployment.blue_task_set_id
        if blue_id is None:
            await self._router.clear(deployment.service_name)
            return

        current = await self._router.current(deployment.service_name)
        if current is not None and current.weights == {blue_id: 1.0}:
            logger.info("traffic_already_on_blue", blue_task_set_id=blue_id)
            return
        await self._call(
            "router.restore",
            lambda: self._router.shift(deployment.service_name, {blue_id: 1.0}),
        )

    async def _commit(
        self,
        deployment: Deployment,
        mutate: Callable[[Deployment], None],
    ) -> Deployment:
        """Apply ``mutate`` to a copy and persist it under the version check.

        On a conflict the record is reloaded. If the reload shows a cancel
        request that was not there before, the mutation is abandoned and the
        reloaded record is returned so the run loop acts on the cancel.
        """
        current = deployment
        for _ in range(MAX_CONFLICT_RETRIES):
            expected_version = current.version
            working = current.clone()
            mutate(working)
            events = working.collect_events()
            try:
                saved = await self._deployment_repo.update(working, expected_version)
            except ConflictError:
                reloaded = await self._reload(current)
                if reloaded.cancel_requested and not current.cancel_requested:
                    logger.info("transition_abandoned_for_cancel", state=reloaded.state.value)
                    return reloaded
                current = reloaded
                continue

            await self._publish(events)
            if saved.state != current.state:
                logger.info(
                    "deployment_state_changed",
                    from_state=current.state.value,
                    to_state=saved.state.value,
                )
            return saved

        raise ConflictError(
            f"Deployment {deployment.id} kept changing; transition not recorded"
        )

    async def _next_snapshot(
        self,
        deployment: Deployment,
        mailbox: SnapshotMailbox,
        timeout: float,
    ) -> tuple[HealthSnapshot | None, Deployment]:
        """Wait for the freshest snapshot, waking early on a cancel request.

        Returns the snapshot (None on timeout or cancel) and the reloaded
        deployment record.
        """
        getter = asyncio.ensure_future(mailbox.get(timeout))
        waiters: set[asyncio.Future[object]] = {getter}
        signal = self._cancel_signals.get(deployment.id)
        if signal is not None:
            waiters.add(asyncio.ensure_future(signal.wait()))
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        snapshot = getter.result() if getter.done() and not getter.cancelled() else None
        return snapshot, await self._reload(deployment)

    async def _pause(self, deployment: Deployment, seconds: float) -> Deployment:
        """Sleep up to ``seconds``; returns early with the reloaded record on cancel."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        signal = self._cancel_signals.setdefault(deployment.id, asyncio.Event())
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return deployment
            try:
                await asyncio.wait_for(
                    signal.wait(),
                    timeout=min(remaining, deployment.health_policy.probe_interval),
                )
            except asyncio.TimeoutError:
                pass
            deployment = await self._reload(deployment)
            if deployment.cancel_requested:
                return deployment

    async def _reload(self, deployment: Deployment) -> Deployment:
        fresh = await self._deployment_repo.get_by_id(deployment.id)
        if fresh is None:
            raise DeploymentNotFoundError(f"Deployment {deployment.id} not found")
        return fresh

    async def _call(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        return await call_with_retry(
            operation, func, self._retry_policy, on_retry=self._on_retry
        )

    @staticmethod
    def _green_of(deployment: Deployment) -> str:
        if deployment.green_task_set_id is None:
            raise BlueGreenError(
                f"Deployment {deployment.id} is {deployment.state.value} without a green task set"
            )
        return deployment.green_task_set_id

    async def _publish_events(self, aggregate: AggregateRoot) -> None:
        """Collect and publish all pending domain events from an aggregate."""
        await self._publish(aggregate.collect_events())

    async def _publish(self, events: list[DomainEvent]) -> None:
        for event in events:
            try:
                await self._event_publisher.publish(event.event_type, event.model_dump(mode="json"))
            except Exception:
                # State is already persisted; a lost notification must not stall the runner.
                logger.exception("event_publish_failed", event_type=event.event_type)
