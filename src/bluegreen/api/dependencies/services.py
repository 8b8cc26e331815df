"""Service dependencies for FastAPI dependency injection."""

from __future__ import annotations

import redis.asyncio
import structlog

from bluegreen.config import (
    get_settings,
    LockBackend,
    ProbeMode,
    Settings,
    StoreBackend,
)
from bluegreen.domain.models.health import HealthPolicy
from bluegreen.domain.ports.repositories import DeploymentRepository
from bluegreen.domain.ports.services import DistributedLock, InstanceProbe
from bluegreen.domain.services.deployment_controller import DeploymentController
from bluegreen.domain.services.retry import RetryPolicy
from bluegreen.infrastructure.health.probes import HttpInstanceProbe, PlatformInstanceProbe
from bluegreen.infrastructure.locking.memory_lock import InMemoryDistributedLock
from bluegreen.infrastructure.locking.redis_lock import create_redis_client, RedisDistributedLock
from bluegreen.infrastructure.messaging.event_publisher import InMemoryEventPublisher
from bluegreen.infrastructure.observability.event_metrics import DeploymentMetricsRecorder
from bluegreen.infrastructure.observability.metrics import ACTIVE_DEPLOYMENTS
from bluegreen.infrastructure.persistence.database import DatabaseManager
from bluegreen.infrastructure.persistence.repositories import (
    InMemoryDeploymentRepository,
    PostgresDeploymentRepository,
)
from bluegreen.infrastructure.platform.simulated import (
    SimulatedContainerPlatform,
    SimulatedLoadBalancer,
)
from bluegreen.infrastructure.platform.task_set_manager import PlatformTaskSetManager
from bluegreen.infrastructure.platform.traffic_router import WeightedTrafficRouter
from bluegreen.workers.health_prober import HealthProber
from bluegreen.workers.orphan_sweeper import OrphanedTaskSetSweeper


logger = structlog.get_logger(__name__)


class ServiceContainer:
    """Simple dependency injection container.

    Implements the Composition Root pattern for assembling
    dependencies and managing their lifecycle.
    """

    _instance: ServiceContainer | None = None

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        controller_settings = self._settings.controller
        platform_settings = self._settings.platform

        self._event_publisher = InMemoryEventPublisher()
        self._metrics = DeploymentMetricsRecorder()
        self._metrics.register(self._event_publisher)

        self._platform = SimulatedContainerPlatform(
            capacity=platform_settings.capacity,
            startup_delay=platform_settings.startup_delay,
        )
        self._load_balancer = SimulatedLoadBalancer()
        self._task_sets = PlatformTaskSetManager(
            self._platform, status_timeout=controller_settings.status_timeout
        )
        self._router = WeightedTrafficRouter(self._task_sets, self._load_balancer)

        self._default_policy = HealthPolicy(
            min_healthy_fraction=controller_settings.min_healthy_fraction,
            evaluation_window=controller_settings.evaluation_window,
            probe_interval=controller_settings.probe_interval,
            probe_timeout=controller_settings.probe_timeout,
            deployment_timeout=controller_settings.deployment_timeout,
            propagation_grace_period=controller_settings.propagation_grace_period,
            post_shift_cycles=controller_settings.post_shift_cycles,
        )
        self._probe: InstanceProbe = (
            HttpInstanceProbe(liveness_path=platform_settings.liveness_path)
            if platform_settings.probe_mode == ProbeMode.HTTP
            else PlatformInstanceProbe()
        )
        self._prober = HealthProber(self._task_sets, self._probe, self._default_policy)

        # Backends selected by settings (lazy init)
        self._database: DatabaseManager | None = None
        self._redis_client: redis.asyncio.Redis | None = None
        self._deployment_repo: DeploymentRepository | None = None
        self._lock_service: DistributedLock | None = None
        self._controller: DeploymentController | None = None
        self._sweeper: OrphanedTaskSetSweeper | None = None

    @classmethod
    def get_instance(cls) -> ServiceContainer:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def event_publisher(self) -> InMemoryEventPublisher:
        return self._event_publisher

    @property
    def platform(self) -> SimulatedContainerPlatform:
        return self._platform

    @property
    def load_balancer(self) -> SimulatedLoadBalancer:
        return self._load_balancer

    @property
    def task_sets(self) -> PlatformTaskSetManager:
        return self._task_sets

    @property
    def router(self) -> WeightedTrafficRouter:
        return self._router

    @property
    def prober(self) -> HealthProber:
        return self._prober

    @property
    def database(self) -> DatabaseManager | None:
        return self._database

    @property
    def deployment_repo(self) -> DeploymentRepository:
        if self._deployment_repo is None:
            if self._settings.controller.store_backend == StoreBackend.POSTGRES:
                if self._database is None:
                    self._database = DatabaseManager(self._settings.database)
                self._deployment_repo = PostgresDeploymentRepository(self._database)
            else:
                self._deployment_repo = InMemoryDeploymentRepository()
        return self._deployment_repo

    @property
    def lock_service(self) -> DistributedLock:
        if self._lock_service is None:
            if self._settings.controller.lock_backend == LockBackend.REDIS:
                self._redis_client = create_redis_client(self._settings.redis)
                self._lock_service = RedisDistributedLock(self._redis_client)
            else:
                self._lock_service = InMemoryDistributedLock()
        return self._lock_service

    @property
    def controller(self) -> DeploymentController:
        if self._controller is None:
            settings = self._settings.controller
            self._controller = DeploymentController(
                deployment_repo=self.deployment_repo,
                task_sets=self._task_sets,
                router=self._router,
                health=self._prober,
                event_publisher=self._event_publisher,
                lock_service=self.lock_service,
                retry_policy=RetryPolicy(
                    attempts=settings.retry_attempts,
                    base_delay=settings.retry_base_delay,
                    max_delay=settings.retry_max_delay,
                ),
                default_policy=self._default_policy,
                default_desired_count=settings.default_desired_count,
                admission_lock_ttl=settings.admission_lock_ttl,
                on_retry=self._metrics.record_retry,
            )
        return self._controller

    @property
    def sweeper(self) -> OrphanedTaskSetSweeper:
        if self._sweeper is None:
            self._sweeper = OrphanedTaskSetSweeper(
                self.deployment_repo,
                self._task_sets,
                poll_interval=self._settings.controller.sweep_interval,
            )
        return self._sweeper

    async def startup(self) -> None:
        """Open backends, resume unfinished deployments and start the sweep."""
        repo = self.deployment_repo
        if self._database is not None:
            await self._database.initialize()
            await self._database.create_tables()

        controller = self.controller
        ACTIVE_DEPLOYMENTS.set_function(lambda: controller.active_count)
        resumed = await controller.resume_all()
        self.sweeper.spawn()
        logger.info(
            "services_started",
            store=type(repo).__name__,
            lock=type(self.lock_service).__name__,
            resumed=len(resumed),
        )

    async def shutdown(self) -> None:
        if self._sweeper is not None:
            await self._sweeper.stop()
        if self._controller is not None:
            await self._controller.shutdown()
        await self._prober.stop_all()
        if isinstance(self._probe, HttpInstanceProbe):
            await self._probe.close()
        if self._redis_client is not None:
            await self._redis_client.aclose()
        if self._database is not None:
            await self._database.close()
        logger.info("services_stopped")


def get_service_container() -> ServiceContainer:
    return ServiceContainer.get_instance()


def get_controller() -> DeploymentController:
    return ServiceContainer.get_instance().controller
