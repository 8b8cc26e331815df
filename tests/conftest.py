"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import pytest

from bluegreen.config import Environment, Settings
from bluegreen.domain.models.health import HealthPolicy
from bluegreen.domain.services.deployment_controller import DeploymentController
from bluegreen.domain.services.retry import RetryPolicy
from bluegreen.infrastructure.locking.memory_lock import InMemoryDistributedLock
from bluegreen.infrastructure.messaging.event_publisher import InMemoryEventPublisher
from bluegreen.infrastructure.persistence.repositories.in_memory import (
    InMemoryDeploymentRepository,
)
from bluegreen.infrastructure.platform.simulated import (
    SimulatedContainerPlatform,
    SimulatedLoadBalancer,
)
from bluegreen.infrastructure.platform.task_set_manager import PlatformTaskSetManager
from bluegreen.infrastructure.platform.traffic_router import WeightedTrafficRouter
from bluegreen.workers.health_prober import HealthProber


InstallBlue = Callable[..., Awaitable[str]]


@pytest.fixture(autouse=True)
def clear_stores() -> None:
    """Clear in-memory stores before each test."""
    InMemoryDeploymentRepository.clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(environment=Environment.TESTING, debug=True)


@pytest.fixture
def fast_policy() -> HealthPolicy:
    return HealthPolicy(
        min_healthy_fraction=1.0,
        evaluation_window=2,
        probe_interval=0.01,
        probe_timeout=0.05,
        deployment_timeout=0.5,
        propagation_grace_period=0.02,
        post_shift_cycles=1,
    )


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(attempts=3, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def platform() -> SimulatedContainerPlatform:
    return SimulatedContainerPlatform(capacity=32)


@pytest.fixture
def load_balancer() -> SimulatedLoadBalancer:
    return SimulatedLoadBalancer()


@pytest.fixture
def task_sets(platform: SimulatedContainerPlatform) -> PlatformTaskSetManager:
    return PlatformTaskSetManager(platform, status_timeout=0.5)


@pytest.fixture
def router(
    task_sets: PlatformTaskSetManager, load_balancer: SimulatedLoadBalancer
) -> WeightedTrafficRouter:
    return WeightedTrafficRouter(task_sets, load_balancer)


@pytest.fixture
def prober(task_sets: PlatformTaskSetManager, fast_policy: HealthPolicy) -> HealthProber:
    return HealthProber(task_sets, default_policy=fast_policy)


@pytest.fixture
def deployment_repo() -> InMemoryDeploymentRepository:
    return InMemoryDeploymentRepository()


@pytest.fixture
def event_publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def lock_service() -> InMemoryDistributedLock:
    return InMemoryDistributedLock()


@pytest.fixture
def controller(
    deployment_repo: InMemoryDeploymentRepository,
    task_sets: PlatformTaskSetManager,
    router: WeightedTrafficRouter,
    prober: HealthProber,
    event_publisher: InMemoryEventPublisher,
    lock_service: InMemoryDistributedLock,
    retry_policy: RetryPolicy,
    fast_policy: HealthPolicy,
) -> DeploymentController:
    return DeploymentController(
        deployment_repo=deployment_repo,
        task_sets=task_sets,
        router=router,
        health=prober,
        event_publisher=event_publisher,
        lock_service=lock_service,
        retry_policy=retry_policy,
        default_policy=fast_policy,
        default_desired_count=2,
    )


@pytest.fixture
def install_blue(
    platform: SimulatedContainerPlatform, router: WeightedTrafficRouter
) -> InstallBlue:
    """Seed a running task set and route all of a service's traffic to it."""

    async def install(
        service_name: str = "checkout",
        image_ref: str = "registry.local/checkout:v1",
        count: int = 3,
    ) -> str:
        blue_id = platform.seed(f"ts-blue-{service_name}", service_name, image_ref, count)
        await router.shift(service_name, {blue_id: 1.0})
        return blue_id

    return install
