"""Unit tests for the HTTP API."""

from __future__ import annotations

import time
from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from bluegreen.api.app import create_app
from bluegreen.api.dependencies.services import ServiceContainer
from bluegreen.config import ControllerSettings, Environment, Settings
from bluegreen.domain.errors import ConflictError


PREFIX = "/api/v1"
IMAGE = "registry.local/checkout:v2"
TERMINAL = {"completed", "rolled_back", "failed"}


@pytest.fixture
def api_settings() -> Settings:
    return Settings(
        environment=Environment.TESTING,
        debug=True,
        controller=ControllerSettings(
            evaluation_window=1,
            probe_interval=0.01,
            probe_timeout=0.05,
            deployment_timeout=2.0,
            propagation_grace_period=0.0,
            retry_base_delay=0.0,
            retry_max_delay=0.0,
            sweep_interval=0.05,
        ),
    )


@pytest.fixture
def container(api_settings: Settings) -> Iterator[ServiceContainer]:
    ServiceContainer.reset()
    ServiceContainer._instance = ServiceContainer(api_settings)
    yield ServiceContainer.get_instance()
    ServiceContainer.reset()


@pytest.fixture
def client(api_settings: Settings, container: ServiceContainer) -> Iterator[TestClient]:
    with TestClient(create_app(api_settings)) as test_client:
        yield test_client


def _create(client: TestClient, **body: Any) -> dict[str, Any]:
    response = client.post(
        f"{PREFIX}/deployments", json={"service_name": "checkout", "image_ref": IMAGE, **body}
    )
    assert response.status_code == 202, response.text
    return response.json()


def _poll(
    client: TestClient, deployment_id: str, states: set[str], timeout: float = 5.0
) -> dict[str, Any]:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"{PREFIX}/deployments/{deployment_id}").json()
        if body["state"] in states:
            return body
        if time.monotonic() > deadline:
            raise AssertionError(f"deployment stayed in {body['state']}")
        time.sleep(0.01)


class TestDeploymentRoutes:
    def test_deployment_completes(self, client: TestClient) -> None:
        accepted = _create(client, desired_count=2)
        assert accepted["state"] == "requested"

        body = _poll(client, accepted["id"], TERMINAL)
        assert body["state"] == "completed"
        assert body["live_task_set_id"] == body["green_task_set_id"]
        assert [h["to_state"] for h in body["history"]][-1] == "completed"

        traffic = client.get(f"{PREFIX}/services/checkout/traffic").json()
        assert traffic["weights"] == {body["green_task_set_id"]: 1.0}

        task_set = client.get(f"{PREFIX}/task-sets/{body['green_task_set_id']}").json()
        assert task_set["lifecycle_state"] == "steady"
        assert task_set["observed_healthy_count"] == 2

    def test_conflict_then_cancel(self, client: TestClient, container: ServiceContainer) -> None:
        container.platform.set_image_health(IMAGE, 0)
        accepted = _create(client)
        _poll(client, accepted["id"], {"awaiting_health"})

        second = client.post(
            f"{PREFIX}/deployments",
            json={"service_name": "checkout", "image_ref": "registry.local/checkout:v3"},
        )
        assert second.status_code == 409

        cancelled = client.post(f"{PREFIX}/deployments/{accepted['id']}/cancel")
        assert cancelled.status_code == 202
        assert cancelled.json()["cancel_requested"] is True

        body = _poll(client, accepted["id"], TERMINAL)
        assert body["state"] == "rolled_back"
        assert body["rollback_reason"] == "cancelled by operator"

        rejected = client.post(f"{PREFIX}/deployments/{accepted['id']}/cancel")
        assert rejected.status_code == 409

    def test_cancel_under_write_contention_is_retryable(
        self,
        client: TestClient,
        container: ServiceContainer,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def contended(deployment_id: str) -> None:
            raise ConflictError(f"Deployment {deployment_id} kept changing; cancel not recorded")

        monkeypatch.setattr(container.controller, "cancel", contended)

        response = client.post(f"{PREFIX}/deployments/some-id/cancel")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert "kept changing" not in response.json()["detail"]

    def test_policy_overrides_applied(self, client: TestClient) -> None:
        accepted = _create(client, health_policy={"evaluation_window": 2})
        body = client.get(f"{PREFIX}/deployments/{accepted['id']}").json()
        assert body["health_policy"]["evaluation_window"] == 2
        assert body["health_policy"]["probe_interval"] == 0.01
        _poll(client, accepted["id"], TERMINAL)

    def test_inconsistent_policy_rejected(self, client: TestClient) -> None:
        response = client.post(
            f"{PREFIX}/deployments",
            json={
                "service_name": "checkout",
                "image_ref": IMAGE,
                "health_policy": {"deployment_timeout": 1.0, "propagation_grace_period": 5.0},
            },
        )
        assert response.status_code == 422

    @pytest.mark.parametrize(
        "body",
        [
            {"service_name": "", "image_ref": IMAGE},
            {"service_name": "bad name!", "image_ref": IMAGE},
            {"service_name": "checkout"},
            {"service_name": "checkout", "image_ref": IMAGE, "desired_count": 0},
            {
                "service_name": "checkout",
                "image_ref": IMAGE,
                "health_policy": {"min_healthy_fraction": 2},
            },
        ],
    )
    def test_invalid_request(self, client: TestClient, body: dict[str, Any]) -> None:
        assert client.post(f"{PREFIX}/deployments", json=body).status_code == 422

    def test_list(self, client: TestClient) -> None:
        accepted = _create(client)
        _poll(client, accepted["id"], TERMINAL)
        _create(client, image_ref="registry.local/checkout:v3")

        listed = client.get(f"{PREFIX}/deployments", params={"service_name": "checkout"}).json()
        assert listed["total"] == 2
        active = client.get(f"{PREFIX}/deployments", params={"active_only": True}).json()
        assert active["total"] <= 1

    def test_not_found(self, client: TestClient) -> None:
        assert client.get(f"{PREFIX}/deployments/missing").status_code == 404
        assert client.post(f"{PREFIX}/deployments/missing/cancel").status_code == 404
        assert client.get(f"{PREFIX}/services/unknown/traffic").status_code == 404
        assert client.get(f"{PREFIX}/task-sets/ts-missing").status_code == 404


class TestHealthRoutes:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json()["status"] == "healthy"
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_readiness(self, client: TestClient) -> None:
        body = client.get("/health/ready").json()
        assert body["status"] == "ready"
        assert body["checks"] == {"database": "in-memory", "lock": "ok"}
        assert body["sweeper"]["worker_id"] == "orphan-sweeper"

    def test_metrics(self, client: TestClient) -> None:
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "bluegreen_active_deployments" in response.text

    def test_correlation_header(self, client: TestClient) -> None:
        response = client.get("/health", headers={"X-Correlation-ID": "req-1"})
        assert response.headers["X-Correlation-ID"] == "req-1"
