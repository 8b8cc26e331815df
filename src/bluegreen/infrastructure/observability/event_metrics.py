"""Prometheus metrics fed from deployment domain events."""

from __future__ import annotations

from typing import Any

from bluegreen.infrastructure.messaging.event_publisher import InMemoryEventPublisher
from bluegreen.infrastructure.observability.metrics import (
    DEGRADED_ROLLBACKS_TOTAL,
    DEPLOYMENT_DURATION,
    DEPLOYMENTS_TOTAL,
    EXTERNAL_CALL_RETRIES,
    STATE_TRANSITIONS_TOTAL,
)


_OUTCOMES = {
    "deployment.completed": "completed",
    "deployment.rolled_back": "rolled_back",
    "deployment.failed": "failed",
}


class DeploymentMetricsRecorder:
    """Subscribes to the event bus and keeps the deployment metrics current."""

    def register(self, publisher: InMemoryEventPublisher) -> None:
        publisher.subscribe("deployment.state_changed", self._on_state_changed)
        publisher.subscribe("deployment.degraded_rollback", self._on_degraded)
        for event_type in _OUTCOMES:
            publisher.subscribe(event_type, self._on_finished)

    async def _on_state_changed(self, payload: dict[str, Any]) -> None:
        STATE_TRANSITIONS_TOTAL.labels(
            from_state=payload["from_state"], to_state=payload["to_state"]
        ).inc()

    async def _on_finished(self, payload: dict[str, Any]) -> None:
        outcome = _OUTCOMES[payload["event_type"]]
        DEPLOYMENTS_TOTAL.labels(outcome=outcome).inc()
        DEPLOYMENT_DURATION.labels(outcome=outcome).observe(payload.get("duration_seconds", 0.0))

    async def _on_degraded(self, payload: dict[str, Any]) -> None:
        DEGRADED_ROLLBACKS_TOTAL.inc()

    @staticmethod
    def record_retry(operation: str) -> None:
        EXTERNAL_CALL_RETRIES.labels(operation=operation).inc()
