"""Unit tests for health policy, snapshot and traffic value objects."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from bluegreen.domain.models.health import HealthPolicy, HealthSnapshot
from bluegreen.domain.models.task_set import (
    idempotency_key_for,
    Instance,
    TaskSet,
    TaskSetLifecycle,
    TaskSetRole,
)
from bluegreen.domain.models.traffic import TrafficAssignment


def _snapshot(healthy: int, total: int, consecutive: int) -> HealthSnapshot:
    return HealthSnapshot(
        task_set_id="ts-green",
        healthy_count=healthy,
        total_count=total,
        expected_count=total,
        consecutive_success_cycles=consecutive,
    )


class TestHealthPolicy:
    def test_defaults(self) -> None:
        policy = HealthPolicy()
        assert policy.min_healthy_fraction == 1.0
        assert policy.evaluation_window == 3
        assert policy.post_shift_cycles == 1

    def test_fraction_bounds(self) -> None:
        with pytest.raises(ValidationError):
            HealthPolicy(min_healthy_fraction=0.0)
        with pytest.raises(ValidationError):
            HealthPolicy(min_healthy_fraction=1.5)

    def test_grace_must_fit_in_timeout(self) -> None:
        with pytest.raises(ValidationError):
            HealthPolicy(deployment_timeout=10.0, propagation_grace_period=10.0)

    def test_satisfied_after_window(self) -> None:
        policy = HealthPolicy(evaluation_window=3)
        assert not policy.is_satisfied_by(_snapshot(3, 3, 2))
        assert policy.is_satisfied_by(_snapshot(3, 3, 3))

    def test_fraction_threshold(self) -> None:
        policy = HealthPolicy(min_healthy_fraction=0.75, evaluation_window=1)
        assert not policy.is_satisfied_by(_snapshot(2, 3, 1))
        assert policy.is_satisfied_by(_snapshot(3, 4, 1))

    def test_empty_task_set_never_satisfies(self) -> None:
        policy = HealthPolicy(evaluation_window=1)
        assert not policy.is_satisfied_by(_snapshot(0, 0, 5))

    def test_cycle_is_healthy(self) -> None:
        policy = HealthPolicy()
        assert policy.cycle_is_healthy(_snapshot(3, 3, 1))
        assert not policy.cycle_is_healthy(_snapshot(3, 3, 0))
        assert not policy.cycle_is_healthy(_snapshot(2, 3, 1))

    def test_immutable(self) -> None:
        policy = HealthPolicy()
        with pytest.raises(ValidationError):
            policy.evaluation_window = 10  # type: ignore[misc]


class TestHealthSnapshot:
    def test_fraction(self) -> None:
        assert _snapshot(2, 4, 0).healthy_fraction == 0.5
        assert _snapshot(0, 0, 0).healthy_fraction == 0.0

    def test_all_expected_healthy(self) -> None:
        assert _snapshot(3, 3, 1).all_expected_healthy
        assert not _snapshot(2, 3, 1).all_expected_healthy


class TestTrafficAssignment:
    def test_fractions(self) -> None:
        assignment = TrafficAssignment(service_name="checkout", weights={"a": 0.25, "b": 0.75})
        assert assignment.primary_task_set_id == "b"
        assert assignment.weight_of("a") == 0.25
        assert assignment.weight_of("missing") == 0.0

    def test_percentages_normalized(self) -> None:
        assignment = TrafficAssignment(service_name="checkout", weights={"a": 10, "b": 90})
        assert assignment.weights == pytest.approx({"a": 0.1, "b": 0.9})

    @pytest.mark.parametrize(
        "weights",
        [{}, {"a": 0.5}, {"a": 0.5, "b": 0.6}, {"a": 1.0, "b": 0.0}, {"a": -0.5, "b": 1.5}],
    )
    def test_invalid_weights(self, weights: dict[str, float]) -> None:
        with pytest.raises(ValidationError):
            TrafficAssignment(service_name="checkout", weights=weights)


class TestTaskSet:
    def test_running_instances(self) -> None:
        task_set = TaskSet(
            id="ts-1",
            service_name="checkout",
            image_ref="registry.local/checkout:v1",
            desired_count=2,
            lifecycle_state=TaskSetLifecycle.STEADY,
            instances=[
                Instance(instance_id="i-0", running=True, healthy=True),
                Instance(instance_id="i-1", running=False),
            ],
        )
        assert [i.instance_id for i in task_set.running_instances] == ["i-0"]
        assert task_set.is_live
        assert not task_set.is_terminated

    def test_zero_desired_is_not_live(self) -> None:
        task_set = TaskSet(
            service_name="checkout",
            image_ref="img",
            desired_count=0,
            lifecycle_state=TaskSetLifecycle.STEADY,
        )
        assert not task_set.is_live

    def test_idempotency_key(self) -> None:
        assert idempotency_key_for("dep-1", TaskSetRole.GREEN) == "dep-1:green"
