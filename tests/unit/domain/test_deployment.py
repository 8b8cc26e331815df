"""Unit tests for the Deployment aggregate and its state machine."""

from __future__ import annotations

from datetime import timedelta

import pytest

from bluegreen.domain.errors import CancellationRejectedError, InvalidStateTransitionError
from bluegreen.domain.models.deployment import (
    Deployment,
    DeploymentState,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
)
from bluegreen.domain.models.health import HealthPolicy


def _deployment(**kwargs: object) -> Deployment:
    return Deployment(service_name="checkout", target_image_ref="registry.local/checkout:v2", **kwargs)


def _awaiting_health() -> Deployment:
    d = _deployment()
    d.start_provisioning("ts-blue", 3)
    d.green_provisioned("ts-green")
    return d


class TestDeploymentDefaults:
    def test_starts_requested(self) -> None:
        d = _deployment()
        assert d.state == DeploymentState.REQUESTED
        assert d.version == 1
        assert not d.is_terminal
        assert d.state_sequence == [DeploymentState.REQUESTED]

    def test_mark_requested_emits_event(self) -> None:
        d = _deployment()
        d.mark_requested()
        events = d.collect_events()
        assert [e.event_type for e in events] == ["deployment.requested"]
        assert events[0].image_ref == "registry.local/checkout:v2"


class TestHappyPathTransitions:
    def test_full_sequence(self) -> None:
        d = _deployment()
        d.start_provisioning("ts-blue", 3)
        d.green_provisioned("ts-green")
        d.start_traffic_shift()
        d.start_post_shift_verification()
        d.start_draining_blue()
        d.complete()

        assert d.state == DeploymentState.COMPLETED
        assert d.is_terminal
        assert d.live_task_set_id == "ts-green"
        assert d.state_sequence == [
            DeploymentState.REQUESTED,
            DeploymentState.PROVISIONING_GREEN,
            DeploymentState.AWAITING_HEALTH,
            DeploymentState.SHIFTING_TRAFFIC,
            DeploymentState.POST_SHIFT_VERIFY,
            DeploymentState.DRAINING_BLUE,
            DeploymentState.COMPLETED,
        ]

    def test_provisioning_pins_blue_and_size(self) -> None:
        d = _deployment()
        d.start_provisioning("ts-blue", 4)
        assert d.blue_task_set_id == "ts-blue"
        assert d.desired_count == 4

    def test_traffic_shift_flag_set_before_shift(self) -> None:
        d = _awaiting_health()
        assert not d.traffic_shifted
        d.start_traffic_shift()
        assert d.traffic_shifted

    def test_every_transition_emits_state_changed(self) -> None:
        d = _awaiting_health()
        events = d.collect_events()
        assert [(e.from_state, e.to_state) for e in events] == [
            ("requested", "provisioning_green"),
            ("provisioning_green", "awaiting_health"),
        ]

    def test_every_transition_bumps_version(self) -> None:
        d = _deployment()
        d.start_provisioning(None, 2)
        assert d.version == 2

    def test_complete_event_carries_duration(self) -> None:
        d = _awaiting_health()
        d.created_at = d.created_at - timedelta(seconds=30)
        d.start_traffic_shift()
        d.start_post_shift_verification()
        d.start_draining_blue()
        d.collect_events()
        d.complete()
        completed = [e for e in d.collect_events() if e.event_type == "deployment.completed"]
        assert completed[0].duration_seconds >= 30


class TestRollbackAndFailure:
    def test_rollback_restores_blue_as_live(self) -> None:
        d = _awaiting_health()
        d.start_rollback("health timeout")
        d.complete_rollback()
        assert d.state == DeploymentState.ROLLED_BACK
        assert d.live_task_set_id == "ts-blue"
        assert d.rollback_reason == "health timeout"

    def test_fail_records_reason_and_live_set(self) -> None:
        d = _deployment()
        d.start_provisioning("ts-blue", 2)
        d.fail("CapacityError: no room", live_task_set_id="ts-blue")
        assert d.state == DeploymentState.FAILED
        assert d.failure_reason == "CapacityError: no room"
        assert d.live_task_set_id == "ts-blue"
        assert not d.degraded

    def test_degraded_failure_raises_alert(self) -> None:
        d = _awaiting_health()
        d.start_traffic_shift()
        d.start_rollback("regression")
        d.collect_events()
        d.fail("router down", live_task_set_id="ts-green", degraded=True)
        types = [e.event_type for e in d.collect_events()]
        assert "deployment.failed" in types
        assert "deployment.degraded_rollback" in types
        assert d.degraded

    def test_invalid_transition_raises(self) -> None:
        d = _deployment()
        with pytest.raises(InvalidStateTransitionError):
            d.start_traffic_shift()

    def test_draining_cannot_roll_back(self) -> None:
        d = _awaiting_health()
        d.start_traffic_shift()
        d.start_post_shift_verification()
        d.start_draining_blue()
        with pytest.raises(InvalidStateTransitionError):
            d.start_rollback("too late")

    def test_terminal_states_have_no_exits(self) -> None:
        for state in TERMINAL_STATES:
            assert VALID_TRANSITIONS[state] == set()

    def test_history_is_append_only(self) -> None:
        d = _awaiting_health()
        first = list(d.history)
        d.start_rollback("cancelled")
        assert d.history[: len(first)] == first
        assert d.history[-1].reason == "cancelled"


class TestCancellation:
    def test_request_cancel_sets_flag(self) -> None:
        d = _awaiting_health()
        assert d.request_cancel() is True
        assert d.cancel_requested
        events = d.collect_events()
        assert events[-1].event_type == "deployment.cancel_requested"
        assert events[-1].state == "awaiting_health"

    def test_second_cancel_is_noop(self) -> None:
        d = _awaiting_health()
        d.request_cancel()
        assert d.request_cancel() is False

    def test_cancel_during_rollback_is_noop(self) -> None:
        d = _awaiting_health()
        d.start_rollback("health timeout")
        assert d.request_cancel() is False
        assert not d.cancel_requested

    def test_cancel_while_draining_is_noop(self) -> None:
        d = _awaiting_health()
        d.start_traffic_shift()
        d.start_post_shift_verification()
        d.start_draining_blue()
        d.collect_events()
        assert d.request_cancel() is False
        assert not d.cancel_requested
        assert d.collect_events() == []
        d.complete()
        assert d.state == DeploymentState.COMPLETED

    def test_cancel_rejected_when_terminal(self) -> None:
        d = _deployment()
        d.fail("nope", live_task_set_id=None)
        with pytest.raises(CancellationRejectedError):
            d.request_cancel()


class TestOrphansAndBudget:
    def test_record_orphan_once(self) -> None:
        d = _deployment()
        d.record_orphan("ts-old")
        d.record_orphan("ts-old")
        assert d.orphaned_task_set_ids == ["ts-old"]

    def test_clear_orphan(self) -> None:
        d = _deployment()
        d.record_orphan("ts-a")
        d.record_orphan("ts-b")
        d.clear_orphan("ts-a")
        assert d.orphaned_task_set_ids == ["ts-b"]

    def test_remaining_budget_counts_from_state_entry(self) -> None:
        d = _deployment(health_policy=HealthPolicy(deployment_timeout=60.0, propagation_grace_period=5.0))
        later = d.state_entered_at + timedelta(seconds=45)
        assert d.remaining_budget(later) == pytest.approx(15.0)

    def test_each_health_gated_state_gets_the_full_budget(self) -> None:
        d = _deployment(health_policy=HealthPolicy(deployment_timeout=60.0, propagation_grace_period=5.0))
        d.start_provisioning("ts-blue", 3)
        d.green_provisioned("ts-green")
        awaiting_since = d.state_entered_at
        assert d.remaining_budget(awaiting_since + timedelta(seconds=50)) == pytest.approx(10.0)

        d.start_traffic_shift()
        d.start_post_shift_verification()
        assert d.remaining_budget(d.state_entered_at) == pytest.approx(60.0)
        assert d.state_entered_at >= awaiting_since

    def test_clone_is_detached(self) -> None:
        d = _awaiting_health()
        copy = d.clone()
        copy.record_orphan("ts-x")
        assert d.orphaned_task_set_ids == []
        assert copy.pending_events == []
