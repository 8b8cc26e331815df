"""Deployment aggregate root with the blue/green state machine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from bluegreen.domain.errors import CancellationRejectedError, InvalidStateTransitionError
from bluegreen.domain.events.deployment_events import (
    DegradedRollbackAlert,
    DeploymentCancelRequested,
    DeploymentCompleted,
    DeploymentFailed,
    DeploymentRequested,
    DeploymentRolledBack,
    DeploymentStateChanged,
)
from bluegreen.domain.models.base import AggregateRoot, utc_now, ValueObject
from bluegreen.domain.models.health import HealthPolicy


class DeploymentState(str, Enum):
    """Deployment lifecycle states."""

    REQUESTED = "requested"
    PROVISIONING_GREEN = "provisioning_green"
    AWAITING_HEALTH = "awaiting_health"
    SHIFTING_TRAFFIC = "shifting_traffic"
    POST_SHIFT_VERIFY = "post_shift_verify"
    DRAINING_BLUE = "draining_blue"
    ROLLING_BACK = "rolling_back"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


TERMINAL_STATES: frozenset[DeploymentState] = frozenset({
    DeploymentState.COMPLETED,
    DeploymentState.ROLLED_BACK,
    DeploymentState.FAILED,
})

# State machine transitions
VALID_TRANSITIONS: dict[DeploymentState, set[DeploymentState]] = {
    DeploymentState.REQUESTED: {DeploymentState.PROVISIONING_GREEN, DeploymentState.FAILED},
    DeploymentState.PROVISIONING_GREEN: {
        DeploymentState.AWAITING_HEALTH, DeploymentState.FAILED,
    },
    DeploymentState.AWAITING_HEALTH: {
        DeploymentState.SHIFTING_TRAFFIC, DeploymentState.ROLLING_BACK,
    },
    DeploymentState.SHIFTING_TRAFFIC: {
        DeploymentState.POST_SHIFT_VERIFY, DeploymentState.ROLLING_BACK,
    },
    DeploymentState.POST_SHIFT_VERIFY: {
        DeploymentState.DRAINING_BLUE, DeploymentState.ROLLING_BACK,
    },
    DeploymentState.DRAINING_BLUE: {DeploymentState.COMPLETED},
    DeploymentState.ROLLING_BACK: {DeploymentState.ROLLED_BACK, DeploymentState.FAILED},
    DeploymentState.COMPLETED: set(),
    DeploymentState.ROLLED_BACK: set(),
    DeploymentState.FAILED: set(),
}

# A cancel request in one of these states turns into a rollback.
ROLLBACK_ON_CANCEL: frozenset[DeploymentState] = frozenset({
    DeploymentState.AWAITING_HEALTH,
    DeploymentState.SHIFTING_TRAFFIC,
    DeploymentState.POST_SHIFT_VERIFY,
})

# A cancel request in one of these states is accepted and ignored.
CANCEL_IGNORED_STATES: frozenset[DeploymentState] = frozenset({
    DeploymentState.DRAINING_BLUE,
    DeploymentState.ROLLING_BACK,
})


class StateTransition(ValueObject):
    """One entry of the deployment's audit trail."""

    from_state: DeploymentState
    to_state: DeploymentState
    reason: str = ""
    at: datetime = Field(default_factory=utc_now)


class Deployment(AggregateRoot):
    """One attempt to move a service from its live revision to ``target_image_ref``."""

    service_name: str
    target_image_ref: str
    state: DeploymentState = DeploymentState.REQUESTED
    blue_task_set_id: str | None = None
    green_task_set_id: str | None = None
    desired_count: int = 0
    health_policy: HealthPolicy = Field(default_factory=HealthPolicy)
    state_entered_at: datetime = Field(default_factory=utc_now)
    failure_reason: str = ""
    rollback_reason: str = ""
    live_task_set_id: str | None = None
    traffic_shifted: bool = False
    cancel_requested: bool = False
    degraded: bool = False
    orphaned_task_set_ids: list[str] = Field(default_factory=list)
    history: list[StateTransition] = Field(default_factory=list)

    def _transition_to(self, new_state: DeploymentState, reason: str = "") -> None:
        """Validate and execute state transition."""
        valid = VALID_TRANSITIONS.get(self.state, set())
        if new_state not in valid:
            raise InvalidStateTransitionError(
                f"Cannot transition from {self.state.value} to {new_state.value}. "
                f"Valid transitions: {sorted(s.value for s in valid)}"
            )
        previous = self.state
        now = utc_now()
        self.history = [
            *self.history,
            StateTransition(from_state=previous, to_state=new_state, reason=reason, at=now),
        ]
        self.state = new_state
        self.state_entered_at = now
        self.touch()
        self.add_event(DeploymentStateChanged(
            deployment_id=self.id,
            service_name=self.service_name,
            from_state=previous.value,
            to_state=new_state.value,
            reason=reason,
            correlation_id=self.id,
        ))

    def mark_requested(self) -> None:
        """Record acceptance of the request."""
        self.add_event(DeploymentRequested(
            deployment_id=self.id,
            service_name=self.service_name,
            image_ref=self.target_image_ref,
            correlation_id=self.id,
        ))

    def start_provisioning(self, blue_task_set_id: str | None, desired_count: int) -> None:
        """Pin the live blue set and the green size, then provision green."""
        self.blue_task_set_id = blue_task_set_id
        self.desired_count = desired_count
        self._transition_to(DeploymentState.PROVISIONING_GREEN)

    def green_provisioned(self, green_task_set_id: str) -> None:
        self.green_task_set_id = green_task_set_id
        self._transition_to(DeploymentState.AWAITING_HEALTH)

    def start_traffic_shift(self) -> None:
        # Flagged before the router is called: a crash mid-shift must still restore blue.
        self.traffic_shifted = True
        self._transition_to(DeploymentState.SHIFTING_TRAFFIC)

    def start_post_shift_verification(self) -> None:
        self._transition_to(DeploymentState.POST_SHIFT_VERIFY)

    def start_draining_blue(self) -> None:
        self._transition_to(DeploymentState.DRAINING_BLUE)

    def complete(self) -> None:
        """Green is live and proven; blue retired (or left to the sweep)."""
        self.live_task_set_id = self.green_task_set_id
        self._transition_to(DeploymentState.COMPLETED)
        self.add_event(DeploymentCompleted(
            deployment_id=self.id,
            service_name=self.service_name,
            live_task_set_id=self.green_task_set_id or "",
            duration_seconds=self.age_seconds(),
            correlation_id=self.id,
        ))

    def start_rollback(self, reason: str) -> None:
        self.rollback_reason = reason
        self._transition_to(DeploymentState.ROLLING_BACK, reason=reason)

    def complete_rollback(self) -> None:
        self.live_task_set_id = self.blue_task_set_id
        self._transition_to(DeploymentState.ROLLED_BACK, reason=self.rollback_reason)
        self.add_event(DeploymentRolledBack(
            deployment_id=self.id,
            service_name=self.service_name,
            reason=self.rollback_reason,
            live_task_set_id=self.blue_task_set_id,
            duration_seconds=self.age_seconds(),
            correlation_id=self.id,
        ))

    def fail(
        self,
        reason: str,
        live_task_set_id: str | None,
        degraded: bool = False,
    ) -> None:
        """Mark the deployment as failed, naming whichever task set is still live."""
        self.failure_reason = reason
        self.live_task_set_id = live_task_set_id
        self.degraded = degraded
        self._transition_to(DeploymentState.FAILED, reason=reason)
        self.add_event(DeploymentFailed(
            deployment_id=self.id,
            service_name=self.service_name,
            failure_reason=reason,
            live_task_set_id=live_task_set_id,
            degraded=degraded,
            duration_seconds=self.age_seconds(),
            correlation_id=self.id,
        ))
        if degraded:
            self.add_event(DegradedRollbackAlert(
                deployment_id=self.id,
                service_name=self.service_name,
                blue_task_set_id=self.blue_task_set_id,
                green_task_set_id=self.green_task_set_id,
                failure_reason=reason,
                correlation_id=self.id,
            ))

    def request_cancel(self) -> bool:
        """Flag the deployment for cancellation.

        Returns False when the request is a no-op: already cancelling, already
        rolling back, or draining blue (which always runs on to COMPLETED).
        """
        if self.is_terminal:
            raise CancellationRejectedError(
                f"Deployment {self.id} is already {self.state.value}"
            )
        if self.cancel_requested or self.state in CANCEL_IGNORED_STATES:
            return False
        self.cancel_requested = True
        self.touch()
        self.add_event(DeploymentCancelRequested(
            deployment_id=self.id,
            state=self.state.value,
            correlation_id=self.id,
        ))
        return True

    def record_orphan(self, task_set_id: str) -> None:
        """Remember a task set whose termination failed, for the background sweep."""
        if task_set_id not in self.orphaned_task_set_ids:
            self.orphaned_task_set_ids = [*self.orphaned_task_set_ids, task_set_id]
            self.touch()

    def clear_orphan(self, task_set_id: str) -> None:
        if task_set_id in self.orphaned_task_set_ids:
            self.orphaned_task_set_ids = [
                t for t in self.orphaned_task_set_ids if t != task_set_id
            ]
            self.touch()

    def age_seconds(self, now: datetime | None = None) -> float:
        """Seconds since the deployment was requested."""
        return ((now or utc_now()) - self.created_at).total_seconds()

    def seconds_in_state(self, now: datetime | None = None) -> float:
        return ((now or utc_now()) - self.state_entered_at).total_seconds()

    def remaining_budget(self, now: datetime | None = None) -> float:
        """Seconds left of ``deployment_timeout`` for the current state."""
        return self.health_policy.deployment_timeout - self.seconds_in_state(now)

    @property
    def is_terminal(self) -> bool:
        """Check if deployment is in a terminal state."""
        return self.state in TERMINAL_STATES

    @property
    def state_sequence(self) -> list[DeploymentState]:
        """States visited so far, starting from REQUESTED."""
        return [DeploymentState.REQUESTED, *(t.to_state for t in self.history)]
