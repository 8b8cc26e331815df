"""Health policy and health snapshot value objects."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, model_validator

from bluegreen.domain.models.base import utc_now, ValueObject


class HealthPolicy(ValueObject):
    """What fraction of instances, over how many probe cycles, counts as healthy.

    Durations are in seconds.
    """

    min_healthy_fraction: float = Field(default=1.0, gt=0.0, le=1.0)
    evaluation_window: int = Field(default=3, ge=1)
    probe_interval: float = Field(default=5.0, gt=0.0)
    probe_timeout: float = Field(default=2.0, gt=0.0)
    deployment_timeout: float = Field(default=600.0, gt=0.0)
    propagation_grace_period: float = Field(default=15.0, ge=0.0)
    post_shift_cycles: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _grace_fits_budget(self) -> HealthPolicy:
        if self.propagation_grace_period >= self.deployment_timeout:
            raise ValueError(
                "propagation_grace_period must be shorter than deployment_timeout"
            )
        return self

    def is_satisfied_by(self, snapshot: HealthSnapshot) -> bool:
        """Threshold for leaving AWAITING_HEALTH."""
        return (
            snapshot.consecutive_success_cycles >= self.evaluation_window
            and snapshot.total_count > 0
            and snapshot.healthy_fraction >= self.min_healthy_fraction
        )

    def cycle_is_healthy(self, snapshot: HealthSnapshot) -> bool:
        """Whether the single cycle behind ``snapshot`` passed."""
        return (
            snapshot.consecutive_success_cycles > 0
            and snapshot.total_count > 0
            and snapshot.healthy_fraction >= self.min_healthy_fraction
        )


class HealthSnapshot(ValueObject):
    """Result of one probe cycle over every instance of a task set."""

    task_set_id: str
    healthy_count: int = 0
    total_count: int = 0
    expected_count: int = 0
    consecutive_success_cycles: int = 0
    cycle: int = 0
    observed_at: datetime = Field(default_factory=utc_now)

    @property
    def healthy_fraction(self) -> float:
        if self.total_count == 0:
            return 0.0
        return self.healthy_count / self.total_count

    @property
    def all_expected_healthy(self) -> bool:
        return self.expected_count > 0 and self.healthy_count >= self.expected_count
