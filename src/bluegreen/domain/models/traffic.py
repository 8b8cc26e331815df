"""Traffic assignment value object."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from pydantic import Field, model_validator

from bluegreen.domain.models.base import utc_now, ValueObject


class TrafficAssignment(ValueObject):
    """Weighted mapping of one service onto its task sets.

    Weights are stored as fractions summing to 1.0; percentages summing to
    100 are accepted and normalized.
    """

    service_name: str
    weights: dict[str, float]
    revision: int = 1
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="before")
    @classmethod
    def _normalize_weights(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        weights = data.get("weights") or {}
        if not weights:
            raise ValueError("weight map must reference at least one task set")
        if any(w <= 0 for w in weights.values()):
            raise ValueError("weights must be positive")
        total = sum(weights.values())
        if math.isclose(total, 100.0, abs_tol=1e-6):
            weights = {k: v / 100.0 for k, v in weights.items()}
        elif not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"weights must sum to 1.0 or 100, got {total}")
        return {**data, "weights": dict(weights)}

    @property
    def primary_task_set_id(self) -> str:
        """Task set receiving the largest share of traffic."""
        return max(self.weights.items(), key=lambda item: item[1])[0]

    def weight_of(self, task_set_id: str) -> float:
        return self.weights.get(task_set_id, 0.0)
