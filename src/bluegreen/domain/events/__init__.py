"""Domain events package."""

import bluegreen.domain.models  # noqa: F401  (load models first to avoid a circular import)
from bluegreen.domain.events.deployment_events import (
    DegradedRollbackAlert,
    DeploymentCancelRequested,
    DeploymentCompleted,
    DeploymentFailed,
    DeploymentRequested,
    DeploymentRolledBack,
    DeploymentStateChanged,
)


__all__ = [
    "DegradedRollbackAlert",
    "DeploymentCancelRequested",
    "DeploymentCompleted",
    "DeploymentFailed",
    "DeploymentRequested",
    "DeploymentRolledBack",
    "DeploymentStateChanged",
]
