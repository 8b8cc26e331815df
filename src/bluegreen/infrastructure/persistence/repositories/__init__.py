"""Repository implementations."""

from bluegreen.infrastructure.persistence.repositories.deployment_repo import (
    PostgresDeploymentRepository,
)
from bluegreen.infrastructure.persistence.repositories.in_memory import (
    InMemoryDeploymentRepository,
)


__all__ = [
    "InMemoryDeploymentRepository",
    "PostgresDeploymentRepository",
]
