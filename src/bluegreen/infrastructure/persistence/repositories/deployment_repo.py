"""Deployment repository implementation."""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from bluegreen.domain.errors import (
    ConflictError,
    DeploymentConflictError,
    DeploymentNotFoundError,
)
from bluegreen.domain.models.deployment import (
    Deployment,
    DeploymentState,
    StateTransition,
    TERMINAL_STATES,
)
from bluegreen.domain.models.health import HealthPolicy
from bluegreen.domain.ports.repositories import DeploymentRepository
from bluegreen.infrastructure.persistence.database import DatabaseManager
from bluegreen.infrastructure.persistence.models import DeploymentORM


_TERMINAL_VALUES = [s.value for s in TERMINAL_STATES]


class PostgresDeploymentRepository(DeploymentRepository):
    """PostgreSQL implementation of DeploymentRepository.

    Each call runs in its own short session; the controller holds records
    across long waits and must not pin a connection while doing so.
    """

    def __init__(self, database: DatabaseManager) -> None:
        self._database = database

    async def save(self, deployment: Deployment) -> Deployment:
        try:
            async with self._database.session() as session:
                session.add(self._to_orm(deployment))
                await session.flush()
        except IntegrityError as e:
            raise DeploymentConflictError(
                f"A non-terminal deployment of {deployment.service_name} already exists"
            ) from e
        return deployment.clone()

    async def get_by_id(self, deployment_id: str) -> Deployment | None:
        async with self._database.session() as session:
            result = await session.execute(
                select(DeploymentORM).where(DeploymentORM.id == deployment_id)
            )
            orm = result.scalar_one_or_none()
            return self._to_domain(orm) if orm else None

    async def update(self, deployment: Deployment, expected_version: int) -> Deployment:
        values = self._mutable_columns(deployment)
        values["version"] = expected_version + 1

        async with self._database.session() as session:
            result = await session.execute(
                update(DeploymentORM)
                .where(DeploymentORM.id == deployment.id)
                .where(DeploymentORM.version == expected_version)
                .values(**values)
            )
            if result.rowcount == 0:
                exists = await session.execute(
                    select(DeploymentORM.version).where(DeploymentORM.id == deployment.id)
                )
                stored_version = exists.scalar_one_or_none()
                if stored_version is None:
                    raise DeploymentNotFoundError(f"Deployment {deployment.id} not found")
                raise ConflictError(
                    f"Deployment {deployment.id} is at version {stored_version}, "
                    f"expected {expected_version}"
                )

        updated = deployment.clone()
        updated.version = expected_version + 1
        return updated

    async def get_active_for_service(self, service_name: str) -> Deployment | None:
        async with self._database.session() as session:
            result = await session.execute(
                select(DeploymentORM)
                .where(DeploymentORM.service_name == service_name)
                .where(DeploymentORM.state.notin_(_TERMINAL_VALUES))
                .limit(1)
            )
            orm = result.scalar_one_or_none()
            return self._to_domain(orm) if orm else None

    async def list_active(self, limit: int = 100) -> list[Deployment]:
        async with self._database.session() as session:
            result = await session.execute(
                select(DeploymentORM)
                .where(DeploymentORM.state.notin_(_TERMINAL_VALUES))
                .order_by(DeploymentORM.created_at.asc())
                .limit(limit)
            )
            return [self._to_domain(orm) for orm in result.scalars().all()]

    async def list_deployments(
        self,
        service_name: str | None = None,
        active_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Deployment]:
        query = select(DeploymentORM)
        if service_name is not None:
            query = query.where(DeploymentORM.service_name == service_name)
        if active_only:
            query = query.where(DeploymentORM.state.notin_(_TERMINAL_VALUES))

        async with self._database.session() as session:
            result = await session.execute(
                query.order_by(DeploymentORM.created_at.desc()).limit(limit).offset(offset)
            )
            return [self._to_domain(orm) for orm in result.scalars().all()]

    async def list_with_orphans(self, limit: int = 50) -> list[Deployment]:
        async with self._database.session() as session:
            result = await session.execute(
                select(DeploymentORM)
                .where(DeploymentORM.state.in_(_TERMINAL_VALUES))
                .where(func.jsonb_array_length(DeploymentORM.orphaned_task_set_ids) > 0)
                .order_by(DeploymentORM.updated_at.asc())
                .limit(limit)
            )
            return [self._to_domain(orm) for orm in result.scalars().all()]

    @staticmethod
    def _mutable_columns(deployment: Deployment) -> dict[str, Any]:
        return {
            "state": deployment.state.value,
            "blue_task_set_id": deployment.blue_task_set_id,
            "green_task_set_id": deployment.green_task_set_id,
            "desired_count": deployment.desired_count,
            "health_policy_data": deployment.health_policy.model_dump(mode="json"),
            "state_entered_at": deployment.state_entered_at,
            "failure_reason": deployment.failure_reason,
            "rollback_reason": deployment.rollback_reason,
            "live_task_set_id": deployment.live_task_set_id,
            "traffic_shifted": deployment.traffic_shifted,
            "cancel_requested": deployment.cancel_requested,
            "degraded": deployment.degraded,
            "orphaned_task_set_ids": list(deployment.orphaned_task_set_ids),
            "history_data": [t.model_dump(mode="json") for t in deployment.history],
            "updated_at": deployment.updated_at,
        }

    def _to_orm(self, deployment: Deployment) -> DeploymentORM:
        return DeploymentORM(
            id=deployment.id,
            service_name=deployment.service_name,
            target_image_ref=deployment.target_image_ref,
            version=deployment.version,
            created_at=deployment.created_at,
            **self._mutable_columns(deployment),
        )

    def _to_domain(self, orm: DeploymentORM) -> Deployment:
        return Deployment(
            id=orm.id,
            service_name=orm.service_name,
            target_image_ref=orm.target_image_ref,
            state=DeploymentState(orm.state),
            blue_task_set_id=orm.blue_task_set_id,
            green_task_set_id=orm.green_task_set_id,
            desired_count=orm.desired_count,
            health_policy=HealthPolicy.model_validate(orm.health_policy_data),
            state_entered_at=orm.state_entered_at,
            failure_reason=orm.failure_reason or "",
            rollback_reason=orm.rollback_reason or "",
            live_task_set_id=orm.live_task_set_id,
            traffic_shifted=orm.traffic_shifted,
            cancel_requested=orm.cancel_requested,
            degraded=orm.degraded,
            orphaned_task_set_ids=list(orm.orphaned_task_set_ids or []),
            history=[StateTransition.model_validate(h) for h in orm.history_data or []],
            version=orm.version,
            created_at=orm.created_at,
            updated_at=orm.updated_at,
        )
