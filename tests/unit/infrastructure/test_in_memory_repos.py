"""Unit tests for the in-memory deployment repository."""

from __future__ import annotations

import pytest

from bluegreen.domain.errors import (
    ConflictError,
    DeploymentConflictError,
    DeploymentNotFoundError,
)
from bluegreen.domain.models.deployment import Deployment, DeploymentState
from bluegreen.infrastructure.persistence.repositories.in_memory import (
    InMemoryDeploymentRepository,
)


def _deployment(service_name: str = "checkout") -> Deployment:
    return Deployment(service_name=service_name, target_image_ref="registry.local/app:v2")


class TestInMemoryDeploymentRepository:
    @pytest.mark.asyncio
    async def test_save_and_get(self, deployment_repo: InMemoryDeploymentRepository) -> None:
        d = _deployment()
        await deployment_repo.save(d)
        found = await deployment_repo.get_by_id(d.id)
        assert found is not None
        assert found.service_name == "checkout"

    @pytest.mark.asyncio
    async def test_get_missing(self, deployment_repo: InMemoryDeploymentRepository) -> None:
        assert await deployment_repo.get_by_id("nope") is None

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(
        self, deployment_repo: InMemoryDeploymentRepository
    ) -> None:
        d = _deployment()
        await deployment_repo.save(d)
        found = await deployment_repo.get_by_id(d.id)
        assert found is not None
        found.record_orphan("ts-x")
        again = await deployment_repo.get_by_id(d.id)
        assert again is not None
        assert again.orphaned_task_set_ids == []

    @pytest.mark.asyncio
    async def test_one_active_per_service(
        self, deployment_repo: InMemoryDeploymentRepository
    ) -> None:
        await deployment_repo.save(_deployment())
        with pytest.raises(DeploymentConflictError):
            await deployment_repo.save(_deployment())
        await deployment_repo.save(_deployment("payments"))

    @pytest.mark.asyncio
    async def test_update_advances_version(
        self, deployment_repo: InMemoryDeploymentRepository
    ) -> None:
        d = await deployment_repo.save(_deployment())
        expected = d.version
        d.start_provisioning(None, 2)
        updated = await deployment_repo.update(d, expected)
        assert updated.version == expected + 1
        assert updated.state == DeploymentState.PROVISIONING_GREEN

    @pytest.mark.asyncio
    async def test_stale_update_conflicts(
        self, deployment_repo: InMemoryDeploymentRepository
    ) -> None:
        d = await deployment_repo.save(_deployment())
        expected = d.version

        writer_a = d.clone()
        writer_a.request_cancel()
        await deployment_repo.update(writer_a, expected)

        writer_b = d.clone()
        writer_b.start_provisioning(None, 2)
        with pytest.raises(ConflictError):
            await deployment_repo.update(writer_b, expected)

        stored = await deployment_repo.get_by_id(d.id)
        assert stored is not None
        assert stored.cancel_requested
        assert stored.state == DeploymentState.REQUESTED

    @pytest.mark.asyncio
    async def test_update_missing(self, deployment_repo: InMemoryDeploymentRepository) -> None:
        with pytest.raises(DeploymentNotFoundError):
            await deployment_repo.update(_deployment(), 1)

    @pytest.mark.asyncio
    async def test_active_queries(self, deployment_repo: InMemoryDeploymentRepository) -> None:
        active = await deployment_repo.save(_deployment())
        finished = await deployment_repo.save(_deployment("payments"))
        expected = finished.version
        finished.fail("boom", live_task_set_id=None)
        await deployment_repo.update(finished, expected)

        assert (await deployment_repo.get_active_for_service("checkout")).id == active.id
        assert await deployment_repo.get_active_for_service("payments") is None
        assert [d.id for d in await deployment_repo.list_active()] == [active.id]

    @pytest.mark.asyncio
    async def test_list_deployments_filters(
        self, deployment_repo: InMemoryDeploymentRepository
    ) -> None:
        await deployment_repo.save(_deployment("checkout"))
        await deployment_repo.save(_deployment("payments"))
        assert len(await deployment_repo.list_deployments()) == 2
        only = await deployment_repo.list_deployments(service_name="payments")
        assert [d.service_name for d in only] == ["payments"]
        assert len(await deployment_repo.list_deployments(limit=1)) == 1
        assert len(await deployment_repo.list_deployments(offset=2)) == 0

    @pytest.mark.asyncio
    async def test_list_with_orphans(self, deployment_repo: InMemoryDeploymentRepository) -> None:
        d = await deployment_repo.save(_deployment())
        expected = d.version
        d.record_orphan("ts-old")
        d.fail("boom", live_task_set_id=None)
        await deployment_repo.update(d, expected)
        await deployment_repo.save(_deployment("payments"))

        with_orphans = await deployment_repo.list_with_orphans()
        assert [x.id for x in with_orphans] == [d.id]

    @pytest.mark.asyncio
    async def test_store_shared_across_instances(self) -> None:
        d = _deployment()
        await InMemoryDeploymentRepository().save(d)
        assert await InMemoryDeploymentRepository().get_by_id(d.id) is not None

    @pytest.mark.asyncio
    async def test_clear(self, deployment_repo: InMemoryDeploymentRepository) -> None:
        d = _deployment()
        await deployment_repo.save(d)
        InMemoryDeploymentRepository.clear()
        assert await deployment_repo.get_by_id(d.id) is None
