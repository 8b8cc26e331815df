"""Background sweep of task sets whose termination failed."""

from __future__ import annotations

import structlog

from bluegreen.domain.errors import BlueGreenError, ConflictError
from bluegreen.domain.models.deployment import Deployment
from bluegreen.domain.ports.repositories import DeploymentRepository
from bluegreen.domain.ports.services import TaskSetManager
from bluegreen.infrastructure.observability.metrics import ORPHAN_SWEEPS_TOTAL
from bluegreen.workers.base import BackgroundWorker


logger = structlog.get_logger(__name__)


class OrphanedTaskSetSweeper(BackgroundWorker):
    """Retries termination of task sets recorded as orphaned on finished deployments."""

    def __init__(
        self,
        deployment_repo: DeploymentRepository,
        task_sets: TaskSetManager,
        poll_interval: float = 60.0,
        batch_size: int = 50,
    ) -> None:
        super().__init__(worker_id="orphan-sweeper", poll_interval=poll_interval)
        self._deployment_repo = deployment_repo
        self._task_sets = task_sets
        self._batch_size = batch_size

    async def run_once(self) -> None:
        deployments = await self._deployment_repo.list_with_orphans(limit=self._batch_size)
        for deployment in deployments:
            await self.sweep(deployment)

    async def sweep(self, deployment: Deployment) -> int:
        """Terminate the orphans of one deployment. Returns how many were cleared."""
        expected_version = deployment.version
        cleared = 0

        for task_set_id in list(deployment.orphaned_task_set_ids):
            try:
                await self._task_sets.terminate(task_set_id)
            except BlueGreenError as e:
                ORPHAN_SWEEPS_TOTAL.labels(result="failed").inc()
                logger.warning(
                    "orphan_termination_failed",
                    deployment_id=deployment.id,
                    task_set_id=task_set_id,
                    error=str(e),
                )
                continue
            deployment.clear_orphan(task_set_id)
            ORPHAN_SWEEPS_TOTAL.labels(result="terminated").inc()
            cleared += 1

        if cleared:
            try:
                await self._deployment_repo.update(deployment, expected_version)
            except ConflictError:
                # Terminate is idempotent; the next sweep clears the record.
                logger.info("orphan_sweep_conflict", deployment_id=deployment.id)
                return 0
            logger.info(
                "orphans_terminated",
                deployment_id=deployment.id,
                cleared=cleared,
                remaining=len(deployment.orphaned_task_set_ids),
            )
        return cleared
