"""Instance liveness probes."""

from __future__ import annotations

import httpx
import structlog

from bluegreen.domain.models.task_set import Instance
from bluegreen.domain.ports.services import InstanceProbe


logger = structlog.get_logger(__name__)


class PlatformInstanceProbe(InstanceProbe):
    """Trusts the health flag the container platform reports for an instance."""

    async def check(self, instance: Instance) -> bool:
        return instance.running and instance.healthy


class HttpInstanceProbe(InstanceProbe):
    """GETs the instance's liveness endpoint; only 2xx counts as healthy."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        liveness_path: str = "/healthz",
    ) -> None:
        self._client = client or httpx.AsyncClient()
        self._liveness_path = liveness_path

    async def check(self, instance: Instance) -> bool:
        if not instance.running or not instance.endpoint:
            return False
        url = instance.endpoint.rstrip("/") + self._liveness_path
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.debug("liveness_probe_error", instance_id=instance.instance_id, error=str(e))
            return False
        return response.is_success

    async def close(self) -> None:
        await self._client.aclose()
