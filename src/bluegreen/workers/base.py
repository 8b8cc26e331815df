"""Base background worker implementation."""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any

import structlog


logger = structlog.get_logger(__name__)


class BackgroundWorker(ABC):
    """Polling loop that calls ``run_once`` every ``poll_interval`` seconds.

    An exception raised by one iteration is logged and the loop carries on;
    only ``stop`` (or cancellation) ends it.
    """

    def __init__(
        self,
        worker_id: str | None = None,
        poll_interval: float = 2.0,
    ) -> None:
        self._worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._poll_interval = poll_interval
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._iterations = 0

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def running(self) -> bool:
        return self._running

    @property
    def iterations(self) -> int:
        return self._iterations

    async def start(self) -> None:
        """Run the polling loop in the current task until stopped."""
        self._running = True
        logger.info("worker_started", worker_id=self._worker_id)

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception("worker_iteration_error", worker_id=self._worker_id, error=str(e))
            self._iterations += 1
            if not self._running:
                break
            await asyncio.sleep(self._poll_interval)

    def spawn(self) -> asyncio.Task[None]:
        """Start the loop as a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.start(), name=self._worker_id)
        return self._task

    async def stop(self) -> None:
        """Stop the loop and wait for the background task to finish."""
        self._running = False
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("worker_stopped", worker_id=self._worker_id)

    def get_health(self) -> dict[str, Any]:
        """Return a health snapshot of the worker."""
        return {
            "worker_id": self._worker_id,
            "running": self._running,
            "iterations": self._iterations,
            "poll_interval": self._poll_interval,
        }

    @abstractmethod
    async def run_once(self) -> None:
        """One iteration of work. Subclasses implement specific logic."""
