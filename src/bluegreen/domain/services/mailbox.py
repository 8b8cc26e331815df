"""Single-slot latest-value mailbox for health snapshots."""

from __future__ import annotations

import asyncio

from bluegreen.domain.models.health import HealthSnapshot


class SnapshotMailbox:
    """Holds at most one unconsumed snapshot.

    ``put`` never blocks: a newer snapshot replaces an unconsumed older one,
    so a slow consumer always reads the freshest verdict.
    """

    def __init__(self) -> None:
        self._value: HealthSnapshot | None = None
        self._ready = asyncio.Event()
        self._dropped = 0

    def put(self, snapshot: HealthSnapshot) -> None:
        if self._value is not None:
            self._dropped += 1
        self._value = snapshot
        self._ready.set()

    def take_nowait(self) -> HealthSnapshot | None:
        value = self._value
        self._value = None
        self._ready.clear()
        return value

    async def get(self, timeout: float | None = None) -> HealthSnapshot | None:
        """Wait for a fresh snapshot; None if ``timeout`` elapses first."""
        if self._ready.is_set():
            return self.take_nowait()
        if timeout is not None and timeout <= 0:
            return None
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            return None
        return self.take_nowait()

    def clear(self) -> None:
        """Discard any unconsumed snapshot."""
        self.take_nowait()

    @property
    def has_value(self) -> bool:
        return self._value is not None

    @property
    def dropped(self) -> int:
        """Number of snapshots overwritten before being consumed."""
        return self._dropped
