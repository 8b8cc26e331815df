"""Base domain model classes."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel, Field, PrivateAttr


EntityT = TypeVar("EntityT", bound="DomainEntity")


def generate_id() -> str:
    """Generate a unique identifier."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


class DomainEvent(BaseModel):
    """Base class for domain events."""

    event_id: str = Field(default_factory=generate_id)
    event_type: str = ""
    occurred_at: datetime = Field(default_factory=utc_now)
    correlation_id: str = Field(default_factory=generate_id)
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class ValueObject(BaseModel):
    """Base class for value objects (immutable)."""

    model_config = {"frozen": True}


class DomainEntity(BaseModel):
    """Base class for versioned domain entities.

    ``version`` is the optimistic-concurrency counter: it advances on every
    mutation and stores compare it against the version that was read.
    """

    id: str = Field(default_factory=generate_id)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1)

    def touch(self) -> None:
        """Update the timestamp and increment version."""
        self.updated_at = utc_now()
        self.version += 1

    def clone(self: EntityT) -> EntityT:
        """Deep copy detached from the original, as a store would hand it out."""
        return self.model_copy(deep=True)

    model_config = {"frozen": False, "validate_assignment": True}


class AggregateRoot(DomainEntity):
    """Base class for aggregate roots that emit domain events."""

    _domain_events: list[DomainEvent] = PrivateAttr(default_factory=list)

    def add_event(self, event: DomainEvent) -> None:
        """Register a domain event."""
        self._domain_events.append(event)

    def collect_events(self) -> list[DomainEvent]:
        """Collect and clear all pending domain events."""
        events = list(self._domain_events)
        self._domain_events.clear()
        return events

    def clone(self: EntityT) -> EntityT:
        copy = self.model_copy(deep=True)
        copy._domain_events = []  # type: ignore[attr-defined]
        return copy

    @property
    def pending_events(self) -> list[DomainEvent]:
        """Get pending domain events without clearing."""
        return list(self._domain_events)
