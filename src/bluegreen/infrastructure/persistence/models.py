"""SQLAlchemy ORM models."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    func,
    Index,
    Integer,
    String,
    text,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class DeploymentORM(Base):
    __tablename__ = "deployments"

    id = Column(String(36), primary_key=True)
    service_name = Column(String(255), nullable=False)
    target_image_ref = Column(Text, nullable=False)
    state = Column(String(50), nullable=False, index=True)
    blue_task_set_id = Column(String(64), nullable=True)
    green_task_set_id = Column(String(64), nullable=True)
    desired_count = Column(Integer, nullable=False, default=0)
    health_policy_data = Column(JSONB, nullable=False)
    state_entered_at = Column(DateTime(timezone=True), nullable=False)
    failure_reason = Column(Text, nullable=True, default="")
    rollback_reason = Column(Text, nullable=True, default="")
    live_task_set_id = Column(String(64), nullable=True)
    traffic_shifted = Column(Boolean, nullable=False, default=False)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    degraded = Column(Boolean, nullable=False, default=False)
    orphaned_task_set_ids = Column(JSONB, nullable=False, default=list)
    history_data = Column(JSONB, nullable=False, default=list)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        # At most one non-terminal deployment per service.
        Index(
            "uq_deployments_active_service",
            "service_name",
            unique=True,
            postgresql_where=text("state NOT IN ('completed', 'rolled_back', 'failed')"),
        ),
        Index("ix_deployments_service_created", "service_name", "created_at"),
    )
