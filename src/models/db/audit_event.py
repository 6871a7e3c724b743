"""Audit event database model."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.db.base import Base


class AuditEvent(Base):
    """Append-only record of a decision or a record access.

    Rows are never updated or deleted by the application.
    """

    __tablename__ = "audit_events"

    event_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )
    actor_wallet: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        index=True,
    )
    subject_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    subject_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )
    properties: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB,
        nullable=True,
        default=dict,
    )
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_audit_events_subject", "subject_type", "subject_id"),
    )
