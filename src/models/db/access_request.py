"""Access request database model."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.db.base import Base


class Urgency(enum.StrEnum):
    """How soon the requesting doctor needs the documents."""

    ROUTINE = "routine"
    URGENT = "urgent"
    EMERGENCY = "emergency"


# Shared by access and transfer requests so the PG type is declared once
urgency_enum = Enum(Urgency, name="urgency")


class AccessRequestStatus(enum.StrEnum):
    """Persisted status of a direct access request.

    EXPIRED is never written by this service; it is the display status of an
    approved request whose expiry has passed.
    """

    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"
    REVOKED = "revoked"


class AccessRequest(Base):
    """A doctor's request to decrypt some of a patient's records."""

    __tablename__ = "access_requests"

    patient_wallet: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
    )
    doctor_wallet: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
    )
    requested_record_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)),
        nullable=False,
    )
    deleted_record_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)),
        nullable=False,
        default=list,
    )
    snapshot_document_titles: Mapped[list[str]] = mapped_column(
        ARRAY(String(255)),
        nullable=False,
        default=list,
    )
    purpose: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    urgency: Mapped[Urgency] = mapped_column(
        urgency_enum,
        nullable=False,
        default=Urgency.ROUTINE,
    )
    status: Mapped[AccessRequestStatus] = mapped_column(
        Enum(AccessRequestStatus, name="access_request_status"),
        nullable=False,
        default=AccessRequestStatus.SENT,
    )
    patient_response: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    denial_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    # Delivery report from the most recent grant run
    grant_success_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    grant_failure_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    grant_errors: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB,
        nullable=True,
    )

    __table_args__ = (
        Index("ix_access_requests_patient_status", "patient_wallet", "status"),
        Index("ix_access_requests_doctor_status", "doctor_wallet", "status"),
        Index(
            "ix_access_requests_requested_record_ids",
            "requested_record_ids",
            postgresql_using="gin",
        ),
    )
