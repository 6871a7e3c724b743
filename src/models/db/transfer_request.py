"""Transfer request database model."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Index, String, Text, func
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.db.access_request import Urgency, urgency_enum
from src.models.db.base import Base


class SourceStatus(enum.StrEnum):
    """Source doctor's (A's) side of a transfer."""

    AWAITING_UPLOAD = "awaiting_upload"
    UPLOADED = "uploaded"
    REJECTED = "rejected"
    GRANTED = "granted"
    FAILED = "failed"


class PatientStatus(enum.StrEnum):
    """Patient's side of a transfer."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class TransferRequest(Base):
    """Doctor B asks doctor A for a document; the patient decides.

    The two status columns evolve independently except on patient approval,
    where both are written in the same UPDATE.
    """

    __tablename__ = "transfer_requests"

    patient_wallet: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
    )
    requesting_doctor_wallet: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
    )
    source_doctor_wallet: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
    )
    requesting_organization: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    source_organization: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    document_description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    requested_record_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)),
        nullable=False,
        default=list,
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
    source_status: Mapped[SourceStatus] = mapped_column(
        Enum(SourceStatus, name="transfer_source_status"),
        nullable=False,
        default=SourceStatus.AWAITING_UPLOAD,
    )
    patient_status: Mapped[PatientStatus] = mapped_column(
        Enum(PatientStatus, name="transfer_patient_status"),
        nullable=False,
        default=PatientStatus.PENDING,
    )
    source_rejection_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    source_failure_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    patient_denial_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    source_responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    patient_responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        Index(
            "ix_transfer_requests_patient_source_status",
            "patient_wallet",
            "source_status",
        ),
        Index(
            "ix_transfer_requests_requested_record_ids",
            "requested_record_ids",
            postgresql_using="gin",
        ),
    )

    @property
    def is_patient_actionable(self) -> bool:
        """The patient can decide only once A has uploaded."""
        return (
            self.source_status == SourceStatus.UPLOADED
            and self.patient_status == PatientStatus.PENDING
        )
