"""Health record database model."""

import enum
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from src.models.db.base import Base, TimestampMixin


class RecordType(enum.StrEnum):
    """Kind of medical document."""

    LAB_RESULT = "lab_result"
    PRESCRIPTION = "prescription"
    VISIT_NOTE = "visit_note"
    IMAGING = "imaging"
    OTHER = "other"


class HealthRecord(Base, TimestampMixin):
    """An encrypted medical document owned by a patient.

    ``authorized_principals`` is the access policy: the set of principals
    the wrapped key is sealed for. The owner is always a member. The policy
    is only ever changed through a compare-and-set on ``policy_version``.
    """

    __tablename__ = "health_records"

    patient_wallet: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
    )
    uploaded_by: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    record_type: Mapped[RecordType] = mapped_column(
        Enum(RecordType, name="record_type"),
        nullable=False,
        default=RecordType.OTHER,
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    blob_locator: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
        comment="Key of the ciphertext in the blob store",
    )
    wrapped_key: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Content key sealed for the current policy",
    )
    authorized_principals: Mapped[list[str]] = mapped_column(
        ARRAY(String(128)),
        nullable=False,
        default=list,
    )
    policy_version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )
    file_size: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )
    mime_type: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index(
            "ix_health_records_authorized_principals",
            "authorized_principals",
            postgresql_using="gin",
        ),
    )

    @property
    def policy(self) -> frozenset[str]:
        """Current access policy, always including the owner."""
        return frozenset(self.authorized_principals or ()) | {self.patient_wallet}

    def is_authorized(self, principal: str) -> bool:
        """Check whether a principal may decrypt this record."""
        return principal.lower() in self.policy
