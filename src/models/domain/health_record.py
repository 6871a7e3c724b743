"""Health record Pydantic schemas."""

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.domain.principal import WalletAddress


class RecordType(StrEnum):
    """Kind of medical document."""

    LAB_RESULT = "lab_result"
    PRESCRIPTION = "prescription"
    VISIT_NOTE = "visit_note"
    IMAGING = "imaging"
    OTHER = "other"


class PermissionStatus(StrEnum):
    """A doctor's standing on one record."""

    GRANTED = "granted"
    PENDING = "pending"
    NONE = "none"


class RecordUpload(BaseModel):
    """Input for storing a new encrypted record."""

    patient_wallet: WalletAddress = Field(..., description="Owning patient")
    title: str = Field(..., min_length=1, max_length=255, description="Document title")
    record_type: RecordType = Field(RecordType.OTHER, description="Document kind")
    description: str | None = Field(None, description="Free-text description")
    mime_type: str = Field(
        "application/octet-stream", description="MIME type of the plaintext"
    )
    co_authorized: list[WalletAddress] = Field(
        default_factory=list,
        description="Principals authorized at upload time besides the owner",
    )
    data: bytes = Field(..., repr=False, description="Plaintext document bytes")

    @field_validator("data")
    @classmethod
    def data_not_empty(cls, v: bytes) -> bytes:
        """Reject empty documents."""
        if not v:
            raise ValueError("Cannot store an empty document")
        return v


class HealthRecordRead(BaseModel):
    """Schema for reading record metadata (never the key material)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Record unique identifier")
    patient_wallet: str = Field(..., description="Owning patient")
    uploaded_by: str = Field(..., description="Principal that uploaded the record")
    title: str = Field(..., description="Document title")
    record_type: RecordType = Field(..., description="Document kind")
    description: str | None = Field(None, description="Free-text description")
    file_size: int | None = Field(None, description="Plaintext size in bytes")
    mime_type: str | None = Field(None, description="MIME type")
    authorized_principals: list[str] = Field(
        ..., description="Principals that can currently decrypt the record"
    )
    policy_version: int = Field(..., description="Policy revision counter")
    uploaded_at: datetime = Field(..., description="When the record was uploaded")


class RecordWithPermission(HealthRecordRead):
    """Record annotated with one doctor's permission status."""

    permission_status: PermissionStatus = Field(
        ..., description="granted, pending (awaiting patient) or none"
    )


class RecordDeletion(BaseModel):
    """Outcome of deleting a record and cascading to requests."""

    record_id: UUID = Field(..., description="Deleted record")
    flagged_access_requests: int = Field(
        0, description="Access requests that referenced the record"
    )
    flagged_transfer_requests: int = Field(
        0, description="Transfer requests that referenced the record"
    )
    failed_transfer_requests: int = Field(
        0, description="Transfers awaiting the patient's grant that were failed"
    )


def resolve_document_names(
    record_ids: list[UUID],
    snapshot_titles: list[str],
    live_titles: dict[UUID, str],
) -> list[str]:
    """Name each requested document for display.

    Uses the live title while the record exists, the snapshot title marked
    "(Deleted)" once it is gone, and "Unknown Document" when neither exists.
    """
    names: list[str] = []
    for index, record_id in enumerate(record_ids):
        live = live_titles.get(record_id)
        if live is not None:
            names.append(live or "Untitled Document")
        elif index < len(snapshot_titles) and snapshot_titles[index]:
            names.append(f"{snapshot_titles[index]} (Deleted)")
        else:
            names.append("Unknown Document")
    return names


class RecordCiphertext(BaseModel):
    """Encrypted payload and wrapped key for client-side decryption."""

    record_id: UUID = Field(..., description="Record identifier")
    mime_type: str | None = Field(None, description="MIME type of the plaintext")
    policy_version: int = Field(..., description="Policy revision the key is sealed for")
    wrapped_key: str = Field(..., description="Content key sealed for the policy")
    ciphertext: str = Field(..., description="Base64-encoded ciphertext")
