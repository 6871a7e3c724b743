"""Transfer request Pydantic schemas."""

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.models.domain.access_request import Urgency
from src.models.domain.grant import GrantResult
from src.models.domain.principal import WalletAddress


class SourceStatus(StrEnum):
    """Source doctor's side of a transfer."""

    AWAITING_UPLOAD = "awaiting_upload"
    UPLOADED = "uploaded"
    REJECTED = "rejected"
    GRANTED = "granted"
    FAILED = "failed"


class PatientStatus(StrEnum):
    """Patient's side of a transfer."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class TransferView(StrEnum):
    """Which party's listing to return."""

    PATIENT = "patient"
    SOURCE = "source"
    REQUESTING = "requesting"


class TransferRequestCreate(BaseModel):
    """Schema for doctor B asking doctor A for a document."""

    patient_wallet: WalletAddress = Field(..., description="Patient the document is about")
    source_doctor_wallet: WalletAddress = Field(..., description="Doctor holding the document")
    document_description: str = Field(
        ..., min_length=1, max_length=2000, description="What document is needed"
    )
    purpose: str = Field(..., max_length=2000, description="Why it is needed")
    urgency: Urgency = Field(Urgency.ROUTINE, description="Urgency")
    source_organization: str | None = Field(
        None, max_length=255, description="Overrides the registry's organization for A"
    )


class TransferReject(BaseModel):
    """Schema for doctor A declining to provide the document."""

    reason: str = Field(..., min_length=1, max_length=2000, description="Why not")


class TransferAttach(BaseModel):
    """Schema for doctor A attaching an already-stored record."""

    record_id: UUID = Field(..., description="Record holding the document")
    title: str = Field(..., min_length=1, max_length=255, description="Title to snapshot")


class TransferDeny(BaseModel):
    """Schema for the patient denying a transfer."""

    reason: str | None = Field(None, max_length=2000, description="Denial reason")


class TransferRequestRead(BaseModel):
    """Schema for reading a transfer request."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Transfer unique identifier")
    patient_wallet: str = Field(..., description="Patient")
    requesting_doctor_wallet: str = Field(..., description="Doctor B")
    source_doctor_wallet: str = Field(..., description="Doctor A")
    requesting_organization: str | None = Field(None, description="B's organization snapshot")
    source_organization: str | None = Field(None, description="A's organization snapshot")
    document_description: str = Field(..., description="What B asked for")
    requested_record_ids: list[UUID] = Field(
        default_factory=list, description="Attached record, once uploaded"
    )
    deleted_record_ids: list[UUID] = Field(
        default_factory=list, description="Attached records since deleted"
    )
    purpose: str = Field(..., description="Stated purpose")
    urgency: Urgency = Field(..., description="Urgency")
    source_status: SourceStatus = Field(..., description="A's side")
    patient_status: PatientStatus = Field(..., description="Patient's side")
    source_rejection_reason: str | None = Field(None, description="Why A rejected")
    source_failure_reason: str | None = Field(None, description="Why the grant failed")
    patient_denial_reason: str | None = Field(None, description="Why the patient denied")
    source_responded_at: datetime | None = Field(None, description="A's last action")
    patient_responded_at: datetime | None = Field(None, description="Patient's decision")
    created_at: datetime = Field(..., description="When B created the request")
    expires_at: datetime = Field(..., description="When the request lapses")
    is_patient_actionable: bool = Field(..., description="Awaiting the patient's decision")
    patient_name: str | None = Field(None, description="Patient display name")
    requesting_doctor_name: str | None = Field(None, description="B's display name")
    source_doctor_name: str | None = Field(None, description="A's display name")
    document_names: list[str] = Field(default_factory=list, description="Attached documents")


class TransferDecision(BaseModel):
    """Result of a patient approval or a grant retry."""

    request: TransferRequestRead
    grant: GrantResult | None = None
