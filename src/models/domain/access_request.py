"""Access request Pydantic schemas and status projection."""

from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.models.domain.grant import BatchGrantResult
from src.models.domain.principal import WalletAddress


class Urgency(StrEnum):
    """How soon the requesting doctor needs the documents."""

    ROUTINE = "routine"
    URGENT = "urgent"
    EMERGENCY = "emergency"


class AccessRequestStatus(StrEnum):
    """Status of a direct access request."""

    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"
    REVOKED = "revoked"


class _HasStatusAndExpiry(Protocol):
    status: Any
    expires_at: datetime | None


def display_status(request: _HasStatusAndExpiry, now: datetime) -> AccessRequestStatus:
    """Project the status a reader should see at ``now``.

    An approved request whose expiry has passed reads as expired. The stored
    status is never modified.
    """
    status = AccessRequestStatus(getattr(request.status, "value", request.status))
    if (
        status == AccessRequestStatus.APPROVED
        and request.expires_at is not None
        and request.expires_at < now
    ):
        return AccessRequestStatus.EXPIRED
    return status


class AccessRequestCreate(BaseModel):
    """Schema for a doctor requesting access to a patient's records."""

    patient_wallet: WalletAddress = Field(..., description="Patient to ask")
    record_ids: list[UUID] = Field(..., description="Records to request")
    purpose: str = Field(..., max_length=2000, description="Why access is needed")
    urgency: Urgency = Field(Urgency.ROUTINE, description="Urgency of the request")
    expires_at: datetime | None = Field(
        None, description="When granted access stops being shown as active"
    )
    duration_days: int | None = Field(
        None, ge=1, le=365, description="Alternative to expires_at, from now"
    )
    draft: bool = Field(False, description="Save without sending to the patient")


class AccessRequestDeny(BaseModel):
    """Schema for a patient denying a request."""

    reason: str | None = Field(None, max_length=2000, description="Denial reason")


class AccessRequestRead(BaseModel):
    """Schema for reading an access request."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Request unique identifier")
    patient_wallet: str = Field(..., description="Patient asked")
    doctor_wallet: str = Field(..., description="Requesting doctor")
    requested_record_ids: list[UUID] = Field(..., description="Requested records")
    deleted_record_ids: list[UUID] = Field(
        default_factory=list, description="Requested records since deleted"
    )
    purpose: str = Field(..., description="Stated purpose")
    urgency: Urgency = Field(..., description="Urgency")
    status: AccessRequestStatus = Field(..., description="Persisted status")
    display_status: AccessRequestStatus = Field(
        ..., description="Status as of now (expired is derived)"
    )
    patient_response: str | None = Field(None, description="Patient's note")
    denial_reason: str | None = Field(None, description="Reason for denial")
    created_at: datetime = Field(..., description="When the request was created")
    sent_at: datetime | None = Field(None, description="When it was sent")
    responded_at: datetime | None = Field(None, description="When the patient responded")
    expires_at: datetime | None = Field(None, description="Expiry of granted access")
    grant_success_count: int = Field(0, description="Records delivered on last grant")
    grant_failure_count: int = Field(0, description="Records not delivered on last grant")
    grant_errors: dict[str, str] | None = Field(None, description="Per-record failures")
    patient_name: str | None = Field(None, description="Patient display name")
    doctor_name: str | None = Field(None, description="Doctor display name")
    document_names: list[str] = Field(
        default_factory=list, description="Display names of requested documents"
    )


class AccessRequestDecision(BaseModel):
    """Result of approving (or re-delivering) an access request."""

    request: AccessRequestRead
    grants: BatchGrantResult
