"""Audit event Pydantic schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AuditEventRead(BaseModel):
    """Schema for reading an audit trail entry."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Event unique identifier")
    event_name: str = Field(..., description="What happened, e.g. access_request.approved")
    actor_wallet: str | None = Field(None, description="Principal that acted")
    subject_type: str = Field(..., description="Kind of subject")
    subject_id: UUID | None = Field(None, description="Subject identifier")
    properties: dict[str, Any] | None = Field(None, description="Event details")
    occurred_at: datetime = Field(..., description="When it happened")
