"""Gateway API key schemas used by the admin CLI."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

GatewayName = Annotated[
    str, Field(min_length=1, max_length=255, description="Gateway holding the key")
]


class ApiKeyCreateResponse(BaseModel):
    """A freshly created key. The only place the plaintext ever appears."""

    id: UUID
    name: GatewayName
    key: str = Field(..., repr=False, description="Plaintext key, shown once")
    created_at: datetime


class ApiKeyRead(BaseModel):
    """A stored key, without its hash."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: GatewayName
    is_active: bool
    last_used_at: datetime | None = None
    created_at: datetime
