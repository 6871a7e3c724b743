"""Principal Pydantic schemas and identifier normalization."""

import re
from datetime import datetime
from enum import StrEnum
from typing import Annotated
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

_PRINCIPAL_PATTERN = re.compile(r"^[a-z0-9_.:\-]{3,128}$")


def normalize_principal(value: str) -> str:
    """Normalize a principal identifier for storage and comparison.

    Principals are opaque and compared case-insensitively, so they are
    trimmed and lowercased.

    Raises:
        ValueError: If the identifier is empty or malformed
    """
    if not isinstance(value, str):
        raise ValueError("Principal identifier must be a string")
    normalized = value.strip().lower()
    if not _PRINCIPAL_PATTERN.match(normalized):
        raise ValueError(f"Malformed principal identifier: {value!r}")
    return normalized


WalletAddress = Annotated[str, AfterValidator(normalize_principal)]


class PrincipalRole(StrEnum):
    """Role of a registered principal."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class PrincipalCreate(BaseModel):
    """Schema for registering a principal."""

    wallet_address: WalletAddress = Field(..., description="Wallet address")
    role: PrincipalRole = Field(..., description="Principal role")
    full_name: str | None = Field(
        None, max_length=255, description="Display name"
    )
    organization_name: str | None = Field(
        None, max_length=255, description="Hospital or practice (doctors)"
    )


class PrincipalRead(BaseModel):
    """Schema for reading a principal."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Principal unique identifier")
    wallet_address: str = Field(..., description="Lowercase wallet address")
    role: PrincipalRole = Field(..., description="Principal role")
    full_name: str | None = Field(None, description="Display name")
    organization_name: str | None = Field(None, description="Organization")
    created_at: datetime = Field(..., description="When the principal was registered")


class PrincipalInfo(BaseModel):
    """Cached identity lookup result."""

    model_config = ConfigDict(frozen=True)

    wallet_address: str
    role: PrincipalRole
    display_name: str | None = None
    organization_name: str | None = None
