"""Grant delivery result schemas."""

from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field, computed_field


class GrantOutcome(StrEnum):
    """Caller-facing summary of a batch grant."""

    ACCESS_GRANTED = "Access Granted"
    PARTIAL_SUCCESS = "Partial Success"


class GrantResult(BaseModel):
    """Result of granting (or revoking) one principal on one record."""

    record_id: UUID = Field(..., description="Record the grant targeted")
    ok: bool = Field(..., description="Whether the policy now reflects the change")
    error: str | None = Field(None, description="Failure reason when ok is false")
    changed: bool = Field(
        False, description="False when the policy already matched (no-op)"
    )


class BatchGrantResult(BaseModel):
    """Folded per-record results for one principal."""

    results: list[GrantResult] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def fail_count(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def errors(self) -> dict[str, str]:
        return {str(r.record_id): r.error or "unknown error" for r in self.results if not r.ok}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def outcome(self) -> GrantOutcome:
        if self.fail_count == 0:
            return GrantOutcome.ACCESS_GRANTED
        return GrantOutcome.PARTIAL_SUCCESS
