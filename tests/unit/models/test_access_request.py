"""Tests for access request models and status projection."""

import uuid
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from src.models.db.access_request import AccessRequest
from src.models.db.access_request import AccessRequestStatus as DbStatus
from src.models.domain.access_request import (
    AccessRequestCreate,
    AccessRequestStatus,
    display_status,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class TestDisplayStatus:
    """Tests for deriving the visible status."""

    def test_approved_past_expiry_reads_expired(self) -> None:
        request = SimpleNamespace(
            status=DbStatus.APPROVED, expires_at=NOW - timedelta(seconds=1)
        )

        assert display_status(request, NOW) == AccessRequestStatus.EXPIRED
        assert request.status == DbStatus.APPROVED

    def test_approved_before_expiry(self) -> None:
        request = SimpleNamespace(status=DbStatus.APPROVED, expires_at=NOW + timedelta(days=1))

        assert display_status(request, NOW) == AccessRequestStatus.APPROVED

    def test_approved_without_expiry_never_expires(self) -> None:
        request = SimpleNamespace(status=DbStatus.APPROVED, expires_at=None)

        assert display_status(request, NOW) == AccessRequestStatus.APPROVED

    @pytest.mark.parametrize("status", [DbStatus.SENT, DbStatus.DENIED, DbStatus.REVOKED])
    def test_other_statuses_pass_through(self, status: DbStatus) -> None:
        request = SimpleNamespace(status=status, expires_at=NOW - timedelta(days=1))

        assert display_status(request, NOW) == AccessRequestStatus(status.value)


class TestAccessRequestCreate:
    """Tests for AccessRequestCreate schema."""

    def test_defaults(self) -> None:
        data = AccessRequestCreate(
            patient_wallet="0xPATIENT01",
            record_ids=[uuid.uuid4()],
            purpose="Pre-operative assessment",
        )

        assert data.patient_wallet == "0xpatient01"
        assert data.urgency == "routine"
        assert data.draft is False

    def test_duration_bounds(self) -> None:
        with pytest.raises(ValidationError):
            AccessRequestCreate(
                patient_wallet="0xpatient01",
                record_ids=[uuid.uuid4()],
                purpose="Pre-operative assessment",
                duration_days=0,
            )


class TestAccessRequestModel:
    """Tests for AccessRequest database model."""

    def test_tablename(self) -> None:
        assert AccessRequest.__tablename__ == "access_requests"

    def test_record_ids_are_indexed_for_containment(self) -> None:
        index_names = {index.name for index in AccessRequest.__table__.indexes}

        assert "ix_access_requests_requested_record_ids" in index_names
