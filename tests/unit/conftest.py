"""Shared fixtures for unit tests: principals and unsaved model rows."""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from src.models.db.access_request import AccessRequest, AccessRequestStatus, Urgency
from src.models.db.health_record import HealthRecord, RecordType
from src.models.db.transfer_request import PatientStatus, SourceStatus, TransferRequest
from src.models.domain.principal import PrincipalInfo, PrincipalRole

PATIENT = "0xpatient01"
DOCTOR = "0xdoctor01"
SOURCE_DOCTOR = "0xdoctor02"


@pytest.fixture
def patient() -> PrincipalInfo:
    return PrincipalInfo(
        wallet_address=PATIENT, role=PrincipalRole.PATIENT, display_name="Pat Smith"
    )


@pytest.fixture
def doctor() -> PrincipalInfo:
    return PrincipalInfo(
        wallet_address=DOCTOR,
        role=PrincipalRole.DOCTOR,
        display_name="Dr. Bea",
        organization_name="City Clinic",
    )


@pytest.fixture
def source_doctor() -> PrincipalInfo:
    return PrincipalInfo(
        wallet_address=SOURCE_DOCTOR,
        role=PrincipalRole.DOCTOR,
        display_name="Dr. Al",
        organization_name="General Hospital",
    )


@pytest.fixture
def admin() -> PrincipalInfo:
    return PrincipalInfo(wallet_address="0xadmin001", role=PrincipalRole.ADMIN)


@pytest.fixture
def make_record() -> Callable[..., HealthRecord]:
    """Factory for health records as loaded from the database."""

    def factory(**overrides: Any) -> HealthRecord:
        values: dict[str, Any] = {
            "id": uuid.uuid4(),
            "patient_wallet": PATIENT,
            "uploaded_by": PATIENT,
            "title": "Blood panel",
            "record_type": RecordType.LAB_RESULT,
            "description": None,
            "blob_locator": "records/0xpatient01/abc-blood_panel.enc",
            "wrapped_key": "wk-1",
            "authorized_principals": [PATIENT],
            "policy_version": 1,
            "file_size": 128,
            "mime_type": "application/pdf",
            "uploaded_at": datetime.now(UTC),
        }
        values.update(overrides)
        return HealthRecord(**values)

    return factory


@pytest.fixture
def make_access_request() -> Callable[..., AccessRequest]:
    """Factory for access requests as loaded from the database."""

    def factory(**overrides: Any) -> AccessRequest:
        now = datetime.now(UTC)
        values: dict[str, Any] = {
            "id": uuid.uuid4(),
            "patient_wallet": PATIENT,
            "doctor_wallet": DOCTOR,
            "requested_record_ids": [uuid.uuid4()],
            "deleted_record_ids": [],
            "snapshot_document_titles": ["Blood panel"],
            "purpose": "Pre-operative assessment",
            "urgency": Urgency.ROUTINE,
            "status": AccessRequestStatus.SENT,
            "created_at": now,
            "sent_at": now,
            "expires_at": now + timedelta(days=30),
            "grant_success_count": 0,
            "grant_failure_count": 0,
        }
        values.update(overrides)
        return AccessRequest(**values)

    return factory


@pytest.fixture
def make_transfer() -> Callable[..., TransferRequest]:
    """Factory for transfer requests as loaded from the database."""

    def factory(**overrides: Any) -> TransferRequest:
        now = datetime.now(UTC)
        values: dict[str, Any] = {
            "id": uuid.uuid4(),
            "patient_wallet": PATIENT,
            "requesting_doctor_wallet": DOCTOR,
            "source_doctor_wallet": SOURCE_DOCTOR,
            "requesting_organization": "City Clinic",
            "source_organization": "General Hospital",
            "document_description": "Latest MRI report",
            "requested_record_ids": [],
            "deleted_record_ids": [],
            "snapshot_document_titles": [],
            "purpose": "Second opinion on imaging",
            "urgency": Urgency.ROUTINE,
            "source_status": SourceStatus.AWAITING_UPLOAD,
            "patient_status": PatientStatus.PENDING,
            "created_at": now,
            "expires_at": now + timedelta(days=30),
        }
        values.update(overrides)
        return TransferRequest(**values)

    return factory
