"""Tests for transfer request API endpoints."""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.v1.dependencies import get_caller, get_transfer_request_service
from src.api.v1.endpoints.transfer_requests import router
from src.core.exceptions import ConflictError, NotFoundError, setup_exception_handlers
from src.models.domain.access_request import Urgency
from src.models.domain.grant import GrantResult
from src.models.domain.principal import PrincipalInfo
from src.models.domain.transfer_request import (
    PatientStatus,
    SourceStatus,
    TransferDecision,
    TransferRequestRead,
    TransferView,
)


@pytest.fixture
def mock_transfer_service() -> MagicMock:
    """Create a mock transfer request service."""
    return MagicMock()


@pytest.fixture
def app(mock_transfer_service: MagicMock, source_doctor: PrincipalInfo) -> FastAPI:
    """Create test app with the source doctor as caller."""
    test_app = FastAPI()
    test_app.include_router(router, prefix="/transfer-requests")
    setup_exception_handlers(test_app)

    test_app.dependency_overrides[get_caller] = lambda: source_doctor
    test_app.dependency_overrides[get_transfer_request_service] = (
        lambda: mock_transfer_service
    )
    return test_app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create test client."""
    return TestClient(app)


def transfer_read(**overrides: Any) -> TransferRequestRead:
    now = datetime.now(UTC)
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "patient_wallet": "0xpatient01",
        "requesting_doctor_wallet": "0xdoctor01",
        "source_doctor_wallet": "0xdoctor02",
        "document_description": "Latest MRI report",
        "purpose": "Second opinion on imaging",
        "urgency": Urgency.ROUTINE,
        "source_status": SourceStatus.AWAITING_UPLOAD,
        "patient_status": PatientStatus.PENDING,
        "created_at": now,
        "expires_at": now + timedelta(days=30),
        "is_patient_actionable": False,
    }
    values.update(overrides)
    return TransferRequestRead(**values)


class TestCreateTransfer:
    """Tests for POST /transfer-requests."""

    def test_create_success(
        self,
        app: FastAPI,
        client: TestClient,
        mock_transfer_service: MagicMock,
        doctor: PrincipalInfo,
    ) -> None:
        app.dependency_overrides[get_caller] = lambda: doctor
        mock_transfer_service.create = AsyncMock(return_value=transfer_read())

        response = client.post(
            "/transfer-requests",
            json={
                "patient_wallet": "0xpatient01",
                "source_doctor_wallet": "0xDOCTOR02",
                "document_description": "Latest MRI report",
                "purpose": "Second opinion on imaging",
            },
        )

        assert response.status_code == 201
        assert response.json()["source_status"] == "awaiting_upload"
        _, data = mock_transfer_service.create.call_args.args
        assert data.source_doctor_wallet == "0xdoctor02"

    def test_create_empty_description(self, client: TestClient) -> None:
        response = client.post(
            "/transfer-requests",
            json={
                "patient_wallet": "0xpatient01",
                "source_doctor_wallet": "0xdoctor02",
                "document_description": "",
                "purpose": "Second opinion",
            },
        )

        assert response.status_code == 422


class TestListTransfers:
    """Tests for GET /transfer-requests."""

    def test_list_source_view(
        self,
        client: TestClient,
        mock_transfer_service: MagicMock,
        source_doctor: PrincipalInfo,
    ) -> None:
        mock_transfer_service.list_for = AsyncMock(return_value=[transfer_read()])

        response = client.get("/transfer-requests", params={"view": "source"})

        assert response.status_code == 200
        assert len(response.json()) == 1
        mock_transfer_service.list_for.assert_awaited_once_with(
            source_doctor, view=TransferView.SOURCE
        )

    def test_get_hidden_from_patient(
        self, client: TestClient, mock_transfer_service: MagicMock
    ) -> None:
        mock_transfer_service.get = AsyncMock(side_effect=NotFoundError("Transfer request"))

        response = client.get(f"/transfer-requests/{uuid.uuid4()}")

        assert response.status_code == 404


class TestSourceActions:
    """Tests for reject, attach and upload."""

    def test_reject(
        self,
        client: TestClient,
        mock_transfer_service: MagicMock,
        source_doctor: PrincipalInfo,
    ) -> None:
        request_id = uuid.uuid4()
        mock_transfer_service.reject = AsyncMock(
            return_value=transfer_read(
                id=request_id,
                source_status=SourceStatus.REJECTED,
                source_rejection_reason="No such document",
            )
        )

        response = client.post(
            f"/transfer-requests/{request_id}/reject", json={"reason": "No such document"}
        )

        assert response.status_code == 200
        assert response.json()["source_status"] == "rejected"
        mock_transfer_service.reject.assert_awaited_once_with(
            source_doctor, request_id, "No such document"
        )

    def test_reject_requires_reason(self, client: TestClient) -> None:
        response = client.post(f"/transfer-requests/{uuid.uuid4()}/reject", json={})

        assert response.status_code == 422

    def test_attach(
        self, client: TestClient, mock_transfer_service: MagicMock
    ) -> None:
        request_id, record_id = uuid.uuid4(), uuid.uuid4()
        mock_transfer_service.attach_upload = AsyncMock(
            return_value=transfer_read(
                id=request_id,
                source_status=SourceStatus.UPLOADED,
                requested_record_ids=[record_id],
                is_patient_actionable=True,
                document_names=["MRI report"],
            )
        )

        response = client.post(
            f"/transfer-requests/{request_id}/attach",
            json={"record_id": str(record_id), "title": "MRI report"},
        )

        assert response.status_code == 200
        assert response.json()["is_patient_actionable"] is True
        attach = mock_transfer_service.attach_upload.call_args.args[2]
        assert attach.record_id == record_id

    def test_attach_twice_conflicts(
        self, client: TestClient, mock_transfer_service: MagicMock
    ) -> None:
        mock_transfer_service.attach_upload = AsyncMock(
            side_effect=ConflictError("Transfer request is uploaded, expected awaiting_upload")
        )

        response = client.post(
            f"/transfer-requests/{uuid.uuid4()}/attach",
            json={"record_id": str(uuid.uuid4()), "title": "MRI report"},
        )

        assert response.status_code == 409

    def test_upload(
        self, client: TestClient, mock_transfer_service: MagicMock
    ) -> None:
        request_id = uuid.uuid4()
        mock_transfer_service.upload_and_attach = AsyncMock(
            return_value=transfer_read(id=request_id, source_status=SourceStatus.UPLOADED)
        )

        response = client.post(
            f"/transfer-requests/{request_id}/upload",
            files={"file": ("mri.pdf", b"%PDF-1.7", "application/pdf")},
            data={"patient_wallet": "0xpatient01", "title": "MRI report"},
        )

        assert response.status_code == 200
        upload = mock_transfer_service.upload_and_attach.call_args.args[2]
        assert upload.title == "MRI report"
        assert upload.data == b"%PDF-1.7"


class TestPatientActions:
    """Tests for approve, retry and deny."""

    def test_approve(
        self,
        app: FastAPI,
        client: TestClient,
        mock_transfer_service: MagicMock,
        patient: PrincipalInfo,
    ) -> None:
        app.dependency_overrides[get_caller] = lambda: patient
        request_id, record_id = uuid.uuid4(), uuid.uuid4()
        mock_transfer_service.approve = AsyncMock(
            return_value=TransferDecision(
                request=transfer_read(
                    id=request_id,
                    source_status=SourceStatus.GRANTED,
                    patient_status=PatientStatus.APPROVED,
                ),
                grant=GrantResult(record_id=record_id, ok=True, changed=True),
            )
        )

        response = client.post(f"/transfer-requests/{request_id}/approve")

        assert response.status_code == 200
        body = response.json()
        assert body["request"]["source_status"] == "granted"
        assert body["grant"]["ok"] is True
        mock_transfer_service.approve.assert_awaited_once_with(patient, request_id)

    def test_retry_grant_failure_reported(
        self, client: TestClient, mock_transfer_service: MagicMock
    ) -> None:
        request_id, record_id = uuid.uuid4(), uuid.uuid4()
        mock_transfer_service.retry_grant = AsyncMock(
            return_value=TransferDecision(
                request=transfer_read(
                    id=request_id,
                    source_status=SourceStatus.FAILED,
                    patient_status=PatientStatus.APPROVED,
                    source_failure_reason="Key service down",
                ),
                grant=GrantResult(record_id=record_id, ok=False, error="Key service down"),
            )
        )

        response = client.post(f"/transfer-requests/{request_id}/retry-grant")

        assert response.status_code == 200
        assert response.json()["grant"]["error"] == "Key service down"

    def test_deny(
        self,
        client: TestClient,
        mock_transfer_service: MagicMock,
        source_doctor: PrincipalInfo,
    ) -> None:
        request_id = uuid.uuid4()
        mock_transfer_service.deny = AsyncMock(
            return_value=transfer_read(id=request_id, patient_status=PatientStatus.DENIED)
        )

        response = client.post(f"/transfer-requests/{request_id}/deny")

        assert response.status_code == 200
        mock_transfer_service.deny.assert_awaited_once_with(
            source_doctor, request_id, reason=None
        )
