"""Tests for access request API endpoints."""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.v1.dependencies import get_access_request_service, get_caller
from src.api.v1.endpoints.access_requests import router
from src.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    setup_exception_handlers,
)
from src.models.domain.access_request import (
    AccessRequestDecision,
    AccessRequestRead,
    AccessRequestStatus,
    Urgency,
)
from src.models.domain.grant import BatchGrantResult, GrantResult
from src.models.domain.principal import PrincipalInfo


@pytest.fixture
def mock_access_request_service() -> MagicMock:
    """Create a mock access request service."""
    return MagicMock()


@pytest.fixture
def app(mock_access_request_service: MagicMock, doctor: PrincipalInfo) -> FastAPI:
    """Create test app with the doctor as caller."""
    test_app = FastAPI()
    test_app.include_router(router, prefix="/access-requests")
    setup_exception_handlers(test_app)

    test_app.dependency_overrides[get_caller] = lambda: doctor
    test_app.dependency_overrides[get_access_request_service] = (
        lambda: mock_access_request_service
    )
    return test_app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create test client."""
    return TestClient(app)


def access_request_read(**overrides: Any) -> AccessRequestRead:
    now = datetime.now(UTC)
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "patient_wallet": "0xpatient01",
        "doctor_wallet": "0xdoctor01",
        "requested_record_ids": [uuid.uuid4()],
        "purpose": "Pre-operative assessment",
        "urgency": Urgency.ROUTINE,
        "status": AccessRequestStatus.SENT,
        "display_status": AccessRequestStatus.SENT,
        "created_at": now,
        "sent_at": now,
        "expires_at": now + timedelta(days=30),
        "document_names": ["Blood panel"],
    }
    values.update(overrides)
    return AccessRequestRead(**values)


class TestCreateAccessRequest:
    """Tests for POST /access-requests."""

    def test_create_success(
        self,
        client: TestClient,
        mock_access_request_service: MagicMock,
        doctor: PrincipalInfo,
    ) -> None:
        record_id = uuid.uuid4()
        mock_access_request_service.create = AsyncMock(
            return_value=access_request_read(requested_record_ids=[record_id])
        )

        response = client.post(
            "/access-requests",
            json={
                "patient_wallet": "0xPatient01",
                "record_ids": [str(record_id)],
                "purpose": "Pre-operative assessment",
                "urgency": "urgent",
                "duration_days": 7,
            },
        )

        assert response.status_code == 201
        assert response.json()["document_names"] == ["Blood panel"]
        caller, data = mock_access_request_service.create.call_args.args
        assert caller == doctor
        assert data.patient_wallet == "0xpatient01"
        assert data.urgency == Urgency.URGENT
        assert data.duration_days == 7

    def test_create_missing_purpose(self, client: TestClient) -> None:
        response = client.post(
            "/access-requests",
            json={"patient_wallet": "0xpatient01", "record_ids": [str(uuid.uuid4())]},
        )

        assert response.status_code == 422

    def test_create_by_patient_forbidden(
        self, client: TestClient, mock_access_request_service: MagicMock
    ) -> None:
        mock_access_request_service.create = AsyncMock(
            side_effect=AuthorizationError("Only doctors can request access")
        )

        response = client.post(
            "/access-requests",
            json={
                "patient_wallet": "0xpatient01",
                "record_ids": [str(uuid.uuid4())],
                "purpose": "Checkup",
            },
        )

        assert response.status_code == 403


class TestListAccessRequests:
    """Tests for GET /access-requests."""

    def test_list_with_status_filter(
        self,
        client: TestClient,
        mock_access_request_service: MagicMock,
        doctor: PrincipalInfo,
    ) -> None:
        mock_access_request_service.list_for = AsyncMock(
            return_value=[
                access_request_read(
                    status=AccessRequestStatus.APPROVED,
                    display_status=AccessRequestStatus.EXPIRED,
                )
            ]
        )

        response = client.get("/access-requests", params={"status": "expired"})

        assert response.status_code == 200
        body = response.json()
        assert body[0]["status"] == "approved"
        assert body[0]["display_status"] == "expired"
        mock_access_request_service.list_for.assert_awaited_once_with(
            doctor, status=AccessRequestStatus.EXPIRED
        )

    def test_list_invalid_status(self, client: TestClient) -> None:
        response = client.get("/access-requests", params={"status": "bogus"})

        assert response.status_code == 422


class TestGetAccessRequest:
    """Tests for GET /access-requests/{id}."""

    def test_get_hidden_draft(
        self, client: TestClient, mock_access_request_service: MagicMock
    ) -> None:
        mock_access_request_service.get = AsyncMock(
            side_effect=NotFoundError("Access request")
        )

        response = client.get(f"/access-requests/{uuid.uuid4()}")

        assert response.status_code == 404


class TestTransitions:
    """Tests for the send/approve/deny/revoke endpoints."""

    def test_send(
        self, client: TestClient, mock_access_request_service: MagicMock
    ) -> None:
        request_id = uuid.uuid4()
        mock_access_request_service.send = AsyncMock(
            return_value=access_request_read(id=request_id)
        )

        response = client.post(f"/access-requests/{request_id}/send")

        assert response.status_code == 200
        assert response.json()["status"] == "sent"

    def test_approve_partial_success(
        self,
        app: FastAPI,
        client: TestClient,
        mock_access_request_service: MagicMock,
        patient: PrincipalInfo,
    ) -> None:
        app.dependency_overrides[get_caller] = lambda: patient
        ok_id, bad_id = uuid.uuid4(), uuid.uuid4()
        request_id = uuid.uuid4()
        mock_access_request_service.approve = AsyncMock(
            return_value=AccessRequestDecision(
                request=access_request_read(
                    id=request_id,
                    status=AccessRequestStatus.APPROVED,
                    display_status=AccessRequestStatus.APPROVED,
                    grant_success_count=1,
                    grant_failure_count=1,
                ),
                grants=BatchGrantResult(
                    results=[
                        GrantResult(record_id=ok_id, ok=True, changed=True),
                        GrantResult(record_id=bad_id, ok=False, error="Key service down"),
                    ]
                ),
            )
        )

        response = client.post(f"/access-requests/{request_id}/approve")

        assert response.status_code == 200
        body = response.json()
        assert body["request"]["status"] == "approved"
        assert body["grants"]["outcome"] == "Partial Success"
        assert body["grants"]["errors"] == {str(bad_id): "Key service down"}
        mock_access_request_service.approve.assert_awaited_once_with(patient, request_id)

    def test_approve_twice_conflicts(
        self, client: TestClient, mock_access_request_service: MagicMock
    ) -> None:
        mock_access_request_service.approve = AsyncMock(
            side_effect=ConflictError("Access request is approved, expected sent")
        )

        response = client.post(f"/access-requests/{uuid.uuid4()}/approve")

        assert response.status_code == 409

    def test_retry_grants(
        self, client: TestClient, mock_access_request_service: MagicMock
    ) -> None:
        request_id = uuid.uuid4()
        mock_access_request_service.retry_grants = AsyncMock(
            return_value=AccessRequestDecision(
                request=access_request_read(
                    id=request_id,
                    status=AccessRequestStatus.APPROVED,
                    display_status=AccessRequestStatus.APPROVED,
                ),
                grants=BatchGrantResult(),
            )
        )

        response = client.post(f"/access-requests/{request_id}/retry-grants")

        assert response.status_code == 200
        assert response.json()["grants"]["outcome"] == "Access Granted"

    def test_deny_with_reason(
        self,
        client: TestClient,
        mock_access_request_service: MagicMock,
        doctor: PrincipalInfo,
    ) -> None:
        request_id = uuid.uuid4()
        mock_access_request_service.deny = AsyncMock(
            return_value=access_request_read(
                id=request_id,
                status=AccessRequestStatus.DENIED,
                display_status=AccessRequestStatus.DENIED,
                denial_reason="Not needed",
            )
        )

        response = client.post(
            f"/access-requests/{request_id}/deny", json={"reason": "Not needed"}
        )

        assert response.status_code == 200
        mock_access_request_service.deny.assert_awaited_once_with(
            doctor, request_id, reason="Not needed"
        )

    def test_deny_without_body(
        self,
        client: TestClient,
        mock_access_request_service: MagicMock,
        doctor: PrincipalInfo,
    ) -> None:
        request_id = uuid.uuid4()
        mock_access_request_service.deny = AsyncMock(
            return_value=access_request_read(
                id=request_id,
                status=AccessRequestStatus.DENIED,
                display_status=AccessRequestStatus.DENIED,
            )
        )

        response = client.post(f"/access-requests/{request_id}/deny")

        assert response.status_code == 200
        mock_access_request_service.deny.assert_awaited_once_with(
            doctor, request_id, reason=None
        )

    def test_revoke(
        self, client: TestClient, mock_access_request_service: MagicMock
    ) -> None:
        request_id = uuid.uuid4()
        mock_access_request_service.revoke = AsyncMock(
            return_value=AccessRequestDecision(
                request=access_request_read(
                    id=request_id,
                    status=AccessRequestStatus.REVOKED,
                    display_status=AccessRequestStatus.REVOKED,
                ),
                grants=BatchGrantResult(
                    results=[GrantResult(record_id=uuid.uuid4(), ok=True, changed=True)]
                ),
            )
        )

        response = client.post(f"/access-requests/{request_id}/revoke")

        assert response.status_code == 200
        assert response.json()["request"]["status"] == "revoked"
