"""Access request API endpoints."""

import uuid

from fastapi import APIRouter, Query

from src.api.v1.dependencies import AccessRequests, Caller
from src.models.domain.access_request import (
    AccessRequestCreate,
    AccessRequestDecision,
    AccessRequestDeny,
    AccessRequestRead,
    AccessRequestStatus,
)

router = APIRouter()


@router.post("", response_model=AccessRequestRead, status_code=201)
async def create_access_request(
    data: AccessRequestCreate,
    caller: Caller,
    service: AccessRequests,
) -> AccessRequestRead:
    """Request access to some of a patient's records. Doctors only."""
    return await service.create(caller, data)


@router.get("", response_model=list[AccessRequestRead])
async def list_access_requests(
    caller: Caller,
    service: AccessRequests,
    status: AccessRequestStatus | None = Query(
        None, description="Filter by display status"
    ),
) -> list[AccessRequestRead]:
    """List requests addressed to (patient) or made by (doctor) the caller."""
    return await service.list_for(caller, status=status)


@router.get("/{request_id}", response_model=AccessRequestRead)
async def get_access_request(
    request_id: uuid.UUID,
    caller: Caller,
    service: AccessRequests,
) -> AccessRequestRead:
    """Get one access request."""
    return await service.get(caller, request_id)


@router.post("/{request_id}/send", response_model=AccessRequestRead)
async def send_access_request(
    request_id: uuid.UUID,
    caller: Caller,
    service: AccessRequests,
) -> AccessRequestRead:
    """Send a draft to the patient."""
    return await service.send(caller, request_id)


@router.post("/{request_id}/approve", response_model=AccessRequestDecision)
async def approve_access_request(
    request_id: uuid.UUID,
    caller: Caller,
    service: AccessRequests,
) -> AccessRequestDecision:
    """Approve and grant the doctor each requested record.

    The request is approved even when some grants fail; check ``grants``.
    """
    return await service.approve(caller, request_id)


@router.post("/{request_id}/retry-grants", response_model=AccessRequestDecision)
async def retry_access_request_grants(
    request_id: uuid.UUID,
    caller: Caller,
    service: AccessRequests,
) -> AccessRequestDecision:
    """Re-run grant delivery for an approved request."""
    return await service.retry_grants(caller, request_id)


@router.post("/{request_id}/deny", response_model=AccessRequestRead)
async def deny_access_request(
    request_id: uuid.UUID,
    caller: Caller,
    service: AccessRequests,
    body: AccessRequestDeny | None = None,
) -> AccessRequestRead:
    """Deny a request."""
    return await service.deny(caller, request_id, reason=body.reason if body else None)


@router.post("/{request_id}/revoke", response_model=AccessRequestDecision)
async def revoke_access_request(
    request_id: uuid.UUID,
    caller: Caller,
    service: AccessRequests,
) -> AccessRequestDecision:
    """Revoke an approved request and remove the doctor from its records."""
    return await service.revoke(caller, request_id)
