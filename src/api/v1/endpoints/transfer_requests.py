"""Transfer request API endpoints."""

import uuid
from typing import Annotated

from fastapi import APIRouter, File, Form, Query, UploadFile

from src.api.v1.dependencies import Caller, TransferRequests
from src.api.v1.endpoints.records import read_upload
from src.models.domain.health_record import RecordType
from src.models.domain.transfer_request import (
    TransferAttach,
    TransferDecision,
    TransferDeny,
    TransferReject,
    TransferRequestCreate,
    TransferRequestRead,
    TransferView,
)

router = APIRouter()


@router.post("", response_model=TransferRequestRead, status_code=201)
async def create_transfer_request(
    data: TransferRequestCreate,
    caller: Caller,
    service: TransferRequests,
) -> TransferRequestRead:
    """Ask another doctor for a patient's document."""
    return await service.create(caller, data)


@router.get("", response_model=list[TransferRequestRead])
async def list_transfer_requests(
    caller: Caller,
    service: TransferRequests,
    view: TransferView | None = Query(
        None, description="patient, source or requesting"
    ),
) -> list[TransferRequestRead]:
    """List transfers from the caller's point of view."""
    return await service.list_for(caller, view=view)


@router.get("/{request_id}", response_model=TransferRequestRead)
async def get_transfer_request(
    request_id: uuid.UUID,
    caller: Caller,
    service: TransferRequests,
) -> TransferRequestRead:
    """Get one transfer request."""
    return await service.get(caller, request_id)


@router.post("/{request_id}/reject", response_model=TransferRequestRead)
async def reject_transfer_request(
    request_id: uuid.UUID,
    body: TransferReject,
    caller: Caller,
    service: TransferRequests,
) -> TransferRequestRead:
    """Source doctor declines to provide the document."""
    return await service.reject(caller, request_id, body.reason)


@router.post("/{request_id}/attach", response_model=TransferRequestRead)
async def attach_transfer_document(
    request_id: uuid.UUID,
    body: TransferAttach,
    caller: Caller,
    service: TransferRequests,
) -> TransferRequestRead:
    """Attach an existing record that only the source doctor can decrypt."""
    return await service.attach_upload(caller, request_id, body)


@router.post("/{request_id}/upload", response_model=TransferRequestRead)
async def upload_transfer_document(
    request_id: uuid.UUID,
    caller: Caller,
    service: TransferRequests,
    file: Annotated[UploadFile, File(description="Plaintext document")],
    patient_wallet: Annotated[str, Form()],
    title: Annotated[str | None, Form()] = None,
    record_type: Annotated[RecordType, Form()] = RecordType.OTHER,
    description: Annotated[str | None, Form()] = None,
) -> TransferRequestRead:
    """Encrypt a new document for the patient and the source doctor, then attach it."""
    upload = await read_upload(file, patient_wallet, title, record_type, description)
    return await service.upload_and_attach(caller, request_id, upload)


@router.post("/{request_id}/approve", response_model=TransferDecision)
async def approve_transfer_request(
    request_id: uuid.UUID,
    caller: Caller,
    service: TransferRequests,
) -> TransferDecision:
    """Patient approves; the requesting doctor is granted the document."""
    return await service.approve(caller, request_id)


@router.post("/{request_id}/retry-grant", response_model=TransferDecision)
async def retry_transfer_grant(
    request_id: uuid.UUID,
    caller: Caller,
    service: TransferRequests,
) -> TransferDecision:
    """Retry a failed grant without asking the patient again."""
    return await service.retry_grant(caller, request_id)


@router.post("/{request_id}/deny", response_model=TransferRequestRead)
async def deny_transfer_request(
    request_id: uuid.UUID,
    caller: Caller,
    service: TransferRequests,
    body: TransferDeny | None = None,
) -> TransferRequestRead:
    """Patient denies the transfer."""
    return await service.deny(caller, request_id, reason=body.reason if body else None)
