"""Health record API endpoints."""

import uuid
from typing import Annotated

import pydantic
from fastapi import APIRouter, File, Form, Query, UploadFile

from src.api.v1.dependencies import Caller, Records
from src.core.exceptions import AuthorizationError, ValidationError
from src.models.domain.audit import AuditEventRead
from src.models.domain.health_record import (
    HealthRecordRead,
    RecordCiphertext,
    RecordDeletion,
    RecordType,
    RecordUpload,
    RecordWithPermission,
)
from src.models.domain.principal import PrincipalRole, normalize_principal

router = APIRouter()


async def read_upload(
    file: UploadFile,
    patient_wallet: str,
    title: str | None,
    record_type: RecordType,
    description: str | None,
    co_authorized: list[str] | None = None,
) -> RecordUpload:
    """Build a RecordUpload from multipart form fields.

    Raises:
        ValidationError: If any field is invalid or the file is empty
    """
    data = await file.read()
    try:
        return RecordUpload(
            patient_wallet=patient_wallet,
            title=title or file.filename or "Untitled Document",
            record_type=record_type,
            description=description,
            mime_type=file.content_type or "application/octet-stream",
            co_authorized=co_authorized or [],
            data=data,
        )
    except pydantic.ValidationError as e:
        raise ValidationError(
            detail="Invalid record upload",
            errors=e.errors(include_url=False, include_context=False, include_input=False),
        ) from e


@router.post("", response_model=HealthRecordRead, status_code=201)
async def upload_record(
    caller: Caller,
    service: Records,
    file: Annotated[UploadFile, File(description="Plaintext document")],
    patient_wallet: Annotated[str, Form()],
    title: Annotated[str | None, Form()] = None,
    record_type: Annotated[RecordType, Form()] = RecordType.OTHER,
    description: Annotated[str | None, Form()] = None,
    co_authorized: Annotated[list[str] | None, Form()] = None,
) -> HealthRecordRead:
    """Encrypt and store a document for a patient.

    Patients upload their own records; doctors may upload on a patient's
    behalf and are added to the record's policy.
    """
    upload = await read_upload(
        file, patient_wallet, title, record_type, description, co_authorized
    )
    return await service.create_record(caller, upload)


@router.get("", response_model=list[HealthRecordRead])
async def list_records(caller: Caller, service: Records) -> list[HealthRecordRead]:
    """List the patient's own records, or the records a doctor can decrypt."""
    if caller.role == PrincipalRole.PATIENT:
        return await service.list_by_patient(caller.wallet_address)
    if caller.role == PrincipalRole.DOCTOR:
        return await service.list_by_authorized_doctor(caller.wallet_address)
    raise AuthorizationError(detail="Only patients and doctors have records")


@router.get("/permissions", response_model=list[RecordWithPermission])
async def list_record_permissions(
    caller: Caller,
    service: Records,
    patient: str = Query(..., description="Patient wallet address"),
) -> list[RecordWithPermission]:
    """A patient's records with the calling doctor's permission on each."""
    if caller.role != PrincipalRole.DOCTOR:
        raise AuthorizationError(detail="Only doctors can view record permissions")
    try:
        patient_wallet = normalize_principal(patient)
    except ValueError as e:
        raise ValidationError(detail=str(e)) from e
    return await service.list_with_permissions(caller.wallet_address, patient_wallet)


@router.get("/{record_id}", response_model=HealthRecordRead)
async def get_record(
    record_id: uuid.UUID,
    caller: Caller,
    service: Records,
) -> HealthRecordRead:
    """Get record metadata. Returns 403 unless the caller is in the policy."""
    return await service.get(caller, record_id)


@router.get("/{record_id}/ciphertext", response_model=RecordCiphertext)
async def get_record_ciphertext(
    record_id: uuid.UUID,
    caller: Caller,
    service: Records,
) -> RecordCiphertext:
    """Download the ciphertext and wrapped key for client-side decryption."""
    return await service.fetch_ciphertext(caller, record_id)


@router.delete("/{record_id}", response_model=RecordDeletion)
async def delete_record(
    record_id: uuid.UUID,
    caller: Caller,
    service: Records,
) -> RecordDeletion:
    """Delete a record. Owner only.

    Requests referencing the record are flagged, and transfers still waiting
    on the patient for it are failed.
    """
    return await service.delete_record(caller, record_id)


@router.get("/{record_id}/audit", response_model=list[AuditEventRead])
async def get_record_audit_trail(
    record_id: uuid.UUID,
    caller: Caller,
    service: Records,
) -> list[AuditEventRead]:
    """Who uploaded, downloaded or changed access to a record. Owner only."""
    return await service.audit_trail(caller, record_id)
