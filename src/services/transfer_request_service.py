"""Transfer request engine: doctor-to-doctor document requests gated by the patient."""

import logging
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from src.models.db.access_request import Urgency as DbUrgency
from src.models.db.transfer_request import (
    PatientStatus,
    SourceStatus,
    TransferRequest,
)
from src.models.domain.health_record import RecordUpload, resolve_document_names
from src.models.domain.principal import PrincipalInfo, PrincipalRole
from src.models.domain.transfer_request import (
    TransferAttach,
    TransferDecision,
    TransferRequestCreate,
    TransferRequestRead,
    TransferView,
)
from src.repositories.record_repo import RecordRepository
from src.repositories.transfer_request_repo import TransferRequestRepository
from src.services.audit_service import AuditPublisher
from src.services.grant_executor import GrantExecutor
from src.services.identity_service import IdentityService
from src.services.record_service import RecordService

logger = logging.getLogger(__name__)

DEFAULT_DENIAL_REASON = "Transfer denied by patient"


class TransferRequestService:
    """Two-sided state machine for transfers.

    ``source_status`` belongs to the source doctor (A) and
    ``patient_status`` to the patient. Every write is a conditional UPDATE
    on the expected state, and patient approval writes both columns in one
    statement.
    """

    def __init__(
        self,
        session: AsyncSession,
        identity: IdentityService,
        records: RecordService,
        executor: GrantExecutor,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.identity = identity
        self.records = records
        self.executor = executor
        self.repo = TransferRequestRepository(session)
        self.record_repo = RecordRepository(session)
        self.audit = AuditPublisher(session)

    async def _load(self, request_id: uuid.UUID) -> TransferRequest:
        request = await self.repo.get_by_id(request_id, refresh=True)
        if request is None:
            raise NotFoundError(resource="Transfer request", resource_id=str(request_id))
        return request

    async def _to_reads(self, requests: list[TransferRequest]) -> list[TransferRequestRead]:
        parties: list[str] = []
        for r in requests:
            parties += [
                r.patient_wallet,
                r.requesting_doctor_wallet,
                r.source_doctor_wallet,
            ]
        names = await self.identity.display_names(parties)
        titles = await self.record_repo.titles_for(
            list({rid for r in requests for rid in r.requested_record_ids})
        )
        reads: list[TransferRequestRead] = []
        for request in requests:
            values = {
                column: getattr(request, column)
                for column in TransferRequestRead.model_fields
                if hasattr(request, column)
            }
            values.update(
                is_patient_actionable=request.is_patient_actionable,
                patient_name=names.get(request.patient_wallet),
                requesting_doctor_name=names.get(request.requesting_doctor_wallet),
                source_doctor_name=names.get(request.source_doctor_wallet),
                document_names=resolve_document_names(
                    list(request.requested_record_ids),
                    list(request.snapshot_document_titles or []),
                    titles,
                ),
            )
            reads.append(TransferRequestRead.model_validate(values))
        return reads

    async def _to_read(self, request: TransferRequest) -> TransferRequestRead:
        return (await self._to_reads([request]))[0]

    async def _reload_read(self, request_id: uuid.UUID) -> TransferRequestRead:
        return await self._to_read(await self._load(request_id))

    async def _transition(
        self,
        request: TransferRequest,
        expected_source: SourceStatus | None,
        expected_patient: PatientStatus | None,
        **values: object,
    ) -> None:
        if not await self.repo.transition(
            request.id,
            expected_source=expected_source,
            expected_patient=expected_patient,
            **values,
        ):
            raise ConflictError(
                detail=f"Transfer request {request.id} changed state concurrently"
            )

    def _require_source(self, caller: PrincipalInfo, request: TransferRequest) -> None:
        if caller.wallet_address != request.source_doctor_wallet:
            raise AuthorizationError(detail="Only the source doctor can act on this transfer")

    def _require_patient(self, caller: PrincipalInfo, request: TransferRequest) -> None:
        if caller.wallet_address != request.patient_wallet:
            raise AuthorizationError(detail="Only the patient can decide on this transfer")

    @staticmethod
    def _expect(
        request: TransferRequest,
        source: SourceStatus,
        patient: PatientStatus | None = None,
    ) -> None:
        if request.source_status != source or (
            patient is not None and request.patient_status != patient
        ):
            expected = source.value if patient is None else f"{source.value}/{patient.value}"
            raise ConflictError(
                detail=(
                    f"Transfer request {request.id} is "
                    f"{request.source_status.value}/{request.patient_status.value}, "
                    f"expected {expected}"
                )
            )

    async def create(
        self,
        caller: PrincipalInfo,
        data: TransferRequestCreate,
    ) -> TransferRequestRead:
        """Doctor B asks doctor A for a patient's document.

        Raises:
            AuthorizationError: If the caller is not a doctor
            ValidationError: If the parties or purpose are invalid
        """
        if caller.role != PrincipalRole.DOCTOR:
            raise AuthorizationError(detail="Only doctors can request a transfer")
        if data.source_doctor_wallet == caller.wallet_address:
            raise ValidationError(detail="The source doctor must be a different doctor")

        await self.identity.require(data.patient_wallet, PrincipalRole.PATIENT)
        source = await self.identity.resolve(data.source_doctor_wallet)
        if source is None or source.role != PrincipalRole.DOCTOR:
            raise ValidationError(
                detail=f"Source '{data.source_doctor_wallet}' is not a registered doctor"
            )

        description = data.document_description.strip()
        if not description:
            raise ValidationError(detail="Document description is required")
        purpose = data.purpose.strip()
        if len(purpose) < self.settings.min_purpose_length:
            raise ValidationError(
                detail=(
                    f"Purpose must be at least {self.settings.min_purpose_length} "
                    "characters"
                )
            )

        now = datetime.now(UTC)
        request = TransferRequest(
            patient_wallet=data.patient_wallet,
            requesting_doctor_wallet=caller.wallet_address,
            source_doctor_wallet=data.source_doctor_wallet,
            requesting_organization=caller.organization_name,
            source_organization=data.source_organization or source.organization_name,
            document_description=description,
            requested_record_ids=[],
            deleted_record_ids=[],
            snapshot_document_titles=[],
            purpose=purpose,
            urgency=DbUrgency(data.urgency.value),
            source_status=SourceStatus.AWAITING_UPLOAD,
            patient_status=PatientStatus.PENDING,
            created_at=now,
            expires_at=now + timedelta(days=self.settings.transfer_request_ttl_days),
        )
        created = await self.repo.create(request)
        await self.audit.publish(
            "transfer_request.created",
            subject_type="transfer_request",
            subject_id=created.id,
            actor_wallet=caller.wallet_address,
        )
        logger.info(
            "Transfer request created",
            extra={
                "transfer_request_id": str(created.id),
                "requesting": caller.wallet_address,
                "source": data.source_doctor_wallet,
            },
        )
        return await self._to_read(created)

    async def reject(
        self,
        caller: PrincipalInfo,
        request_id: uuid.UUID,
        reason: str,
    ) -> TransferRequestRead:
        """Source doctor declines to provide the document. Terminal.

        Raises:
            AuthorizationError: If the caller is not the source doctor
            ValidationError: If no reason is given
            ConflictError: If the request is no longer awaiting upload
        """
        request = await self._load(request_id)
        self._require_source(caller, request)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError(detail="A rejection reason is required")
        self._expect(request, SourceStatus.AWAITING_UPLOAD)
        await self._transition(
            request,
            SourceStatus.AWAITING_UPLOAD,
            None,
            source_status=SourceStatus.REJECTED,
            source_rejection_reason=reason,
            source_responded_at=datetime.now(UTC),
        )
        await self.audit.publish(
            "transfer_request.rejected",
            subject_type="transfer_request",
            subject_id=request.id,
            actor_wallet=caller.wallet_address,
        )
        return await self._reload_read(request_id)

    async def attach_upload(
        self,
        caller: PrincipalInfo,
        request_id: uuid.UUID,
        attach: TransferAttach,
    ) -> TransferRequestRead:
        """Attach a stored record that only the source doctor can decrypt.

        Raises:
            AuthorizationError: If the caller is not the source doctor
            ValidationError: If the record is missing, foreign or over-shared
            ConflictError: If the request is no longer awaiting upload
        """
        request = await self._load(request_id)
        self._require_source(caller, request)
        self._expect(request, SourceStatus.AWAITING_UPLOAD)

        record = await self.record_repo.get_by_id(attach.record_id, refresh=True)
        if record is None:
            raise ValidationError(detail=f"Record {attach.record_id} does not exist")
        if record.patient_wallet != request.patient_wallet:
            raise ValidationError(
                detail=f"Record {attach.record_id} does not belong to the patient"
            )
        if record.policy - {record.patient_wallet} != {request.source_doctor_wallet}:
            raise ValidationError(
                detail="The attached record must be authorized for the source doctor only"
            )

        await self._transition(
            request,
            SourceStatus.AWAITING_UPLOAD,
            None,
            source_status=SourceStatus.UPLOADED,
            requested_record_ids=[record.id],
            snapshot_document_titles=[attach.title],
            source_responded_at=datetime.now(UTC),
        )
        await self.audit.publish(
            "transfer_request.uploaded",
            subject_type="transfer_request",
            subject_id=request.id,
            actor_wallet=caller.wallet_address,
            properties={"record_id": str(record.id)},
        )
        logger.info(
            "Transfer document attached",
            extra={"transfer_request_id": str(request.id), "record_id": str(record.id)},
        )
        return await self._reload_read(request_id)

    async def upload_and_attach(
        self,
        caller: PrincipalInfo,
        request_id: uuid.UUID,
        upload: RecordUpload,
    ) -> TransferRequestRead:
        """Store a new record for the patient and attach it in one unit of work.

        Raises:
            AuthorizationError: If the caller is not the source doctor
            ValidationError: If the upload names another patient
            ConflictError: If the request is no longer awaiting upload
        """
        request = await self._load(request_id)
        self._require_source(caller, request)
        self._expect(request, SourceStatus.AWAITING_UPLOAD)
        if upload.patient_wallet != request.patient_wallet:
            raise ValidationError(detail="The upload must belong to the transfer's patient")

        record = await self.records.create_record(
            caller, upload.model_copy(update={"co_authorized": []})
        )
        return await self.attach_upload(
            caller,
            request_id,
            TransferAttach(record_id=record.id, title=record.title),
        )

    async def approve(
        self,
        caller: PrincipalInfo,
        request_id: uuid.UUID,
    ) -> TransferDecision:
        """Patient approves; the requesting doctor is granted the document.

        On success both statuses move together (approved/granted). On a
        failed grant the consent stands (approved) and the source side is
        marked failed with the reason.

        Raises:
            AuthorizationError: If the caller is not the patient
            ConflictError: If the request is not awaiting the patient
        """
        request = await self._load(request_id)
        self._require_patient(caller, request)
        self._expect(request, SourceStatus.UPLOADED, PatientStatus.PENDING)

        grant = await self.executor.grant_batch(
            request.requested_record_ids,
            request.requesting_doctor_wallet,
            deleted=set(request.deleted_record_ids or []),
        )
        now = datetime.now(UTC)
        if grant.fail_count == 0:
            values = {
                "patient_status": PatientStatus.APPROVED,
                "source_status": SourceStatus.GRANTED,
                "source_failure_reason": None,
            }
        else:
            values = {
                "patient_status": PatientStatus.APPROVED,
                "source_status": SourceStatus.FAILED,
                "source_failure_reason": "; ".join(grant.errors.values()),
            }
        await self._transition(
            request,
            SourceStatus.UPLOADED,
            PatientStatus.PENDING,
            patient_responded_at=now,
            **values,
        )
        await self.audit.publish(
            "transfer_request.approved",
            subject_type="transfer_request",
            subject_id=request.id,
            actor_wallet=caller.wallet_address,
            properties={"granted": grant.fail_count == 0},
        )
        logger.info(
            "Transfer approved",
            extra={
                "transfer_request_id": str(request.id),
                "source_status": values["source_status"].value,
            },
        )
        return TransferDecision(
            request=await self._reload_read(request_id),
            grant=grant.results[0] if grant.results else None,
        )

    async def retry_grant(
        self,
        caller: PrincipalInfo,
        request_id: uuid.UUID,
    ) -> TransferDecision:
        """Retry a failed grant without asking the patient again.

        Raises:
            AuthorizationError: If the caller is not the patient
            ConflictError: If the request is not failed/approved
        """
        request = await self._load(request_id)
        self._require_patient(caller, request)
        self._expect(request, SourceStatus.FAILED, PatientStatus.APPROVED)

        grant = await self.executor.grant_batch(
            request.requested_record_ids,
            request.requesting_doctor_wallet,
            deleted=set(request.deleted_record_ids or []),
        )
        if grant.fail_count == 0:
            await self._transition(
                request,
                SourceStatus.FAILED,
                PatientStatus.APPROVED,
                source_status=SourceStatus.GRANTED,
                source_failure_reason=None,
            )
        else:
            await self._transition(
                request,
                SourceStatus.FAILED,
                PatientStatus.APPROVED,
                source_failure_reason="; ".join(grant.errors.values()),
            )
        await self.audit.publish(
            "transfer_request.grant_retried",
            subject_type="transfer_request",
            subject_id=request.id,
            actor_wallet=caller.wallet_address,
            properties={"granted": grant.fail_count == 0},
        )
        return TransferDecision(
            request=await self._reload_read(request_id),
            grant=grant.results[0] if grant.results else None,
        )

    async def deny(
        self,
        caller: PrincipalInfo,
        request_id: uuid.UUID,
        reason: str | None = None,
    ) -> TransferRequestRead:
        """Patient denies. The source side is left as uploaded.

        Raises:
            AuthorizationError: If the caller is not the patient
            ConflictError: If the request is not awaiting the patient
        """
        request = await self._load(request_id)
        self._require_patient(caller, request)
        self._expect(request, SourceStatus.UPLOADED, PatientStatus.PENDING)
        await self._transition(
            request,
            SourceStatus.UPLOADED,
            PatientStatus.PENDING,
            patient_status=PatientStatus.DENIED,
            patient_denial_reason=(reason or "").strip() or DEFAULT_DENIAL_REASON,
            patient_responded_at=datetime.now(UTC),
        )
        await self.audit.publish(
            "transfer_request.denied",
            subject_type="transfer_request",
            subject_id=request.id,
            actor_wallet=caller.wallet_address,
        )
        return await self._reload_read(request_id)

    async def get(self, caller: PrincipalInfo, request_id: uuid.UUID) -> TransferRequestRead:
        """Get a transfer visible to the caller.

        The patient does not see a transfer until the source doctor acts.

        Raises:
            NotFoundError: If missing or not yet visible to the patient
            AuthorizationError: If the caller is not a party
        """
        request = await self._load(request_id)
        if caller.wallet_address in (
            request.requesting_doctor_wallet,
            request.source_doctor_wallet,
        ):
            return await self._to_read(request)
        if caller.wallet_address == request.patient_wallet:
            if request.source_status == SourceStatus.AWAITING_UPLOAD:
                raise NotFoundError(resource="Transfer request", resource_id=str(request_id))
            return await self._to_read(request)
        raise AuthorizationError(detail="Not a party to this transfer request")

    async def list_for(
        self,
        caller: PrincipalInfo,
        view: TransferView | None = None,
    ) -> list[TransferRequestRead]:
        """List transfers from one party's point of view.

        Patients default to the patient view, doctors to the requesting view.

        Raises:
            AuthorizationError: If the view does not match the caller's role
        """
        if view is None:
            view = (
                TransferView.PATIENT
                if caller.role == PrincipalRole.PATIENT
                else TransferView.REQUESTING
            )

        if view == TransferView.PATIENT:
            if caller.role != PrincipalRole.PATIENT:
                raise AuthorizationError(detail="Only patients have a patient view")
            requests = await self.repo.list_for_patient(caller.wallet_address)
        else:
            if caller.role != PrincipalRole.DOCTOR:
                raise AuthorizationError(detail="Only doctors have a doctor view")
            if view == TransferView.SOURCE:
                requests = await self.repo.list_for_source(caller.wallet_address)
            else:
                requests = await self.repo.list_for_requesting(caller.wallet_address)
        return await self._to_reads(requests)
