"""Access request engine: direct patient/doctor consent decisions."""

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
from src.models.db.access_request import AccessRequest
from src.models.db.access_request import AccessRequestStatus as DbStatus
from src.models.db.access_request import Urgency as DbUrgency
from src.models.domain.access_request import (
    AccessRequestCreate,
    AccessRequestDecision,
    AccessRequestRead,
    AccessRequestStatus,
    display_status,
)
from src.models.domain.grant import BatchGrantResult
from src.models.domain.health_record import resolve_document_names
from src.models.domain.principal import PrincipalInfo, PrincipalRole
from src.repositories.access_request_repo import AccessRequestRepository
from src.repositories.record_repo import RecordRepository
from src.repositories.transfer_request_repo import TransferRequestRepository
from src.services.audit_service import AuditPublisher
from src.services.grant_executor import GrantExecutor
from src.services.identity_service import IdentityService

logger = logging.getLogger(__name__)

DEFAULT_DENIAL_REASON = "Request denied by patient"


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class AccessRequestService:
    """Records patient decisions on doctors' access requests.

    Decisions and delivery are tracked separately: an approval stands even
    when some grants fail, and the per-record report is kept on the request.
    """

    def __init__(
        self,
        session: AsyncSession,
        identity: IdentityService,
        executor: GrantExecutor,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.identity = identity
        self.executor = executor
        self.repo = AccessRequestRepository(session)
        self.record_repo = RecordRepository(session)
        self.transfer_repo = TransferRequestRepository(session)
        self.audit = AuditPublisher(session)

    async def _load(self, request_id: uuid.UUID) -> AccessRequest:
        request = await self.repo.get_by_id(request_id, refresh=True)
        if request is None:
            raise NotFoundError(resource="Access request", resource_id=str(request_id))
        return request

    async def _to_reads(self, requests: list[AccessRequest]) -> list[AccessRequestRead]:
        now = datetime.now(UTC)
        names = await self.identity.display_names(
            [r.patient_wallet for r in requests] + [r.doctor_wallet for r in requests]
        )
        titles = await self.record_repo.titles_for(
            list({rid for r in requests for rid in r.requested_record_ids})
        )
        reads: list[AccessRequestRead] = []
        for request in requests:
            read = AccessRequestRead.model_validate(
                {
                    **{
                        column: getattr(request, column)
                        for column in AccessRequestRead.model_fields
                        if hasattr(request, column)
                    },
                    "display_status": display_status(request, now),
                    "patient_name": names.get(request.patient_wallet),
                    "doctor_name": names.get(request.doctor_wallet),
                    "document_names": resolve_document_names(
                        list(request.requested_record_ids),
                        list(request.snapshot_document_titles or []),
                        titles,
                    ),
                }
            )
            reads.append(read)
        return reads

    async def _to_read(self, request: AccessRequest) -> AccessRequestRead:
        return (await self._to_reads([request]))[0]

    def _require_patient(self, caller: PrincipalInfo, request: AccessRequest) -> None:
        if caller.wallet_address != request.patient_wallet:
            raise AuthorizationError(detail="Only the patient can decide on this request")

    async def _transition(
        self,
        request: AccessRequest,
        expected: DbStatus,
        **values: object,
    ) -> None:
        if not await self.repo.transition(request.id, expected, **values):
            raise ConflictError(
                detail=f"Access request {request.id} is no longer {expected.value}"
            )

    async def create(
        self,
        caller: PrincipalInfo,
        data: AccessRequestCreate,
    ) -> AccessRequestRead:
        """Create a request from a doctor to a patient.

        Raises:
            AuthorizationError: If the caller is not a doctor
            ValidationError: If the patient, records, purpose or expiry are invalid
        """
        if caller.role != PrincipalRole.DOCTOR:
            raise AuthorizationError(detail="Only doctors can request access")
        await self.identity.require(data.patient_wallet, PrincipalRole.PATIENT)

        record_ids = list(dict.fromkeys(data.record_ids))
        if not record_ids:
            raise ValidationError(detail="At least one record must be requested")

        purpose = data.purpose.strip()
        if len(purpose) < self.settings.min_purpose_length:
            raise ValidationError(
                detail=(
                    f"Purpose must be at least {self.settings.min_purpose_length} "
                    "characters"
                )
            )

        records = {r.id: r for r in await self.record_repo.get_many(record_ids)}
        for record_id in record_ids:
            record = records.get(record_id)
            if record is None:
                raise ValidationError(detail=f"Record {record_id} does not exist")
            if record.patient_wallet != data.patient_wallet:
                raise ValidationError(
                    detail=f"Record {record_id} does not belong to the patient"
                )

        now = datetime.now(UTC)
        if data.expires_at is not None and data.duration_days is not None:
            raise ValidationError(detail="Give either expires_at or duration_days, not both")
        expires_at = None
        if data.expires_at is not None:
            expires_at = _as_utc(data.expires_at)
            if expires_at <= now:
                raise ValidationError(detail="expires_at must be in the future")
        elif data.duration_days is not None:
            expires_at = now + timedelta(days=data.duration_days)

        request = AccessRequest(
            patient_wallet=data.patient_wallet,
            doctor_wallet=caller.wallet_address,
            requested_record_ids=record_ids,
            deleted_record_ids=[],
            snapshot_document_titles=[records[rid].title for rid in record_ids],
            purpose=purpose,
            urgency=DbUrgency(data.urgency.value),
            status=DbStatus.DRAFT if data.draft else DbStatus.SENT,
            sent_at=None if data.draft else now,
            expires_at=expires_at,
            created_at=now,
        )
        created = await self.repo.create(request)
        await self.audit.publish(
            "access_request.created",
            subject_type="access_request",
            subject_id=created.id,
            actor_wallet=caller.wallet_address,
            properties={"record_count": len(record_ids), "draft": data.draft},
        )
        logger.info(
            "Access request created",
            extra={
                "access_request_id": str(created.id),
                "doctor": caller.wallet_address,
                "patient": data.patient_wallet,
            },
        )
        return await self._to_read(created)

    async def send(self, caller: PrincipalInfo, request_id: uuid.UUID) -> AccessRequestRead:
        """Send a draft to the patient.

        Raises:
            AuthorizationError: If the caller is not the requesting doctor
            ConflictError: If the request is not a draft
        """
        request = await self._load(request_id)
        if caller.wallet_address != request.doctor_wallet:
            raise AuthorizationError(detail="Only the requesting doctor can send this request")
        await self._transition(
            request, DbStatus.DRAFT, status=DbStatus.SENT, sent_at=datetime.now(UTC)
        )
        return await self._to_read(await self._load(request_id))

    async def _deliver(self, request: AccessRequest) -> BatchGrantResult:
        grants = await self.executor.grant_batch(
            request.requested_record_ids,
            request.doctor_wallet,
            deleted=set(request.deleted_record_ids or []),
        )
        await self.repo.record_grant_report(
            request.id,
            success_count=grants.success_count,
            failure_count=grants.fail_count,
            errors=grants.errors,
        )
        return grants

    async def approve(
        self,
        caller: PrincipalInfo,
        request_id: uuid.UUID,
    ) -> AccessRequestDecision:
        """Approve a sent request and grant the doctor each requested record.

        The request is approved even if some or all grants fail; the
        outcome and per-record errors are returned and stored.

        Raises:
            AuthorizationError: If the caller is not the patient
            ConflictError: If the request is not awaiting a decision
        """
        request = await self._load(request_id)
        self._require_patient(caller, request)
        await self._transition(
            request,
            DbStatus.SENT,
            status=DbStatus.APPROVED,
            responded_at=datetime.now(UTC),
        )

        grants = await self._deliver(request)
        await self.audit.publish(
            "access_request.approved",
            subject_type="access_request",
            subject_id=request.id,
            actor_wallet=caller.wallet_address,
            properties={
                "success_count": grants.success_count,
                "fail_count": grants.fail_count,
                "outcome": grants.outcome.value,
            },
        )
        logger.info(
            "Access request approved",
            extra={
                "access_request_id": str(request.id),
                "outcome": grants.outcome.value,
                "fail_count": grants.fail_count,
            },
        )
        return AccessRequestDecision(
            request=await self._to_read(await self._load(request_id)),
            grants=grants,
        )

    async def retry_grants(
        self,
        caller: PrincipalInfo,
        request_id: uuid.UUID,
    ) -> AccessRequestDecision:
        """Re-run delivery for an approved request without re-deciding.

        Raises:
            AuthorizationError: If the caller is not the patient
            ConflictError: If the request is not approved or has expired
        """
        request = await self._load(request_id)
        self._require_patient(caller, request)
        current = display_status(request, datetime.now(UTC))
        if current != AccessRequestStatus.APPROVED:
            raise ConflictError(
                detail=f"Access request {request.id} is {current.value}, not approved"
            )

        grants = await self._deliver(request)
        await self.audit.publish(
            "access_request.grants_retried",
            subject_type="access_request",
            subject_id=request.id,
            actor_wallet=caller.wallet_address,
            properties={
                "success_count": grants.success_count,
                "fail_count": grants.fail_count,
            },
        )
        return AccessRequestDecision(
            request=await self._to_read(await self._load(request_id)),
            grants=grants,
        )

    async def deny(
        self,
        caller: PrincipalInfo,
        request_id: uuid.UUID,
        reason: str | None = None,
    ) -> AccessRequestRead:
        """Deny a sent request. Policies are untouched.

        Raises:
            AuthorizationError: If the caller is not the patient
            ConflictError: If the request is not awaiting a decision
        """
        request = await self._load(request_id)
        self._require_patient(caller, request)
        denial_reason = (reason or "").strip() or DEFAULT_DENIAL_REASON
        await self._transition(
            request,
            DbStatus.SENT,
            status=DbStatus.DENIED,
            denial_reason=denial_reason,
            patient_response=denial_reason,
            responded_at=datetime.now(UTC),
        )
        await self.audit.publish(
            "access_request.denied",
            subject_type="access_request",
            subject_id=request.id,
            actor_wallet=caller.wallet_address,
        )
        logger.info("Access request denied", extra={"access_request_id": str(request.id)})
        return await self._to_read(await self._load(request_id))

    async def _still_backed(
        self,
        request: AccessRequest,
        record_ids: list[uuid.UUID],
    ) -> set[uuid.UUID]:
        """Records the doctor keeps after ``request`` is revoked.

        A record stays if another approved, unexpired request or a granted
        transfer covers it, and so does any record the doctor uploaded.
        """
        if not record_ids:
            return set()
        doctor = request.doctor_wallet
        backed = await self.repo.approved_record_ids(
            doctor, datetime.now(UTC), exclude_request_id=request.id
        )
        backed |= await self.transfer_repo.granted_record_ids(doctor)
        backed |= await self.record_repo.uploaded_by(record_ids, doctor)
        return backed & set(record_ids)

    async def revoke(
        self,
        caller: PrincipalInfo,
        request_id: uuid.UUID,
    ) -> AccessRequestDecision:
        """Revoke an approved request and remove the doctor from its records.

        Raises:
            AuthorizationError: If the caller is not the patient
            ConflictError: If the request is not approved
        """
        request = await self._load(request_id)
        self._require_patient(caller, request)
        await self._transition(request, DbStatus.APPROVED, status=DbStatus.REVOKED)

        deleted = set(request.deleted_record_ids or [])
        live = [rid for rid in request.requested_record_ids if rid not in deleted]
        retained = await self._still_backed(request, live)
        revocations = await self.executor.revoke_batch(
            live, request.doctor_wallet, retained=retained
        )
        await self.audit.publish(
            "access_request.revoked",
            subject_type="access_request",
            subject_id=request.id,
            actor_wallet=caller.wallet_address,
            properties={
                "fail_count": revocations.fail_count,
                "retained": sorted(str(rid) for rid in retained),
            },
        )
        logger.info(
            "Access request revoked",
            extra={
                "access_request_id": str(request.id),
                "fail_count": revocations.fail_count,
            },
        )
        return AccessRequestDecision(
            request=await self._to_read(await self._load(request_id)),
            grants=revocations,
        )

    async def get(self, caller: PrincipalInfo, request_id: uuid.UUID) -> AccessRequestRead:
        """Get a request visible to the caller.

        Raises:
            NotFoundError: If missing, or a draft the caller does not own
            AuthorizationError: If the caller is not a party
        """
        request = await self._load(request_id)
        if caller.wallet_address == request.doctor_wallet:
            return await self._to_read(request)
        if caller.wallet_address == request.patient_wallet:
            if request.status == DbStatus.DRAFT:
                raise NotFoundError(resource="Access request", resource_id=str(request_id))
            return await self._to_read(request)
        raise AuthorizationError(detail="Not a party to this access request")

    async def list_for(
        self,
        caller: PrincipalInfo,
        status: AccessRequestStatus | None = None,
    ) -> list[AccessRequestRead]:
        """List the caller's requests, filtered by display status.

        Raises:
            AuthorizationError: If the caller is neither patient nor doctor
        """
        stored = None
        if status is not None:
            persisted = (
                AccessRequestStatus.APPROVED
                if status == AccessRequestStatus.EXPIRED
                else status
            )
            stored = DbStatus(persisted.value)

        if caller.role == PrincipalRole.PATIENT:
            requests = await self.repo.list_for_patient(caller.wallet_address, stored)
        elif caller.role == PrincipalRole.DOCTOR:
            requests = await self.repo.list_for_doctor(caller.wallet_address, stored)
        else:
            raise AuthorizationError(detail="Only patients and doctors have access requests")

        reads = await self._to_reads(requests)
        if status is not None:
            reads = [r for r in reads if r.display_status == status]
        return reads
