"""Record store: encrypted records and their access policies."""

import base64
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from src.models.db.health_record import HealthRecord
from src.models.db.health_record import RecordType as DbRecordType
from src.models.domain.audit import AuditEventRead
from src.models.domain.health_record import (
    HealthRecordRead,
    PermissionStatus,
    RecordCiphertext,
    RecordDeletion,
    RecordUpload,
    RecordWithPermission,
)
from src.models.domain.principal import PrincipalInfo, PrincipalRole
from src.repositories.access_request_repo import AccessRequestRepository
from src.repositories.record_repo import RecordRepository
from src.repositories.transfer_request_repo import TransferRequestRepository
from src.services.audit_service import AuditPublisher
from src.services.identity_service import IdentityService
from src.services.key_service_client import KeyServiceClient
from src.services.storage_service import StorageError, StorageService

logger = logging.getLogger(__name__)

RECORD_DELETED_REASON = "Record deleted"

PolicyTransform = Callable[[frozenset[str]], frozenset[str]]
Rekey = Callable[[str, frozenset[str], frozenset[str]], Awaitable[str]]


class RecordService:
    """Owns health records and is the only writer of their policies.

    Policy changes go through :meth:`update_policy`, a compare-and-set on
    ``policy_version`` that re-reads and re-applies the transform when a
    concurrent writer wins.
    """

    def __init__(
        self,
        session: AsyncSession,
        identity: IdentityService,
        storage: StorageService | None = None,
        key_service: KeyServiceClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.identity = identity
        self.storage = storage or StorageService(self.settings)
        self.key_service = key_service or KeyServiceClient(self.settings)
        self.repo = RecordRepository(session)
        self.access_repo = AccessRequestRepository(session)
        self.transfer_repo = TransferRequestRepository(session)
        self.audit = AuditPublisher(session)

    @staticmethod
    def to_read(record: HealthRecord) -> HealthRecordRead:
        read = HealthRecordRead.model_validate(record)
        read.authorized_principals = sorted(record.policy)
        return read

    async def _load(self, record_id: uuid.UUID, refresh: bool = False) -> HealthRecord:
        record = await self.repo.get_by_id(record_id, refresh=refresh)
        if record is None:
            raise NotFoundError(resource="Health record", resource_id=str(record_id))
        return record

    async def create_record(
        self,
        caller: PrincipalInfo,
        upload: RecordUpload,
    ) -> HealthRecordRead:
        """Seal, store and register a new record.

        The owning patient may upload their own records; a doctor may upload
        on a patient's behalf and is added to the policy.

        Raises:
            AuthorizationError: If the caller may not upload for this patient
            ValidationError: If the patient is unknown or not a patient
            ExternalServiceError: If sealing or the blob store fails
        """
        if caller.role == PrincipalRole.PATIENT:
            if caller.wallet_address != upload.patient_wallet:
                raise AuthorizationError(
                    detail="Patients can only upload their own records"
                )
        elif caller.role == PrincipalRole.DOCTOR:
            await self.identity.require(upload.patient_wallet, PrincipalRole.PATIENT)
        else:
            raise AuthorizationError(detail="Only patients and doctors can upload records")

        if len(upload.data) > self.settings.max_upload_size:
            raise ValidationError(
                detail=f"Document exceeds the {self.settings.max_upload_size} byte limit"
            )

        policy = frozenset(upload.co_authorized) | {upload.patient_wallet}
        if caller.role == PrincipalRole.DOCTOR:
            policy |= {caller.wallet_address}

        sealed = await self.key_service.seal(upload.data, policy)
        blob_key = self.storage.generate_key(upload.patient_wallet, upload.title)
        await self.storage.upload_file(sealed.ciphertext, blob_key)

        record = HealthRecord(
            patient_wallet=upload.patient_wallet,
            uploaded_by=caller.wallet_address,
            title=upload.title,
            record_type=DbRecordType(upload.record_type.value),
            description=upload.description,
            blob_locator=blob_key,
            wrapped_key=sealed.wrapped_key,
            authorized_principals=sorted(policy),
            policy_version=1,
            file_size=len(upload.data),
            mime_type=upload.mime_type,
            uploaded_at=datetime.now(UTC),
        )
        try:
            created = await self.repo.create(record)
        except Exception:
            try:
                await self.storage.delete_file(blob_key)
            except StorageError as e:
                logger.warning(
                    "Orphaned blob after failed insert",
                    extra={"blob_locator": blob_key, "error": e.detail},
                )
            raise

        await self.audit.publish(
            "record.uploaded",
            subject_type="health_record",
            subject_id=created.id,
            actor_wallet=caller.wallet_address,
            properties={"policy_size": len(policy)},
        )
        logger.info(
            "Record stored",
            extra={"record_id": str(created.id), "patient": created.patient_wallet},
        )
        return self.to_read(created)

    async def get(self, caller: PrincipalInfo, record_id: uuid.UUID) -> HealthRecordRead:
        """Get record metadata for a principal in its policy.

        Raises:
            NotFoundError: If the record does not exist
            AuthorizationError: If the caller is not authorized on the record
        """
        record = await self._load(record_id)
        if not record.is_authorized(caller.wallet_address):
            raise AuthorizationError(detail="Not authorized for this record")
        return self.to_read(record)

    async def list_by_patient(self, patient_wallet: str) -> list[HealthRecordRead]:
        return [self.to_read(r) for r in await self.repo.list_by_patient(patient_wallet)]

    async def list_by_authorized_doctor(self, doctor_wallet: str) -> list[HealthRecordRead]:
        return [self.to_read(r) for r in await self.repo.list_by_authorized(doctor_wallet)]

    async def list_with_permissions(
        self,
        doctor_wallet: str,
        patient_wallet: str,
    ) -> list[RecordWithPermission]:
        """A patient's records annotated with one doctor's standing on each."""
        records = await self.repo.list_by_patient(patient_wallet)
        pending = await self.access_repo.pending_record_ids(patient_wallet, doctor_wallet)

        annotated: list[RecordWithPermission] = []
        for record in records:
            if record.is_authorized(doctor_wallet):
                status = PermissionStatus.GRANTED
            elif record.id in pending:
                status = PermissionStatus.PENDING
            else:
                status = PermissionStatus.NONE
            annotated.append(
                RecordWithPermission(
                    **self.to_read(record).model_dump(),
                    permission_status=status,
                )
            )
        return annotated

    async def update_policy(
        self,
        record_id: uuid.UUID,
        transform: PolicyTransform,
        rekey: Rekey,
    ) -> tuple[HealthRecord, bool]:
        """Apply ``transform`` to a record's policy under compare-and-set.

        ``rekey(wrapped_key, old_policy, new_policy)`` returns the key
        wrapped for the new policy. When another writer bumps the version
        first, the row is re-read and the transform re-applied to the fresh
        policy, so concurrently added principals are kept. The owner is
        always retained.

        Returns:
            The current record and whether the policy changed

        Raises:
            NotFoundError: If the record does not exist
            ConflictError: If every attempt lost the race (retriable)
        """
        attempts = self.settings.policy_update_max_retries
        for attempt in range(attempts):
            record = await self._load(record_id, refresh=True)
            old_policy = record.policy
            new_policy = frozenset(transform(old_policy)) | {record.patient_wallet}
            if new_policy == old_policy:
                return record, False

            wrapped_key = await rekey(record.wrapped_key, old_policy, new_policy)
            if await self.repo.compare_and_set_policy(
                record_id,
                expected_version=record.policy_version,
                authorized_principals=sorted(new_policy),
                wrapped_key=wrapped_key,
            ):
                await self.audit.publish(
                    "record.policy_changed",
                    subject_type="health_record",
                    subject_id=record_id,
                    properties={
                        "added": sorted(new_policy - old_policy),
                        "removed": sorted(old_policy - new_policy),
                        "policy_version": record.policy_version + 1,
                    },
                )
                return await self._load(record_id, refresh=True), True

            logger.warning(
                "Policy update lost a concurrent write, retrying",
                extra={
                    "record_id": str(record_id),
                    "policy_version": record.policy_version,
                    "attempt": attempt + 1,
                },
            )

        raise ConflictError(
            detail=f"Policy of record {record_id} changed concurrently {attempts} times",
            retriable=True,
        )

    async def delete_record(
        self,
        caller: PrincipalInfo,
        record_id: uuid.UUID,
    ) -> RecordDeletion:
        """Delete a record and cascade to every request that references it.

        The blob is deleted last; if it fails the whole unit of work is
        rolled back by the caller's session.

        Raises:
            NotFoundError: If the record does not exist
            AuthorizationError: If the caller is not the owning patient
        """
        record = await self._load(record_id)
        if caller.wallet_address != record.patient_wallet:
            raise AuthorizationError(detail="Only the owning patient can delete a record")

        failed_transfers = await self.transfer_repo.fail_pending_grants(
            record_id, RECORD_DELETED_REASON, datetime.now(UTC)
        )
        flagged_access = await self.access_repo.flag_deleted_record(record_id)
        flagged_transfers = await self.transfer_repo.flag_deleted_record(record_id)
        blob_locator = record.blob_locator
        await self.repo.delete(record_id)

        deletion = RecordDeletion(
            record_id=record_id,
            flagged_access_requests=flagged_access,
            flagged_transfer_requests=flagged_transfers,
            failed_transfer_requests=failed_transfers,
        )
        await self.audit.publish(
            "record.deleted",
            subject_type="health_record",
            subject_id=record_id,
            actor_wallet=caller.wallet_address,
            properties=deletion.model_dump(mode="json", exclude={"record_id"}),
        )
        await self.storage.delete_file(blob_locator)
        logger.info("Record deleted", extra=deletion.model_dump(mode="json"))
        return deletion

    async def fetch_ciphertext(
        self,
        caller: PrincipalInfo,
        record_id: uuid.UUID,
    ) -> RecordCiphertext:
        """Return the ciphertext and wrapped key to a principal in the policy.

        Raises:
            NotFoundError: If the record does not exist
            AuthorizationError: If the caller is not authorized on the record
        """
        record = await self._load(record_id)
        if not record.is_authorized(caller.wallet_address):
            raise AuthorizationError(detail="Not authorized for this record")

        ciphertext = await self.storage.download_file(record.blob_locator)
        await self.audit.publish(
            "record.downloaded",
            subject_type="health_record",
            subject_id=record.id,
            actor_wallet=caller.wallet_address,
        )
        return RecordCiphertext(
            record_id=record.id,
            mime_type=record.mime_type,
            policy_version=record.policy_version,
            wrapped_key=record.wrapped_key,
            ciphertext=base64.b64encode(ciphertext).decode("ascii"),
        )

    async def audit_trail(
        self,
        caller: PrincipalInfo,
        record_id: uuid.UUID,
    ) -> list[AuditEventRead]:
        """Uploads, downloads and policy changes of a record. Owner only.

        Raises:
            NotFoundError: If the record does not exist
            AuthorizationError: If the caller is not the owning patient
        """
        record = await self._load(record_id)
        if caller.wallet_address != record.patient_wallet:
            raise AuthorizationError(
                detail="Only the owning patient can view a record's audit trail"
            )
        events = await self.audit.history("health_record", record.id)
        return [AuditEventRead.model_validate(e) for e in events]
