"""Repository for transfer request operations."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, not_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.db.transfer_request import (
    PatientStatus,
    SourceStatus,
    TransferRequest,
)

# Source states in which the patient sees a transfer at all
PATIENT_VISIBLE_SOURCE_STATUSES = (
    SourceStatus.UPLOADED,
    SourceStatus.GRANTED,
    SourceStatus.FAILED,
    SourceStatus.REJECTED,
)


class TransferRequestRepository:
    """Repository for transfer request database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, request: TransferRequest) -> TransferRequest:
        """Create a new transfer request.

        Args:
            request: The transfer request to create

        Returns:
            The created transfer request
        """
        self.session.add(request)
        await self.session.flush()
        await self.session.refresh(request)
        return request

    async def get_by_id(
        self,
        request_id: uuid.UUID,
        refresh: bool = False,
    ) -> TransferRequest | None:
        """Get a transfer request by ID.

        Args:
            request_id: The request ID
            refresh: Overwrite any identity-mapped copy with the current row
        """
        query = select(TransferRequest).where(TransferRequest.id == request_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_for_patient(self, patient_wallet: str) -> list[TransferRequest]:
        """List a patient's transfers once the source doctor has acted."""
        result = await self.session.execute(
            select(TransferRequest)
            .where(
                TransferRequest.patient_wallet == patient_wallet,
                TransferRequest.source_status.in_(PATIENT_VISIBLE_SOURCE_STATUSES),
            )
            .order_by(TransferRequest.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_for_source(self, doctor_wallet: str) -> list[TransferRequest]:
        """List transfers asking ``doctor_wallet`` for a document."""
        result = await self.session.execute(
            select(TransferRequest)
            .where(TransferRequest.source_doctor_wallet == doctor_wallet)
            .order_by(TransferRequest.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_for_requesting(self, doctor_wallet: str) -> list[TransferRequest]:
        """List transfers created by ``doctor_wallet``."""
        result = await self.session.execute(
            select(TransferRequest)
            .where(TransferRequest.requesting_doctor_wallet == doctor_wallet)
            .order_by(TransferRequest.created_at.desc())
        )
        return list(result.scalars().all())

    async def transition(
        self,
        request_id: uuid.UUID,
        expected_source: SourceStatus | None = None,
        expected_patient: PatientStatus | None = None,
        **values: Any,
    ) -> bool:
        """Apply ``values`` only if the request is still in the expected state.

        Both columns are checked and written by one UPDATE, so the joint
        approval moves them together or not at all.

        Returns:
            True if the row was updated, False if its state moved on
        """
        conditions = [TransferRequest.id == request_id]
        if expected_source is not None:
            conditions.append(TransferRequest.source_status == expected_source)
        if expected_patient is not None:
            conditions.append(TransferRequest.patient_status == expected_patient)
        cursor_result = await self.session.execute(
            update(TransferRequest)
            .where(and_(*conditions))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        rowcount = getattr(cursor_result, "rowcount", 0)
        return bool(rowcount and rowcount > 0)

    async def flag_deleted_record(self, record_id: uuid.UUID) -> int:
        """Mark ``record_id`` deleted on every transfer that references it.

        Returns:
            Number of transfers flagged
        """
        cursor_result = await self.session.execute(
            update(TransferRequest)
            .where(
                TransferRequest.requested_record_ids.contains([record_id]),
                not_(TransferRequest.deleted_record_ids.contains([record_id])),
            )
            .values(
                deleted_record_ids=func.array_append(
                    TransferRequest.deleted_record_ids, record_id
                )
            )
            .execution_options(synchronize_session=False)
        )
        return getattr(cursor_result, "rowcount", 0) or 0

    async def fail_pending_grants(
        self,
        record_id: uuid.UUID,
        reason: str,
        responded_at: datetime,
    ) -> int:
        """Fail transfers still waiting on the patient to grant ``record_id``.

        Returns:
            Number of transfers failed
        """
        cursor_result = await self.session.execute(
            update(TransferRequest)
            .where(
                TransferRequest.requested_record_ids.contains([record_id]),
                TransferRequest.source_status == SourceStatus.UPLOADED,
                TransferRequest.patient_status == PatientStatus.PENDING,
            )
            .values(
                source_status=SourceStatus.FAILED,
                source_failure_reason=reason,
                source_responded_at=responded_at,
            )
            .execution_options(synchronize_session=False)
        )
        return getattr(cursor_result, "rowcount", 0) or 0

    async def granted_record_ids(self, requesting_doctor_wallet: str) -> set[uuid.UUID]:
        """Record IDs delivered to the doctor through granted transfers."""
        result = await self.session.execute(
            select(TransferRequest.requested_record_ids).where(
                TransferRequest.requesting_doctor_wallet == requesting_doctor_wallet,
                TransferRequest.source_status == SourceStatus.GRANTED,
            )
        )
        record_ids: set[uuid.UUID] = set()
        for ids in result.scalars().all():
            record_ids.update(ids)
        return record_ids
