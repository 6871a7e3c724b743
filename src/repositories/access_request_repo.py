"""Repository for access request operations."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, not_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.db.access_request import AccessRequest, AccessRequestStatus


class AccessRequestRepository:
    """Repository for access request database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, request: AccessRequest) -> AccessRequest:
        """Create a new access request.

        Args:
            request: The access request to create

        Returns:
            The created access request
        """
        self.session.add(request)
        await self.session.flush()
        await self.session.refresh(request)
        return request

    async def get_by_id(
        self,
        request_id: uuid.UUID,
        refresh: bool = False,
    ) -> AccessRequest | None:
        """Get an access request by ID.

        Args:
            request_id: The request ID
            refresh: Overwrite any identity-mapped copy with the current row
        """
        query = select(AccessRequest).where(AccessRequest.id == request_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_for_patient(
        self,
        patient_wallet: str,
        status: AccessRequestStatus | None = None,
    ) -> list[AccessRequest]:
        """List requests addressed to a patient, newest first.

        Drafts are private to the doctor and never listed for the patient.
        """
        conditions = [
            AccessRequest.patient_wallet == patient_wallet,
            AccessRequest.status != AccessRequestStatus.DRAFT,
        ]
        if status is not None:
            conditions.append(AccessRequest.status == status)
        result = await self.session.execute(
            select(AccessRequest)
            .where(and_(*conditions))
            .order_by(AccessRequest.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_for_doctor(
        self,
        doctor_wallet: str,
        status: AccessRequestStatus | None = None,
    ) -> list[AccessRequest]:
        """List requests made by a doctor, newest first."""
        conditions = [AccessRequest.doctor_wallet == doctor_wallet]
        if status is not None:
            conditions.append(AccessRequest.status == status)
        result = await self.session.execute(
            select(AccessRequest)
            .where(and_(*conditions))
            .order_by(AccessRequest.created_at.desc())
        )
        return list(result.scalars().all())

    async def pending_record_ids(
        self,
        patient_wallet: str,
        doctor_wallet: str,
    ) -> set[uuid.UUID]:
        """Record IDs covered by the doctor's sent, undecided requests."""
        result = await self.session.execute(
            select(AccessRequest.requested_record_ids).where(
                AccessRequest.patient_wallet == patient_wallet,
                AccessRequest.doctor_wallet == doctor_wallet,
                AccessRequest.status == AccessRequestStatus.SENT,
            )
        )
        pending: set[uuid.UUID] = set()
        for record_ids in result.scalars().all():
            pending.update(record_ids)
        return pending

    async def transition(
        self,
        request_id: uuid.UUID,
        expected_status: AccessRequestStatus,
        **values: Any,
    ) -> bool:
        """Apply ``values`` only if the request is still in ``expected_status``.

        Returns:
            True if the row was updated, False if its status moved on
        """
        cursor_result = await self.session.execute(
            update(AccessRequest)
            .where(
                AccessRequest.id == request_id,
                AccessRequest.status == expected_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        rowcount = getattr(cursor_result, "rowcount", 0)
        return bool(rowcount and rowcount > 0)

    async def record_grant_report(
        self,
        request_id: uuid.UUID,
        success_count: int,
        failure_count: int,
        errors: dict[str, str] | None,
    ) -> None:
        """Store the delivery report of the latest grant run."""
        await self.session.execute(
            update(AccessRequest)
            .where(AccessRequest.id == request_id)
            .values(
                grant_success_count=success_count,
                grant_failure_count=failure_count,
                grant_errors=errors or None,
            )
            .execution_options(synchronize_session=False)
        )

    async def flag_deleted_record(self, record_id: uuid.UUID) -> int:
        """Mark ``record_id`` deleted on every request that references it.

        Returns:
            Number of requests flagged
        """
        cursor_result = await self.session.execute(
            update(AccessRequest)
            .where(
                AccessRequest.requested_record_ids.contains([record_id]),
                not_(AccessRequest.deleted_record_ids.contains([record_id])),
            )
            .values(
                deleted_record_ids=func.array_append(
                    AccessRequest.deleted_record_ids, record_id
                )
            )
            .execution_options(synchronize_session=False)
        )
        return getattr(cursor_result, "rowcount", 0) or 0

    async def approved_record_ids(
        self,
        doctor_wallet: str,
        now: datetime,
        exclude_request_id: uuid.UUID | None = None,
    ) -> set[uuid.UUID]:
        """Record IDs the doctor holds through approved, unexpired requests."""
        conditions = [
            AccessRequest.doctor_wallet == doctor_wallet,
            AccessRequest.status == AccessRequestStatus.APPROVED,
            or_(AccessRequest.expires_at.is_(None), AccessRequest.expires_at > now),
        ]
        if exclude_request_id is not None:
            conditions.append(AccessRequest.id != exclude_request_id)
        result = await self.session.execute(
            select(AccessRequest.requested_record_ids).where(and_(*conditions))
        )
        record_ids: set[uuid.UUID] = set()
        for ids in result.scalars().all():
            record_ids.update(ids)
        return record_ids
