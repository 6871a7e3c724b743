"""Repository for health record operations."""

import uuid

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.db.health_record import HealthRecord


class RecordRepository:
    """Repository for health record database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, record: HealthRecord) -> HealthRecord:
        """Create a new health record.

        Args:
            record: The record to create

        Returns:
            The created record
        """
        self.session.add(record)
        await self.session.flush()
        await self.session.refresh(record)
        return record

    async def get_by_id(
        self,
        record_id: uuid.UUID,
        refresh: bool = False,
    ) -> HealthRecord | None:
        """Get a record by ID.

        Args:
            record_id: The record ID
            refresh: Overwrite any identity-mapped copy with the current row

        Returns:
            The record if found, None otherwise
        """
        query = select(HealthRecord).where(HealthRecord.id == record_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_many(self, record_ids: list[uuid.UUID]) -> list[HealthRecord]:
        """Get the records that exist among the given IDs."""
        if not record_ids:
            return []
        result = await self.session.execute(
            select(HealthRecord).where(HealthRecord.id.in_(record_ids))
        )
        return list(result.scalars().all())

    async def list_by_patient(self, patient_wallet: str) -> list[HealthRecord]:
        """List a patient's records, newest first."""
        result = await self.session.execute(
            select(HealthRecord)
            .where(HealthRecord.patient_wallet == patient_wallet)
            .order_by(HealthRecord.uploaded_at.desc())
        )
        return list(result.scalars().all())

    async def list_by_authorized(self, principal: str) -> list[HealthRecord]:
        """List records whose policy contains ``principal``, excluding its own."""
        result = await self.session.execute(
            select(HealthRecord)
            .where(
                HealthRecord.authorized_principals.contains([principal]),
                HealthRecord.patient_wallet != principal,
            )
            .order_by(HealthRecord.uploaded_at.desc())
        )
        return list(result.scalars().all())

    async def titles_for(self, record_ids: list[uuid.UUID]) -> dict[uuid.UUID, str]:
        """Map each live record ID to its current title."""
        if not record_ids:
            return {}
        result = await self.session.execute(
            select(HealthRecord.id, HealthRecord.title).where(
                HealthRecord.id.in_(record_ids)
            )
        )
        return {row.id: row.title for row in result.all()}

    async def uploaded_by(
        self,
        record_ids: list[uuid.UUID],
        uploader_wallet: str,
    ) -> set[uuid.UUID]:
        """The subset of ``record_ids`` that ``uploader_wallet`` uploaded."""
        if not record_ids:
            return set()
        result = await self.session.execute(
            select(HealthRecord.id).where(
                HealthRecord.id.in_(record_ids),
                HealthRecord.uploaded_by == uploader_wallet,
            )
        )
        return set(result.scalars().all())

    async def compare_and_set_policy(
        self,
        record_id: uuid.UUID,
        expected_version: int,
        authorized_principals: list[str],
        wrapped_key: str,
    ) -> bool:
        """Write a new policy only if nobody changed it since ``expected_version``.

        Returns:
            True if the row was updated, False if the version moved on
        """
        cursor_result = await self.session.execute(
            update(HealthRecord)
            .where(
                HealthRecord.id == record_id,
                HealthRecord.policy_version == expected_version,
            )
            .values(
                authorized_principals=authorized_principals,
                wrapped_key=wrapped_key,
                policy_version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        rowcount = getattr(cursor_result, "rowcount", 0)
        return bool(rowcount and rowcount > 0)

    async def delete(self, record_id: uuid.UUID) -> bool:
        """Delete a record row.

        Returns:
            True if deleted, False if not found
        """
        cursor_result = await self.session.execute(
            delete(HealthRecord).where(HealthRecord.id == record_id)
        )
        rowcount = getattr(cursor_result, "rowcount", 0)
        return bool(rowcount and rowcount > 0)
