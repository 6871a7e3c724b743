"""Repository for the audit trail."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.db.audit_event import AuditEvent


class AuditRepository:
    """Append-only access to audit events."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, event: AuditEvent) -> AuditEvent:
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_for_subject(
        self,
        subject_type: str,
        subject_id: uuid.UUID,
    ) -> list[AuditEvent]:
        """Events about one subject, oldest first."""
        result = await self.session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.subject_type == subject_type,
                AuditEvent.subject_id == subject_id,
            )
            .order_by(AuditEvent.occurred_at.asc())
        )
        return list(result.scalars().all())
