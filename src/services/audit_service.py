"""Audit trail publishing."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.db.audit_event import AuditEvent
from src.repositories.audit_repo import AuditRepository

logger = logging.getLogger(__name__)


class AuditPublisher:
    """Writes audit events inside the caller's unit of work.

    Non-blocking: failures log warnings but never raise to callers. Each
    write runs in a savepoint so a failed insert leaves the surrounding
    transaction usable.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._repo = AuditRepository(db_session)
        self._session = db_session

    async def publish(
        self,
        event_name: str,
        subject_type: str,
        subject_id: uuid.UUID | None = None,
        actor_wallet: str | None = None,
        properties: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        """Record one audit event.

        Returns the created event, or None if publishing failed.
        """
        try:
            async with self._session.begin_nested():
                event = AuditEvent(
                    event_name=event_name,
                    actor_wallet=actor_wallet,
                    subject_type=subject_type,
                    subject_id=subject_id,
                    properties=properties,
                    occurred_at=datetime.now(UTC),
                )
                return await self._repo.create(event)
        except Exception:
            logger.warning("Failed to publish audit event %s", event_name, exc_info=True)
            return None

    async def history(self, subject_type: str, subject_id: uuid.UUID) -> list[AuditEvent]:
        """Events recorded about one subject, oldest first."""
        return await self._repo.list_for_subject(subject_type, subject_id)
