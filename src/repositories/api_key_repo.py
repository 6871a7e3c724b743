"""Repository for gateway API keys."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.db.api_key import ApiKey


class ApiKeyRepository:
    """Stores hashed gateway credentials; plaintext keys never reach it."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_active_by_hash(self, key_hash: str) -> ApiKey | None:
        result = await self.session.execute(
            select(ApiKey).where(
                ApiKey.key_hash == key_hash,
                ApiKey.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def get_all_active(self) -> list[ApiKey]:
        result = await self.session.execute(
            select(ApiKey)
            .where(ApiKey.is_active.is_(True))
            .order_by(ApiKey.created_at)
        )
        return list(result.scalars().all())

    async def create(self, api_key: ApiKey) -> ApiKey:
        self.session.add(api_key)
        await self.session.flush()
        await self.session.refresh(api_key)
        return api_key

    async def touch(self, api_key_id: uuid.UUID) -> None:
        """Record that a key just authenticated a request."""
        await self.session.execute(
            update(ApiKey)
            .where(ApiKey.id == api_key_id)
            .values(last_used_at=datetime.now(UTC))
        )

    async def revoke(self, api_key_id: uuid.UUID) -> bool:
        """Deactivate a key.

        Returns:
            False if no active key has that id
        """
        result = await self.session.execute(
            update(ApiKey)
            .where(ApiKey.id == api_key_id, ApiKey.is_active.is_(True))
            .values(is_active=False, revoked_at=datetime.now(UTC))
        )
        return bool(getattr(result, "rowcount", 0))
