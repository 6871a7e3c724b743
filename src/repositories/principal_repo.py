"""Repository for principal (identity registry) operations."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.db.principal import Principal, PrincipalRole


class PrincipalRepository:
    """Repository for principal database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, principal: Principal) -> Principal:
        """Create a new principal.

        Args:
            principal: The principal to create

        Returns:
            The created principal
        """
        self.session.add(principal)
        await self.session.flush()
        await self.session.refresh(principal)
        return principal

    async def get_by_wallet(self, wallet_address: str) -> Principal | None:
        """Get a principal by its normalized wallet address."""
        result = await self.session.execute(
            select(Principal).where(Principal.wallet_address == wallet_address)
        )
        return result.scalar_one_or_none()

    async def get_many(self, wallet_addresses: list[str]) -> list[Principal]:
        """Get every registered principal among the given addresses."""
        if not wallet_addresses:
            return []
        result = await self.session.execute(
            select(Principal).where(Principal.wallet_address.in_(wallet_addresses))
        )
        return list(result.scalars().all())

    async def list(self, role: PrincipalRole | None = None) -> list[Principal]:
        """List principals, optionally filtered by role.

        Returns:
            Principals ordered by wallet address
        """
        query = select(Principal)
        if role is not None:
            query = query.where(Principal.role == role)
        result = await self.session.execute(query.order_by(Principal.wallet_address))
        return list(result.scalars().all())
