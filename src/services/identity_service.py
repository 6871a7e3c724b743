"""Identity registry: principal lookup, roles and display names."""

import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.exceptions import AuthorizationError, ConflictError, ValidationError
from src.models.db.principal import Principal
from src.models.db.principal import PrincipalRole as DbPrincipalRole
from src.models.domain.principal import (
    PrincipalCreate,
    PrincipalInfo,
    PrincipalRead,
    PrincipalRole,
    normalize_principal,
)
from src.repositories.principal_repo import PrincipalRepository

logger = logging.getLogger(__name__)

_MISSING = object()


class PrincipalCache:
    """Bounded TTL cache of principal lookups, including negative ones.

    Entries expire ``ttl_seconds`` after they are stored and the least
    recently used entry is evicted once ``max_entries`` is reached. A TTL of
    zero disables caching.
    """

    def __init__(
        self,
        max_entries: int = 1024,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, PrincipalInfo | None]] = OrderedDict()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PrincipalCache":
        settings = settings or get_settings()
        return cls(
            max_entries=settings.identity_cache_max_entries,
            ttl_seconds=settings.identity_cache_ttl_seconds,
        )

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0 and self.max_entries > 0

    def get(self, principal: str) -> object:
        """Return the cached lookup, or ``PrincipalCache.MISSING``."""
        if not self.enabled:
            return _MISSING
        entry = self._entries.get(principal)
        if entry is None:
            return _MISSING
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[principal]
            return _MISSING
        self._entries.move_to_end(principal)
        return value

    def set(self, principal: str, value: PrincipalInfo | None) -> None:
        if not self.enabled:
            return
        self._entries[principal] = (self._clock() + self.ttl_seconds, value)
        self._entries.move_to_end(principal)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, principal: str) -> None:
        self._entries.pop(principal, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    MISSING = _MISSING


class IdentityService:
    """Resolves principals to roles, display names and organizations."""

    def __init__(
        self,
        session: AsyncSession,
        cache: PrincipalCache | None = None,
    ) -> None:
        self.session = session
        self.repo = PrincipalRepository(session)
        self.cache = cache or PrincipalCache(ttl_seconds=0)

    @staticmethod
    def _normalize(principal: str) -> str:
        try:
            return normalize_principal(principal)
        except ValueError as e:
            raise ValidationError(detail=str(e)) from e

    @staticmethod
    def _to_info(principal: Principal) -> PrincipalInfo:
        return PrincipalInfo(
            wallet_address=principal.wallet_address,
            role=PrincipalRole(principal.role.value),
            display_name=principal.full_name,
            organization_name=principal.organization_name,
        )

    async def resolve(self, principal: str) -> PrincipalInfo | None:
        """Look up a principal; None if it is not registered.

        Raises:
            ValidationError: If the identifier is malformed
        """
        wallet = self._normalize(principal)
        cached = self.cache.get(wallet)
        if cached is not PrincipalCache.MISSING:
            return cached  # type: ignore[return-value]

        row = await self.repo.get_by_wallet(wallet)
        info = self._to_info(row) if row is not None else None
        self.cache.set(wallet, info)
        return info

    async def require(
        self,
        principal: str,
        role: PrincipalRole | None = None,
    ) -> PrincipalInfo:
        """Resolve a principal that must exist and, optionally, hold ``role``.

        Raises:
            ValidationError: If the principal is malformed or unknown
            AuthorizationError: If the principal holds a different role
        """
        info = await self.resolve(principal)
        if info is None:
            raise ValidationError(detail=f"Unknown principal '{principal}'")
        if role is not None and info.role != role:
            raise AuthorizationError(
                detail=f"Principal '{info.wallet_address}' is not a {role.value}"
            )
        return info

    async def display_names(self, principals: Iterable[str]) -> dict[str, str]:
        """Map each principal to its display name, falling back to the address."""
        names: dict[str, str] = {}
        for principal in dict.fromkeys(principals):
            info = await self.resolve(principal)
            names[principal] = (info.display_name if info else None) or principal
        return names

    async def organization_of(self, principal: str) -> str | None:
        info = await self.resolve(principal)
        return info.organization_name if info else None

    async def register(self, data: PrincipalCreate) -> PrincipalRead:
        """Register a new principal.

        Raises:
            ConflictError: If the wallet address is already registered
        """
        if await self.repo.get_by_wallet(data.wallet_address) is not None:
            raise ConflictError(
                detail=f"Principal '{data.wallet_address}' is already registered"
            )
        principal = Principal(
            wallet_address=data.wallet_address,
            role=DbPrincipalRole(data.role.value),
            full_name=data.full_name,
            organization_name=data.organization_name,
        )
        try:
            created = await self.repo.create(principal)
        except IntegrityError as e:
            raise ConflictError(
                detail=f"Principal '{data.wallet_address}' is already registered"
            ) from e
        self.cache.invalidate(data.wallet_address)
        logger.info(
            "Registered principal",
            extra={"principal": created.wallet_address, "role": data.role.value},
        )
        return PrincipalRead.model_validate(created)

    async def get(self, principal: str) -> PrincipalRead | None:
        row = await self.repo.get_by_wallet(self._normalize(principal))
        return PrincipalRead.model_validate(row) if row is not None else None

    async def list(self, role: PrincipalRole | None = None) -> list[PrincipalRead]:
        rows = await self.repo.list(
            role=DbPrincipalRole(role.value) if role is not None else None
        )
        return [PrincipalRead.model_validate(row) for row in rows]
