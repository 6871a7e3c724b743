"""Tests for IdentityService and PrincipalCache."""

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from src.core.exceptions import AuthorizationError, ConflictError, ValidationError
from src.models.db.principal import Principal
from src.models.db.principal import PrincipalRole as DbPrincipalRole
from src.models.domain.principal import PrincipalCreate, PrincipalInfo, PrincipalRole
from src.services.identity_service import IdentityService, PrincipalCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def make_principal(
    wallet: str = "0xdoc001",
    role: DbPrincipalRole = DbPrincipalRole.DOCTOR,
    full_name: str | None = "Dr. Ada",
    organization: str | None = "General Hospital",
) -> Principal:
    principal = Principal(
        wallet_address=wallet,
        role=role,
        full_name=full_name,
        organization_name=organization,
    )
    principal.id = uuid.uuid4()
    principal.created_at = datetime.now(UTC)
    return principal


@pytest.fixture
def mock_session() -> AsyncMock:
    """Create mock database session."""
    return AsyncMock()


@pytest.fixture
def mock_repo():  # type: ignore[no-untyped-def]
    with patch("src.services.identity_service.PrincipalRepository") as mock_cls:
        repo = AsyncMock()
        mock_cls.return_value = repo
        yield repo


class TestPrincipalCache:
    """Tests for the bounded TTL cache."""

    def test_miss_returns_sentinel(self) -> None:
        cache = PrincipalCache(ttl_seconds=10)

        assert cache.get("0xabc") is PrincipalCache.MISSING

    def test_caches_negative_lookups(self) -> None:
        cache = PrincipalCache(ttl_seconds=10)

        cache.set("0xabc", None)

        assert cache.get("0xabc") is None

    def test_entries_expire_after_ttl(self) -> None:
        clock = FakeClock()
        cache = PrincipalCache(ttl_seconds=10, clock=clock)
        info = PrincipalInfo(wallet_address="0xabc", role=PrincipalRole.PATIENT)
        cache.set("0xabc", info)

        clock.now = 9.9
        assert cache.get("0xabc") == info

        clock.now = 10.0
        assert cache.get("0xabc") is PrincipalCache.MISSING
        assert len(cache) == 0

    def test_evicts_least_recently_used(self) -> None:
        cache = PrincipalCache(max_entries=2, ttl_seconds=10)
        cache.set("a_user", None)
        cache.set("b_user", None)
        cache.get("a_user")

        cache.set("c_user", None)

        assert cache.get("b_user") is PrincipalCache.MISSING
        assert cache.get("a_user") is None
        assert len(cache) == 2

    def test_zero_ttl_disables_cache(self) -> None:
        cache = PrincipalCache(ttl_seconds=0)

        cache.set("0xabc", None)

        assert cache.enabled is False
        assert cache.get("0xabc") is PrincipalCache.MISSING
        assert len(cache) == 0

    def test_invalidate(self) -> None:
        cache = PrincipalCache(ttl_seconds=10)
        cache.set("0xabc", None)

        cache.invalidate("0xabc")
        cache.invalidate("0xmissing")

        assert cache.get("0xabc") is PrincipalCache.MISSING


class TestResolve:
    """Tests for principal resolution."""

    async def test_normalizes_and_returns_info(
        self, mock_session: AsyncMock, mock_repo: AsyncMock
    ) -> None:
        mock_repo.get_by_wallet.return_value = make_principal()
        service = IdentityService(mock_session)

        info = await service.resolve("  0xDOC001 ")

        mock_repo.get_by_wallet.assert_awaited_once_with("0xdoc001")
        assert info == PrincipalInfo(
            wallet_address="0xdoc001",
            role=PrincipalRole.DOCTOR,
            display_name="Dr. Ada",
            organization_name="General Hospital",
        )

    async def test_unknown_principal_returns_none(
        self, mock_session: AsyncMock, mock_repo: AsyncMock
    ) -> None:
        mock_repo.get_by_wallet.return_value = None
        service = IdentityService(mock_session)

        assert await service.resolve("0xnobody") is None

    async def test_malformed_principal_raises(
        self, mock_session: AsyncMock, mock_repo: AsyncMock
    ) -> None:
        service = IdentityService(mock_session)

        with pytest.raises(ValidationError):
            await service.resolve("no spaces allowed")

        mock_repo.get_by_wallet.assert_not_called()

    async def test_uses_cache_across_lookups(
        self, mock_session: AsyncMock, mock_repo: AsyncMock
    ) -> None:
        mock_repo.get_by_wallet.return_value = None
        service = IdentityService(mock_session, cache=PrincipalCache(ttl_seconds=30))

        await service.resolve("0xnobody")
        await service.resolve("0xNOBODY")

        assert mock_repo.get_by_wallet.await_count == 1


class TestRequire:
    """Tests for role enforcement."""

    async def test_returns_info_for_matching_role(
        self, mock_session: AsyncMock, mock_repo: AsyncMock
    ) -> None:
        mock_repo.get_by_wallet.return_value = make_principal()
        service = IdentityService(mock_session)

        info = await service.require("0xdoc001", PrincipalRole.DOCTOR)

        assert info.role == PrincipalRole.DOCTOR

    async def test_unknown_principal_raises_validation(
        self, mock_session: AsyncMock, mock_repo: AsyncMock
    ) -> None:
        mock_repo.get_by_wallet.return_value = None
        service = IdentityService(mock_session)

        with pytest.raises(ValidationError):
            await service.require("0xnobody", PrincipalRole.PATIENT)

    async def test_wrong_role_raises_authorization(
        self, mock_session: AsyncMock, mock_repo: AsyncMock
    ) -> None:
        mock_repo.get_by_wallet.return_value = make_principal()
        service = IdentityService(mock_session)

        with pytest.raises(AuthorizationError) as exc_info:
            await service.require("0xdoc001", PrincipalRole.PATIENT)

        assert "not a patient" in exc_info.value.detail


class TestDisplayNames:
    """Tests for display name lookup."""

    async def test_falls_back_to_address(
        self, mock_session: AsyncMock, mock_repo: AsyncMock
    ) -> None:
        known = make_principal()
        unnamed = make_principal("0xpat001", DbPrincipalRole.PATIENT, full_name=None)

        async def lookup(wallet: str) -> Principal | None:
            return {"0xdoc001": known, "0xpat001": unnamed}.get(wallet)

        mock_repo.get_by_wallet.side_effect = lookup
        service = IdentityService(mock_session)

        names = await service.display_names(["0xdoc001", "0xpat001", "0xghost1", "0xdoc001"])

        assert names == {
            "0xdoc001": "Dr. Ada",
            "0xpat001": "0xpat001",
            "0xghost1": "0xghost1",
        }

    async def test_organization_of(
        self, mock_session: AsyncMock, mock_repo: AsyncMock
    ) -> None:
        mock_repo.get_by_wallet.return_value = make_principal()
        service = IdentityService(mock_session)

        assert await service.organization_of("0xdoc001") == "General Hospital"


class TestRegister:
    """Tests for principal registration."""

    async def test_register_new_principal(
        self, mock_session: AsyncMock, mock_repo: AsyncMock
    ) -> None:
        mock_repo.get_by_wallet.return_value = None
        mock_repo.create.side_effect = lambda p: _with_identity(p)
        cache = PrincipalCache(ttl_seconds=30)
        cache.set("0xnew001", None)
        service = IdentityService(mock_session, cache=cache)

        result = await service.register(
            PrincipalCreate(wallet_address="0xNEW001", role=PrincipalRole.PATIENT)
        )

        assert result.wallet_address == "0xnew001"
        assert result.role == PrincipalRole.PATIENT
        assert cache.get("0xnew001") is PrincipalCache.MISSING

    async def test_register_existing_raises_conflict(
        self, mock_session: AsyncMock, mock_repo: AsyncMock
    ) -> None:
        mock_repo.get_by_wallet.return_value = make_principal()
        service = IdentityService(mock_session)

        with pytest.raises(ConflictError):
            await service.register(
                PrincipalCreate(wallet_address="0xdoc001", role=PrincipalRole.DOCTOR)
            )

        mock_repo.create.assert_not_called()

    async def test_register_race_raises_conflict(
        self, mock_session: AsyncMock, mock_repo: AsyncMock
    ) -> None:
        mock_repo.get_by_wallet.return_value = None
        mock_repo.create.side_effect = IntegrityError("insert", {}, Exception("dup"))
        service = IdentityService(mock_session)

        with pytest.raises(ConflictError):
            await service.register(
                PrincipalCreate(wallet_address="0xdoc001", role=PrincipalRole.DOCTOR)
            )


def _with_identity(principal: Principal) -> Principal:
    principal.id = uuid.uuid4()
    principal.created_at = datetime.now(UTC)
    return principal
