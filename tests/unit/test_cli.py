"""Tests for the admin CLI."""

import asyncio
import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from src.cli import cli
from src.core.exceptions import ConflictError
from src.models.db.api_key import ApiKey
from src.models.domain.principal import PrincipalRead, PrincipalRole


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def run_inline():  # type: ignore[no-untyped-def]
    """Patch the unit-of-work runner to await work against a mock session."""
    session = MagicMock()
    with patch("src.cli._run", side_effect=lambda work: asyncio.run(work(session))):
        yield session


class TestRegisterPrincipal:
    """Tests for register-principal."""

    def test_register(self, runner: CliRunner) -> None:
        principal = PrincipalRead(
            id=uuid.uuid4(),
            wallet_address="0xdoctor01",
            role=PrincipalRole.DOCTOR,
            created_at=datetime.now(UTC),
        )
        with patch("src.cli._run", return_value=principal):
            result = runner.invoke(
                cli, ["register-principal", "0xDOCTOR01", "--role", "doctor"]
            )

        assert result.exit_code == 0
        assert "Registered 0xdoctor01 as doctor" in result.output

    def test_rejects_malformed_wallet(self, runner: CliRunner) -> None:
        with patch("src.cli._run") as run:
            result = runner.invoke(
                cli, ["register-principal", "bad wallet", "--role", "patient"]
            )

        assert result.exit_code == 2
        run.assert_not_called()

    def test_duplicate_reported(self, runner: CliRunner) -> None:
        session = MagicMock()
        session.__aenter__ = AsyncMock(return_value=session)
        session.__aexit__ = AsyncMock(return_value=False)
        session.commit = AsyncMock()
        session.rollback = AsyncMock()
        with (
            patch("src.core.database.init_database"),
            patch("src.core.database.close_database", new=AsyncMock()),
            patch(
                "src.core.database.get_session_factory",
                return_value=MagicMock(return_value=session),
            ),
            patch("src.cli.IdentityService") as identity_cls,
        ):
            identity_cls.return_value.register = AsyncMock(
                side_effect=ConflictError("Principal '0xdoctor01' already registered")
            )
            result = runner.invoke(
                cli, ["register-principal", "0xdoctor01", "--role", "doctor"]
            )

        assert result.exit_code == 1
        assert "already registered" in result.output
        session.rollback.assert_awaited_once()
        session.commit.assert_not_called()


class TestApiKeys:
    """Tests for the API key commands."""

    def test_create_prints_key_once(
        self, runner: CliRunner, run_inline: MagicMock
    ) -> None:
        key_id = uuid.uuid4()

        async def create(api_key: ApiKey) -> ApiKey:
            api_key.id = key_id
            api_key.created_at = datetime.now(UTC)
            return api_key

        with patch("src.cli.ApiKeyRepository") as repo_cls:
            repo_cls.return_value.create = AsyncMock(side_effect=create)
            result = runner.invoke(cli, ["create-api-key", "gateway"])

        assert result.exit_code == 0
        assert f"API key {key_id} (gateway)" in result.output
        stored = repo_cls.return_value.create.call_args.args[0]
        assert stored.key_hash not in result.output

    def test_list_keys(self, runner: CliRunner, run_inline: MagicMock) -> None:
        key = ApiKey(
            id=uuid.uuid4(),
            key_hash="hash",
            name="gateway",
            is_active=True,
            created_at=datetime.now(UTC),
        )
        with patch("src.cli.ApiKeyRepository") as repo_cls:
            repo_cls.return_value.get_all_active = AsyncMock(return_value=[key])
            result = runner.invoke(cli, ["list-api-keys"])

        assert result.exit_code == 0
        assert "gateway\tlast used never" in result.output

    def test_revoke_unknown_key(self, runner: CliRunner, run_inline: MagicMock) -> None:
        with patch("src.cli.ApiKeyRepository") as repo_cls:
            repo_cls.return_value.revoke = AsyncMock(return_value=False)
            result = runner.invoke(cli, ["revoke-api-key", str(uuid.uuid4())])

        assert result.exit_code == 1
        assert "No active API key" in result.output
