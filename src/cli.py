"""Admin CLI for provisioning principals and service API keys."""

from __future__ import annotations

import asyncio
import logging
import sys
import uuid
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import AppError
from src.core.security import create_api_key
from src.models.db.api_key import ApiKey
from src.models.domain.api_key import ApiKeyCreateResponse, ApiKeyRead
from src.models.domain.principal import PrincipalCreate, PrincipalRole
from src.repositories.api_key_repo import ApiKeyRepository
from src.services.identity_service import IdentityService

T = TypeVar("T")


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(message)s",
        stream=sys.stderr,
    )


def _run(work: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Run ``work`` in one committed unit of work."""

    async def runner() -> T:
        from src.core.database import close_database, init_database, session_scope

        init_database()
        try:
            async with session_scope() as session:
                return await work(session)
        finally:
            await close_database()

    try:
        return asyncio.run(runner())
    except AppError as e:
        raise click.ClickException(e.detail) from e


@click.group()
def cli() -> None:
    """MedVault administration."""
    _setup_logging()


@cli.command("register-principal")
@click.argument("wallet_address")
@click.option(
    "--role",
    type=click.Choice([r.value for r in PrincipalRole]),
    required=True,
    help="Principal role.",
)
@click.option("--name", "full_name", default=None, help="Display name.")
@click.option("--org", "organization_name", default=None, help="Hospital or practice.")
def register_principal(
    wallet_address: str,
    role: str,
    full_name: str | None,
    organization_name: str | None,
) -> None:
    """Register WALLET_ADDRESS with a role."""
    try:
        data = PrincipalCreate(
            wallet_address=wallet_address,
            role=PrincipalRole(role),
            full_name=full_name,
            organization_name=organization_name,
        )
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="WALLET_ADDRESS") from e

    principal = _run(lambda session: IdentityService(session).register(data))
    click.echo(f"Registered {principal.wallet_address} as {principal.role.value}")


@cli.command("list-principals")
@click.option(
    "--role",
    type=click.Choice([r.value for r in PrincipalRole]),
    default=None,
    help="Filter by role.",
)
def list_principals(role: str | None) -> None:
    """List registered principals."""
    principals = _run(
        lambda session: IdentityService(session).list(
            role=PrincipalRole(role) if role else None
        )
    )
    for p in principals:
        click.echo(f"{p.wallet_address}\t{p.role.value}\t{p.full_name or '-'}")


@cli.command("create-api-key")
@click.argument("name")
def create_api_key_command(name: str) -> None:
    """Create a service API key named NAME and print it once."""
    plain_key, key_hash = create_api_key()

    async def work(session: AsyncSession) -> ApiKeyCreateResponse:
        api_key = await ApiKeyRepository(session).create(
            ApiKey(key_hash=key_hash, name=name)
        )
        return ApiKeyCreateResponse(
            id=api_key.id, name=api_key.name, key=plain_key, created_at=api_key.created_at
        )

    created = _run(work)
    click.echo(f"API key {created.id} ({created.name}):")
    click.echo(created.key)
    click.echo("Store it now; it cannot be shown again.", err=True)


@cli.command("list-api-keys")
def list_api_keys() -> None:
    """List active service API keys."""

    async def work(session: AsyncSession) -> list[ApiKeyRead]:
        keys = await ApiKeyRepository(session).get_all_active()
        return [ApiKeyRead.model_validate(k) for k in keys]

    for key in _run(work):
        last_used = key.last_used_at.isoformat() if key.last_used_at else "never"
        click.echo(f"{key.id}\t{key.name}\tlast used {last_used}")


@cli.command("revoke-api-key")
@click.argument("api_key_id", type=click.UUID)
def revoke_api_key(api_key_id: uuid.UUID) -> None:
    """Revoke the API key API_KEY_ID."""
    revoked = _run(lambda session: ApiKeyRepository(session).revoke(api_key_id))
    if not revoked:
        raise click.ClickException(f"No active API key {api_key_id}")
    click.echo(f"Revoked {api_key_id}")


if __name__ == "__main__":
    cli()
