"""Identity registry API endpoints."""

from fastapi import APIRouter, Query

from src.api.v1.dependencies import Caller, Identity
from src.core.exceptions import AuthorizationError, NotFoundError
from src.models.domain.principal import PrincipalCreate, PrincipalRead, PrincipalRole

router = APIRouter()


@router.post("", response_model=PrincipalRead, status_code=201)
async def register_principal(
    data: PrincipalCreate,
    caller: Caller,
    identity: Identity,
) -> PrincipalRead:
    """Register a principal. Admin only.

    Returns 409 if the wallet address is already registered.
    """
    if caller.role != PrincipalRole.ADMIN:
        raise AuthorizationError(detail="Only admins can register principals")
    return await identity.register(data)


@router.get("", response_model=list[PrincipalRead])
async def list_principals(
    caller: Caller,  # noqa: ARG001
    identity: Identity,
    role: PrincipalRole | None = Query(None, description="Filter by role"),
) -> list[PrincipalRead]:
    """List registered principals, e.g. doctors a patient can pick from."""
    return await identity.list(role=role)


@router.get("/me", response_model=PrincipalRead)
async def get_me(caller: Caller, identity: Identity) -> PrincipalRead:
    """Get the calling principal."""
    principal = await identity.get(caller.wallet_address)
    if principal is None:
        raise NotFoundError(resource="Principal", resource_id=caller.wallet_address)
    return principal


@router.get("/{wallet_address}", response_model=PrincipalRead)
async def get_principal(
    wallet_address: str,
    caller: Caller,  # noqa: ARG001
    identity: Identity,
) -> PrincipalRead:
    """Get a principal by wallet address.

    Returns 404 if not registered.
    """
    principal = await identity.get(wallet_address)
    if principal is None:
        raise NotFoundError(resource="Principal", resource_id=wallet_address)
    return principal
