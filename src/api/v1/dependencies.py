"""FastAPI dependencies for API v1."""

import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import get_settings
from src.core.database import DbSession, get_db_session
from src.core.exceptions import UnauthorizedError, ValidationError
from src.core.logging import bind_principal
from src.core.security import hash_api_key, is_valid_api_key_format
from src.models.domain.principal import PrincipalInfo
from src.repositories.api_key_repo import ApiKeyRepository
from src.services.access_request_service import AccessRequestService
from src.services.grant_executor import GrantExecutor
from src.services.identity_service import IdentityService, PrincipalCache
from src.services.key_service_client import KeyServiceClient
from src.services.record_service import RecordService
from src.services.storage_service import StorageService
from src.services.transfer_request_service import TransferRequestService


@dataclass
class AuthContext:
    """Authentication context containing validated API key info."""

    api_key_id: uuid.UUID
    api_key_name: str


async def get_api_key_auth(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
    session: AsyncSession = Depends(get_db_session),
) -> AuthContext:
    """Authenticate the gateway that fronts this service.

    Raises:
        UnauthorizedError: If the key is missing, malformed, unknown or revoked
    """
    if not x_api_key:
        raise UnauthorizedError("API key required. Provide X-API-Key header.")

    if not is_valid_api_key_format(x_api_key):
        raise UnauthorizedError("Invalid API key format.")

    repo = ApiKeyRepository(session)
    api_key = await repo.get_active_by_hash(hash_api_key(x_api_key))
    if api_key is None:
        raise UnauthorizedError("Invalid API key.")

    await repo.touch(api_key.id)
    return AuthContext(api_key_id=api_key.id, api_key_name=api_key.name)


Auth = Annotated[AuthContext, Depends(get_api_key_auth)]


def get_principal_cache(request: Request) -> PrincipalCache:
    """Return the application's principal cache, creating it on first use."""
    cache = getattr(request.app.state, "principal_cache", None)
    if cache is None:
        cache = PrincipalCache.from_settings(get_settings())
        request.app.state.principal_cache = cache
    return cache


def get_identity_service(
    session: DbSession,
    cache: Annotated[PrincipalCache, Depends(get_principal_cache)],
) -> IdentityService:
    """Get identity service instance."""
    return IdentityService(session, cache=cache)


Identity = Annotated[IdentityService, Depends(get_identity_service)]


async def get_caller(
    auth: Auth,  # noqa: ARG001
    identity: Identity,
    x_principal: Annotated[str | None, Header(alias="X-Principal")] = None,
) -> PrincipalInfo:
    """Resolve the calling principal asserted by the gateway.

    Raises:
        UnauthorizedError: If the header is missing, malformed or unregistered
    """
    if not x_principal:
        raise UnauthorizedError("Principal required. Provide X-Principal header.")
    try:
        info = await identity.resolve(x_principal)
    except ValidationError as e:
        raise UnauthorizedError("Invalid principal identifier.") from e
    if info is None:
        raise UnauthorizedError("Unknown principal.")
    bind_principal(info.wallet_address)
    return info


Caller = Annotated[PrincipalInfo, Depends(get_caller)]


def get_storage_service() -> StorageService:
    """Get storage service instance."""
    return StorageService(get_settings())


async def get_key_service_client() -> AsyncGenerator[KeyServiceClient, None]:
    """Yield a key service client closed after the request."""
    client = KeyServiceClient(get_settings())
    try:
        yield client
    finally:
        await client.close()


def get_record_service(
    session: DbSession,
    identity: Identity,
    storage: Annotated[StorageService, Depends(get_storage_service)],
    key_service: Annotated[KeyServiceClient, Depends(get_key_service_client)],
) -> RecordService:
    """Get record service instance."""
    return RecordService(
        session,
        identity,
        storage=storage,
        key_service=key_service,
        settings=get_settings(),
    )


Records = Annotated[RecordService, Depends(get_record_service)]


def get_grant_executor(records: Records) -> GrantExecutor:
    """Get grant executor sharing the record service's key service client."""
    return GrantExecutor(records)


Executor = Annotated[GrantExecutor, Depends(get_grant_executor)]


def get_access_request_service(
    session: DbSession,
    identity: Identity,
    executor: Executor,
) -> AccessRequestService:
    """Get access request service instance."""
    return AccessRequestService(session, identity, executor, settings=get_settings())


AccessRequests = Annotated[AccessRequestService, Depends(get_access_request_service)]


def get_transfer_request_service(
    session: DbSession,
    identity: Identity,
    records: Records,
    executor: Executor,
) -> TransferRequestService:
    """Get transfer request service instance."""
    return TransferRequestService(
        session, identity, records, executor, settings=get_settings()
    )


TransferRequests = Annotated[
    TransferRequestService, Depends(get_transfer_request_service)
]
