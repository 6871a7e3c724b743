"""Dependency probes behind the readiness and detailed health endpoints."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Without the database no request can be served; the blob store and key
# service only take down uploads, downloads and grants
CRITICAL_COMPONENTS = frozenset({"database"})


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class ComponentHealth:
    """Health status for a single component."""

    name: str
    status: HealthStatus
    message: str | None = None
    latency_ms: float | None = None


@dataclass
class HealthCheckResult:
    """Overall health check result."""

    status: HealthStatus
    components: list[ComponentHealth] = field(default_factory=list)
    version: str = "0.1.0"

    @classmethod
    def from_components(cls, components: list[ComponentHealth]) -> "HealthCheckResult":
        """Fold component results: critical failures are unhealthy, others degrade."""
        unhealthy = {c.name for c in components if c.status == HealthStatus.UNHEALTHY}
        if unhealthy & CRITICAL_COMPONENTS:
            status = HealthStatus.UNHEALTHY
        elif unhealthy or any(c.status != HealthStatus.HEALTHY for c in components):
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY
        return cls(status=status, components=components)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "components": {
                c.name: {
                    "status": c.status.value,
                    "message": c.message,
                    "latency_ms": c.latency_ms,
                }
                for c in self.components
            },
        }


async def _probe(name: str, check: Callable[[], Awaitable[str]]) -> ComponentHealth:
    """Time ``check``; any exception marks the component unhealthy."""
    start = time.perf_counter()
    try:
        message = await check()
    except Exception as e:
        logger.warning(
            "Health check failed", extra={"component": name, "error": str(e)}
        )
        return ComponentHealth(name=name, status=HealthStatus.UNHEALTHY, message=str(e))
    return ComponentHealth(
        name=name,
        status=HealthStatus.HEALTHY,
        message=message,
        latency_ms=round((time.perf_counter() - start) * 1000, 2),
    )


class HealthCheckService:
    """Probes the database, the blob store and the key service."""

    def __init__(
        self,
        db_session: AsyncSession | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.db_session = db_session
        self.settings = settings or get_settings()

    async def check_database(self) -> ComponentHealth:
        if self.db_session is None:
            return ComponentHealth(
                name="database",
                status=HealthStatus.UNHEALTHY,
                message="No database session available",
            )
        session = self.db_session

        async def select_one() -> str:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            return "Connected"

        return await _probe("database", select_one)

    async def check_storage(self) -> ComponentHealth:
        from src.services.storage_service import StorageService

        storage = StorageService(settings=self.settings)

        async def ping() -> str:
            if await storage.ping():
                return "Connected"
            return f"Connected; bucket {storage.bucket_name} not created yet"

        return await _probe("storage", ping)

    async def check_key_service(self) -> ComponentHealth:
        from src.services.key_service_client import KeyServiceClient

        client = KeyServiceClient(settings=self.settings)

        async def ping() -> str:
            await client.ping()
            return "Reachable"

        try:
            return await _probe("key_service", ping)
        finally:
            await client.close()

    async def check_all(self) -> HealthCheckResult:
        """Probe every dependency; the external ones concurrently."""
        database = await self.check_database()
        storage, key_service = await asyncio.gather(
            self.check_storage(), self.check_key_service()
        )
        return HealthCheckResult.from_components([database, storage, key_service])
