"""Client for the threshold key service that seals and reseals content keys."""

import asyncio
import base64
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import httpx

from src.core.config import Settings, get_settings
from src.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class CryptoServiceError(ExternalServiceError):
    """The key service rejected a call or could not be reached."""

    def __init__(
        self,
        detail: str,
        operation: str = "call",
        status_code: int | None = None,
    ) -> None:
        super().__init__(detail=detail, service="key-service", operation=operation)
        self.upstream_status = status_code


@dataclass
class SealResult:
    """Ciphertext plus the content key wrapped for a policy."""

    ciphertext: bytes
    wrapped_key: str


def build_access_conditions(policy: Iterable[str]) -> list[dict[str, Any]]:
    """Express a policy as an OR-chain of address-equality conditions.

    Members are sorted so the same set always yields the same conditions.
    """
    conditions: list[dict[str, Any]] = []
    for principal in sorted({p.lower() for p in policy}):
        if conditions:
            conditions.append({"operator": "or"})
        conditions.append(
            {
                "parameters": [":userAddress"],
                "returnValueTest": {"comparator": "=", "value": principal},
            }
        )
    return conditions


class KeyServiceClient:
    """HTTP client for the key service.

    ``seal`` encrypts a document for a policy; ``reseal`` rewraps an existing
    content key so members of the new policy can derive it and removed
    members cannot.
    """

    RETRY_DELAY = 0.5  # seconds

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the key service client.

        Args:
            settings: Application settings. If None, loads from environment.
        """
        self.settings = settings or get_settings()
        self.max_retries = self.settings.key_service_max_retries
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create HTTP client (lazy initialization)."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.key_service_url,
                headers={
                    "Authorization": f"Bearer {self.settings.key_service_api_key}",
                },
                timeout=self.settings.key_service_timeout_seconds,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def ping(self) -> None:
        """Raise CryptoServiceError unless the service reports healthy."""
        try:
            response = await self.client.get("/health")
        except httpx.HTTPError as e:
            raise CryptoServiceError(f"Key service unreachable: {e}", "ping") from e
        if response.status_code != 200:
            raise CryptoServiceError(
                f"Key service unhealthy: HTTP {response.status_code}",
                "ping",
                response.status_code,
            )

    async def seal(self, data: bytes, policy: Iterable[str]) -> SealResult:
        """Encrypt ``data`` under a fresh content key sealed for ``policy``.

        Raises:
            CryptoServiceError: If sealing fails after retries
        """
        body = await self._post(
            "/v1/seal",
            {
                "data": base64.b64encode(data).decode("ascii"),
                "access_conditions": build_access_conditions(policy),
            },
            operation="seal",
        )
        try:
            return SealResult(
                ciphertext=base64.b64decode(body["ciphertext"]),
                wrapped_key=body["wrapped_key"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CryptoServiceError(
                f"Malformed seal response: {e}", "seal"
            ) from e

    async def reseal(
        self,
        wrapped_key: str,
        old_policy: Iterable[str],
        new_policy: Iterable[str],
    ) -> str:
        """Rewrap ``wrapped_key`` from ``old_policy`` to ``new_policy``.

        Raises:
            CryptoServiceError: If resealing fails after retries
        """
        body = await self._post(
            "/v1/reseal",
            {
                "wrapped_key": wrapped_key,
                "old_access_conditions": build_access_conditions(old_policy),
                "new_access_conditions": build_access_conditions(new_policy),
            },
            operation="reseal",
        )
        new_key = body.get("wrapped_key")
        if not isinstance(new_key, str) or not new_key:
            raise CryptoServiceError("Malformed reseal response", "reseal")
        return new_key

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        operation: str,
    ) -> dict[str, Any]:
        """POST with retries on throttling, server errors and timeouts."""
        last_error: Exception | str | None = None

        for attempt in range(self.max_retries):
            try:
                response = await self.client.post(path, json=payload)

                if response.status_code == 429 or response.status_code >= 500:
                    last_error = f"HTTP {response.status_code}"
                    delay = self.RETRY_DELAY * (2**attempt)
                    logger.warning(
                        "Key service %s returned %s, retrying in %ss (attempt %s/%s)",
                        operation,
                        response.status_code,
                        delay,
                        attempt + 1,
                        self.max_retries,
                    )
                    await asyncio.sleep(delay)
                    continue

                if response.status_code != 200:
                    raise CryptoServiceError(
                        f"Key service {operation} failed: {response.text}",
                        operation,
                        response.status_code,
                    )

                return response.json()

            except httpx.TimeoutException as e:
                last_error = e
                delay = self.RETRY_DELAY * (2**attempt)
                logger.warning(
                    "Key service %s timed out, retrying in %ss (attempt %s/%s)",
                    operation,
                    delay,
                    attempt + 1,
                    self.max_retries,
                )
                await asyncio.sleep(delay)
                continue

            except httpx.RequestError as e:
                last_error = e
                delay = self.RETRY_DELAY * (2**attempt)
                logger.warning(
                    "Key service %s request error: %s, retrying in %ss (attempt %s/%s)",
                    operation,
                    e,
                    delay,
                    attempt + 1,
                    self.max_retries,
                )
                await asyncio.sleep(delay)
                continue

        raise CryptoServiceError(
            f"Key service {operation} failed after {self.max_retries} attempts: {last_error}",
            operation,
        )
