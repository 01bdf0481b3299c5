"""
Shared HTTP plumbing for provider clients.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """The provider answered, but not with a usable success response."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class ProviderUnavailable(ProviderError):
    """The provider could not be reached in time."""


class ProviderClient:
    """
    Base class for bearer-authenticated JSON APIs.

    Every call is bounded twice: httpx enforces the socket timeouts and
    ``asyncio.wait_for`` cancels the whole exchange if it overruns.
    """

    BASE_URL = ""
    PROVIDER = ""

    def __init__(
        self,
        secret_key: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.timeout = timeout if timeout is not None else settings.PROVIDER_HTTP_TIMEOUT_SECONDS
        self._transport = transport

    def _get_headers(self) -> dict[str, str]:
        """Common headers for provider API calls."""
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _send(self, method: str, path: str, payload: Optional[dict] = None) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.BASE_URL,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            return await client.request(
                method,
                path,
                json=payload,
                headers=self._get_headers(),
            )

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict[str, Any]:
        """
        Perform a request and return the decoded JSON body.

        Raises:
            ProviderUnavailable: timeout, transport failure or 5xx
            ProviderError: any other non-2xx or undecodable response
        """
        try:
            response = await asyncio.wait_for(
                self._send(method, path, payload),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.error("%s API timeout: %s %s", self.PROVIDER, method, path)
            raise ProviderUnavailable(self.PROVIDER, "request timed out")
        except httpx.HTTPError as e:
            logger.error("%s API transport error: %s %s: %s", self.PROVIDER, method, path, e)
            raise ProviderUnavailable(self.PROVIDER, "request failed")

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 500:
            logger.error(
                "%s API returned status %d for %s",
                self.PROVIDER,
                response.status_code,
                path,
            )
            raise ProviderUnavailable(self.PROVIDER, f"HTTP {response.status_code}", response.status_code)

        if response.status_code >= 400 or not isinstance(data, dict):
            message = data.get("message") if isinstance(data, dict) else None
            logger.error(
                "%s API returned status %d for %s: %s",
                self.PROVIDER,
                response.status_code,
                path,
                message or response.text[:200],
            )
            raise ProviderError(
                self.PROVIDER,
                message or f"HTTP {response.status_code}",
                response.status_code,
            )

        return data

    @property
    def test_mode(self) -> bool:
        return False
