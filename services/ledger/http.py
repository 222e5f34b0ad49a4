"""Shared HTTP plumbing for the ledger JSON API and the token registry.

Read-only calls go through ``_read_json`` and are retried on transient
failures with tenacity. Command submission uses ``_request`` directly and is
never retried; the caller's command id is the idempotency key.

Based on HTTPX async client:
https://www.python-httpx.org/async/
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.shared.config import Settings
from services.shared.errors import QueryTransportError

logger = logging.getLogger(__name__)


def is_transient(exc: BaseException) -> bool:
    """Connection problems, timeouts and 5xx responses are worth another try."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


@contextmanager
def translating_malformed(what: str) -> Iterator[None]:
    """Report a response body that cannot be decoded as QueryTransportError."""
    try:
        yield
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        logger.error(f"Unexpected {what} response: {e!r}")
        raise QueryTransportError(f"Unexpected {what} response: {e!r}") from e


class LedgerHttpClient:
    """Base class holding the async client, auth headers and retry policy."""

    _retry_wait = wait_exponential_jitter(initial=0.5, max=10)

    def __init__(
        self,
        settings: Settings,
        base_url: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize client.

        Args:
            settings: Application settings
            base_url: Service base URL (no trailing slash)
            client: Optional pre-built client (tests inject a MockTransport here)
        """
        self.settings = settings
        self._base_url = base_url.rstrip("/")
        self._attempts = settings.ledger_query_attempts
        self._headers = {"Accept": "application/json"}
        if settings.ledger_access_token:
            self._headers["Authorization"] = f"Bearer {settings.ledger_access_token}"
        self._client = client or httpx.AsyncClient(timeout=settings.ledger_timeout_seconds)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> httpx.Response:
        response = await self._client.request(
            method, f"{self._base_url}{path}", json=payload, headers=self._headers
        )
        response.raise_for_status()
        return response

    async def _read_json(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        not_found_ok: bool = False,
    ) -> Any:
        """Perform a read-only call with retry.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            payload: Optional JSON body
            not_found_ok: Return None on 404 instead of failing

        Returns:
            Decoded JSON body, or None for a tolerated 404

        Raises:
            QueryTransportError: When the service is unreachable or answers with an error
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(is_transient),
                wait=self._retry_wait,
                stop=stop_after_attempt(self._attempts),
                reraise=True,
            ):
                with attempt:
                    response = await self._request(method, path, payload)
        except httpx.HTTPStatusError as e:
            if not_found_ok and e.response.status_code == 404:
                return None
            logger.error(f"{method} {path} failed with status {e.response.status_code}")
            raise QueryTransportError(
                f"{method} {path} failed with status {e.response.status_code}: {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise QueryTransportError(f"{method} {path} failed: {e}") from e
        with translating_malformed(f"{method} {path}"):
            return response.json()
