"""aiohttp-based HTTP client for webhook delivery.

Retrying is owned by the router's retry executor, so the client performs a
single POST per call and only enforces the request timeout.
"""

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol, Self

import aiohttp

from event_notifications.utils.sanitization import sanitize_url

__all__ = ["HTTPClient", "WebhookHTTPClient", "WebhookResponse"]


@dataclass(slots=True, frozen=True)
class WebhookResponse:
    """HTTP response with status code, decoded JSON body and headers."""

    status: int
    body: Mapping[str, object] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400


class HTTPClient(Protocol):
    """Protocol for the HTTP operations webhook providers need."""

    async def post(
        self,
        url: str,
        payload: Mapping[str, object],
        *,
        timeout: float,
        headers: Mapping[str, str] | None = None,
    ) -> WebhookResponse:
        """Send a JSON POST request with a timeout in seconds."""
        ...


class WebhookHTTPClient:
    """Async HTTP client backed by a shared ``aiohttp.ClientSession``.

    Example:
        >>> async with WebhookHTTPClient() as client:
        ...     response = await client.post(
        ...         "https://hooks.example.com/notify",
        ...         {"message": "test"},
        ...         timeout=5.0,
        ...     )
    """

    def __init__(self, *, default_timeout_seconds: float = 10.0) -> None:
        self._default_timeout_seconds: float = default_timeout_seconds
        # Created in __aenter__
        self._session: aiohttp.ClientSession | None = None
        self._logger: logging.Logger = logging.getLogger(__name__)

    async def __aenter__(self) -> Self:
        timeout = aiohttp.ClientTimeout(total=self._default_timeout_seconds)
        self._session = aiohttp.ClientSession(timeout=timeout, json_serialize=json.dumps)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def post(
        self,
        url: str,
        payload: Mapping[str, object],
        *,
        timeout: float,
        headers: Mapping[str, str] | None = None,
    ) -> WebhookResponse:
        """Send HTTP POST request with timeout.

        Raises:
            TimeoutError: If the request exceeds ``timeout``
            ValueError: If the URL is malformed
            aiohttp.ClientError: For connection issues
        """
        if self._session is None:
            msg = "HTTP client session not initialized. Use 'async with' context manager."
            raise RuntimeError(msg)

        safe_url = sanitize_url(url)
        self._logger.debug("Initiating POST request to %s", safe_url)

        try:
            async with asyncio.timeout(timeout):
                async with self._session.post(url, json=payload, headers=dict(headers or {})) as response:
                    body: Mapping[str, object]
                    try:
                        decoded: object = await response.json()  # pyright: ignore[reportAny]  # aiohttp returns Any
                    except (aiohttp.ContentTypeError, ValueError):
                        decoded = {}
                    body = decoded if isinstance(decoded, dict) else {"data": decoded}  # pyright: ignore[reportUnknownVariableType]
                    return WebhookResponse(
                        status=response.status,
                        body=body,
                        headers=dict(response.headers),
                    )
        except TimeoutError:
            self._logger.warning("Request to %s timed out after %.1fs", safe_url, timeout)
            raise
        except aiohttp.InvalidURL as exc:
            self._logger.error("Invalid URL: %s", safe_url)
            msg = f"Malformed URL: {safe_url}"
            raise ValueError(msg) from exc
        except aiohttp.ClientError as exc:
            self._logger.warning("Client error for %s: %s", safe_url, exc)
            raise
