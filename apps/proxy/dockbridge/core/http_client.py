"""HTTP client for the Docker daemon running in the VM."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

# Docker streams logs, events and attach output, so only the dial is bounded.
DEFAULT_TIMEOUT = httpx.Timeout(None, connect=5.0)
DEFAULT_LIMITS = httpx.Limits(max_connections=100, keepalive_expiry=90.0)


class DaemonUnavailableError(Exception):
    """Raised when the daemon cannot be reached after retrying."""


class DaemonClient:
    """Forwards raw requests to the daemon and returns streamed responses."""

    def __init__(
        self,
        base_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            limits=DEFAULT_LIMITS,
            transport=transport,
        )

    async def send(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | str | None = None,
        headers: Mapping[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        """Send a request and return the response with its body still unread.

        The caller must ``aclose()`` the response.
        """
        request = self._client.build_request(
            method,
            path,
            params=params,
            headers=headers,
            content=content,
        )
        try:
            return await self._send(request)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise DaemonUnavailableError(f"Cannot reach Docker daemon at {self.base_url}: {exc}") from exc

    # A failed dial never reached the daemon, so retrying cannot duplicate a create.
    @retry(
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _send(self, request: httpx.Request) -> httpx.Response:
        return await self._client.send(request, stream=True)

    async def close(self) -> None:
        await self._client.aclose()


@asynccontextmanager
async def create_daemon_client(
    *,
    base_url: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[DaemonClient]:
    client = DaemonClient(base_url, transport=transport)
    try:
        yield client
    finally:
        await client.close()
