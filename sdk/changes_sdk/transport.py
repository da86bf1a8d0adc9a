"""
Transport port for changes feed requests.

This module defines the Transport protocol the reader depends on, and
HttpTransport, the httpx-based implementation used against a real server.

A transport performs exactly one request/response exchange per call. It does
not retry and does not interpret the body beyond JSON decoding.

Invariants:
    - exchange() returns a decoded JSON body or raises TransportError
    - Server failures carry status_code; network failures do not
    - Undecodable bodies raise MalformedResponseError (no status code)

How to change safely:
    - Keep retry policy out of transports; the reader owns it
    - New transports only need to satisfy the Transport protocol
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

import httpx

from .errors import MalformedResponseError, TransientServerError, error_for_status

logger = logging.getLogger(__name__)


@runtime_checkable
class Transport(Protocol):
    """One request/response exchange with the database server.

    Example:
        >>> body = await transport.exchange("GET", "mydb/_changes", {"since": "now"})
        >>> body["last_seq"]
    """

    async def exchange(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any],
    ) -> Any:
        """Perform one exchange.

        Args:
            method: HTTP method
            path: Path relative to the server base URL
            params: Query parameters

        Returns:
            Decoded JSON body

        Raises:
            TransportError: If the exchange failed
        """
        ...


def _reason_from_response(response: httpx.Response) -> Optional[str]:
    """Extract CouchDB's {"error": ..., "reason": ...} if present."""
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or None
    if isinstance(body, dict):
        reason = body.get("reason") or body.get("error")
        if reason is not None:
            return str(reason)
    return response.reason_phrase or None


def _encode_params(params: Mapping[str, Any]) -> Dict[str, Any]:
    """Encode booleans the way CouchDB expects them (true/false)."""
    encoded: Dict[str, Any] = {}
    for key, value in params.items():
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        elif value is not None:
            encoded[key] = value
    return encoded


class HttpTransport:
    """httpx implementation of the Transport protocol.

    Owns an httpx.AsyncClient unless one is injected; an injected client is
    where callers configure authentication, TLS and proxies.

    Attributes:
        base_url: Server base URL

    Example:
        >>> transport = HttpTransport("http://localhost:5984")
        >>> await transport.connect()
        >>> page = await transport.exchange("GET", "db/_changes", {"limit": 10})
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = 90.0,
        connect_timeout: float = 10.0,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self._client = client
        self._owns_client = client is None
        self._timeout = httpx.Timeout(request_timeout, connect=connect_timeout)
        self._headers = dict(headers or {})

    @property
    def is_connected(self) -> bool:
        """Whether an HTTP client is available."""
        return self._client is not None

    async def connect(self) -> None:
        """Create the HTTP client if none was injected."""
        self._open()

    def _open(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                headers={"Accept": "application/json", **self._headers},
            )
            self._owns_client = True
            logger.debug("HTTP transport connected", extra={"base_url": self.base_url})
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.debug("HTTP transport closed", extra={"base_url": self.base_url})

    async def __aenter__(self) -> HttpTransport:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def exchange(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any],
    ) -> Any:
        """Send one request and decode the JSON response.

        Raises:
            FatalServerError: For 4xx responses other than 429
            TransientServerError: For 429, 5xx and network failures
            MalformedResponseError: If the body is not valid JSON
        """
        client = self._open()
        url = self.base_url + path.lstrip("/")
        try:
            response = await client.request(method, url, params=_encode_params(params))
        except httpx.RequestError as e:
            raise TransientServerError(f"Changes request failed: {e}") from e

        if response.is_error:
            raise error_for_status(response.status_code, _reason_from_response(response))

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Changes response is not JSON: {e}", response.text) from e


__all__ = ["HttpTransport", "Transport"]
