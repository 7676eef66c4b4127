# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/antigravity_router/providers/antigravity_transport.py
"""
HTTP capability used by the orchestrator and the model catalog.

The router only depends on the ``Transport`` protocol; ``HttpxTransport``
is the default implementation. Tests plug in an in-memory fake.
"""

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncContextManager, AsyncIterator, Dict, List, Mapping, Optional, Protocol

import httpx

from ..core.constants import ANTIGRAVITY_ENDPOINT_DAILY, ANTIGRAVITY_ENDPOINT_PROD, ANTIGRAVITY_ENDPOINTS
from ..core.errors import UpstreamError

lib_logger = logging.getLogger("antigravity_router")

STREAMING_READ_TIMEOUT = 300.0


def resolve_endpoints(preference: str) -> List[str]:
    """Endpoint order for ``prod``, ``daily`` or ``auto`` (default order)."""
    if preference == "prod":
        return [ANTIGRAVITY_ENDPOINT_PROD, ANTIGRAVITY_ENDPOINT_DAILY]
    if preference == "daily":
        return [ANTIGRAVITY_ENDPOINT_DAILY, ANTIGRAVITY_ENDPOINT_PROD]
    return list(ANTIGRAVITY_ENDPOINTS)


@dataclass
class TransportResponse:
    """A fully read response."""

    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        return json.loads(self.text) if self.text else {}


class StreamingResponse(Protocol):
    status_code: int
    headers: Mapping[str, str]

    async def read_text(self) -> str: ...

    def aiter_text(self) -> AsyncIterator[str]: ...


class Transport(Protocol):
    """Performs authenticated calls; headers already carry the bearer token."""

    async def request(
        self, method: str, url: str, headers: Dict[str, str], body: Optional[Dict[str, Any]] = None
    ) -> TransportResponse: ...

    def stream(
        self, method: str, url: str, headers: Dict[str, str], body: Optional[Dict[str, Any]] = None
    ) -> AsyncContextManager[StreamingResponse]: ...

    async def close(self) -> None: ...


class _HttpxStreamingResponse:
    def __init__(self, response: httpx.Response):
        self._response = response
        self.status_code = response.status_code
        self.headers = response.headers

    async def read_text(self) -> str:
        try:
            await self._response.aread()
        except httpx.HTTPError as e:
            raise UpstreamError(f"Error reading response: {e}") from e
        return self._response.text

    async def aiter_text(self) -> AsyncIterator[str]:
        try:
            async for chunk in self._response.aiter_text():
                yield chunk
        except httpx.HTTPError as e:
            raise UpstreamError(f"Stream interrupted: {e}") from e


class HttpxTransport:
    """
    ``Transport`` backed by a shared ``httpx.AsyncClient``.

    Network-level failures (timeouts, connection resets) surface as
    ``UpstreamError`` without a status code, which the orchestrator treats
    as a server error and moves on to the next endpoint.
    """

    def __init__(self, shared_client: Optional[httpx.AsyncClient] = None) -> None:
        self._shared_client = shared_client
        self._owns_client = shared_client is None
        self.client: Optional[httpx.AsyncClient] = shared_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._shared_client is not None:
            return self._shared_client
        if self.client is None or self.client.is_closed:
            timeout_config = httpx.Timeout(
                connect=30.0,
                read=STREAMING_READ_TIMEOUT,
                write=30.0,
                pool=30.0,
            )
            self.client = httpx.AsyncClient(timeout=timeout_config, follow_redirects=True)
        return self.client

    async def request(
        self, method: str, url: str, headers: Dict[str, str], body: Optional[Dict[str, Any]] = None
    ) -> TransportResponse:
        client = self._get_client()
        try:
            response = await client.request(method, url, headers=headers, json=body)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Request to {url} failed: {e}") from e
        return TransportResponse(
            status_code=response.status_code,
            headers=response.headers,
            text=response.text,
        )

    @asynccontextmanager
    async def stream(
        self, method: str, url: str, headers: Dict[str, str], body: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[_HttpxStreamingResponse]:
        client = self._get_client()
        try:
            request = client.build_request(method, url, headers=headers, json=body)
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Request to {url} failed: {e}") from e
        try:
            yield _HttpxStreamingResponse(response)
        finally:
            await response.aclose()

    async def close(self) -> None:
        if not self._owns_client:
            return
        if self.client and not self.client.is_closed:
            try:
                await self.client.aclose()
            except Exception as exc:
                lib_logger.warning(f"Error closing HTTP client: {exc}")

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
