"""Pluggable HTTP transport used to talk to CouchDB."""

from __future__ import annotations

import asyncio
import base64
import urllib.error
import urllib.request
from typing import Any, Awaitable, Callable

import msgspec

from .exceptions import TransportError
from .serialization import try_json_decode


class BasicAuth(msgspec.Struct, frozen=True):
    """HTTP basic authentication material."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"BasicAuth(username={self.username!r}, password='***')"

    def header(self) -> str:
        token = f"{self.username}:{self.password}".encode("utf-8")
        return "Basic " + base64.b64encode(token).decode("ascii")


class CouchRequest(msgspec.Struct, frozen=True):
    """A single HTTP request against the CouchDB server."""

    method: str
    url: str
    headers: dict[str, str] = msgspec.field(default_factory=dict)
    body: bytes | None = None
    timeout: float | None = None


class CouchResponse(msgspec.Struct, frozen=True):
    """Status, headers and raw body returned by the server."""

    status: int
    headers: dict[str, str] = msgspec.field(default_factory=dict)
    body: bytes = b""

    def json(self) -> Any:
        return try_json_decode(self.body)


Transport = Callable[[CouchRequest], Awaitable[CouchResponse]]


async def urllib_transport(request: CouchRequest) -> CouchResponse:
    """Send ``request`` with :mod:`urllib.request` on a worker thread.

    HTTP error statuses are returned as regular responses so callers can
    reason about them; only failures that never produced a response raise
    :class:`TransportError`.
    """

    prepared = urllib.request.Request(
        request.url,
        data=request.body,
        headers=dict(request.headers),
        method=request.method,
    )

    def _send() -> CouchResponse:
        try:
            with urllib.request.urlopen(prepared, timeout=request.timeout) as response:
                status = getattr(response, "status", response.getcode())
                return CouchResponse(
                    status=status,
                    headers={key.lower(): value for key, value in response.headers.items()},
                    body=response.read(),
                )
        except urllib.error.HTTPError as exc:
            try:
                body = exc.read() or b""
            finally:
                exc.close()
            return CouchResponse(
                status=exc.code,
                headers={key.lower(): value for key, value in (exc.headers or {}).items()},
                body=body,
            )
        except urllib.error.URLError as exc:
            raise TransportError(request.method, request.url, exc.reason) from exc
        except OSError as exc:
            raise TransportError(request.method, request.url, exc) from exc

    return await asyncio.to_thread(_send)


__all__ = ["BasicAuth", "CouchRequest", "CouchResponse", "Transport", "urllib_transport"]
