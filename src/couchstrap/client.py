"""Server endpoint value and a thin JSON client over a :data:`Transport`."""

from __future__ import annotations

import enum
from typing import Any
from urllib.parse import quote, urlsplit

import msgspec
from msgspec import structs

from .exceptions import InputError
from .serialization import json_encode
from .transport import BasicAuth, CouchRequest, CouchResponse, Transport, urllib_transport


class Reachability(str, enum.Enum):
    """What is known about whether the server answers requests."""

    UNKNOWN = "unknown"
    REACHABLE = "reachable"
    TIMED_OUT = "timed_out"

    def __str__(self) -> str:  # pragma: no cover - convenience for logs
        return self.value


class ServerEndpoint(msgspec.Struct, frozen=True):
    """Base URL of the CouchDB server plus the last known reachability."""

    url: str
    state: Reachability = Reachability.UNKNOWN

    @classmethod
    def parse(cls, url: str) -> "ServerEndpoint":
        """Validate ``url`` and return an endpoint in the ``UNKNOWN`` state."""

        candidate = (url or "").strip()
        parts = urlsplit(candidate)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise InputError(f"CouchDB url must be an absolute http(s) URL, got {url!r}")
        if parts.query or parts.fragment:
            raise InputError(f"CouchDB url must not carry a query or fragment, got {url!r}")
        return cls(url=candidate.rstrip("/"))

    def with_state(self, state: Reachability) -> "ServerEndpoint":
        return structs.replace(self, state=state)

    def resolve(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return self.url + path


def quote_segment(value: str) -> str:
    """Percent-encode ``value`` for use as a single path segment."""

    return quote(value, safe="")


class CouchClient:
    """Issue JSON requests against a single :class:`ServerEndpoint`."""

    def __init__(
        self,
        endpoint: ServerEndpoint,
        *,
        transport: Transport | None = None,
        timeout: float | None = 10.0,
    ) -> None:
        self.endpoint = endpoint
        self._transport = transport or urllib_transport
        self._timeout = timeout

    def bind(self, endpoint: ServerEndpoint) -> "CouchClient":
        """Return a client for ``endpoint`` sharing this client's transport."""

        return CouchClient(endpoint, transport=self._transport, timeout=self._timeout)

    async def request(
        self,
        method: str,
        path: str,
        *,
        auth: BasicAuth | None = None,
        json: Any = None,
        body: bytes | None = None,
        timeout: float | None = None,
    ) -> CouchResponse:
        headers = {"accept": "application/json"}
        payload = body
        if json is not None:
            payload = json_encode(json)
        if payload is not None:
            headers["content-type"] = "application/json"
        if auth is not None:
            headers["authorization"] = auth.header()
        request = CouchRequest(
            method=method,
            url=self.endpoint.resolve(path),
            headers=headers,
            body=payload,
            timeout=self._timeout if timeout is None else timeout,
        )
        return await self._transport(request)

    async def get(self, path: str, *, auth: BasicAuth | None = None, timeout: float | None = None) -> CouchResponse:
        return await self.request("GET", path, auth=auth, timeout=timeout)

    async def head(self, path: str, *, auth: BasicAuth | None = None) -> CouchResponse:
        return await self.request("HEAD", path, auth=auth)

    async def put(
        self,
        path: str,
        *,
        auth: BasicAuth | None = None,
        json: Any = None,
    ) -> CouchResponse:
        return await self.request("PUT", path, auth=auth, json=json)

    async def delete(self, path: str, *, auth: BasicAuth | None = None) -> CouchResponse:
        return await self.request("DELETE", path, auth=auth)


__all__ = ["CouchClient", "Reachability", "ServerEndpoint", "quote_segment"]
