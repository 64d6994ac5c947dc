"""Testing helpers: an in-process CouchDB stand-in plus fake collaborators."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Iterable
from urllib.parse import unquote, urlsplit

from .credentials import AdminCredentials
from .exceptions import InputError, PersistenceError, TransportError
from .http import Status
from .serialization import json_decode, json_encode
from .transport import CouchRequest, CouchResponse


def _response(status: int | Status, payload: Any = None) -> CouchResponse:
    body = b"" if payload is None else json_encode(payload)
    return CouchResponse(status=int(status), headers={"content-type": "application/json"}, body=body)


_UNAUTHORIZED = {"error": "unauthorized", "reason": "You are not a server admin."}


@dataclass
class FakeDatabase:
    security: dict[str, Any] = field(default_factory=dict)
    documents: dict[str, Any] = field(default_factory=dict)


class FakeCouchServer:
    """Transport that answers requests the way a single-node CouchDB would.

    ``refuse_connections`` makes the first N requests fail as if nothing was
    listening; ``listening=False`` refuses every request.
    """

    __test__ = False

    def __init__(
        self,
        *,
        admins: dict[str, str] | None = None,
        refuse_connections: int = 0,
        listening: bool = True,
    ) -> None:
        self.admins: dict[str, str] = dict(admins or {})
        self.databases: dict[str, FakeDatabase] = {}
        self.requests: list[CouchRequest] = []
        self.refuse_connections = refuse_connections
        self.listening = listening
        self.overrides: dict[tuple[str, str], CouchResponse] = {}

    @property
    def admin_party(self) -> bool:
        return not self.admins

    def override(self, method: str, path: str, status: int | Status, payload: Any = None) -> None:
        """Answer ``method path`` with a canned response instead of emulating it."""

        self.overrides[(method.upper(), path)] = _response(status, payload)

    def calls(self, method: str | None = None, path: str | None = None) -> list[CouchRequest]:
        matched: list[CouchRequest] = []
        for request in self.requests:
            if method is not None and request.method != method:
                continue
            if path is not None and urlsplit(request.url).path != path:
                continue
            matched.append(request)
        return matched

    def authenticate(self, username: str, password: str) -> bool:
        return self.admins.get(username) == password

    async def __call__(self, request: CouchRequest) -> CouchResponse:
        self.requests.append(request)
        if not self.listening:
            raise TransportError(request.method, request.url, "Connection refused")
        if self.refuse_connections > 0:
            self.refuse_connections -= 1
            raise TransportError(request.method, request.url, "Connection refused")
        path = urlsplit(request.url).path or "/"
        canned = self.overrides.get((request.method, path))
        if canned is not None:
            return canned
        return self._dispatch(request, path)

    def _is_admin(self, request: CouchRequest) -> bool:
        if self.admin_party:
            return True
        header = request.headers.get("authorization", "")
        if not header.startswith("Basic "):
            return False
        try:
            decoded = base64.b64decode(header[len("Basic ") :]).decode("utf-8")
        except ValueError:
            return False
        username, _, password = decoded.partition(":")
        return self.authenticate(username, password)

    def _dispatch(self, request: CouchRequest, path: str) -> CouchResponse:
        segments = [unquote(part) for part in path.strip("/").split("/") if part]
        method = request.method
        if not segments:
            return _response(Status.OK, {"couchdb": "Welcome", "version": "fake"})
        if segments == ["_users", "_all_docs"] and method in ("GET", "HEAD"):
            if not self._is_admin(request):
                return _response(Status.UNAUTHORIZED, None if method == "HEAD" else _UNAUTHORIZED)
            return _response(Status.OK, None if method == "HEAD" else {"rows": []})
        if len(segments) == 3 and segments[:2] == ["_config", "admins"]:
            if method == "PUT":
                return self._put_admin(request, segments[2])
            if method == "DELETE":
                return self._delete_admin(request, segments[2])
        if not self._is_admin(request):
            return _response(Status.UNAUTHORIZED, _UNAUTHORIZED)
        name = segments[0]
        if len(segments) == 1:
            if method == "PUT":
                if name in self.databases:
                    return _response(
                        Status.PRECONDITION_FAILED,
                        {"error": "file_exists", "reason": "The database could not be created, the file already exists."},
                    )
                self.databases[name] = FakeDatabase()
                return _response(Status.CREATED, {"ok": True})
            if method == "GET" and name in self.databases:
                return _response(Status.OK, {"db_name": name, "doc_count": len(self.databases[name].documents)})
            return _response(Status.NOT_FOUND, {"error": "not_found", "reason": "Database does not exist."})
        database = self.databases.get(name)
        if database is None:
            return _response(Status.NOT_FOUND, {"error": "not_found", "reason": "Database does not exist."})
        docid = "/".join(segments[1:])
        if docid == "_security":
            if method == "PUT":
                database.security = json_decode(request.body or b"{}")
                return _response(Status.OK, {"ok": True})
            return _response(Status.OK, database.security)
        if method == "PUT":
            if docid in database.documents:
                return _response(Status.CONFLICT, {"error": "conflict", "reason": "Document update conflict."})
            database.documents[docid] = json_decode(request.body or b"{}")
            return _response(Status.CREATED, {"ok": True, "id": docid, "rev": "1-fake"})
        if docid in database.documents:
            return _response(Status.OK, database.documents[docid])
        return _response(Status.NOT_FOUND, {"error": "not_found", "reason": "missing"})

    def _put_admin(self, request: CouchRequest, username: str) -> CouchResponse:
        if not self._is_admin(request):
            return _response(Status.UNAUTHORIZED, _UNAUTHORIZED)
        password = json_decode(request.body or b'""')
        if not isinstance(password, str):
            return _response(Status.BAD_REQUEST, {"error": "bad_request", "reason": "password must be a string"})
        previous = self.admins.get(username, "")
        self.admins[username] = password
        return _response(Status.OK, previous)

    def _delete_admin(self, request: CouchRequest, username: str) -> CouchResponse:
        if not self._is_admin(request):
            return _response(Status.UNAUTHORIZED, _UNAUTHORIZED)
        if username not in self.admins:
            return _response(Status.NOT_FOUND, {"error": "not_found", "reason": "unknown_config_value"})
        return _response(Status.OK, self.admins.pop(username))


class MemoryCredentialStore:
    """Credential store kept in memory, optionally failing every write."""

    def __init__(self, credentials: AdminCredentials | None = None, *, fail_writes: bool = False) -> None:
        self.credentials = credentials
        self.fail_writes = fail_writes
        self.writes: list[AdminCredentials] = []

    async def get(self) -> AdminCredentials | None:
        return self.credentials

    async def set(self, credentials: AdminCredentials) -> None:
        if self.fail_writes:
            raise PersistenceError("credential store is read-only")
        self.writes.append(credentials)
        self.credentials = credentials


class ScriptedPrompter:
    """Prompter replaying canned answers and recording the questions asked."""

    def __init__(self, *, visible: Iterable[str] = (), hidden: Iterable[str] = ()) -> None:
        self._visible = list(visible)
        self._hidden = list(hidden)
        self.asked: list[tuple[str, str]] = []

    async def ask_visible(self, prompt: str) -> str:
        self.asked.append(("visible", prompt))
        if not self._visible:
            raise InputError(f"No scripted answer for {prompt!r}")
        return self._visible.pop(0)

    async def ask_hidden(self, prompt: str) -> str:
        self.asked.append(("hidden", prompt))
        if not self._hidden:
            raise InputError(f"No scripted answer for {prompt!r}")
        return self._hidden.pop(0)


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


__all__ = [
    "FakeClock",
    "FakeCouchServer",
    "FakeDatabase",
    "MemoryCredentialStore",
    "ScriptedPrompter",
]
