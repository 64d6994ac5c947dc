"""Persisted CouchDB admin credentials."""

from __future__ import annotations

import asyncio
import base64
import os
import secrets
import tempfile
from pathlib import Path
from typing import Any, Final, Protocol

import msgspec

from .exceptions import InputError, PersistenceError
from .serialization import json_decode, json_encode
from .transport import BasicAuth

PASSWORD_BYTES: Final[int] = 48


class AdminCredentials(msgspec.Struct, frozen=True):
    """Username and password of the CouchDB server administrator used by the bootstrap."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"AdminCredentials(username={self.username!r}, password='***')"

    def auth(self) -> BasicAuth:
        return BasicAuth(self.username, self.password)

    def validate(self) -> "AdminCredentials":
        if not self.username:
            raise InputError("Admin username must not be empty")
        if ":" in self.username:
            raise InputError("Admin username must not contain ':'")
        if not self.password:
            raise InputError("Admin password must not be empty")
        return self


def generate_password() -> str:
    """Return a base64 encoded password built from :data:`PASSWORD_BYTES` random bytes."""

    return base64.b64encode(secrets.token_bytes(PASSWORD_BYTES)).decode("ascii")


class CredentialStore(Protocol):
    """Read and replace the current admin credentials."""

    async def get(self) -> AdminCredentials | None: ...

    async def set(self, credentials: AdminCredentials) -> None: ...


class FileCredentialStore:
    """Keep credentials under the ``couchdb`` key of a JSON configuration file.

    Other keys in the file are preserved. Writes go through a temporary file
    in the same directory followed by :func:`os.replace`.
    """

    _KEY: Final[str] = "couchdb"

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    async def get(self) -> AdminCredentials | None:
        document = await asyncio.to_thread(self._read)
        section = document.get(self._KEY)
        if not isinstance(section, dict):
            return None
        username = section.get("username")
        password = section.get("password")
        if not username or not password:
            return None
        return AdminCredentials(username=str(username), password=str(password))

    async def set(self, credentials: AdminCredentials) -> None:
        await asyncio.to_thread(self._write, credentials)

    def _read(self) -> dict[str, Any]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise PersistenceError(f"Unable to read credentials from {self.path}: {exc}") from exc
        if not raw.strip():
            return {}
        try:
            document = json_decode(raw)
        except msgspec.DecodeError as exc:
            raise PersistenceError(f"Credentials file {self.path} is not valid JSON") from exc
        if not isinstance(document, dict):
            raise PersistenceError(f"Credentials file {self.path} must hold a JSON object")
        return document

    def _write(self, credentials: AdminCredentials) -> None:
        document = self._read()
        document[self._KEY] = {"username": credentials.username, "password": credentials.password}
        payload = json_encode(document)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle, temp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            try:
                with os.fdopen(handle, "wb") as stream:
                    stream.write(payload)
                os.chmod(temp_name, 0o600)
                os.replace(temp_name, self.path)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"Unable to write credentials to {self.path}: {exc}") from exc


__all__ = [
    "PASSWORD_BYTES",
    "AdminCredentials",
    "CredentialStore",
    "FileCredentialStore",
    "generate_password",
]
