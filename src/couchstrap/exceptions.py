"""Error types raised while bootstrapping a CouchDB server."""

from __future__ import annotations

from typing import Any

from .http import Status, ensure_status, reason_phrase


class CouchstrapError(Exception):
    """Base error type."""


class UnreachableError(CouchstrapError):
    """The server did not answer before the polling deadline."""

    def __init__(
        self,
        url: str,
        elapsed: float,
        *,
        log_hint: str | None = None,
        endpoint: Any = None,
    ) -> None:
        message = f"Timed out after {elapsed:.1f}s waiting for CouchDB at {url}"
        if log_hint:
            message = f"{message}, please check {log_hint}"
        super().__init__(message)
        self.url = url
        self.elapsed = elapsed
        self.log_hint = log_hint
        self.endpoint = endpoint


class TransportError(CouchstrapError):
    """A request never produced an HTTP response (refused, DNS, socket timeout)."""

    def __init__(self, method: str, url: str, reason: Any) -> None:
        super().__init__(f"{method} {url} failed: {reason}")
        self.method = method
        self.url = url
        self.reason = reason


class ProvisioningError(CouchstrapError):
    """CouchDB answered a provisioning request with an unexpected status."""

    def __init__(self, status: int | Status, detail: Any, *, method: str = "", path: str = "") -> None:
        status_code = ensure_status(status)
        self.status = status_code
        self.detail = detail
        self.reason = reason_phrase(status_code)
        self.method = method
        self.path = path
        target = f"{method} {path} " if method else ""
        super().__init__(f"{target}returned {status_code} {self.reason}: {detail}")


class AuthenticationError(ProvisioningError):
    """The server rejected the credentials attached to a request."""


class ProvisioningConflictError(ProvisioningError):
    """The resource being created already exists."""


class PersistenceError(CouchstrapError):
    """Admin credentials could not be written to the credential store."""


class InputError(CouchstrapError):
    """A configured or prompted value is missing or malformed."""


__all__ = [
    "AuthenticationError",
    "CouchstrapError",
    "InputError",
    "PersistenceError",
    "ProvisioningConflictError",
    "ProvisioningError",
    "TransportError",
    "UnreachableError",
]
