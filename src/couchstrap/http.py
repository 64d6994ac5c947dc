"""HTTP status helpers for the CouchDB wire contract."""

from __future__ import annotations

from enum import IntEnum
from http import HTTPStatus as _HTTPStatus


class Status(IntEnum):
    """Enumeration of the HTTP status codes CouchDB answers provisioning requests with."""

    OK = 200
    CREATED = 201
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    CONFLICT = 409
    PRECONDITION_FAILED = 412
    INTERNAL_SERVER_ERROR = 500
    SERVICE_UNAVAILABLE = 503


def ensure_status(status: int | Status) -> int:
    """Normalize ``status`` to an ``int`` and ensure it is within the HTTP range."""

    code = int(status)
    if code < 100 or code > 599:
        raise ValueError(f"Invalid HTTP status code: {status}")
    return code


def reason_phrase(status: int | Status) -> str:
    """Return the HTTP reason phrase for ``status`` if known."""

    try:
        code = ensure_status(status)
    except ValueError:
        return "Unknown Status"
    try:
        return _HTTPStatus(code).phrase
    except ValueError:  # pragma: no cover - non-standard status codes
        return "Unknown Status"


def is_success(status: int | Status) -> bool:
    """Return ``True`` if ``status`` is a 2xx code."""

    code = ensure_status(status)
    return 200 <= code < 300


def is_auth_failure(status: int | Status) -> bool:
    """Return ``True`` if the server refused the request's credentials."""

    return ensure_status(status) in (Status.UNAUTHORIZED, Status.FORBIDDEN)


def is_exists(status: int | Status) -> bool:
    """Return ``True`` for the responses CouchDB uses to signal an existing resource."""

    return ensure_status(status) in (Status.CONFLICT, Status.PRECONDITION_FAILED)


__all__ = [
    "Status",
    "ensure_status",
    "is_auth_failure",
    "is_exists",
    "is_success",
    "reason_phrase",
]
