from __future__ import annotations

from typing import Any, Protocol, cast

import msgspec


class _JSONModule(Protocol):
    def encode(self, obj: Any) -> bytes: ...

    def decode(self, data: bytes) -> Any: ...


_json = cast(_JSONModule, getattr(msgspec, "json"))


def json_encode(value: Any) -> bytes:
    """Serialize ``value`` to JSON bytes using msgspec."""

    return _json.encode(value)


def json_decode(data: bytes | str) -> Any:
    """Deserialize JSON ``data`` into native Python values."""

    if isinstance(data, str):
        data = data.encode("utf-8")
    return _json.decode(data)


def try_json_decode(data: bytes) -> Any:
    """Decode ``data`` when it holds JSON, returning ``None`` for empty or non-JSON bodies."""

    if not data:
        return None
    try:
        return _json.decode(data)
    except msgspec.DecodeError:
        return None
