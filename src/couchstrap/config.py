"""Bootstrap configuration objects."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Final, Mapping

import msgspec
from msgspec import Struct

from .exceptions import InputError
from .serialization import json_decode

APP_ADMIN_USERNAME: Final[str] = "admin"


class CouchConfig(Struct, frozen=True):
    """Where the CouchDB server lives and how patiently to wait for it."""

    url: str = "http://127.0.0.1:5984"
    poll_timeout: float = 30.0
    poll_interval: float = 0.2
    request_timeout: float = 10.0
    config_path: str = "/_config"
    log_path: str | None = None


class AppSettings(Struct, frozen=True):
    """Application metadata written into the config document."""

    name: str = "app"


class AdminUser(Struct, frozen=True):
    """Application-level administrator registered as a CouchDB admin."""

    name: str
    password: str

    def __repr__(self) -> str:
        return f"AdminUser(name={self.name!r}, password='***')"


class BootstrapConfig(Struct, frozen=True):
    """Typed configuration for a single bootstrap run."""

    couch: CouchConfig = CouchConfig()
    app: AppSettings = AppSettings()
    admin_password: str | None = None
    interactive: bool = True
    fallback_admin_password: str | None = None
    internal_username: str = "_couchstrap"
    max_credential_attempts: int = 3
    credentials_path: str = "data/config.json"

    def __post_init__(self) -> None:
        if self.max_credential_attempts < 1:
            raise InputError("max_credential_attempts must be at least 1")
        if self.couch.poll_interval <= 0:
            raise InputError("couch.poll_interval must be positive")
        if self.couch.poll_timeout < 0:
            raise InputError("couch.poll_timeout must not be negative")
        if not self.internal_username or ":" in self.internal_username:
            raise InputError("internal_username must be non-empty and must not contain ':'")


def parse_config(source: bytes | str | Mapping[str, Any]) -> BootstrapConfig:
    """Convert JSON text or an already decoded mapping into :class:`BootstrapConfig`."""

    if isinstance(source, (bytes, str)):
        try:
            payload = json_decode(source)
        except msgspec.DecodeError as exc:
            raise InputError("Bootstrap configuration is not valid JSON") from exc
    else:
        payload = dict(source)
    try:
        return msgspec.convert(payload, type=BootstrapConfig)
    except msgspec.ValidationError as exc:
        raise InputError(f"Invalid bootstrap configuration: {exc}") from exc


def load_config(path: str | os.PathLike[str]) -> BootstrapConfig:
    """Read a JSON configuration file."""

    location = Path(path)
    try:
        raw = location.read_bytes()
    except FileNotFoundError as exc:
        raise InputError(f"Bootstrap configuration file at '{location}' not found") from exc
    return parse_config(raw)


def load_config_from_env(*, env: Mapping[str, str] | None = None) -> BootstrapConfig | None:
    """Decode configuration from ``COUCHSTRAP_CONFIG`` or the file named by ``COUCHSTRAP_CONFIG_FILE``."""

    source = env if env is not None else os.environ
    path = source.get("COUCHSTRAP_CONFIG_FILE")
    if path:
        return load_config(path)
    inline = source.get("COUCHSTRAP_CONFIG")
    if inline:
        return parse_config(inline)
    return None


__all__ = [
    "APP_ADMIN_USERNAME",
    "AdminUser",
    "AppSettings",
    "BootstrapConfig",
    "CouchConfig",
    "load_config",
    "load_config_from_env",
    "parse_config",
]
