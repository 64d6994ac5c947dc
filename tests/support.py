"""Shared fixtures for couchstrap tests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from couchstrap.config import AppSettings, BootstrapConfig, CouchConfig
from couchstrap.installer import CouchInstaller
from couchstrap.testing import FakeClock, FakeCouchServer, MemoryCredentialStore, ScriptedPrompter

COUCH_URL = "http://couch.test:5984"
LOG_PATH = "/var/log/couchdb/couch.log"
FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def make_config(**overrides: Any) -> BootstrapConfig:
    couch = overrides.pop("couch", CouchConfig(url=COUCH_URL, log_path=LOG_PATH))
    app = overrides.pop("app", AppSettings(name="demo"))
    return BootstrapConfig(couch=couch, app=app, **overrides)


def make_installer(
    server: FakeCouchServer,
    *,
    store: MemoryCredentialStore | None = None,
    prompter: ScriptedPrompter | None = None,
    config: BootstrapConfig | None = None,
    clock: FakeClock | None = None,
) -> CouchInstaller:
    fake_clock = clock or FakeClock()
    return CouchInstaller(
        config or make_config(),
        store=store if store is not None else MemoryCredentialStore(),
        prompter=prompter if prompter is not None else ScriptedPrompter(),
        transport=server,
        clock=lambda: FIXED_NOW,
        monotonic=fake_clock.monotonic,
        sleep=fake_clock.sleep,
    )


__all__ = ["COUCH_URL", "FIXED_NOW", "LOG_PATH", "make_config", "make_installer"]
