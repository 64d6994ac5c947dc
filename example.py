"""Bootstrap a local CouchDB for a demo application.

Start CouchDB (for example ``docker run -p 5984:5984 couchdb:3``), then run
``uv run example.py``. The script waits for the server, creates the internal
admin when the server is in admin party, and provisions the ``app`` and
``plugins`` databases. Override ``COUCHDB_URL``, ``COUCHSTRAP_APP_NAME`` or
``COUCHSTRAP_ADMIN_PASSWORD`` to match your environment; set
``COUCHSTRAP_NON_INTERACTIVE=1`` to never prompt.
"""

from __future__ import annotations

import asyncio
import logging
import os

from couchstrap import AppSettings, BootstrapConfig, CouchConfig, install


def create_config() -> BootstrapConfig:
    """Build the bootstrap configuration from environment variables."""

    interactive_raw = os.getenv("COUCHSTRAP_NON_INTERACTIVE", "0")
    return BootstrapConfig(
        couch=CouchConfig(
            url=os.getenv("COUCHDB_URL", "http://127.0.0.1:5984"),
            log_path=os.getenv("COUCHDB_LOG"),
        ),
        app=AppSettings(name=os.getenv("COUCHSTRAP_APP_NAME", "demo")),
        admin_password=os.getenv("COUCHSTRAP_ADMIN_PASSWORD"),
        interactive=interactive_raw.lower() not in {"1", "true", "yes", "on"},
        credentials_path=os.getenv("COUCHSTRAP_CREDENTIALS", "data/config.json"),
    )


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    report = asyncio.run(install(create_config()))
    for result in report.results:
        print(f"{result.resource}: {result.outcome.value}")


if __name__ == "__main__":
    main()
