"""Command line entrypoint for bootstrapping a CouchDB server."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence

from msgspec import structs

from .client import CouchClient, ServerEndpoint
from .config import BootstrapConfig, load_config, load_config_from_env
from .exceptions import CouchstrapError
from .installer import install
from .probe import wait_until_reachable

PROJECT_NAME = "couchstrap"


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except CouchstrapError as exc:
        print(f"{PROJECT_NAME}: {exc}", file=sys.stderr)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROJECT_NAME, description="CouchDB bootstrap commands")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every poll attempt and request step")
    sub = parser.add_subparsers(dest="command", required=True)

    install_cmd = sub.add_parser("install", help="Create admin users, databases and the app config document")
    _add_common_arguments(install_cmd)
    install_cmd.add_argument("--app-name", help="Application name written into the config document")
    install_cmd.add_argument("--admin-password", help="Password for the application 'admin' user")
    install_cmd.add_argument(
        "--non-interactive",
        action="store_true",
        help="Never prompt; fail instead when credentials are missing or rejected",
    )
    install_cmd.add_argument("--credentials", help="JSON file holding the internal admin credentials")
    install_cmd.set_defaults(func=_cmd_install)

    wait = sub.add_parser("wait", help="Wait until the server answers")
    _add_common_arguments(wait)
    wait.set_defaults(func=_cmd_wait)

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="JSON configuration file (defaults to $COUCHSTRAP_CONFIG_FILE)")
    parser.add_argument("--url", help="CouchDB base URL")
    parser.add_argument("--timeout", type=float, help="Seconds to wait for the server to answer")


def _resolve_config(args: argparse.Namespace) -> BootstrapConfig:
    if args.config:
        config = load_config(args.config)
    else:
        config = load_config_from_env() or BootstrapConfig()

    couch_changes: dict[str, object] = {}
    if args.url:
        couch_changes["url"] = args.url
    if args.timeout is not None:
        couch_changes["poll_timeout"] = args.timeout
    if couch_changes:
        config = structs.replace(config, couch=structs.replace(config.couch, **couch_changes))

    changes: dict[str, object] = {}
    if getattr(args, "app_name", None):
        changes["app"] = structs.replace(config.app, name=args.app_name)
    if getattr(args, "admin_password", None) is not None:
        changes["admin_password"] = args.admin_password
    if getattr(args, "non_interactive", False):
        changes["interactive"] = False
    if getattr(args, "credentials", None):
        changes["credentials_path"] = args.credentials
    if changes:
        config = structs.replace(config, **changes)
    return config


def _cmd_install(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    report = asyncio.run(install(config))
    for result in report.results:
        print(f"{result.resource}: {result.outcome.value}")
    return 0


def _cmd_wait(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    client = CouchClient(ServerEndpoint.parse(config.couch.url), timeout=config.couch.request_timeout)
    endpoint = asyncio.run(
        wait_until_reachable(
            client,
            timeout=config.couch.poll_timeout,
            interval=config.couch.poll_interval,
            log_hint=config.couch.log_path,
        )
    )
    print(f"{endpoint.url}: {endpoint.state.value}")
    return 0


__all__ = ["main"]
