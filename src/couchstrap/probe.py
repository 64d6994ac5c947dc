"""Wait for a freshly started CouchDB server to accept requests."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from .client import CouchClient, Reachability, ServerEndpoint
from .exceptions import TransportError, UnreachableError
from .http import Status

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_INTERVAL = 0.2


async def wait_until_reachable(
    client: CouchClient,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    interval: float = DEFAULT_INTERVAL,
    log_hint: str | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ServerEndpoint:
    """Poll the server root until it answers ``200 OK``.

    Connection failures and non-200 answers count as "not yet". The
    deadline is checked after each attempt, so the call never gives up
    before ``timeout`` has elapsed and sleeps at most ``interval`` past it.
    Returns the endpoint marked reachable; raises :class:`UnreachableError`
    once the deadline passes.
    """

    endpoint = client.endpoint
    started = clock()
    deadline = started + timeout
    attempts = 0
    logger.info("Waiting for CouchDB at %s", endpoint.url)
    while True:
        attempts += 1
        try:
            response = await client.get("/", timeout=max(interval, deadline - clock()))
        except TransportError as exc:
            logger.debug("CouchDB not reachable yet (attempt %d): %s", attempts, exc.reason)
        else:
            if response.status == Status.OK:
                logger.info("CouchDB at %s is up after %d attempt(s)", endpoint.url, attempts)
                return endpoint.with_state(Reachability.REACHABLE)
            logger.debug("CouchDB answered %d (attempt %d)", response.status, attempts)
        now = clock()
        if now >= deadline:
            elapsed = now - started
            logger.error("Gave up waiting for CouchDB at %s after %.1fs", endpoint.url, elapsed)
            raise UnreachableError(
                endpoint.url,
                elapsed,
                log_hint=log_hint,
                endpoint=endpoint.with_state(Reachability.TIMED_OUT),
            )
        await sleep(min(interval, deadline - now))


__all__ = ["DEFAULT_INTERVAL", "DEFAULT_TIMEOUT", "wait_until_reachable"]
