"""Interactive terminal prompts."""

from __future__ import annotations

import asyncio
import getpass
from typing import Callable, Protocol

from .exceptions import InputError


class Prompter(Protocol):
    """Ask the operator for a value and return what they typed."""

    async def ask_hidden(self, prompt: str) -> str: ...

    async def ask_visible(self, prompt: str) -> str: ...


def require_value(value: str | None, *, field: str) -> str:
    """Return ``value`` unchanged, rejecting missing or blank input."""

    cleaned = value or ""
    if not cleaned.strip():
        raise InputError(f"{field} must not be empty")
    return cleaned


class ConsolePrompter:
    """Read answers from the controlling terminal without blocking the event loop."""

    async def ask_hidden(self, prompt: str) -> str:
        return await asyncio.to_thread(self._read, getpass.getpass, prompt)

    async def ask_visible(self, prompt: str) -> str:
        return await asyncio.to_thread(self._read, input, prompt)

    @staticmethod
    def _read(reader: Callable[[str], str], prompt: str) -> str:
        try:
            return reader(f"{prompt}: ")
        except EOFError as exc:
            raise InputError(f"No input available for {prompt!r}") from exc


__all__ = ["ConsolePrompter", "Prompter", "require_value"]
