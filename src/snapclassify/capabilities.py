"""Capability gateway: request and record OS-gated permissions.

A decision is requested at most once per capability. Prompt failures count
as a denial; nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


class Capability(StrEnum):
    CAMERA = "camera"
    WRITE_STORAGE = "write_storage"


class PermissionState(StrEnum):
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"


class PermissionPrompt(Protocol):
    """Protocol for the platform permission dialog."""

    async def prompt(self, kind: Capability) -> PermissionState:
        """Ask the user for a capability and return their decision."""
        ...


class SettingsPermissionPrompt:
    """Answers permission prompts from a fixed set of granted capabilities."""

    def __init__(self, granted: Iterable[str]) -> None:
        self._granted = frozenset(Capability(name) for name in granted)

    async def prompt(self, kind: Capability) -> PermissionState:
        return PermissionState.GRANTED if kind in self._granted else PermissionState.DENIED


class CapabilityGateway:
    """Requests capabilities through a prompt and remembers each decision."""

    def __init__(self, prompt: PermissionPrompt) -> None:
        self._prompt = prompt
        self._decisions: dict[Capability, PermissionState] = {}
        self._lock = asyncio.Lock()

    async def request(self, kind: Capability) -> PermissionState:
        """Return the decision for ``kind``, prompting only if still undecided."""
        # Prompts are shown one at a time; a queued request reuses the answer.
        async with self._lock:
            decided = self._decisions.get(kind)
            if decided is not None:
                return decided

            try:
                result = await self._prompt.prompt(kind)
            except Exception:
                logger.warning("Permission prompt for %s failed; treating as denied", kind, exc_info=True)
                result = PermissionState.DENIED

            if result != PermissionState.GRANTED:
                result = PermissionState.DENIED
                logger.warning("Capability %s denied", kind)
            else:
                result = PermissionState.GRANTED
                logger.info("Capability %s granted", kind)

            self._decisions[kind] = result
            return result

    def state(self, kind: Capability) -> PermissionState:
        return self._decisions.get(kind, PermissionState.UNKNOWN)

    def snapshot(self) -> dict[Capability, PermissionState]:
        """Return the current decision for every known capability."""
        return {kind: self.state(kind) for kind in Capability}
