"""
Interactive conflict resolution for imports.

ConflictChannel is a conflict policy whose decisions come from somewhere
else (a UI polling the API). Each conflict is published as a
ConflictDetected event and the import suspends until respond() or dismiss()
is called. A dismissed conflict counts as a skip.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from .models import Resolution


# (filename, preview bytes) -> decision
ConflictPolicy = Callable[[str, Optional[bytes]], Awaitable[Resolution]]


@dataclass(frozen=True)
class ConflictDetected:
    sequence: int
    filename: str
    preview: Optional[bytes] = None


def fixed_policy(resolution: Resolution) -> ConflictPolicy:
    """A policy that always answers `resolution` (non-interactive imports)."""

    async def _answer(filename: str, preview: Optional[bytes]) -> Resolution:
        return resolution

    return _answer


class ConflictChannel:
    """
    Usage:
        channel = ConflictChannel()
        task = asyncio.create_task(service.import_archive(data, "u1", channel))

        event = await channel.next_event()
        channel.respond(Resolution.SKIP_ALL)
    """

    def __init__(self, *, on_change: Optional[Callable[[Optional[ConflictDetected]], None]] = None) -> None:
        self._on_change = on_change
        self._events: asyncio.Queue[ConflictDetected] = asyncio.Queue()
        self._pending: Optional[ConflictDetected] = None
        self._waiter: Optional[asyncio.Future[Resolution]] = None
        self._sequence = 0

    @property
    def pending(self) -> Optional[ConflictDetected]:
        return self._pending

    async def __call__(self, filename: str, preview: Optional[bytes]) -> Resolution:
        self._sequence += 1
        event = ConflictDetected(sequence=self._sequence, filename=filename, preview=preview)
        waiter: asyncio.Future[Resolution] = asyncio.get_running_loop().create_future()

        self._pending = event
        self._waiter = waiter
        self._events.put_nowait(event)
        self._changed(event)
        try:
            return await waiter
        finally:
            self._pending = None
            self._waiter = None
            self._changed(None)

    async def next_event(self) -> ConflictDetected:
        return await self._events.get()

    def respond(self, resolution: Union[Resolution, str]) -> bool:
        """
        Answer the pending conflict.

        Returns:
            False if nothing is pending.

        Raises:
            ValueError: If `resolution` is not a Resolution value.
        """
        decided = Resolution(resolution)
        waiter = self._waiter
        if waiter is None or waiter.done():
            return False
        waiter.set_result(decided)
        return True

    def dismiss(self) -> bool:
        """Abandon the pending question; the import treats it as a skip."""
        waiter = self._waiter
        if waiter is None or waiter.done():
            return False
        waiter.cancel()
        return True

    def _changed(self, event: Optional[ConflictDetected]) -> None:
        if self._on_change is not None:
            self._on_change(event)
