"""
Per-session event channels behind the SSE endpoint.

A channel only buffers while someone is listening. When its buffer is full the
oldest event goes first. A ``reset`` event ends every open stream.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

TERMINAL_EVENTS = frozenset({"reset"})


@dataclass
class SessionChannel:
    queue: asyncio.Queue[dict[str, Any]]
    listeners: int = 0

    def push(self, event: dict[str, Any]) -> bool:
        if self.listeners == 0:
            return False
        if self.queue.full():
            self.queue.get_nowait()
        self.queue.put_nowait(event)
        return True


@dataclass
class SessionEventEmitter:
    """Routes deck snapshots and notices to whoever follows a session."""

    maxsize: int = 1000
    _channels: dict[str, SessionChannel] = field(default_factory=dict, init=False, repr=False)

    def channel(self, session_id: str) -> SessionChannel:
        found = self._channels.get(session_id)
        if found is None:
            found = SessionChannel(queue=asyncio.Queue(maxsize=self.maxsize))
            self._channels[session_id] = found
        return found

    def listener_count(self, session_id: str) -> int:
        found = self._channels.get(session_id)
        return found.listeners if found else 0

    def publish(self, session_id: str, event: dict[str, Any]) -> bool:
        """Queue ``event`` for live listeners; returns False when it was dropped."""
        found = self._channels.get(session_id)
        return found.push(event) if found else False

    async def listen(self, session_id: str) -> AsyncIterator[dict[str, Any]]:
        channel = self.channel(session_id)
        channel.listeners += 1
        try:
            while True:
                event = await channel.queue.get()
                yield event
                if event.get("type") in TERMINAL_EVENTS:
                    return
        finally:
            channel.listeners = max(0, channel.listeners - 1)

    def close(self, session_id: str) -> None:
        """Tell open streams the session is gone, then forget the channel."""
        found = self._channels.pop(session_id, None)
        if found is not None:
            found.push({"type": "reset"})
