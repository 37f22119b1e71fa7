"""
Session change publication for any number of listeners.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from ..models import Session

logger = logging.getLogger(__name__)

Listener = Callable[[Session | None], Awaitable[None] | None]


class SessionPublisher:
    """Publishes every committed snapshot; ``None`` means the session was discarded."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def publish(self, session: Session | None) -> None:
        for listener in list(self._listeners):
            try:
                maybe = listener(session)
            except Exception:  # noqa: BLE001
                logger.exception("Session listener failed")
                continue
            if asyncio.iscoroutine(maybe):
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    maybe.close()
                    logger.warning("Async session listener skipped: no running event loop")
                    continue
                task = loop.create_task(maybe)
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
