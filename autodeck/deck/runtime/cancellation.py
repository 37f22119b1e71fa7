"""
Cooperative cancellation primitives for in-flight generation calls.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

T = TypeVar("T")


class OperationCancelled(RuntimeError):
    """Raised when an operation observes its cancellation token."""


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T], timeout: float | None = None) -> T:
        """Await ``awaitable`` unless the token fires first.

        Raises OperationCancelled on cancellation and asyncio.TimeoutError when
        ``timeout`` elapses. The losing task is cancelled either way.
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, watcher},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if work in done:
                return work.result()
            if watcher in done:
                raise OperationCancelled("Operation cancelled")
            raise asyncio.TimeoutError()
        finally:
            for task in (work, watcher):
                if not task.done():
                    task.cancel()
