"""
User-facing notice delivery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class Notifier(Protocol):
    def notify(self, message: str, level: str = "info") -> None: ...


class LoggingNotifier:
    def notify(self, message: str, level: str = "info") -> None:
        logger.log(_LEVELS.get(level, logging.INFO), "notice [%s] %s", level, message)


@dataclass
class Notice:
    message: str
    level: str = "info"


@dataclass
class CollectingNotifier:
    """Keeps notices in memory and optionally forwards them."""

    notices: list[Notice] = field(default_factory=list)
    forward: Notifier | None = None

    def notify(self, message: str, level: str = "info") -> None:
        self.notices.append(Notice(message=message, level=level))
        if self.forward is not None:
            self.forward.notify(message, level)

    @property
    def messages(self) -> list[str]:
        return [notice.message for notice in self.notices]
