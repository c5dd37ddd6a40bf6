from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Literal

from loguru import logger

MessageLevel = Literal["info", "error"]


@dataclass(frozen=True)
class UserMessage:
    level: MessageLevel
    text: str
    ts_ms: int


@dataclass
class Notifier:
    """
    User-facing message queue (the toast area of the UI).

    Bounded: on overload the oldest messages are dropped.
    """

    max_messages: int = 50
    _q: deque[UserMessage] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._q = deque(maxlen=max(1, int(self.max_messages)))

    def info(self, text: str) -> None:
        self._push("info", text)

    def error(self, text: str) -> None:
        logger.warning(f"User-visible error: {text}")
        self._push("error", text)

    def drain(self) -> list[UserMessage]:
        out = list(self._q)
        self._q.clear()
        return out

    def _push(self, level: MessageLevel, text: str) -> None:
        self._q.append(UserMessage(level=level, text=str(text), ts_ms=int(time.time() * 1000)))
