from __future__ import annotations

import threading
from dataclasses import dataclass, field


@dataclass(slots=True)
class MemoryCursorStore:
    """进程内 cursor 存储（单实例足够）。"""

    _cursor: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get_cursor(self) -> str | None:
        with self._lock:
            return self._cursor

    def set_cursor(self, cursor: str | None) -> None:
        with self._lock:
            self._cursor = cursor
