from __future__ import annotations

import logging
from dataclasses import dataclass

from ..sources.base import ChangeFeed
from .store import CursorStore


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CursorTracker:
    """
    持有唯一的同步 cursor。

    - current_or_init：首次使用时向 feed 申请起始 cursor
    - advance_to：无条件覆盖（信任远端 feed，不校验先后）
    - 并发保护由 Harvester 的 pass 锁负责
    """

    feed: ChangeFeed
    store: CursorStore

    def current(self) -> str | None:
        return self.store.get_cursor()

    def current_or_init(self) -> str:
        cursor = self.store.get_cursor()
        if cursor:
            return cursor
        cursor = self.feed.get_start_cursor()
        self.store.set_cursor(cursor)
        logger.warning(
            "cursor initialized from feed start: cursor=%r (changes before this point are not harvested)",
            cursor,
        )
        return cursor

    def advance_to(self, new_cursor: str) -> None:
        before = self.store.get_cursor()
        self.store.set_cursor(new_cursor)
        logger.debug("cursor advanced: before=%r after=%r", before, new_cursor)

    def reset(self, cursor: str) -> None:
        self.store.set_cursor(cursor)
        logger.info("cursor reset: cursor=%r", cursor)
