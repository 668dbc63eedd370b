from __future__ import annotations

from typing import Protocol


class CursorStore(Protocol):
    """
    cursor 存储接口：只保存单个 change feed cursor。

    当前只提供进程内实现；进程重启后 cursor 丢失，会从“当前时刻”重新开始。
    """

    def get_cursor(self) -> str | None: ...

    def set_cursor(self, cursor: str | None) -> None: ...
