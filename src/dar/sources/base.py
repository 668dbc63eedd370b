from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..models import ChangeEntry, WatchRegistration


@dataclass(frozen=True, slots=True)
class ChangePage:
    """
    change feed 的一页结果。

    next_page_token 存在表示还有下一页；new_start_token 通常只在最后一页出现，
    用作下一次 harvest 的起点。
    """

    entries: tuple[ChangeEntry, ...]
    next_page_token: str | None = None
    new_start_token: str | None = None


class ChangeFeed(Protocol):
    """
    远端 change feed 适配器接口（不透明协作方）。

    约定：
    - 网络/限流失败抛 TransientRemoteError
    - 凭据失败抛 AuthenticationError
    - get_parents 针对单条目的 not found / permission denied 抛 RemoteLookupError
    """

    def get_start_cursor(self) -> str: ...

    def list_changes(self, page_token: str) -> ChangePage: ...

    def get_parents(self, item_id: str) -> tuple[str, ...]: ...

    def create_watch(
        self,
        cursor: str,
        address: str,
        *,
        channel_id: str,
        token: str | None = None,
    ) -> WatchRegistration: ...


class TokenSource(Protocol):
    """bearer token 来源；每次请求前调用，实现方负责缓存与刷新。"""

    def token(self) -> str: ...
