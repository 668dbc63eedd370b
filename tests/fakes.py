"""
测试用的纯内存协作方（不依赖真实 Drive / 下游服务）。
"""

from __future__ import annotations

from dataclasses import dataclass, field

from dar.errors import RemoteLookupError, TransientRemoteError
from dar.models import ChangeEntry, DispatchOutcome, NotificationPayload, WatchRegistration
from dar.sources.base import ChangePage


ROOT = "root-folder"
FOLDER_MIME = "application/vnd.google-apps.folder"


def audio_entry(item_id: str, name: str = "Incoming_call.m4a", mime: str = "audio/mp4") -> ChangeEntry:
    return ChangeEntry(
        item_id=item_id,
        name=name,
        content_type=mime,
        created_at="2026-02-10T00:00:00.000Z",
        modified_at="2026-02-10T00:00:01.000Z",
        view_link=f"https://drive.google.com/file/d/{item_id}/view",
    )


def folder_entry(item_id: str, name: str = "2026-02-10") -> ChangeEntry:
    return ChangeEntry(item_id=item_id, name=name, content_type=FOLDER_MIME)


@dataclass
class FakeFeed:
    """
    纯内存 ChangeFeed：
    - pages：page_token -> ChangePage；未配置的 token 返回空页，new_start_token 保持不变
    - parents：item_id -> parents；未配置的 item 视为 not found
    """

    pages: dict[str, ChangePage] = field(default_factory=dict)
    parents: dict[str, tuple[str, ...]] = field(default_factory=dict)
    start_cursor: str = "c0"
    failing_tokens: set[str] = field(default_factory=set)
    transient_parent_ids: set[str] = field(default_factory=set)
    list_calls: list[str] = field(default_factory=list)
    parent_calls: list[str] = field(default_factory=list)
    start_calls: int = 0
    watches: list[tuple[str, str, str, str | None]] = field(default_factory=list)

    def get_start_cursor(self) -> str:
        self.start_calls += 1
        return self.start_cursor

    def list_changes(self, page_token: str) -> ChangePage:
        self.list_calls.append(page_token)
        if page_token in self.failing_tokens:
            raise TransientRemoteError(f"page fetch failed: {page_token}")
        return self.pages.get(page_token, ChangePage(entries=(), new_start_token=page_token))

    def get_parents(self, item_id: str) -> tuple[str, ...]:
        self.parent_calls.append(item_id)
        if item_id in self.transient_parent_ids:
            raise TransientRemoteError(f"lookup timed out: {item_id}")
        if item_id not in self.parents:
            raise RemoteLookupError(item_id, 404, f"not found: {item_id}")
        return self.parents[item_id]

    def create_watch(
        self,
        cursor: str,
        address: str,
        *,
        channel_id: str,
        token: str | None = None,
    ) -> WatchRegistration:
        self.watches.append((cursor, address, channel_id, token))
        return WatchRegistration(
            channel_id=channel_id,
            resource_id="res-1",
            address=address,
            start_cursor=cursor,
            token=token,
            expiration="1760000000000",
        )


@dataclass
class FakeDispatcher:
    """将投递过的 payload 收集到列表中；failing_ids 中的 file_id 返回 500。"""

    sent: list[NotificationPayload] = field(default_factory=list)
    failing_ids: set[str] = field(default_factory=set)

    def dispatch(self, payload: NotificationPayload) -> DispatchOutcome:
        self.sent.append(payload)
        if payload.file_id in self.failing_ids:
            return DispatchOutcome(delivered=False, status=500, body="boom")
        return DispatchOutcome(delivered=True, status=200, body="ok")
