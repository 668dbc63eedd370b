from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any


FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
PAYLOAD_SOURCE = "google_drive"


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def utc_now_iso() -> str:
    """RFC3339 形式的当前时间（毫秒精度，Z 结尾），与 Drive 返回的时间串风格一致。"""
    return utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")


class CallDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ChangeEntry:
    """
    change feed 中的单条变更记录（只读，不落盘）。

    时间字段保留 feed 原样的 RFC3339 字符串，原样透传给下游。
    removed=True 表示文件被删除/移出可见范围，此时没有文件元数据。
    """

    item_id: str | None
    name: str = ""
    content_type: str = ""
    parents: tuple[str, ...] = ()
    created_at: str | None = None
    modified_at: str | None = None
    view_link: str | None = None
    download_link: str | None = None
    removed: bool = False

    @property
    def is_folder(self) -> bool:
        return self.content_type == FOLDER_MIME_TYPE


@dataclass(frozen=True, slots=True)
class NotificationPayload:
    """
    发往下游处理服务的通知消息。

    to_json_dict() 输出下游约定的 camelCase 字段；可选链接缺失时序列化为 null。
    """

    file_id: str
    file_name: str
    mime_type: str
    created_at: str | None
    modified_at: str | None
    call_type: CallDirection
    web_view_link: str | None = None
    web_content_link: str | None = None
    source: str = PAYLOAD_SOURCE

    @classmethod
    def from_entry(cls, entry: ChangeEntry, call_type: CallDirection) -> NotificationPayload:
        if not entry.item_id:
            raise ValueError("ChangeEntry without item_id cannot be dispatched")
        return cls(
            file_id=entry.item_id,
            file_name=entry.name,
            mime_type=entry.content_type,
            created_at=entry.created_at,
            modified_at=entry.modified_at,
            call_type=call_type,
            web_view_link=entry.view_link,
            web_content_link=entry.download_link,
        )

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "fileId": self.file_id,
            "webViewLink": self.web_view_link,
            "webContentLink": self.web_content_link,
            "fileName": self.file_name,
            "mimeType": self.mime_type,
            "createdAt": self.created_at,
            "modifiedAt": self.modified_at,
            "callType": self.call_type.value,
        }


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    """
    单次投递结果。delivered=False 时 status/body 或 error 用于诊断。
    """

    delivered: bool
    status: int | None
    body: str = ""
    error: str | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "delivered": self.delivered,
            "status": self.status,
            "body": self.body,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class WatchRegistration:
    """
    远端 change feed 的订阅（watch channel）。

    过期时间由远端决定；本系统不跟踪、不自动续订。
    """

    channel_id: str
    resource_id: str | None
    address: str
    start_cursor: str
    token: str | None = None
    expiration: str | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.channel_id,
            "resource_id": self.resource_id,
            "address": self.address,
            "start_cursor": self.start_cursor,
            "expiration": self.expiration,
        }
