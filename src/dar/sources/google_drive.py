from __future__ import annotations

import urllib.error
import urllib.parse
from dataclasses import dataclass
from http.client import HTTPException
from typing import Any, Mapping

from ..errors import AuthenticationError, RemoteLookupError, TransientRemoteError
from ..http_utils import HttpClient, HttpResponse, with_query_params
from ..models import ChangeEntry, WatchRegistration
from .base import ChangePage, TokenSource


DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
CHANGE_FIELDS = (
    "changes(fileId,removed,file(id,name,mimeType,parents,webViewLink,webContentLink,createdTime,modifiedTime)),"
    "nextPageToken,newStartPageToken"
)


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def parse_change(raw: Mapping[str, Any]) -> ChangeEntry:
    """
    将 Drive changes.list 中的单个 change 资源转为 ChangeEntry。

    removed 或没有 file 对象的 change 只保留 fileId，harvest 会把它当作“无文件”跳过。
    """
    file = raw.get("file")
    if raw.get("removed") or not isinstance(file, dict):
        return ChangeEntry(item_id=None, removed=bool(raw.get("removed")))

    parents = file.get("parents") or []
    return ChangeEntry(
        item_id=_str_or_none(file.get("id")),
        name=str(file.get("name") or ""),
        content_type=str(file.get("mimeType") or ""),
        parents=tuple(str(p) for p in parents if p),
        created_at=_str_or_none(file.get("createdTime")),
        modified_at=_str_or_none(file.get("modifiedTime")),
        view_link=_str_or_none(file.get("webViewLink")),
        download_link=_str_or_none(file.get("webContentLink")),
    )


@dataclass(slots=True)
class GoogleDriveChangeFeed:
    """
    Google Drive v3 Changes API 适配器（REST，直接走 HttpClient）。

    说明：
    - 只负责协议映射与错误分类；cursor 与去重逻辑在 runner 中
    - 鉴权：优先使用 token_source（如 service account，自动刷新）；否则使用静态 access_token
    - 所有调用都带 supportsAllDrives=true，以覆盖共享盘
    """

    http: HttpClient
    access_token: str | None = None
    token_source: TokenSource | None = None
    api_base: str = DRIVE_API_BASE
    page_size: int = 100

    def _headers(self) -> Mapping[str, str]:
        headers: dict[str, str] = {"Accept": "application/json"}
        token = self.token_source.token() if self.token_source is not None else self.access_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _get_json(self, url: str, *, item_id: str | None = None) -> Mapping[str, Any]:
        try:
            resp = self.http.get(url, headers=self._headers())
        except urllib.error.HTTPError as e:
            raise self._map_http_error(e, item_id=item_id) from e
        except (OSError, HTTPException) as e:
            raise TransientRemoteError(f"Drive request failed: {type(e).__name__}: {e}") from e
        return self._decode(resp)

    def _decode(self, resp: HttpResponse) -> Mapping[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise TransientRemoteError(f"Drive API returned invalid JSON: {resp.url}") from e
        if not isinstance(data, dict):
            raise TransientRemoteError(f"Drive API expected object, got {type(data)}: {resp.url}")
        return data

    def _map_http_error(self, error: urllib.error.HTTPError, *, item_id: str | None) -> Exception:
        if error.code == 401:
            return AuthenticationError(f"Drive rejected credentials: status={error.code}")
        if item_id is not None and error.code in (403, 404):
            return RemoteLookupError(item_id, error.code, f"Drive lookup failed: item={item_id} status={error.code}")
        return TransientRemoteError(f"Drive API error: status={error.code} url={error.geturl()}")

    def get_start_cursor(self) -> str:
        url = with_query_params(f"{self.api_base}/changes/startPageToken", {"supportsAllDrives": "true"})
        data = self._get_json(url)
        token = data.get("startPageToken")
        if not token:
            raise TransientRemoteError("Drive startPageToken response has no token")
        return str(token)

    def list_changes(self, page_token: str) -> ChangePage:
        url = with_query_params(
            f"{self.api_base}/changes",
            {
                "pageToken": page_token,
                "pageSize": str(self.page_size),
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
                "fields": CHANGE_FIELDS,
            },
        )
        data = self._get_json(url)
        changes = data.get("changes") or []
        if not isinstance(changes, list):
            raise TransientRemoteError(f"Drive changes expected list, got {type(changes)}")

        entries = tuple(parse_change(ch) for ch in changes if isinstance(ch, dict))
        return ChangePage(
            entries=entries,
            next_page_token=_str_or_none(data.get("nextPageToken")),
            new_start_token=_str_or_none(data.get("newStartPageToken")),
        )

    def get_parents(self, item_id: str) -> tuple[str, ...]:
        url = with_query_params(
            f"{self.api_base}/files/{urllib.parse.quote(item_id, safe='')}",
            {"fields": "id,parents", "supportsAllDrives": "true"},
        )
        data = self._get_json(url, item_id=item_id)
        parents = data.get("parents") or []
        return tuple(str(p) for p in parents if p)

    def create_watch(
        self,
        cursor: str,
        address: str,
        *,
        channel_id: str,
        token: str | None = None,
    ) -> WatchRegistration:
        url = with_query_params(
            f"{self.api_base}/changes/watch",
            {"pageToken": cursor, "supportsAllDrives": "true"},
        )
        body: dict[str, Any] = {"id": channel_id, "type": "web_hook", "address": address}
        if token:
            body["token"] = token

        try:
            resp = self.http.post_json(url, body, headers=self._headers())
        except urllib.error.HTTPError as e:
            raise self._map_http_error(e, item_id=None) from e
        except (OSError, HTTPException) as e:
            raise TransientRemoteError(f"Drive watch request failed: {type(e).__name__}: {e}") from e

        data = self._decode(resp)
        return WatchRegistration(
            channel_id=str(data.get("id") or channel_id),
            resource_id=_str_or_none(data.get("resourceId")),
            address=address,
            start_cursor=cursor,
            token=token,
            expiration=_str_or_none(data.get("expiration")),
        )
