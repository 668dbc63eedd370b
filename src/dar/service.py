from __future__ import annotations

import hmac
import logging
import random
import string
import time
from dataclasses import dataclass
from typing import Any, Mapping

from .ancestry import AncestryResolver
from .config import AppConfig
from .errors import AuthenticationError, ConfigurationError
from .http_utils import HttpClient
from .models import DispatchOutcome, utc_now_iso
from .notify.webhook import WebhookDispatcher
from .runner import Harvester, HarvestReport
from .sources.base import ChangeFeed
from .sources.drive_auth import ServiceAccountTokenSource
from .sources.google_drive import GoogleDriveChangeFeed
from .state.cursor import CursorTracker
from .state.memory_store import MemoryCursorStore


logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def new_channel_id() -> str:
    suffix = "".join(random.choice(_BASE36) for _ in range(11))
    return f"chan_{int(time.time() * 1000)}_{suffix}"


def default_test_payload() -> dict[str, Any]:
    now = utc_now_iso()
    return {
        "source": "manual_test",
        "fileId": "TEST_FILE_ID",
        "fileName": "TEST_FILE_NAME.m4a",
        "mimeType": "audio/m4a",
        "callType": "outgoing",
        "createdAt": now,
        "modifiedAt": now,
    }


@dataclass(slots=True)
class RelayService:
    """
    对外暴露的操作集合（HTTP 层与 CLI 共用）：
    - register_watch：创建 Drive watch channel，并把 cursor 重置为新的起点
    - verify_notification / handle_notification：webhook 入口（先 ack，后 harvest）
    - run_manual_pass：同步执行一次 harvest 并返回报告
    - send_test_payload：向下游投递测试 payload
    """

    config: AppConfig
    feed: ChangeFeed
    harvester: Harvester
    dispatcher: WebhookDispatcher | None

    def register_watch(self) -> dict[str, Any]:
        self.config.require_register()

        cursor = self.feed.get_start_cursor()
        self.harvester.reset_cursor(cursor)

        notify_url = self.config.notify_url()
        registration = self.feed.create_watch(
            cursor,
            notify_url,
            channel_id=new_channel_id(),
            token=self.config.verify_token,
        )
        logger.info(
            "drive watch registered: channel_id=%s resource_id=%s notify_url=%s expiration=%s",
            registration.channel_id,
            registration.resource_id,
            notify_url,
            registration.expiration,
        )
        return {
            "ok": True,
            "message": "Drive watch registered.",
            "channel": registration.to_json_dict(),
            "page_token": cursor,
            "notify_url": notify_url,
            "expiration": registration.expiration,
        }

    def verify_notification(self, token: str | None) -> None:
        expected = self.config.verify_token
        if not expected:
            return
        if not hmac.compare_digest((token or "").encode("utf-8"), expected.encode("utf-8")):
            raise AuthenticationError("bad token")

    def handle_notification(self, headers: Mapping[str, str] | None = None) -> HarvestReport | None:
        """
        已 ack 之后在后台执行：任何异常只记录日志，不再向上抛。
        """
        if headers:
            logger.debug(
                "drive notification: state=%s channel=%s message=%s",
                headers.get("x-goog-resource-state"),
                headers.get("x-goog-channel-id"),
                headers.get("x-goog-message-number"),
            )
        try:
            return self.harvester.trigger()
        except Exception:  # noqa: BLE001
            logger.exception("notification harvest failed")
            return None

    def run_manual_pass(self) -> HarvestReport:
        self.config.require_harvest()
        return self.harvester.run_once()

    def send_test_payload(self, payload: Mapping[str, Any] | None = None) -> tuple[dict[str, Any], DispatchOutcome]:
        if self.dispatcher is None:
            raise ConfigurationError("PROCESS_WEBHOOK_URL not set")
        body = dict(payload) if payload else default_test_payload()
        return body, self.dispatcher.send_raw(body)


def build_service(config: AppConfig, *, feed: ChangeFeed | None = None, http: HttpClient | None = None) -> RelayService:
    """
    根据配置装配运行时对象。

    统一在这里做“配置 -> 实例”的装配；secret/token 只通过环境变量读取。
    配置了 service account 时优先使用它签发的 token，否则退回静态 access token。
    feed/http 可注入，便于测试替换。
    """
    http = http or HttpClient()
    if feed is None:
        token_source = None
        if config.service_account_info:
            token_source = ServiceAccountTokenSource.from_info(config.service_account_info)
        feed = GoogleDriveChangeFeed(
            http=http,
            access_token=config.access_token,
            token_source=token_source,
            api_base=config.drive.api_base,
        )

    dispatcher: WebhookDispatcher | None = None
    if config.dispatch.webhook_url:
        dispatcher = WebhookDispatcher(url=config.dispatch.webhook_url, http=http)

    tracker = CursorTracker(feed=feed, store=MemoryCursorStore())
    resolver = AncestryResolver(feed, max_entries=config.ancestry_cache_max_entries)
    harvester = Harvester(
        feed=feed,
        tracker=tracker,
        resolver=resolver,
        root_folder_id=config.drive.root_folder_id,
        dispatcher=dispatcher,
    )
    return RelayService(config=config, feed=feed, harvester=harvester, dispatcher=dispatcher)
