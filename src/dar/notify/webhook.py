from __future__ import annotations

import logging
from dataclasses import dataclass
from http.client import HTTPException
from typing import Any, Mapping

from ..http_utils import HttpClient
from ..models import DispatchOutcome, NotificationPayload
from .base import Dispatcher


logger = logging.getLogger(__name__)

LOG_BODY_LIMIT = 200
ECHO_BODY_LIMIT = 3000


@dataclass(slots=True)
class WebhookDispatcher(Dispatcher):
    """
    下游处理服务 webhook 投递（JSON POST）。

    说明：
    - 每个 payload 只 POST 一次（retry=False），下游的持久化由接收方负责
    - 非 2xx：记录 status 与截断后的 body；传输失败：记录错误信息
    - 永不抛异常，harvest 总会继续处理下一条
    """

    url: str
    http: HttpClient

    def dispatch(self, payload: NotificationPayload) -> DispatchOutcome:
        outcome = self._post(payload.to_json_dict())
        if outcome.delivered:
            logger.info(
                "dispatched: file_id=%s file_name=%s call_type=%s status=%s",
                payload.file_id,
                payload.file_name,
                payload.call_type.value,
                outcome.status,
            )
        elif outcome.error is not None:
            logger.error(
                "dispatch error: file_id=%s url=%s error=%s",
                payload.file_id,
                self.url,
                outcome.error,
            )
        else:
            logger.error(
                "dispatch failed: file_id=%s url=%s status=%s body=%r",
                payload.file_id,
                self.url,
                outcome.status,
                outcome.body[:LOG_BODY_LIMIT],
            )
        return outcome

    def send_raw(self, body: Mapping[str, Any]) -> DispatchOutcome:
        """
        投递任意 JSON 对象（手动测试用），返回下游状态与截断后的响应体。
        """
        outcome = self._post(dict(body), body_limit=ECHO_BODY_LIMIT)
        if not outcome.delivered:
            logger.warning(
                "test payload not delivered: url=%s status=%s error=%s",
                self.url,
                outcome.status,
                outcome.error,
            )
        return outcome

    def _post(self, body: Mapping[str, Any], *, body_limit: int = ECHO_BODY_LIMIT) -> DispatchOutcome:
        try:
            resp = self.http.post_json(self.url, body, retry=False, raise_for_status=False)
        except (OSError, ValueError, HTTPException) as e:  # ValueError：URL 非法
            return DispatchOutcome(delivered=False, status=None, body="", error=f"{type(e).__name__}: {e}")
        return DispatchOutcome(delivered=resp.ok, status=resp.status, body=resp.text()[:body_limit])
