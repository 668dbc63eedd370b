from __future__ import annotations

from typing import Protocol

from ..models import DispatchOutcome, NotificationPayload


class Dispatcher(Protocol):
    """
    通知投递接口：把一条 NotificationPayload 送到下游。

    约定：
    - 最多尝试一次，不重试、不排队
    - 失败只记录日志并体现在 DispatchOutcome 中，不向调用方抛异常
    """

    def dispatch(self, payload: NotificationPayload) -> DispatchOutcome: ...
