"""
Drive Audio Relay (dar)

监控 Google Drive 某个根文件夹子树内新增/修改的音频文件，
通过 Drive Changes API 的 cursor 增量拉取变更，过滤后逐条以 JSON POST
通知下游处理服务（best-effort，不重试）。
"""

from .models import ChangeEntry, NotificationPayload

__all__ = [
    "ChangeEntry",
    "NotificationPayload",
]
