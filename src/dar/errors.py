from __future__ import annotations


class RelayError(Exception):
    """所有可预期错误的基类，便于 HTTP 层/CLI 统一映射。"""


class ConfigurationError(RelayError):
    """
    缺少必需配置（root folder / 下游 endpoint / 回调地址等）。

    对当次操作是致命的，直接报告给调用方，不做自动重试。
    """


class AuthenticationError(RelayError):
    """远端凭据无效/过期，或入站 webhook 的校验 token 不匹配。"""


class RemoteError(RelayError):
    """远端 change feed / 元数据接口调用失败。"""


class TransientRemoteError(RemoteError):
    """
    网络/限流/5xx 等暂时性失败。

    harvest 过程中遇到该错误会中止本次 pass 且不推进 cursor，
    依赖下一次触发从同一位置重试。
    """


class RemoteLookupError(RemoteError):
    """
    针对单个条目的查询失败（不存在/无权限）。

    只影响该条目，harvest 记录后继续处理下一条。
    """

    def __init__(self, item_id: str, status: int | None, message: str) -> None:
        super().__init__(message)
        self.item_id = item_id
        self.status = status
