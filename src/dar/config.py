from __future__ import annotations

import base64
import json
import os
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from .errors import ConfigurationError


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ConfigurationError(f"Expected object at {where}, got {type(value)}")
    return value


def _get_int(d: Mapping[str, Any], key: str, default: int) -> int:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _get_optional_int(d: Mapping[str, Any], key: str) -> int | None:
    v = d.get(key)
    if v is None or isinstance(v, bool):
        return None
    try:
        n = int(v)
    except (TypeError, ValueError):
        return None
    return n if n > 0 else None


def _get_str(d: Mapping[str, Any], key: str, default: str | None = None) -> str | None:
    v = d.get(key, default)
    if v is None:
        return None
    return str(v)


@dataclass(frozen=True, slots=True)
class DriveConfig:
    """
    Google Drive change feed 配置。

    root_folder_id:
      - 被监控的根文件夹 ID（不是某个按日期划分的子文件夹）
    service_account_json_env:
      - service account key 的环境变量名（base64 或原始 JSON）；设置后自动签发/刷新 token
    access_token_env:
      - 静态 OAuth bearer token 的环境变量名（未配置 service account 时使用，刷新由外部完成）
    verify_token_env:
      - webhook 校验 token 的环境变量名；Drive 会在 X-Goog-Channel-Token 头中回传
    """

    root_folder_id: str | None
    service_account_json_env: str = "DRIVE_SERVICE_ACCOUNT_JSON"
    access_token_env: str = "DRIVE_ACCESS_TOKEN"
    verify_token_env: str = "DRIVE_VERIFY_TOKEN"
    api_base: str = "https://www.googleapis.com/drive/v3"


@dataclass(frozen=True, slots=True)
class DispatchConfig:
    """下游处理服务的 webhook 地址。"""

    webhook_url: str | None


@dataclass(frozen=True, slots=True)
class ServerConfig:
    """
    HTTP 入口配置。

    public_base_url:
      - 对外可访问的服务地址，仅 watch 注册时用于拼接 /drive/notify 回调地址
    """

    host: str = "0.0.0.0"
    port: int = 3000
    public_base_url: str | None = None


@dataclass(frozen=True, slots=True)
class AppConfig:
    drive: DriveConfig
    dispatch: DispatchConfig
    server: ServerConfig
    verify_token: str | None = None
    access_token: str | None = None
    service_account_info: Mapping[str, Any] | None = field(default=None, repr=False)
    ancestry_cache_max_entries: int | None = None
    log_level: str | None = None

    def require_harvest(self) -> None:
        missing = []
        if not self.drive.root_folder_id:
            missing.append("DRIVE_FOLDER_ID")
        if not self.dispatch.webhook_url:
            missing.append("PROCESS_WEBHOOK_URL")
        if missing:
            raise ConfigurationError(f"Missing {' or '.join(missing)}")

    def require_register(self) -> None:
        self.require_harvest()
        if not self.server.public_base_url:
            raise ConfigurationError("APP_HOST_URL is required for Drive to call the /drive/notify endpoint")

    def notify_url(self) -> str:
        base = (self.server.public_base_url or "").rstrip("/")
        return f"{base}/drive/notify"


def _decode_service_account_json(raw: str) -> Mapping[str, Any]:
    """service account key 允许 base64 编码或原始 JSON。"""
    text = raw.strip()
    candidates = [text]
    try:
        candidates.insert(0, base64.b64decode(text, validate=True).decode("utf-8"))
    except ValueError:  # binascii.Error / UnicodeDecodeError
        pass

    for candidate in candidates:
        try:
            info = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(info, dict):
            return info
    raise ConfigurationError("Service account key is neither JSON nor base64-encoded JSON")


def _read_json(config_path: str) -> Mapping[str, Any]:
    with open(config_path, "rb") as f:
        raw = json.loads(f.read().decode("utf-8"))
    return _require_dict(raw, where="$")


def load_config(config_path: str | None = None, *, environ: Mapping[str, str] | None = None) -> AppConfig:
    """
    加载配置：JSON 文件（可选）+ 环境变量覆盖。

    JSON 顶层结构（示意）：
    {
      "drive": { "root_folder_id": "...", "access_token_env": "DRIVE_ACCESS_TOKEN" },
      "dispatch": { "webhook_url": "https://processor/..." },
      "server": { "port": 3000, "public_base_url": "https://relay.example.com" },
      "ancestry_cache_max_entries": 50000,
      "log_level": "INFO"
    }

    环境变量（部署环境通常只用这些）：
    DRIVE_FOLDER_ID / PROCESS_WEBHOOK_URL / DRIVE_VERIFY_TOKEN / APP_HOST_URL / PORT，
    以及 service_account_json_env / access_token_env 指向的凭据变量。环境变量优先于 JSON。
    """
    env = os.environ if environ is None else environ
    root = _read_json(config_path) if config_path else {}

    drive = _require_dict(root.get("drive", {}), where="$.drive")
    dispatch = _require_dict(root.get("dispatch", {}), where="$.dispatch")
    server = _require_dict(root.get("server", {}), where="$.server")

    drive_cfg = DriveConfig(
        root_folder_id=_get_str(drive, "root_folder_id"),
        service_account_json_env=str(drive.get("service_account_json_env") or "DRIVE_SERVICE_ACCOUNT_JSON"),
        access_token_env=str(drive.get("access_token_env") or "DRIVE_ACCESS_TOKEN"),
        verify_token_env=str(drive.get("verify_token_env") or "DRIVE_VERIFY_TOKEN"),
        api_base=str(drive.get("api_base") or "https://www.googleapis.com/drive/v3"),
    )
    dispatch_cfg = DispatchConfig(webhook_url=_get_str(dispatch, "webhook_url"))
    server_cfg = ServerConfig(
        host=str(server.get("host") or "0.0.0.0"),
        port=_get_int(server, "port", 3000),
        public_base_url=_get_str(server, "public_base_url"),
    )

    if env.get("DRIVE_FOLDER_ID"):
        drive_cfg = replace(drive_cfg, root_folder_id=env["DRIVE_FOLDER_ID"])
    if env.get("PROCESS_WEBHOOK_URL"):
        dispatch_cfg = replace(dispatch_cfg, webhook_url=env["PROCESS_WEBHOOK_URL"])
    if env.get("APP_HOST_URL"):
        server_cfg = replace(server_cfg, public_base_url=env["APP_HOST_URL"])
    if env.get("PORT"):
        server_cfg = replace(server_cfg, port=_get_int(env, "PORT", server_cfg.port))

    service_account_raw = env.get(drive_cfg.service_account_json_env)

    return AppConfig(
        drive=drive_cfg,
        dispatch=dispatch_cfg,
        server=server_cfg,
        verify_token=env.get(drive_cfg.verify_token_env) or None,
        access_token=env.get(drive_cfg.access_token_env) or None,
        service_account_info=_decode_service_account_json(service_account_raw) if service_account_raw else None,
        ancestry_cache_max_entries=_get_optional_int(root, "ancestry_cache_max_entries"),
        log_level=_get_str(root, "log_level"),
    )
