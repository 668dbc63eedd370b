from __future__ import annotations

import logging
import threading
from typing import Any, Mapping

import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from ..errors import AuthenticationError, ConfigurationError, TransientRemoteError
from .base import TokenSource


logger = logging.getLogger(__name__)

DRIVE_READONLY_SCOPES = (
    "https://www.googleapis.com/auth/drive.readonly",
    "https://www.googleapis.com/auth/drive.metadata.readonly",
)


class ServiceAccountTokenSource(TokenSource):
    """
    基于 google-auth service account 凭据的 bearer token 来源。

    - token 过期（或即将过期）时在请求前刷新，刷新过程加锁
    - 刷新被拒（key 失效/被吊销）映射为 AuthenticationError
    - 刷新时网络失败映射为 TransientRemoteError，由调用方中止本次 pass
    """

    def __init__(self, credentials: Any, *, request: Any | None = None) -> None:
        self._credentials = credentials
        self._request = request or Request()
        self._lock = threading.Lock()

    @classmethod
    def from_info(
        cls,
        info: Mapping[str, Any],
        *,
        scopes: tuple[str, ...] = DRIVE_READONLY_SCOPES,
    ) -> ServiceAccountTokenSource:
        try:
            credentials = service_account.Credentials.from_service_account_info(dict(info), scopes=list(scopes))
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"Invalid service account key: {e}") from e
        logger.info("drive auth: service account=%s", info.get("client_email"))
        return cls(credentials)

    def token(self) -> str:
        with self._lock:
            if not self._credentials.valid:
                try:
                    self._credentials.refresh(self._request)
                except google.auth.exceptions.RefreshError as e:
                    raise AuthenticationError(f"Service account token refresh rejected: {e}") from e
                except google.auth.exceptions.TransportError as e:
                    raise TransientRemoteError(f"Service account token refresh failed: {e}") from e
                logger.debug("drive auth: token refreshed expiry=%s", getattr(self._credentials, "expiry", None))
            return str(self._credentials.token)
