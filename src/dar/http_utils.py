from __future__ import annotations

import json
import random
import ssl
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from http.client import HTTPException
from typing import Any, Mapping


RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    url: str
    headers: Mapping[str, str]
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))


class HttpClient:
    """
    轻量 HTTP 客户端（仅依赖标准库），change feed 查询与下游投递共用。

    策略：
    - 对 429/5xx 以及连接中断做有限次退避重试（仅在 retry=True 时）
    - 统一超时、User-Agent、SSL context
    - raise_for_status=False 时，HTTP 错误状态不会抛出，而是作为 HttpResponse 返回
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 20.0,
        user_agent: str = "drive-audio-relay/0",
        max_retries: int = 3,
        base_backoff_seconds: float = 0.8,
        verify_ssl: bool = True,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._user_agent = user_agent
        self._max_retries = max_retries
        self._base_backoff_seconds = base_backoff_seconds
        self._ssl_context = ssl.create_default_context() if verify_ssl else ssl._create_unverified_context()

    def get(self, url: str, *, headers: Mapping[str, str] | None = None) -> HttpResponse:
        return self.request("GET", url, headers=headers)

    def post_json(
        self,
        url: str,
        payload: Any,
        *,
        headers: Mapping[str, str] | None = None,
        retry: bool = True,
        raise_for_status: bool = True,
    ) -> HttpResponse:
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        request_headers = {"Content-Type": "application/json"}
        if headers:
            request_headers.update(dict(headers))
        return self.request(
            "POST",
            url,
            data=data,
            headers=request_headers,
            retry=retry,
            raise_for_status=raise_for_status,
        )

    def request(
        self,
        method: str,
        url: str,
        *,
        data: bytes | None = None,
        headers: Mapping[str, str] | None = None,
        retry: bool = True,
        raise_for_status: bool = True,
    ) -> HttpResponse:
        request_headers = {"User-Agent": self._user_agent}
        if headers:
            request_headers.update(dict(headers))

        max_retries = self._max_retries if retry else 0
        last_error: Exception | None = None
        for attempt in range(max_retries + 1):
            try:
                req = urllib.request.Request(url=url, data=data, headers=request_headers, method=method)
                with urllib.request.urlopen(req, timeout=self._timeout_seconds, context=self._ssl_context) as resp:
                    resp_headers = {k: v for k, v in resp.headers.items()}
                    return HttpResponse(
                        status=getattr(resp, "status", 200),
                        url=resp.geturl(),
                        headers=resp_headers,
                        body=resp.read(),
                    )
            except urllib.error.HTTPError as e:
                last_error = e
                retryable = e.code in RETRYABLE_STATUSES
                if (not retryable) or attempt >= max_retries:
                    if raise_for_status:
                        raise
                    return _response_from_http_error(e, url)
            except (urllib.error.URLError, ConnectionError, HTTPException, TimeoutError) as e:
                # 读取响应阶段的断连（RemoteDisconnected / BadStatusLine 等）不会被包装成 URLError
                last_error = e
                if attempt >= max_retries:
                    raise

            backoff = self._base_backoff_seconds * (2**attempt)
            jitter = random.random() * 0.25 * backoff
            time.sleep(backoff + jitter)

        assert last_error is not None
        raise last_error


def _response_from_http_error(error: urllib.error.HTTPError, url: str) -> HttpResponse:
    try:
        body = error.read() or b""
    except Exception:  # noqa: BLE001
        body = b""
    headers = {k: v for k, v in error.headers.items()} if error.headers else {}
    return HttpResponse(status=error.code, url=error.geturl() or url, headers=headers, body=body)


def with_query_params(url: str, params: Mapping[str, str | None]) -> str:
    parsed = urllib.parse.urlparse(url)
    q = dict(urllib.parse.parse_qsl(parsed.query, keep_blank_values=True))
    q.update({k: v for k, v in params.items() if v is not None})
    new_query = urllib.parse.urlencode(q)
    return urllib.parse.urlunparse(parsed._replace(query=new_query))
