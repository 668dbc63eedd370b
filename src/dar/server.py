from __future__ import annotations

import logging
import time
from typing import Any

from fastapi import BackgroundTasks, Body, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response

from .errors import AuthenticationError, ConfigurationError
from .service import RelayService


logger = logging.getLogger(__name__)

SERVICE_NAME = "drive-audio-relay"

_LANDING_HTML = """<html><head><meta charset="utf-8"><title>Drive Audio Relay</title></head>
<body style="font-family:system-ui;padding:24px">
  <h1>Drive Audio Relay</h1>
  <p>Up and running.</p>
  <ul>
    <li>GET <code>/health</code></li>
    <li>POST <code>/test/process</code></li>
    <li>POST <code>/test/drive-notify</code></li>
    <li>POST <code>/drive/register</code></li>
    <li>POST <code>/drive/notify</code></li>
  </ul>
</body></html>"""


def create_app(service: RelayService) -> FastAPI:
    """
    HTTP 入口（薄壳）：只做请求/响应映射，业务都在 RelayService 中。
    """
    app = FastAPI(title="Drive Audio Relay", version="0.1.0")

    @app.get("/", response_class=HTMLResponse)
    def landing() -> str:
        return _LANDING_HTML

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"ok": True, "service": SERVICE_NAME, "ts": int(time.time() * 1000)}

    @app.post("/drive/register")
    def register() -> JSONResponse:
        try:
            return JSONResponse(status_code=200, content=service.register_watch())
        except ConfigurationError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        except Exception as e:  # noqa: BLE001
            logger.exception("register error")
            return JSONResponse(status_code=500, content={"error": f"{type(e).__name__}: {e}"})

    @app.post("/drive/notify")
    def notify(request: Request, background_tasks: BackgroundTasks) -> Response:
        try:
            service.verify_notification(request.headers.get("X-Goog-Channel-Token"))
        except AuthenticationError:
            logger.warning("drive notification rejected: bad token")
            return PlainTextResponse("bad token", status_code=403)

        # 先 ack，harvest 在响应发出后执行
        background_tasks.add_task(service.handle_notification, dict(request.headers))
        return Response(status_code=204)

    @app.post("/test/process")
    def test_process(payload: dict[str, Any] | None = Body(default=None)) -> JSONResponse:
        try:
            echoed, outcome = service.send_test_payload(payload)
        except ConfigurationError as e:
            return JSONResponse(status_code=400, content={"ok": False, "error": str(e)})
        if outcome.error is not None:
            return JSONResponse(status_code=500, content={"ok": False, "error": outcome.error})
        return JSONResponse(
            status_code=200,
            content={"ok": True, "echoed": echoed, "downstream": outcome.status, "body": outcome.body},
        )

    @app.post("/test/drive-notify")
    def test_drive_notify() -> JSONResponse:
        try:
            report = service.run_manual_pass()
        except ConfigurationError as e:
            return JSONResponse(status_code=400, content={"ok": False, "error": str(e)})
        except Exception as e:  # noqa: BLE001
            logger.exception("manual harvest failed")
            return JSONResponse(status_code=500, content={"ok": False, "error": f"{type(e).__name__}: {e}"})
        return JSONResponse(status_code=200, content={"ok": True, "ran": True, "report": report.to_json_dict()})

    return app
