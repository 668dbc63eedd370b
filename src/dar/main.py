from __future__ import annotations

import argparse
import json
import logging
import os

from .config import AppConfig, load_config
from .errors import RelayError
from .service import RelayService, build_service


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dar", description="Drive Audio Relay (Drive change watcher)")
    p.add_argument("--config", default=None, help="Path to JSON config file (env vars override it)")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG/INFO/WARNING/ERROR). Defaults to env DAR_LOG_LEVEL, config log_level or INFO",
    )
    p.add_argument("--host", default=None, help="Bind host for --serve. Defaults to config server.host")
    p.add_argument("--port", type=int, default=None, help="Bind port for --serve. Defaults to env PORT or 3000")

    mode = p.add_mutually_exclusive_group(required=False)
    mode.add_argument("--serve", action="store_true", help="Run the HTTP server (default)")
    mode.add_argument("--once", action="store_true", help="Run one harvest pass and exit")
    mode.add_argument("--register", action="store_true", help="Register a Drive watch channel and exit")
    mode.add_argument("--test-payload", action="store_true", help="POST the default test payload downstream")
    return p


def _resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    if not v:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(v)
    if isinstance(level, int):
        return level
    return logging.INFO


def _auth_mode(config: AppConfig) -> str:
    if config.service_account_info:
        return "service_account"
    if config.access_token:
        return "access_token"
    return "<none>"


def _log_startup(logger: logging.Logger, config: AppConfig) -> None:
    logger.info(
        "config: root_folder_id=%s webhook_url=%s public_base_url=%s verify_token=%s drive_auth=%s",
        config.drive.root_folder_id or "<missing>",
        config.dispatch.webhook_url or "<missing>",
        config.server.public_base_url or "<none>",
        "set" if config.verify_token else "<none>",
        _auth_mode(config),
    )
    if not config.drive.root_folder_id or not config.dispatch.webhook_url:
        logger.warning("root folder or webhook url not configured; harvest passes will be rejected")
    logger.warning("sync cursor is held in memory only; changes made while the process is down are not harvested")


def _serve(service: RelayService, host: str, port: int) -> int:
    import uvicorn

    from .server import create_app

    uvicorn.run(create_app(service), host=host, port=port, log_config=None)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)

    config = load_config(args.config)
    log_level = _resolve_log_level(args.log_level or os.environ.get("DAR_LOG_LEVEL") or config.log_level)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger("dar")

    _log_startup(logger, config)
    try:
        service = build_service(config)
    except RelayError:
        logger.exception("startup failed")
        return 2

    try:
        if args.once:
            report = service.run_manual_pass()
            logger.info(
                "once done: duration_ms=%d pages=%d entries=%d dispatch_attempts=%d dispatched=%d failures=%d entry_errors=%d",
                report.duration_ms,
                report.pages,
                report.entries_seen,
                report.dispatch_attempts,
                report.dispatch_successes,
                report.dispatch_failures,
                report.entry_errors,
            )
            return 0 if report.dispatch_failures == 0 else 1

        if args.register:
            print(json.dumps(service.register_watch(), ensure_ascii=False, indent=2))
            return 0

        if args.test_payload:
            echoed, outcome = service.send_test_payload()
            print(json.dumps({"echoed": echoed, "downstream": outcome.to_json_dict()}, ensure_ascii=False, indent=2))
            return 0 if outcome.delivered else 1
    except RelayError:
        logger.exception("command failed")
        return 2

    host = args.host or config.server.host
    port = args.port or config.server.port
    logger.info("dar start: mode=serve host=%s port=%d", host, port)
    return _serve(service, host, port)


if __name__ == "__main__":
    raise SystemExit(main())
