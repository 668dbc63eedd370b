from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable

from .ancestry import AncestryResolver
from .errors import AuthenticationError, ConfigurationError, TransientRemoteError
from .models import ChangeEntry, DispatchOutcome, NotificationPayload, utc_now
from .notify.base import Dispatcher
from .rules.classifier import infer_direction, is_audio
from .sources.base import ChangeFeed
from .state.cursor import CursorTracker


logger = logging.getLogger(__name__)

DispatchFn = Callable[[NotificationPayload], DispatchOutcome]

# 这些错误说明远端整体不可用，继续处理后续条目没有意义
_PASS_ABORTING_ERRORS = (TransientRemoteError, AuthenticationError)


@dataclass(slots=True)
class HarvestReport:
    started_at: datetime
    finished_at: datetime | None = None
    duration_ms: int = 0
    cursor_before: str | None = None
    cursor_after: str | None = None
    pages: int = 0
    entries_seen: int = 0
    skipped_no_id: int = 0
    skipped_folder: int = 0
    skipped_outside: int = 0
    skipped_not_audio: int = 0
    entry_errors: int = 0
    dispatch_attempts: int = 0
    dispatch_successes: int = 0
    dispatch_failures: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_json_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["started_at"] = self.started_at.isoformat()
        d["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        d["ok"] = self.ok
        return d


class Harvester:
    """
    核心执行器：一次 harvest pass 的完整闭环：
    Cursor -> ChangeFeed(分页) -> 过滤(文件夹/子树/音频) -> Dispatch -> Cursor 推进

    状态（cursor / ancestry 缓存 / pass 锁）都归属于实例本身，
    多个实例之间互不影响。
    """

    def __init__(
        self,
        *,
        feed: ChangeFeed,
        tracker: CursorTracker,
        resolver: AncestryResolver,
        root_folder_id: str | None = None,
        dispatcher: Dispatcher | None = None,
    ) -> None:
        self.feed = feed
        self.tracker = tracker
        self.resolver = resolver
        self.root_folder_id = root_folder_id
        self.dispatcher = dispatcher

        self._pass_lock = threading.Lock()
        self._trigger_lock = threading.Lock()
        self._running = False
        self._rerun_requested = False

    def run_once(
        self,
        root_folder_id: str | None = None,
        dispatch: DispatchFn | None = None,
    ) -> HarvestReport:
        """
        执行一次 harvest pass（同步；若已有 pass 在运行则等待其结束）。

        执行顺序：
        - 读取 cursor（缺失时向 feed 申请起始 cursor）
        - 逐页拉取 changes，逐条过滤并投递
        - 所有分页成功后，若观察到 new_start_token 则推进 cursor

        分页拉取失败会中止本次 pass 并向上抛出，cursor 保持不变。
        """
        root_id = root_folder_id or self.root_folder_id
        dispatch_fn = dispatch or (self.dispatcher.dispatch if self.dispatcher else None)
        missing = []
        if not root_id:
            missing.append("root_folder_id")
        if dispatch_fn is None:
            missing.append("dispatch endpoint")
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

        with self._pass_lock:
            return self._run_pass(root_id, dispatch_fn)

    def trigger(self) -> HarvestReport | None:
        """
        webhook 触发入口：合并重叠触发。

        - 若已有 pass 在运行：只标记 rerun_requested 并立即返回 None
        - 否则执行 pass；结束后若期间有新的触发，再补跑一次

        返回最后一次 pass 的报告。
        """
        with self._trigger_lock:
            if self._running:
                self._rerun_requested = True
                logger.info("harvest already running; trigger coalesced")
                return None
            self._running = True

        report: HarvestReport | None = None
        try:
            while True:
                report = self.run_once()
                with self._trigger_lock:
                    if not self._rerun_requested:
                        self._running = False
                        return report
                    self._rerun_requested = False
                logger.info("re-running harvest for coalesced trigger")
        except BaseException:
            with self._trigger_lock:
                self._running = False
                self._rerun_requested = False
            raise

    def reset_cursor(self, cursor: str) -> None:
        """显式重新初始化 cursor（watch 注册时使用），与 pass 互斥。"""
        with self._pass_lock:
            self.tracker.reset(cursor)

    def _run_pass(self, root_id: str, dispatch: DispatchFn) -> HarvestReport:
        report = HarvestReport(started_at=utc_now())
        start_t = time.monotonic()

        try:
            cursor = self.tracker.current_or_init()
        except Exception as e:
            self._finish(report, start_t, error=e)
            logger.exception("cursor init failed")
            raise
        report.cursor_before = cursor
        report.cursor_after = cursor

        page_token: str | None = cursor
        new_start: str | None = None
        try:
            while page_token:
                page = self.feed.list_changes(page_token)
                report.pages += 1
                if page.new_start_token:
                    new_start = page.new_start_token

                for entry in page.entries:
                    self._process_entry(entry, root_id, dispatch, report)

                page_token = page.next_page_token
        except Exception as e:
            self._finish(report, start_t, error=e)
            logger.exception(
                "harvest aborted: cursor=%r page=%d page_token=%r (cursor not advanced)",
                cursor,
                report.pages + 1,
                page_token,
            )
            raise

        if new_start:
            self.tracker.advance_to(new_start)
            report.cursor_after = new_start
        else:
            logger.warning("no new start token observed; cursor left unchanged: cursor=%r", cursor)

        self._finish(report, start_t)
        logger.info(
            "harvest done: duration_ms=%d pages=%d entries=%d dispatched=%d failures=%d entry_errors=%d cursor=%r",
            report.duration_ms,
            report.pages,
            report.entries_seen,
            report.dispatch_successes,
            report.dispatch_failures,
            report.entry_errors,
            report.cursor_after,
        )
        return report

    def _process_entry(
        self,
        entry: ChangeEntry,
        root_id: str,
        dispatch: DispatchFn,
        report: HarvestReport,
    ) -> None:
        report.entries_seen += 1
        if not entry.item_id:
            report.skipped_no_id += 1
            return
        if entry.is_folder:
            report.skipped_folder += 1
            return

        self.resolver.prime(entry.item_id, entry.parents)
        try:
            if not self.resolver.is_descendant_of(entry.item_id, root_id):
                report.skipped_outside += 1
                logger.debug("skip outside subtree: item_id=%s name=%s", entry.item_id, entry.name)
                return
            if not is_audio(entry.name, entry.content_type):
                report.skipped_not_audio += 1
                logger.debug("skip non-audio: item_id=%s name=%s", entry.item_id, entry.name)
                return
            payload = NotificationPayload.from_entry(entry, infer_direction(entry.name))
        except _PASS_ABORTING_ERRORS:
            raise
        except Exception:  # noqa: BLE001
            report.entry_errors += 1
            logger.exception("entry evaluation failed; skipping: item_id=%s name=%s", entry.item_id, entry.name)
            return

        report.dispatch_attempts += 1
        try:
            outcome = dispatch(payload)
        except Exception:  # noqa: BLE001
            report.dispatch_failures += 1
            logger.exception("dispatch raised: item_id=%s", entry.item_id)
            return

        if outcome.delivered:
            report.dispatch_successes += 1
        else:
            report.dispatch_failures += 1

    @staticmethod
    def _finish(report: HarvestReport, start_t: float, *, error: Exception | None = None) -> None:
        report.finished_at = utc_now()
        report.duration_ms = int((time.monotonic() - start_t) * 1000)
        if error is not None:
            report.error = f"{type(error).__name__}: {error}"
