import asyncio
import logging
from datetime import date, datetime
from typing import Awaitable, Callable, List, Optional, Tuple

from .broadcaster import Broadcaster
from .database import Database
from .detection.change import ChangeDetector
from .detection.dedup import deduplicate, filter_upcoming
from .errors import SourceError
from .models import CycleResult, OutageRecord
from .report import ReportWriter, format_summary
from .source.base import BaseSource
from .store.snapshots import SnapshotStore
from .store.subscribers import SubscriberStore

logger = logging.getLogger(__name__)

# 连续失败多少次后告警管理员
FETCH_FAIL_THRESHOLD = 5

AlertFunc = Callable[[str], Awaitable[None]]


async def observe(source: BaseSource, only_upcoming: bool = True,
                  today: Optional[date] = None) -> Tuple[int, List[OutageRecord]]:
    """Fetch and canonicalize, returns (raw count, current records)"""
    logger.info(f"📡 开始拉取数据 ({source.get_source_name()})...")
    # 在线程池中执行同步的 fetch，避免阻塞事件循环
    loop = asyncio.get_running_loop()
    raw = await loop.run_in_executor(None, source.fetch)
    current = deduplicate(raw)
    if only_upcoming:
        current = filter_upcoming(current, today)
    return len(raw), current


class CheckCycle:
    """One observe -> detect -> notify pass, fired by the scheduler"""

    def __init__(
        self,
        source: BaseSource,
        db: Database,
        snapshots: SnapshotStore,
        subscribers: SubscriberStore,
        broadcaster: Broadcaster,
        reports: Optional[ReportWriter],
        place: str,
        only_upcoming: bool = True,
        alert: Optional[AlertFunc] = None,
        today: Callable[[], date] = date.today,
    ):
        self.source = source
        self.db = db
        self.snapshots = snapshots
        self.subscribers = subscribers
        self.broadcaster = broadcaster
        self.reports = reports
        self.place = place
        self.only_upcoming = only_upcoming
        self.detector = ChangeDetector(snapshots)
        self._alert = alert
        self._today = today
        self._lock = asyncio.Lock()
        self._fetch_fail_count = 0
        self._fetch_fail_notified = False

    async def observe(self) -> Tuple[int, List[OutageRecord]]:
        return await observe(self.source, self.only_upcoming, self._today())

    async def run(self) -> CycleResult:
        """Run one cycle; errors are logged and end only this cycle"""
        async with self._lock:
            result = CycleResult()
            try:
                await self._run(result)
                await self._fetch_succeeded()
            except SourceError as e:
                result.error = str(e)
                logger.warning(f"⚠️ 数据源不可用，本轮跳过: {e}")
                await self._fetch_failed(e)
            except Exception as e:
                result.error = str(e)
                logger.error(f"❌ 检查周期失败: {e}")
            return result

    async def _run(self, result: CycleResult) -> None:
        result.fetched, current = await self.observe()
        result.current = len(current)

        result.changed = self.detector.has_changed(current)
        now = datetime.now()
        self.db.set_setting("last_check_time", now.isoformat())
        self.db.set_setting("last_check_count", len(current))

        if not result.changed:
            logger.info(f"✅ 检查完成: 共 {result.fetched} 条, 当前 {result.current} 条, 无变化")
            return

        snapshot = self.snapshots.record(current, checked_at=now)
        if not current:
            logger.info("✅ 检查完成: 停电列表已清空，无需通知")
            return

        recipients = [s.chat_id for s in self.subscribers.list_active()]
        logger.info(f"🔔 发现新的停电信息 {len(current)} 条，通知 {len(recipients)} 位订阅者")
        message = format_summary(current, self.place, now)
        result.tally = await self.broadcaster.send(
            recipients, message, on_success=self.subscribers.mark_notified
        )

        result.report_path = self._persist_report(current)
        self.db.set_setting("last_notified_hash", snapshot.result_hash)

    def _persist_report(self, records: List[OutageRecord]) -> Optional[str]:
        """Best effort: report file plus audit rows"""
        report_file = None
        if self.reports is not None:
            try:
                report_file = str(self.reports.save(records, prefix="subscription-report"))
            except OSError as e:
                logger.error(f"保存报告失败: {e}")
        try:
            saved = self.db.save_outages(records, report_file)
            if saved:
                logger.info(f"📊 新增停电记录 {saved} 条")
        except Exception as e:
            logger.error(f"保存停电记录失败: {e}")
        return report_file

    async def _fetch_succeeded(self) -> None:
        if self._fetch_fail_count > 0:
            logger.info(f"✅ 数据拉取恢复正常（之前连续失败 {self._fetch_fail_count} 次）")
            if self._fetch_fail_notified:
                await self._notify_alert("✅ Загрузка данных восстановлена")
            self._fetch_fail_count = 0
            self._fetch_fail_notified = False

    async def _fetch_failed(self, error: Exception) -> None:
        self._fetch_fail_count += 1
        if self._fetch_fail_count >= FETCH_FAIL_THRESHOLD and not self._fetch_fail_notified:
            self._fetch_fail_notified = True
            await self._notify_alert(
                f"⚠️ Источник данных недоступен {self._fetch_fail_count} раз подряд\n\n"
                f"Ошибка: {error}"
            )

    async def _notify_alert(self, message: str) -> None:
        if not self._alert:
            return
        try:
            await self._alert(message)
        except Exception as e:
            logger.error(f"发送管理员告警失败: {e}")
