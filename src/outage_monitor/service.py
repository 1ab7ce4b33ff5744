import logging
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Tuple

from .broadcaster import Broadcaster, ProgressFunc
from .config import AppConfig, MAX_INTERVAL_HOURS, MIN_INTERVAL_HOURS
from .database import Database
from .gate import ConfirmationGate
from .messages import interval_notice, new_subscriber_notice
from .models import (
    BulkResult,
    ConfirmResult,
    ConfirmStatus,
    IntervalChange,
    IntervalOutcome,
    OperationKind,
    OutageRecord,
    PendingOperation,
    RequestStatus,
    SearchFilters,
    Subscriber,
    SubscribeResult,
)
from .report import ReportWriter
from .scheduler import CheckScheduler
from .search import parse_search_query
from .store.snapshots import SnapshotStore
from .store.subscribers import SubscriberStore

logger = logging.getLogger(__name__)

INTERVAL_SETTING = "update_interval_hours"
UNSUBSCRIBE_PROGRESS_EVERY = 5

AdminNotifyFunc = Callable[[str], Awaitable[None]]


class OutageService:
    """Command surface used by the chat handlers"""

    def __init__(
        self,
        config: AppConfig,
        db: Database,
        subscribers: SubscriberStore,
        snapshots: SnapshotStore,
        gate: ConfirmationGate,
        broadcaster: Broadcaster,
        scheduler: Optional[CheckScheduler] = None,
        reports: Optional[ReportWriter] = None,
        notify_admins: Optional[AdminNotifyFunc] = None,
    ):
        self.config = config
        self.db = db
        self.subscribers = subscribers
        self.snapshots = snapshots
        self.gate = gate
        self.broadcaster = broadcaster
        self.scheduler = scheduler
        self.reports = reports
        self._notify_admins = notify_admins

    def is_admin(self, chat_id: int) -> bool:
        return self.config.is_admin(chat_id)

    def current_interval(self) -> int:
        """Persisted interval, or the configured default when none is stored"""
        hours = self.db.get_int_setting(INTERVAL_SETTING)
        if hours is None or not MIN_INTERVAL_HOURS <= hours <= MAX_INTERVAL_HOURS:
            return self.config.default_interval_hours
        return hours

    async def _admin_notice(self, message: str) -> None:
        if not self._notify_admins:
            return
        try:
            await self._notify_admins(message)
        except Exception as e:
            logger.error(f"通知管理员失败: {e}")

    # Subscriber commands
    async def subscribe(self, chat_id: int, username: Optional[str] = None,
                        first_name: Optional[str] = None) -> SubscribeResult:
        result = self.subscribers.subscribe(chat_id, username, first_name)
        if result != SubscribeResult.ALREADY_ACTIVE:
            subscriber = self.subscribers.get(chat_id)
            active = len(self.subscribers.list_active())
            await self._admin_notice(
                new_subscriber_notice(subscriber, active, result == SubscribeResult.REACTIVATED)
            )
        return result

    def unsubscribe(self, chat_id: int) -> bool:
        return self.subscribers.unsubscribe(chat_id)

    def is_subscribed(self, chat_id: int) -> bool:
        return self.subscribers.is_active(chat_id)

    # Broadcast
    def request_broadcast(self, operator_id: int, text: str) -> Tuple[RequestStatus, PendingOperation]:
        """Queue a broadcast for confirmation; expected_count is the current recipient count"""
        text = (text or "").strip()
        if not text:
            raise ValueError("broadcast text must not be empty")
        count = len(self.subscribers.list_active())
        status, op = self.gate.request(operator_id, OperationKind.BROADCAST, payload=text, expected_count=count)
        if status == RequestStatus.PENDING:
            logger.info(f"📢 管理员 {operator_id} 请求群发，预计 {count} 位订阅者")
        return status, op

    async def confirm_broadcast(self, operator_id: int,
                                on_progress: Optional[ProgressFunc] = None) -> ConfirmResult:
        result = self.gate.confirm(operator_id, OperationKind.BROADCAST)
        if result.status != ConfirmStatus.CONFIRMED:
            return result

        recipients = [s.chat_id for s in self.subscribers.list_active()]
        logger.info(f"📢 管理员 {operator_id} 开始群发，共 {len(recipients)} 位订阅者")
        result.tally = await self.broadcaster.send(recipients, result.operation.payload, on_progress=on_progress)
        return result

    # Unsubscribe all
    def request_unsubscribe_all(self, operator_id: int) -> Tuple[RequestStatus, PendingOperation]:
        count = len(self.subscribers.list_active())
        status, op = self.gate.request(operator_id, OperationKind.UNSUBSCRIBE_ALL, expected_count=count)
        if status == RequestStatus.PENDING:
            logger.warning(f"⚠️ 管理员 {operator_id} 请求取消全部订阅，预计 {count} 位订阅者")
        return status, op

    async def confirm_unsubscribe_all(self, operator_id: int,
                                      on_progress: Optional[ProgressFunc] = None) -> ConfirmResult:
        result = self.gate.confirm(operator_id, OperationKind.UNSUBSCRIBE_ALL)
        if result.status != ConfirmStatus.CONFIRMED:
            return result

        active = self.subscribers.list_active()
        tally = BulkResult(total=len(active), expected_count=result.operation.expected_count)
        for index, subscriber in enumerate(active, 1):
            try:
                if self.subscribers.unsubscribe(subscriber.chat_id):
                    tally.success_count += 1
                else:
                    tally.failure_count += 1
                    tally.errors[subscriber.chat_id] = "not active"
            except Exception as e:
                tally.failure_count += 1
                tally.errors[subscriber.chat_id] = str(e)
                logger.error(f"取消订阅失败 {subscriber.chat_id}: {e}")

            if on_progress and index % UNSUBSCRIBE_PROGRESS_EVERY == 0 and index < tally.total:
                try:
                    await on_progress(index, tally.total, tally)
                except Exception as e:
                    logger.warning(f"进度回调失败: {e}")

        logger.warning(
            f"⚠️ 管理员 {operator_id} 已取消全部订阅: 成功 {tally.success_count}/{tally.total}"
            f"（确认时预计 {tally.expected_count}）"
        )
        result.tally = tally
        return result

    def cancel(self, operator_id: int) -> Optional[PendingOperation]:
        return self.gate.cancel(operator_id)

    # Scheduling
    async def set_interval(self, operator_id: int, hours: int) -> IntervalChange:
        """Validate, persist, restart the timer and tell every subscriber"""
        old = self.current_interval()
        if not MIN_INTERVAL_HOURS <= hours <= MAX_INTERVAL_HOURS:
            return IntervalChange(IntervalOutcome.REJECTED, old_hours=old, new_hours=hours)
        if hours == old:
            return IntervalChange(IntervalOutcome.UNCHANGED, old_hours=old, new_hours=hours)

        self.db.set_setting(INTERVAL_SETTING, hours)
        if self.scheduler is not None and self.scheduler.is_running:
            self.scheduler.set_interval(hours)
        logger.info(f"⏰ 管理员 {operator_id} 修改检查间隔: {old}h → {hours}h")

        recipients = [s.chat_id for s in self.subscribers.list_active()]
        notified = await self.broadcaster.send(recipients, interval_notice(old, hours))
        return IntervalChange(IntervalOutcome.ACCEPTED, old_hours=old, new_hours=hours, notified=notified)

    # Admin views
    def admin_unsubscribe(self, operator_id: int, chat_id: int) -> bool:
        ok = self.subscribers.unsubscribe(chat_id)
        logger.info(f"管理员 {operator_id} 取消订阅 {chat_id}: {'成功' if ok else '未订阅'}")
        return ok

    def list_subscribers(self, page: int = 1, page_size: int = 10) -> Tuple[List[Subscriber], int]:
        return self.subscribers.list_active_page(page, page_size)

    def get_stats(self) -> dict:
        last_check = self.db.get_setting("last_check_time")
        next_run = self.scheduler.next_run_time if self.scheduler else None
        return {
            "subscribers": self.subscribers.stats(),
            "interval_hours": self.current_interval(),
            "last_check_time": datetime.fromisoformat(last_check) if last_check else None,
            "last_check_count": self.db.get_int_setting("last_check_count"),
            "next_check_time": next_run,
            "snapshot_count": self.snapshots.count(),
        }

    def search(self, query: str) -> Tuple[SearchFilters, List[OutageRecord]]:
        """Parse the admin query and search the audit table

        Raises SearchQueryError on malformed input.
        """
        filters = parse_search_query(query)
        return filters, self.db.search_outages(filters)

    def analytics(self) -> dict:
        return {
            "outages": self.db.outage_stats(),
            "subscribers": self.subscribers.stats(),
            "recent_checks": self.snapshots.history(limit=5),
        }

    def latest_report(self) -> Optional[Path]:
        return self.reports.latest() if self.reports else None
