import asyncio
import logging
import logging.handlers
from pathlib import Path
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .backup import BackupManager
from .bot.bot import TelegramBot
from .bot.handlers import BotHandlers
from .broadcaster import Broadcaster
from .config import AppConfig, ConfigManager
from .cycle import CheckCycle, observe
from .database import Database
from .gate import ConfirmationGate
from .models import CycleResult, OutageRecord
from .report import ReportWriter
from .scheduler import CheckScheduler
from .service import OutageService
from .source import RossetiSource
from .store.snapshots import SnapshotStore
from .store.subscribers import SubscriberStore


def setup_logging(log_dir: Optional[Path] = None) -> None:
    """配置日志系统

    - 输出到 stdout（供 journald 收集）
    - 输出到文件（按天轮转，保留30天）
    """
    log_format = "%(asctime)s - %(levelname)s - %(message)s"
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    # 清除已有的 handlers（避免重复添加）
    root_logger.handlers.clear()

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(stream_handler)

    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=log_dir / "app.log",
            when="midnight",      # 每天午夜轮转
            interval=1,
            backupCount=30,       # 保留30天
            encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(log_format))
        file_handler.suffix = "%Y-%m-%d"
        root_logger.addHandler(file_handler)

    # Suppress noisy logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)

GATE_SWEEP_SECONDS = 60
STARTUP_CHECK_JOB_ID = "startup_check"


class Application:
    """Wires the stores, check cycle, scheduler and Telegram bot together"""

    def __init__(self, config: AppConfig, db: Database, config_manager: ConfigManager):
        self.config = config
        self.db = db
        self.config_manager = config_manager

        self.bot = TelegramBot(config.bot_token, admin_chat_ids=config.admin_chat_ids)
        self.subscribers = SubscriberStore(db)
        self.snapshots = SnapshotStore(db)
        self.reports = ReportWriter(config_manager.reports_dir, config.source.my_place, keep=config.report_keep)
        self.backups = BackupManager(db.db_path, config_manager.backups_dir, keep=config.backup_keep)
        self.broadcaster = Broadcaster(self.bot.deliver)
        self.gate = ConfirmationGate()
        self.source = RossetiSource(config.source)

        self.cycle = CheckCycle(
            source=self.source,
            db=db,
            snapshots=self.snapshots,
            subscribers=self.subscribers,
            broadcaster=self.broadcaster,
            reports=self.reports,
            place=config.source.my_place,
            only_upcoming=config.only_upcoming,
            alert=self.bot.send_admin_alert,
        )
        self.scheduler = AsyncIOScheduler()
        self.checker = CheckScheduler(self.cycle.run, self.scheduler)
        self.service = OutageService(
            config=config,
            db=db,
            subscribers=self.subscribers,
            snapshots=self.snapshots,
            gate=self.gate,
            broadcaster=self.broadcaster,
            scheduler=self.checker,
            reports=self.reports,
            notify_admins=self.bot.notify_admins,
        )
        self.handlers = BotHandlers(self.service, self.cycle, config.source.my_place)

    async def _sweep_gate(self) -> None:
        self.gate.sweep()

    def _schedule_housekeeping(self) -> None:
        self.scheduler.add_job(
            self._sweep_gate,
            "interval",
            seconds=GATE_SWEEP_SECONDS,
            id="gate_sweep",
            coalesce=True
        )
        self.scheduler.add_job(
            self.backups.auto_backup,
            "cron",
            hour=self.config.backup_hour,
            minute=0,
            id="db_backup",
            misfire_grace_time=None,
            coalesce=True
        )

    def start_checks(self) -> None:
        """Start the periodic check, plus a one-off check if configured"""
        self.checker.start(self.service.current_interval())
        if self.config.check_on_startup:
            # 不阻塞启动，交给调度器立即执行一次
            self.scheduler.add_job(self.cycle.run, id=STARTUP_CHECK_JOB_ID)
            logger.info("🚀 已安排启动检查")

    def run(self) -> None:
        """Start the bot and the scheduler (blocking)"""
        application = self.bot.setup(self.handlers)
        self._schedule_housekeeping()

        async def post_init(app):
            self.start_checks()

        async def post_shutdown(app):
            self.checker.shutdown()
            logger.info("🛑 已停止")

        application.post_init = post_init
        application.post_shutdown = post_shutdown

        logger.info("🤖 Telegram Bot 启动中...")
        application.run_polling()

    async def check_once(self) -> CycleResult:
        """Run a single notifying cycle outside the polling loop"""
        application = self.bot.setup(self.handlers)
        await application.initialize()
        try:
            return await self.cycle.run()
        finally:
            await application.shutdown()


def observe_once(config: AppConfig) -> List[OutageRecord]:
    """Fetch current records without touching stored state"""
    _, records = asyncio.run(observe(RossetiSource(config.source), config.only_upcoming))
    return records
