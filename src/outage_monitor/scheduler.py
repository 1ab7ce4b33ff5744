import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import MAX_INTERVAL_HOURS, MIN_INTERVAL_HOURS

logger = logging.getLogger(__name__)

CHECK_JOB_ID = "outage_check"


def validate_interval(hours: int) -> int:
    if not isinstance(hours, int) or isinstance(hours, bool):
        raise ValueError("interval must be an integer number of hours")
    if not MIN_INTERVAL_HOURS <= hours <= MAX_INTERVAL_HOURS:
        raise ValueError(f"interval must be between {MIN_INTERVAL_HOURS} and {MAX_INTERVAL_HOURS} hours")
    return hours


class CheckScheduler:
    """Periodic outage check: Stopped -> Running -> Stopped

    Wraps one interval job on an AsyncIOScheduler that may be shared with
    other jobs. Changing the interval removes and re-adds the job, which
    leaves an in-flight cycle untouched and moves the next fire to one full
    new period from now.
    """

    def __init__(self, job: Callable[[], Awaitable[None]], scheduler: Optional[AsyncIOScheduler] = None):
        self.job = job
        self.scheduler = scheduler or AsyncIOScheduler()
        self.interval_hours: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self.scheduler.running and self.scheduler.get_job(CHECK_JOB_ID) is not None

    @property
    def next_run_time(self) -> Optional[datetime]:
        job = self.scheduler.get_job(CHECK_JOB_ID)
        return job.next_run_time if job else None

    def start(self, hours: int) -> None:
        """Begin periodic firing every `hours` hours"""
        validate_interval(hours)
        if self.scheduler.get_job(CHECK_JOB_ID):
            self.scheduler.remove_job(CHECK_JOB_ID)

        # misfire_grace_time: None 表示无限; coalesce: 错过多次只执行一次
        self.scheduler.add_job(
            self.job,
            "interval",
            hours=hours,
            id=CHECK_JOB_ID,
            misfire_grace_time=None,
            coalesce=True,
            max_instances=1
        )
        self.interval_hours = hours
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"⏰ 定时检查已启动, 每 {hours} 小时一次")

    def stop(self) -> None:
        """Cancel future fires; safe to call repeatedly"""
        if self.scheduler.get_job(CHECK_JOB_ID):
            self.scheduler.remove_job(CHECK_JOB_ID)
            logger.info("🛑 定时检查已停止")

    def set_interval(self, hours: int) -> None:
        """Equivalent to stop() followed by start(hours)"""
        validate_interval(hours)
        old = self.interval_hours
        self.stop()
        self.start(hours)
        logger.info(f"⏰ 检查间隔已更新: {old}h → {hours}h")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
