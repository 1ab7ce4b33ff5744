import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from .models import BulkResult

logger = logging.getLogger(__name__)

# Telegram 限速约 30 条/秒
SEND_DELAY = 0.035
PROGRESS_EVERY = 10

SendFunc = Callable[[int, str], Awaitable[object]]
ProgressFunc = Callable[[int, int, BulkResult], Awaitable[None]]
SuccessFunc = Callable[[int], None]


class Broadcaster:
    """Sequential, rate-limited delivery to many recipients

    `send(chat_id, text)` either succeeds, returns False or raises; the last
    two count as a failure for that recipient and delivery moves on.
    """

    def __init__(
        self,
        send: SendFunc,
        delay: float = SEND_DELAY,
        progress_every: int = PROGRESS_EVERY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._send = send
        self.delay = delay
        self.progress_every = progress_every
        self._sleep = sleep

    async def send(
        self,
        recipients: Sequence[int],
        message: str,
        on_progress: Optional[ProgressFunc] = None,
        on_success: Optional[SuccessFunc] = None,
    ) -> BulkResult:
        """Deliver message to every recipient, returns the full tally"""
        result = BulkResult(total=len(recipients))

        for index, chat_id in enumerate(recipients, 1):
            try:
                delivered = await self._send(chat_id, message)
            except Exception as e:
                delivered = False
                result.errors[chat_id] = str(e)
            else:
                if delivered is False:
                    result.errors[chat_id] = "not delivered"

            if delivered is not False:
                result.success_count += 1
                if on_success:
                    on_success(chat_id)
            else:
                result.failure_count += 1
                logger.warning(f"发送失败 {chat_id}: {result.errors[chat_id]}")

            if on_progress and index % self.progress_every == 0 and index < result.total:
                try:
                    await on_progress(index, result.total, result)
                except Exception as e:
                    logger.warning(f"进度回调失败: {e}")

            if index < result.total:
                await self._sleep(self.delay)

        logger.info(
            f"📤 群发完成: 共 {result.total}，成功 {result.success_count}，"
            f"失败 {result.failure_count} ({result.percentage}%)"
        )
        return result
