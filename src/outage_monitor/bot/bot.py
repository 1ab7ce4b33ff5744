import asyncio
import logging
from datetime import timedelta
from typing import List, Optional

from telegram.constants import ParseMode
from telegram.error import Forbidden, NetworkError, RetryAfter, TelegramError, TimedOut
from telegram.ext import Application, CommandHandler, MessageHandler, filters
from telegram.request import HTTPXRequest

from ..errors import DeliveryError
from .handlers import ADMIN_COMMANDS, USER_COMMANDS, BotHandlers

logger = logging.getLogger(__name__)

# Telegram API 超时配置
CONNECT_TIMEOUT = 30.0  # 连接超时（秒）
READ_TIMEOUT = 30.0     # 读取超时（秒）
WRITE_TIMEOUT = 30.0    # 写入超时（秒）
POOL_TIMEOUT = 10.0     # 连接池超时（秒）

# 重试配置
MAX_RETRIES = 3         # 最大重试次数
RETRY_DELAY = 2.0       # 重试间隔（秒）


class TelegramBot:
    """Telegram bot wrapper"""

    def __init__(self, token: str, admin_chat_ids: Optional[List[int]] = None):
        self.token = token
        self.admin_chat_ids = list(admin_chat_ids or [])
        self.application: Optional[Application] = None

    def setup(self, handlers: BotHandlers) -> Application:
        """Setup bot application with handlers"""
        # 配置自定义超时的 HTTP 请求
        request = HTTPXRequest(
            connect_timeout=CONNECT_TIMEOUT,
            read_timeout=READ_TIMEOUT,
            write_timeout=WRITE_TIMEOUT,
            pool_timeout=POOL_TIMEOUT,
        )

        self.application = (
            Application.builder()
            .token(self.token)
            .request(request)
            .build()
        )

        for command, callback in USER_COMMANDS + ADMIN_COMMANDS:
            self.application.add_handler(CommandHandler(command, getattr(handlers, callback)))

        # Handle unknown commands
        self.application.add_handler(MessageHandler(filters.COMMAND, handlers.unknown_command))

        return self.application

    async def deliver(self, chat_id: int, message: str) -> bool:
        """Send with retries; raises DeliveryError when the message could not be sent"""
        last_error: Optional[Exception] = None

        for attempt in range(MAX_RETRIES):
            try:
                await self.application.bot.send_message(
                    chat_id=chat_id,
                    text=message,
                    parse_mode=ParseMode.HTML,
                    disable_web_page_preview=True
                )
                return True
            except Forbidden as e:
                # 用户封禁了 Bot，不需要重试
                logger.debug(f"用户 {chat_id} 已封禁 Bot")
                raise DeliveryError(chat_id, f"blocked: {e}") from e
            except RetryAfter as e:
                # 触发限流，按服务端要求等待
                last_error = e
                delay = e.retry_after
                if isinstance(delay, timedelta):
                    delay = delay.total_seconds()
                logger.warning(f"发送限流 {chat_id}，等待 {delay} 秒")
                await asyncio.sleep(delay)
            except (TimedOut, NetworkError) as e:
                # 网络问题，重试
                last_error = e
                if attempt < MAX_RETRIES - 1:
                    logger.warning(f"发送超时 {chat_id}，第 {attempt + 1} 次重试...")
                    await asyncio.sleep(RETRY_DELAY)
            except TelegramError as e:
                # 其他 Telegram 错误，不重试
                logger.error(f"发送失败 {chat_id}: {e}")
                raise DeliveryError(chat_id, str(e)) from e

        # 所有重试都失败
        logger.error(f"发送失败 {chat_id}，已重试 {MAX_RETRIES} 次: {last_error}")
        raise DeliveryError(chat_id, f"gave up after {MAX_RETRIES} attempts: {last_error}")

    async def notify_admins(self, message: str) -> None:
        """Send a message to every admin, failures are logged"""
        if not self.admin_chat_ids:
            logger.warning("管理员 chat_id 未配置，无法发送通知")
            return
        for chat_id in self.admin_chat_ids:
            try:
                await self.deliver(chat_id, message)
            except DeliveryError as e:
                logger.error(f"发送管理员通知失败: {e}")

    async def send_admin_alert(self, message: str) -> None:
        await self.notify_admins(f"🚨 <b>Системное оповещение</b>\n\n{message}")
