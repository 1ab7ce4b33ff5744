import html
import logging
import re
from functools import wraps

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from ..cycle import CheckCycle
from ..errors import SearchQueryError, SourceError
from ..messages import format_dt, hours_text, tally_text
from ..models import ConfirmStatus, IntervalOutcome, RequestStatus, SubscribeResult
from ..report import MESSAGE_LIMIT, format_records
from ..service import OutageService

logger = logging.getLogger(__name__)

SUBSCRIBERS_PAGE_SIZE = 10

USER_COMMANDS = [
    ("start", "start"),
    ("help", "help"),
    ("subscribe", "subscribe"),
    ("unsubscribe", "unsubscribe"),
    ("status", "status"),
    ("get", "get_report"),
    ("check", "check"),
]

ADMIN_COMMANDS = [
    ("admin_stats", "admin_stats"),
    ("admin_subscribers", "admin_subscribers"),
    ("admin_broadcast", "admin_broadcast"),
    ("confirm_broadcast", "confirm_broadcast"),
    ("admin_unsubscribe", "admin_unsubscribe"),
    ("admin_unsubscribe_all", "admin_unsubscribe_all"),
    ("confirm_unsubscribe_all", "confirm_unsubscribe_all"),
    ("cancel", "cancel"),
    ("admin_set_interval", "admin_set_interval"),
    ("admin_search", "admin_search"),
    ("admin_analytics", "admin_analytics"),
    ("admin_check", "admin_check"),
]


def require_admin(func):
    """Decorator to reject admin commands from non-admin chats"""
    @wraps(func)
    async def wrapper(self, update: Update, context: ContextTypes.DEFAULT_TYPE, *args, **kwargs):
        chat_id = update.effective_chat.id
        if not self.service.is_admin(chat_id):
            logger.warning(f"非管理员尝试执行管理命令: {chat_id}")
            await update.message.reply_text("❌ У вас нет прав администратора.")
            return
        return await func(self, update, context, *args, **kwargs)
    return wrapper


def _progress_updater(message, verb: str):
    async def on_progress(done: int, total: int, tally) -> None:
        await message.edit_text(f"⏳ {verb}: {done}/{total} (ошибок: {tally.failure_count})")
    return on_progress


def search_reply(filters, records) -> str:
    """Search result message, trimmed to one Telegram message"""
    header = f"🔍 <b>Найдено: {len(records)}</b> (лимит {filters.limit})\n\n"
    return header + format_records(records, limit=filters.limit, max_length=MESSAGE_LIMIT - len(header))


class BotHandlers:
    """Telegram bot command handlers"""

    def __init__(self, service: OutageService, cycle: CheckCycle, place: str):
        self.service = service
        self.cycle = cycle
        self.place = place

    async def _reply(self, update: Update, text: str):
        return await update.message.reply_text(text, parse_mode=ParseMode.HTML)

    async def start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /start command"""
        await self._reply(
            update,
            "🔌 <b>Бот для мониторинга отключений электричества</b>\n\n"
            f"Бот следит за плановыми отключениями в {html.escape(self.place)} "
            "и присылает уведомление, когда появляются новые записи.\n\n"
            "/subscribe - подписаться на уведомления\n"
            "/unsubscribe - отписаться\n"
            "/check - актуальные отключения прямо сейчас\n"
            "/get - последний отчет\n"
            "/help - справка"
        )

    async def help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /help command"""
        text = (
            "📖 <b>Справка</b>\n\n"
            "/subscribe - подписаться на уведомления\n"
            "/unsubscribe - отписаться от уведомлений\n"
            "/status - статус подписки\n"
            "/check - поиск актуальных отключений\n"
            "/get - получить последний отчет\n\n"
            f"⏰ Проверка выполняется каждые {hours_text(self.service.current_interval())}."
        )
        if self.service.is_admin(update.effective_chat.id):
            text += (
                "\n\n🔧 <b>Администрирование</b>\n"
                "/admin_stats - статистика\n"
                "/admin_subscribers [страница] - список подписчиков\n"
                "/admin_broadcast &lt;текст&gt; - рассылка\n"
                "/admin_unsubscribe &lt;chat_id&gt; - отписать пользователя\n"
                "/admin_unsubscribe_all - отписать всех\n"
                "/admin_set_interval &lt;1-24&gt; - интервал проверки\n"
                "/admin_search район:… место:… дата:… лимит:… - поиск в базе\n"
                "/admin_analytics - аналитика\n"
                "/admin_check - проверить сейчас\n"
                "/cancel - отменить ожидающую операцию"
            )
        await self._reply(update, text)

    async def subscribe(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /subscribe command"""
        chat_id = update.effective_chat.id
        user = update.effective_user
        result = await self.service.subscribe(
            chat_id,
            user.username if user else None,
            user.first_name if user else None,
        )

        if result == SubscribeResult.ALREADY_ACTIVE:
            await self._reply(update, "ℹ️ Вы уже подписаны на уведомления о новых отключениях.")
            return

        prefix = "🔁 <b>Подписка возобновлена!</b>" if result == SubscribeResult.REACTIVATED \
            else "✅ <b>Подписка активирована!</b>"
        await self._reply(
            update,
            f"{prefix}\n\n"
            f"🔔 Вы будете получать уведомления о новых отключениях в {html.escape(self.place)}.\n"
            f"⏰ Проверка происходит каждые {hours_text(self.service.current_interval())}.\n\n"
            "Для отключения используйте /unsubscribe"
        )

    async def unsubscribe(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /unsubscribe command"""
        if self.service.unsubscribe(update.effective_chat.id):
            await self._reply(update, "✅ Вы отписались от уведомлений. Вернуться: /subscribe")
        else:
            await self._reply(update, "ℹ️ Вы не подписаны на уведомления.")

    async def status(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /status command"""
        subscribed = self.service.is_subscribed(update.effective_chat.id)
        stats = self.service.get_stats()
        await self._reply(
            update,
            f"📋 Подписка: {'активна ✅' if subscribed else 'не активна ❌'}\n"
            f"⏰ Интервал: каждые {hours_text(stats['interval_hours'])}\n"
            f"🕐 Последняя проверка: {format_dt(stats['last_check_time'])}\n"
            f"📊 Найдено отключений: {stats['last_check_count'] if stats['last_check_count'] is not None else '—'}"
        )

    async def get_report(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /get command - send the latest report file"""
        path = self.service.latest_report()
        if path is None:
            await self._reply(update, "📄 Отчеты не найдены.")
            return
        with open(path, "rb") as f:
            await update.message.reply_document(
                document=f,
                filename=path.name,
                caption="📄 Последний отчет об отключениях"
            )

    async def check(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /check command - live lookup without touching stored state"""
        progress = await update.message.reply_text(f"🔍 Выполняю поиск отключений для {self.place}...")
        try:
            fetched, current = await self.cycle.observe()
        except SourceError as e:
            logger.warning(f"用户查询失败: {e}")
            await progress.edit_text("❌ Сайт с отключениями сейчас недоступен, попробуйте позже.")
            return

        if not current:
            await progress.edit_text(f"✅ Актуальных отключений не найдено (всего записей: {fetched}).")
            return
        await progress.edit_text(
            f"🔌 <b>Актуальных отключений: {len(current)}</b>\n\n{format_records(current)}",
            parse_mode=ParseMode.HTML
        )

    async def unknown_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await update.message.reply_text("❓ Неизвестная команда. Список команд: /help")

    # Admin commands
    @require_admin
    async def admin_stats(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        stats = self.service.get_stats()
        subs = stats["subscribers"]
        await self._reply(
            update,
            "📊 <b>Статистика</b>\n\n"
            f"👥 Активных подписчиков: {subs['active']}\n"
            f"💤 Отписавшихся: {subs['inactive']}\n"
            f"🆕 Новых за неделю: {subs['new_this_week']}\n\n"
            f"⏰ Интервал: каждые {hours_text(stats['interval_hours'])}\n"
            f"🕐 Последняя проверка: {format_dt(stats['last_check_time'])}\n"
            f"📋 Найдено при проверке: {stats['last_check_count'] if stats['last_check_count'] is not None else '—'}\n"
            f"⏭️ Следующая проверка: {format_dt(stats['next_check_time'])}\n"
            f"🗂️ Снимков в истории: {stats['snapshot_count']}"
        )

    @require_admin
    async def admin_subscribers(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        page = 1
        if context.args:
            try:
                page = max(int(context.args[0]), 1)
            except ValueError:
                await self._reply(update, "❌ Номер страницы должен быть числом")
                return

        subscribers, total = self.service.list_subscribers(page, SUBSCRIBERS_PAGE_SIZE)
        if total == 0:
            await self._reply(update, "👥 Подписчиков пока нет.")
            return

        pages = (total + SUBSCRIBERS_PAGE_SIZE - 1) // SUBSCRIBERS_PAGE_SIZE
        lines = [f"👥 <b>Подписчики</b> ({total}), страница {page}/{pages}\n"]
        offset = (page - 1) * SUBSCRIBERS_PAGE_SIZE
        for num, s in enumerate(subscribers, offset + 1):
            lines.append(
                f"{num}. {html.escape(s.display_name)} — <code>{s.chat_id}</code>\n"
                f"   📅 {format_dt(s.subscribed_at)}  🔔 {format_dt(s.last_notified)}"
            )
        if page < pages:
            lines.append(f"\nДалее: /admin_subscribers {page + 1}")
        await self._reply(update, "\n".join(lines))

    @require_admin
    async def admin_broadcast(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        # 保留原始换行
        text = re.sub(r"^/\S+\s*", "", update.message.text or "", count=1).strip()
        if not text:
            await self._reply(update, "❌ Укажите текст: /admin_broadcast &lt;сообщение&gt;")
            return

        status, op = self.service.request_broadcast(update.effective_chat.id, text)
        if status == RequestStatus.CONFLICT:
            await self._reply(
                update,
                f"⚠️ У вас уже есть ожидающая операция ({op.kind.value}).\n"
                "Подтвердите её или отмените через /cancel"
            )
            return
        await self._reply(
            update,
            "📢 <b>Подтверждение рассылки</b>\n\n"
            f"👥 Получателей: {op.expected_count}\n\n"
            f"{html.escape(text)}\n\n"
            "Для отправки: /confirm_broadcast\n"
            "Для отмены: /cancel\n"
            "⏳ Подтверждение действует 5 минут"
        )

    async def _report_confirm_failure(self, update: Update, status: ConfirmStatus) -> None:
        if status == ConfirmStatus.EXPIRED:
            await self._reply(update, "⌛ Время подтверждения истекло. Повторите запрос.")
        else:
            await self._reply(update, "ℹ️ Нет операции, ожидающей подтверждения.")

    @require_admin
    async def confirm_broadcast(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        progress = await update.message.reply_text("⏳ Начинаю рассылку...")
        result = await self.service.confirm_broadcast(
            update.effective_chat.id, on_progress=_progress_updater(progress, "Отправлено")
        )
        if result.status != ConfirmStatus.CONFIRMED:
            await progress.delete()
            await self._report_confirm_failure(update, result.status)
            return
        await progress.edit_text(tally_text("✅ <b>Рассылка завершена</b>", result.tally), parse_mode=ParseMode.HTML)

    @require_admin
    async def admin_unsubscribe(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not context.args:
            await self._reply(update, "❌ Укажите chat_id: /admin_unsubscribe &lt;chat_id&gt;")
            return
        try:
            chat_id = int(context.args[0])
        except ValueError:
            await self._reply(update, "❌ chat_id должен быть числом")
            return

        if self.service.admin_unsubscribe(update.effective_chat.id, chat_id):
            await self._reply(update, f"✅ Пользователь <code>{chat_id}</code> отписан")
        else:
            await self._reply(update, f"ℹ️ Пользователь <code>{chat_id}</code> не подписан")

    @require_admin
    async def admin_unsubscribe_all(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        status, op = self.service.request_unsubscribe_all(update.effective_chat.id)
        if status == RequestStatus.CONFLICT:
            await self._reply(
                update,
                f"⚠️ У вас уже есть ожидающая операция ({op.kind.value}).\n"
                "Подтвердите её или отмените через /cancel"
            )
            return
        await self._reply(
            update,
            "⚠️ <b>Отписать всех подписчиков?</b>\n\n"
            f"👥 Будет отписано: {op.expected_count}\n\n"
            "Для подтверждения: /confirm_unsubscribe_all\n"
            "Для отмены: /cancel\n"
            "⏳ Подтверждение действует 5 минут"
        )

    @require_admin
    async def confirm_unsubscribe_all(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        progress = await update.message.reply_text("⏳ Отписываю подписчиков...")
        result = await self.service.confirm_unsubscribe_all(
            update.effective_chat.id, on_progress=_progress_updater(progress, "Отписано")
        )
        if result.status != ConfirmStatus.CONFIRMED:
            await progress.delete()
            await self._report_confirm_failure(update, result.status)
            return
        await progress.edit_text(tally_text("✅ <b>Все подписчики отписаны</b>", result.tally), parse_mode=ParseMode.HTML)

    @require_admin
    async def cancel(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        op = self.service.cancel(update.effective_chat.id)
        if op is None:
            await self._reply(update, "ℹ️ Нет операции для отмены.")
        else:
            await self._reply(update, f"🚫 Операция {op.kind.value} отменена.")

    @require_admin
    async def admin_set_interval(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        try:
            hours = int(context.args[0]) if context.args else None
        except ValueError:
            hours = None
        if hours is None:
            await self._reply(
                update,
                f"⏰ Текущий интервал: каждые {hours_text(self.service.current_interval())}\n"
                "Изменить: /admin_set_interval &lt;1-24&gt;"
            )
            return

        change = await self.service.set_interval(update.effective_chat.id, hours)
        if change.outcome == IntervalOutcome.REJECTED:
            await self._reply(update, "❌ Интервал должен быть от 1 до 24 часов.")
        elif change.outcome == IntervalOutcome.UNCHANGED:
            await self._reply(update, f"ℹ️ Интервал уже равен {hours_text(hours)}.")
        else:
            await self._reply(
                update,
                "✅ <b>Интервал изменен</b>\n\n"
                f"Было: {hours_text(change.old_hours)}\n"
                f"Стало: {hours_text(change.new_hours)}\n\n"
                + tally_text("📢 Подписчики уведомлены:", change.notified)
            )

    @require_admin
    async def admin_search(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = " ".join(context.args) if context.args else ""
        try:
            filters, records = self.service.search(query)
        except SearchQueryError as e:
            await self._reply(
                update,
                f"❌ Ошибка запроса: {html.escape(str(e))}\n\n"
                "Пример: /admin_search район:Мясниковский дата:10.01.2025 лимит:5"
            )
            return

        if not records:
            await self._reply(update, "🔍 Ничего не найдено.")
            return
        await self._reply(update, search_reply(filters, records))

    @require_admin
    async def admin_analytics(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        data = self.service.analytics()
        outages = data["outages"]
        subs = data["subscribers"]
        lines = [
            "📈 <b>Аналитика</b>\n",
            f"⚡ Всего отключений в базе: {outages['total']}",
            f"📍 Уникальных мест: {outages['place_count']}",
            f"📄 Отчетов: {outages['report_count']}",
            "",
            "🏆 <b>Районы:</b>",
        ]
        for district, count in outages["top_districts"]:
            lines.append(f"• {html.escape(district)}: {count}")
        lines += [
            "",
            f"👥 Подписчиков всего: {subs['total']} (активных {subs['active']})",
            f"🔔 Получали уведомления: {subs['ever_notified']}",
            "",
            "🕐 <b>Последние изменения:</b>",
        ]
        for snap in data["recent_checks"]:
            lines.append(f"• {format_dt(snap.checked_at)}: {snap.result_count} записей")
        await self._reply(update, "\n".join(lines))

    @require_admin
    async def admin_check(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        progress = await update.message.reply_text("🔍 Запускаю проверку...")
        result = await self.cycle.run()
        if result.error:
            await progress.edit_text(f"❌ Проверка не удалась: {result.error}")
            return
        text = (
            f"✅ Проверка завершена\n\n"
            f"Получено записей: {result.fetched}\n"
            f"Актуальных: {result.current}\n"
            f"Изменения: {'да' if result.changed else 'нет'}"
        )
        if result.tally:
            text += f"\nУведомлено: {result.tally.success_count}/{result.tally.total}"
        await progress.edit_text(text)
