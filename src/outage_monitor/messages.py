"""Chat texts shared by the service layer and bot handlers"""
import html
from datetime import datetime
from typing import Optional

from .models import BulkResult, Subscriber


def plural(n: int, one: str, few: str, many: str) -> str:
    n = abs(n)
    if n % 10 == 1 and n % 100 != 11:
        return one
    if 2 <= n % 10 <= 4 and not 12 <= n % 100 <= 14:
        return few
    return many


def hours_text(n: int) -> str:
    return f"{n} {plural(n, 'час', 'часа', 'часов')}"


def interval_notice(old_hours: int, new_hours: int) -> str:
    return (
        "🔄 <b>Обновление настроек уведомлений</b>\n\n"
        "⏰ Интервал проверки изменен:\n"
        f"• Было: каждые {hours_text(old_hours)}\n"
        f"• Стало: каждые {hours_text(new_hours)}\n\n"
        "🔕 Для отключения уведомлений используйте /unsubscribe"
    )


def new_subscriber_notice(subscriber: Subscriber, active_count: int, reactivated: bool) -> str:
    title = "🔁 <b>Подписчик вернулся</b>" if reactivated else "🆕 <b>Новый подписчик!</b>"
    return (
        f"{title}\n\n"
        f"👤 Пользователь: {html.escape(subscriber.display_name)}\n"
        f"🆔 Chat ID: <code>{subscriber.chat_id}</code>\n"
        f"⏰ Время подписки: {format_dt(subscriber.subscribed_at)}\n\n"
        f"📊 Всего активных подписчиков: {active_count}"
    )


def tally_text(title: str, tally: BulkResult) -> str:
    text = (
        f"{title}\n\n"
        f"• Всего: {tally.total}\n"
        f"• Успешно: {tally.success_count}\n"
        f"• Ошибки: {tally.failure_count}\n"
        f"• Эффективность: {tally.percentage}%"
    )
    if tally.expected_count is not None:
        text += f"\n• Ожидалось: {tally.expected_count}"
    return text


def format_dt(value: Optional[datetime]) -> str:
    return value.strftime("%d.%m.%Y %H:%M") if value else "—"
