"""Tests for bot command handlers with stand-in Telegram updates."""

from types import SimpleNamespace

import pytest

from outage_monitor.bot.handlers import BotHandlers, search_reply
from outage_monitor.broadcaster import Broadcaster
from outage_monitor.config import AppConfig
from outage_monitor.gate import ConfirmationGate
from outage_monitor.models import OperationKind
from outage_monitor.report import MESSAGE_LIMIT
from outage_monitor.search import MAX_LIMIT, parse_search_query
from outage_monitor.service import OutageService

from conftest import FakeSender, make_record

ADMIN = 100


class FakeMessage:
    def __init__(self):
        self.replies = []

    async def reply_text(self, text, **kwargs):
        self.replies.append(text)
        return self


def make_update(chat_id):
    return SimpleNamespace(
        effective_chat=SimpleNamespace(id=chat_id),
        effective_user=None,
        message=FakeMessage(),
    )


@pytest.fixture
def handlers(db, subscribers, snapshots, clock, fake_sleep):
    service = OutageService(
        config=AppConfig(bot_token="123:abc", admin_chat_ids=[ADMIN]),
        db=db,
        subscribers=subscribers,
        snapshots=snapshots,
        gate=ConfirmationGate(clock=clock),
        broadcaster=Broadcaster(FakeSender(), sleep=fake_sleep),
    )
    return BotHandlers(service, cycle=None, place="Ленинаван")


@pytest.mark.asyncio
class TestRequireAdmin:
    async def test_non_admin_is_rejected(self, handlers):
        update = make_update(1)
        await handlers.admin_unsubscribe_all(update, SimpleNamespace(args=[]))

        assert len(update.message.replies) == 1
        assert "нет прав администратора" in update.message.replies[0]
        assert handlers.service.gate.pending(1) is None

    async def test_admin_reaches_command(self, handlers):
        update = make_update(ADMIN)
        await handlers.admin_unsubscribe_all(update, SimpleNamespace(args=[]))

        assert handlers.service.gate.pending(ADMIN).kind == OperationKind.UNSUBSCRIBE_ALL
        assert "Отписать всех подписчиков" in update.message.replies[0]


class TestSearchReply:
    def test_fits_one_message_at_max_limit(self):
        filters = parse_search_query(f"лимит:{MAX_LIMIT}")
        records = [
            make_record(place=f"х.Ленинаван {i}", addresses="ул. Октябрьская 1-45, ул. Ленина 2-30, пер. Садовый 3-17, ул. Мира 5")
            for i in range(MAX_LIMIT)
        ]
        text = search_reply(filters, records)

        assert len(text) <= MESSAGE_LIMIT
        assert "Найдено: 50" in text
        assert "и ещё" in text

    def test_short_result_is_complete(self):
        filters = parse_search_query("лимит:5")
        text = search_reply(filters, [make_record(), make_record(place="с.Чалтырь")])
        assert "с.Чалтырь" in text
        assert "и ещё" not in text
