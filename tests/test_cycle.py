"""Tests for the observe, detect and notify cycle."""

from datetime import date

import pytest

from outage_monitor.broadcaster import Broadcaster
from outage_monitor.cycle import FETCH_FAIL_THRESHOLD, CheckCycle
from outage_monitor.errors import SourceError
from outage_monitor.report import ReportWriter
from outage_monitor.source.base import BaseSource

from conftest import FakeSender, make_record


class FakeSource(BaseSource):
    def __init__(self, records=None):
        self.records = list(records or [])
        self.error = None
        self.calls = 0

    def fetch(self):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.records)

    def get_source_name(self):
        return "fake"


@pytest.fixture
def source():
    return FakeSource([
        make_record(place="Ленинаван", date_from="10.01.2025 08:00"),
        make_record(place="ленинаван ", date_from="10.01.2025"),
        make_record(place="х.Ленинаван", date_from="12.01.2025 09:00"),
    ])


@pytest.fixture
def alerts():
    return []


@pytest.fixture
def make_cycle(db, snapshots, subscribers, fake_sleep, tmp_path, alerts):
    def factory(source, sender=None, only_upcoming=True):
        async def alert(text):
            alerts.append(text)

        return CheckCycle(
            source=source,
            db=db,
            snapshots=snapshots,
            subscribers=subscribers,
            broadcaster=Broadcaster(sender or FakeSender(), sleep=fake_sleep),
            reports=ReportWriter(tmp_path / "reports", "Ленинаван"),
            place="Ленинаван",
            only_upcoming=only_upcoming,
            alert=alert,
            today=lambda: date(2025, 1, 10),
        )
    return factory


@pytest.mark.asyncio
class TestCheckCycle:
    async def test_first_change_notifies_everyone(self, make_cycle, source, db, snapshots, subscribers):
        subscribers.subscribe(1)
        subscribers.subscribe(2)
        sender = FakeSender()

        result = await make_cycle(source, sender).run()

        assert result.error is None
        assert result.fetched == 3
        assert result.current == 2
        assert result.changed is True
        assert result.tally.success_count == 2
        assert [chat_id for chat_id, _ in sender.sent] == [1, 2]
        assert "Найдено: 2" in sender.sent[0][1]

        assert snapshots.count() == 1
        assert db.get_setting("last_notified_hash") == snapshots.latest().result_hash
        assert db.get_int_setting("last_check_count") == 2
        assert db.get_setting("last_check_time") is not None
        assert db.outage_stats()["total"] == 2
        assert result.report_path.endswith(".md")
        assert subscribers.get(1).last_notified is not None

    async def test_same_data_twice_is_quiet(self, make_cycle, source, snapshots, subscribers):
        subscribers.subscribe(1)
        sender = FakeSender()
        cycle = make_cycle(source, sender)

        await cycle.run()
        result = await cycle.run()

        assert result.changed is False
        assert result.tally is None
        assert len(sender.sent) == 1
        assert snapshots.count() == 1

    async def test_reordered_data_is_quiet(self, make_cycle, source, subscribers):
        subscribers.subscribe(1)
        sender = FakeSender()
        cycle = make_cycle(source, sender)
        await cycle.run()

        source.records = [source.records[2], source.records[0]]
        result = await cycle.run()
        assert result.changed is False
        assert len(sender.sent) == 1

    async def test_new_record_notifies_again(self, make_cycle, source, subscribers):
        subscribers.subscribe(1)
        sender = FakeSender()
        cycle = make_cycle(source, sender)
        await cycle.run()

        source.records.append(make_record(date_from="15.01.2025 08:00"))
        result = await cycle.run()
        assert result.changed is True
        assert len(sender.sent) == 2

    async def test_cleared_list_recorded_without_broadcast(self, make_cycle, source, snapshots, subscribers):
        subscribers.subscribe(1)
        sender = FakeSender()
        cycle = make_cycle(source, sender)
        await cycle.run()

        source.records = []
        result = await cycle.run()
        assert result.changed is True
        assert result.tally is None
        assert snapshots.count() == 2
        assert len(sender.sent) == 1

        result = await cycle.run()
        assert result.changed is False

    async def test_past_outages_filtered(self, make_cycle, snapshots):
        source = FakeSource([make_record(date_from="01.01.2025 08:00")])
        result = await make_cycle(source).run()
        assert result.current == 0
        assert result.changed is False
        assert snapshots.count() == 0

    async def test_past_outages_kept_without_filter(self, make_cycle):
        source = FakeSource([make_record(date_from="01.01.2025 08:00")])
        result = await make_cycle(source, only_upcoming=False).run()
        assert result.current == 1
        assert result.changed is True

    async def test_no_subscribers(self, make_cycle, source, snapshots):
        result = await make_cycle(source).run()
        assert result.changed is True
        assert result.tally.total == 0
        assert snapshots.count() == 1

    async def test_source_error_is_transient(self, make_cycle, source, snapshots, db):
        source.error = SourceError("timeout")
        result = await make_cycle(source).run()
        assert result.error == "timeout"
        assert result.changed is False
        assert snapshots.count() == 0
        assert db.get_setting("last_check_time") is None

    async def test_unexpected_error_does_not_escape(self, make_cycle, source, alerts):
        source.error = RuntimeError("boom")
        cycle = make_cycle(source)
        for _ in range(FETCH_FAIL_THRESHOLD):
            result = await cycle.run()
        assert result.error == "boom"
        assert alerts == []

    async def test_repeated_failures_alert_once_then_recover(self, make_cycle, source, alerts):
        source.error = SourceError("timeout")
        cycle = make_cycle(source)
        for _ in range(FETCH_FAIL_THRESHOLD + 2):
            await cycle.run()
        assert len(alerts) == 1
        assert str(FETCH_FAIL_THRESHOLD) in alerts[0]

        source.error = None
        await cycle.run()
        assert len(alerts) == 2
        assert "восстановлена" in alerts[1]

    async def test_observe_does_not_touch_state(self, make_cycle, source, snapshots, db):
        fetched, current = await make_cycle(source).observe()
        assert fetched == 3
        assert len(current) == 2
        assert snapshots.count() == 0
        assert db.get_setting("last_check_time") is None
