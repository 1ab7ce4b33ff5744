from datetime import datetime, timedelta

import pytest

from outage_monitor.database import Database
from outage_monitor.models import OutageRecord
from outage_monitor.store.snapshots import SnapshotStore
from outage_monitor.store.subscribers import SubscriberStore


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, start: datetime = datetime(2025, 1, 10, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeSender:
    """Records deliveries; chat ids in `fail` raise, ids in `refuse` return False"""

    def __init__(self, fail=(), refuse=()):
        self.fail = set(fail)
        self.refuse = set(refuse)
        self.sent = []

    async def __call__(self, chat_id: int, text: str):
        if chat_id in self.fail:
            raise RuntimeError(f"chat {chat_id} unreachable")
        if chat_id in self.refuse:
            return False
        self.sent.append((chat_id, text))
        return True


class FakeSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


def make_record(place="х.Ленинаван", date_from="10.01.2025 08:00", date_to="10.01.2025 17:00",
                addresses="ул. Ленина 1-10", district="Мясниковский", energy="") -> OutageRecord:
    return OutageRecord(
        district=district,
        place=place,
        addresses=addresses,
        date_from=date_from,
        date_to=date_to,
        energy=energy,
    )


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "data.db")


@pytest.fixture
def subscribers(db):
    return SubscriberStore(db)


@pytest.fixture
def snapshots(db):
    return SnapshotStore(db)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def fake_sleep():
    return FakeSleep()
