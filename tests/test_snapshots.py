"""Tests for the check history store."""

import sqlite3
from datetime import datetime, timedelta

from outage_monitor.detection.change import hash_records
from outage_monitor.store.snapshots import HISTORY_LIMIT, SnapshotStore

from conftest import make_record


class TestSnapshotStore:
    def test_latest_empty(self, snapshots):
        assert snapshots.latest() is None
        assert snapshots.count() == 0

    def test_record_and_latest(self, snapshots):
        records = [make_record(), make_record(place="х.Чалтырь")]
        saved = snapshots.record(records, checked_at=datetime(2025, 1, 10, 12, 0))

        latest = snapshots.latest()
        assert latest.id == saved.id
        assert latest.result_count == 2
        assert latest.result_hash == hash_records(records)
        assert latest.records == records
        assert latest.checked_at == datetime(2025, 1, 10, 12, 0)

    def test_latest_is_newest(self, snapshots):
        start = datetime(2025, 1, 10, 12, 0)
        snapshots.record([make_record(place="old")], checked_at=start)
        snapshots.record([make_record(place="new")], checked_at=start + timedelta(hours=1))
        assert snapshots.latest().records[0].place == "new"

    def test_retention_default(self, snapshots):
        assert snapshots.limit == HISTORY_LIMIT == 100

    def test_retention_keeps_newest(self, db):
        store = SnapshotStore(db, limit=5)
        start = datetime(2025, 1, 1)
        for i in range(8):
            store.record([make_record(addresses=str(i))], checked_at=start + timedelta(hours=i))

        assert store.count() == 5
        history = store.history(limit=10)
        assert [s.checked_at for s in history] == [start + timedelta(hours=i) for i in range(7, 2, -1)]
        assert store.latest().records[0].addresses == "7"

    def test_history_omits_payload(self, snapshots):
        snapshots.record([make_record()])
        assert snapshots.history()[0].records == []

    def test_empty_snapshot(self, snapshots):
        snapshots.record([])
        latest = snapshots.latest()
        assert latest.result_count == 0
        assert latest.records == []

    def test_prune_failure_keeps_new_snapshot(self, snapshots, monkeypatch):
        def locked():
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(snapshots, "prune", locked)
        saved = snapshots.record([make_record()])

        assert saved.id is not None
        assert snapshots.latest().id == saved.id
        assert snapshots.count() == 1
