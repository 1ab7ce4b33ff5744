import json
import logging
import sqlite3
from datetime import datetime
from typing import List, Optional

from ..database import Database
from ..detection.change import hash_records
from ..models import OutageRecord, Snapshot

logger = logging.getLogger(__name__)

# 保留最近 100 条检查记录
HISTORY_LIMIT = 100


def _row_to_snapshot(row: sqlite3.Row, with_records: bool = True) -> Snapshot:
    records = []
    if with_records:
        records = [OutageRecord.from_dict(item) for item in json.loads(row["results_data"])]
    return Snapshot(
        id=row["id"],
        checked_at=datetime.fromisoformat(row["check_time"]),
        result_count=row["results_count"],
        result_hash=row["results_hash"],
        records=records,
    )


class SnapshotStore:
    """Append-only, retention-bounded check history"""

    def __init__(self, db: Database, limit: int = HISTORY_LIMIT):
        self.db = db
        self.limit = limit

    def record(self, records: List[OutageRecord], checked_at: Optional[datetime] = None) -> Snapshot:
        """Persist a snapshot, then prune old history"""
        checked_at = checked_at or datetime.now()
        result_hash = hash_records(records)
        payload = json.dumps([r.to_dict() for r in records], ensure_ascii=False)

        with self.db.get_conn() as conn:
            cursor = conn.execute(
                """
                INSERT INTO check_history (check_time, results_count, results_hash, results_data)
                VALUES (?, ?, ?, ?)
                """,
                (checked_at.isoformat(), len(records), result_hash, payload)
            )
            snapshot_id = cursor.lastrowid

        try:
            self.prune()
        except sqlite3.Error as e:
            logger.warning(f"清理检查历史失败: {e}")

        return Snapshot(
            id=snapshot_id,
            checked_at=checked_at,
            result_count=len(records),
            result_hash=result_hash,
            records=list(records),
        )

    def prune(self) -> int:
        """Delete everything but the newest `limit` rows"""
        with self.db.get_conn() as conn:
            cursor = conn.execute(
                """
                DELETE FROM check_history WHERE id NOT IN (
                    SELECT id FROM check_history ORDER BY check_time DESC, id DESC LIMIT ?
                )
                """,
                (self.limit,)
            )
        if cursor.rowcount:
            logger.debug(f"清理检查历史 {cursor.rowcount} 条")
        return cursor.rowcount

    def latest(self) -> Optional[Snapshot]:
        """Most recent snapshot or None"""
        with self.db.get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM check_history ORDER BY check_time DESC, id DESC LIMIT 1"
            ).fetchone()
        return _row_to_snapshot(row) if row else None

    def history(self, limit: int = 10) -> List[Snapshot]:
        """Recent snapshots without payloads, newest first"""
        with self.db.get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM check_history ORDER BY check_time DESC, id DESC LIMIT ?",
                (limit,)
            ).fetchall()
        return [_row_to_snapshot(row, with_records=False) for row in rows]

    def count(self) -> int:
        with self.db.get_conn() as conn:
            return conn.execute("SELECT COUNT(*) FROM check_history").fetchone()[0]
