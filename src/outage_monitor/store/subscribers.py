import logging
import sqlite3
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from ..database import Database
from ..models import Subscriber, SubscribeResult

logger = logging.getLogger(__name__)


def _row_to_subscriber(row: sqlite3.Row) -> Subscriber:
    return Subscriber(
        chat_id=row["chat_id"],
        username=row["username"],
        first_name=row["first_name"],
        subscribed_at=datetime.fromisoformat(row["subscribed_at"]),
        last_notified=datetime.fromisoformat(row["last_notified"]) if row["last_notified"] else None,
        is_active=bool(row["is_active"]),
    )


class SubscriberStore:
    """Subscriber registry with soft delete

    Rows are never removed; unsubscribing clears is_active and a later
    subscribe reactivates the same row.
    """

    def __init__(self, db: Database):
        self.db = db

    def subscribe(self, chat_id: int, username: Optional[str] = None,
                  first_name: Optional[str] = None) -> SubscribeResult:
        """Create, reactivate or confirm a subscription in one transaction"""
        now = datetime.now().isoformat()
        with self.db.get_conn() as conn:
            # 写锁，避免并发请求产生重复的激活记录
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT is_active FROM subscribers WHERE chat_id = ?", (chat_id,)
            ).fetchone()

            if row is not None and row["is_active"]:
                conn.execute(
                    """
                    UPDATE subscribers
                    SET username = COALESCE(?, username), first_name = COALESCE(?, first_name), updated_at = ?
                    WHERE chat_id = ?
                    """,
                    (username, first_name, now, chat_id)
                )
                return SubscribeResult.ALREADY_ACTIVE

            # 重新订阅时刷新 subscribed_at
            conn.execute(
                """
                INSERT INTO subscribers (chat_id, username, first_name, subscribed_at, is_active, updated_at)
                VALUES (?, ?, ?, ?, 1, ?)
                ON CONFLICT(chat_id) DO UPDATE SET
                    username = excluded.username,
                    first_name = excluded.first_name,
                    subscribed_at = excluded.subscribed_at,
                    is_active = 1,
                    updated_at = excluded.updated_at
                """,
                (chat_id, username, first_name, now, now)
            )

        if row is None:
            logger.info(f"➕ 新订阅者 {chat_id} (@{username or '-'})")
            return SubscribeResult.CREATED
        logger.info(f"🔁 订阅者重新激活 {chat_id} (@{username or '-'})")
        return SubscribeResult.REACTIVATED

    def unsubscribe(self, chat_id: int) -> bool:
        """Soft delete, returns False if the subscriber was not active"""
        now = datetime.now().isoformat()
        with self.db.get_conn() as conn:
            cursor = conn.execute(
                "UPDATE subscribers SET is_active = 0, updated_at = ? WHERE chat_id = ? AND is_active = 1",
                (now, chat_id)
            )
        if cursor.rowcount > 0:
            logger.info(f"➖ 取消订阅 {chat_id}")
            return True
        return False

    def get(self, chat_id: int) -> Optional[Subscriber]:
        with self.db.get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM subscribers WHERE chat_id = ?", (chat_id,)
            ).fetchone()
        return _row_to_subscriber(row) if row else None

    def is_active(self, chat_id: int) -> bool:
        with self.db.get_conn() as conn:
            row = conn.execute(
                "SELECT 1 FROM subscribers WHERE chat_id = ? AND is_active = 1", (chat_id,)
            ).fetchone()
        return row is not None

    def list_active(self) -> List[Subscriber]:
        """Active subscribers, oldest first"""
        with self.db.get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM subscribers WHERE is_active = 1 ORDER BY subscribed_at ASC, id ASC"
            ).fetchall()
        return [_row_to_subscriber(row) for row in rows]

    def list_active_page(self, page: int = 1, page_size: int = 10) -> Tuple[List[Subscriber], int]:
        """Get active subscribers with pagination.

        Args:
            page: Page number (1-based)
            page_size: Number of subscribers per page

        Returns:
            Tuple of (subscribers list, total count)
        """
        offset = (max(page, 1) - 1) * page_size
        with self.db.get_conn() as conn:
            total = conn.execute(
                "SELECT COUNT(*) FROM subscribers WHERE is_active = 1"
            ).fetchone()[0]
            rows = conn.execute(
                """
                SELECT * FROM subscribers WHERE is_active = 1
                ORDER BY subscribed_at ASC, id ASC
                LIMIT ? OFFSET ?
                """,
                (page_size, offset)
            ).fetchall()
        return [_row_to_subscriber(row) for row in rows], total

    def mark_notified(self, chat_id: int) -> None:
        """Best effort, errors are logged and swallowed"""
        try:
            with self.db.get_conn() as conn:
                conn.execute(
                    "UPDATE subscribers SET last_notified = ? WHERE chat_id = ?",
                    (datetime.now().isoformat(), chat_id)
                )
        except sqlite3.Error as e:
            logger.warning(f"更新 last_notified 失败 {chat_id}: {e}")

    def stats(self, now: Optional[datetime] = None) -> dict:
        """Get subscriber statistics"""
        now = now or datetime.now()
        week_ago = (now - timedelta(days=7)).isoformat()
        with self.db.get_conn() as conn:
            total = conn.execute("SELECT COUNT(*) FROM subscribers").fetchone()[0]
            active = conn.execute(
                "SELECT COUNT(*) FROM subscribers WHERE is_active = 1"
            ).fetchone()[0]
            new_week = conn.execute(
                "SELECT COUNT(*) FROM subscribers WHERE is_active = 1 AND subscribed_at >= ?",
                (week_ago,)
            ).fetchone()[0]
            notified = conn.execute(
                "SELECT COUNT(*) FROM subscribers WHERE last_notified IS NOT NULL"
            ).fetchone()[0]
        return {
            "total": total,
            "active": active,
            "inactive": total - active,
            "new_this_week": new_week,
            "ever_notified": notified,
        }
