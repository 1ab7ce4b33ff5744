import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Generator, List, Optional

from .detection.change import record_digest
from .models import OutageRecord, SearchFilters

REQUIRED_TABLES = ("subscribers", "check_history", "settings", "power_outages")


def _py_lower(value: Optional[str]) -> Optional[str]:
    # SQLite LOWER() only folds ASCII
    return value.lower() if value else value


def _contains(value: str) -> str:
    """LIKE pattern matching value as a literal substring"""
    escaped = value.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class Database:
    """SQLite database repository"""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._init_db()

    @contextmanager
    def get_conn(self) -> Generator[sqlite3.Connection, None, None]:
        """Get database connection context manager"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.create_function("PYLOWER", 1, _py_lower, deterministic=True)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database tables"""
        with self.get_conn() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS subscribers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    chat_id INTEGER NOT NULL UNIQUE,
                    username TEXT,
                    first_name TEXT,
                    subscribed_at TEXT NOT NULL,
                    last_notified TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS check_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    check_time TEXT NOT NULL,
                    results_count INTEGER NOT NULL,
                    results_hash TEXT NOT NULL,
                    results_data TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS power_outages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    district TEXT,
                    place TEXT,
                    addresses TEXT,
                    date_from TEXT,
                    date_to TEXT,
                    energy TEXT,
                    report_file TEXT,
                    content_hash TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_subscribers_active
                    ON subscribers(is_active, subscribed_at);
                CREATE INDEX IF NOT EXISTS idx_check_history_time
                    ON check_history(check_time);
                CREATE INDEX IF NOT EXISTS idx_power_outages_district
                    ON power_outages(district);
                CREATE INDEX IF NOT EXISTS idx_power_outages_created
                    ON power_outages(created_at);
            """)

    # Settings operations
    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get a setting value by key"""
        with self.get_conn() as conn:
            row = conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else default

    def set_setting(self, key: str, value) -> None:
        """Insert or update a setting"""
        now = datetime.now().isoformat()
        with self.get_conn() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, str(value), now)
            )

    def get_int_setting(self, key: str) -> Optional[int]:
        value = self.get_setting(key)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    # Outage audit operations
    def save_outages(self, records: List[OutageRecord], report_file: Optional[str] = None) -> int:
        """Append records to the audit table, returns number of new rows"""
        now = datetime.now().isoformat()
        saved = 0
        with self.get_conn() as conn:
            for record in records:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO power_outages
                        (district, place, addresses, date_from, date_to, energy, report_file, content_hash, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.district, record.place, record.addresses,
                        record.date_from, record.date_to, record.energy,
                        report_file, record_digest(record), now
                    )
                )
                saved += cursor.rowcount
        return saved

    def search_outages(self, filters: SearchFilters) -> List[OutageRecord]:
        """Search the audit table"""
        clauses = []
        params: list = []
        if filters.district:
            clauses.append("PYLOWER(district) LIKE ? ESCAPE '\\'")
            params.append(_contains(filters.district))
        if filters.place:
            clauses.append("PYLOWER(place) LIKE ? ESCAPE '\\'")
            params.append(_contains(filters.place))
        if filters.date_from:
            clauses.append("(date_from LIKE ? OR date_from LIKE ?)")
            params.append(f"%{filters.date_from.strftime('%d.%m.%Y')}%")
            params.append(f"%{filters.date_from.isoformat()}%")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(filters.limit)

        with self.get_conn() as conn:
            rows = conn.execute(
                f"""
                SELECT district, place, addresses, date_from, date_to, energy
                FROM power_outages {where}
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                params
            ).fetchall()
        return [OutageRecord.from_dict(dict(row)) for row in rows]

    def outage_stats(self, top: int = 5) -> dict:
        """Get outage audit statistics"""
        with self.get_conn() as conn:
            total = conn.execute("SELECT COUNT(*) FROM power_outages").fetchone()[0]
            places = conn.execute("SELECT COUNT(DISTINCT place) FROM power_outages").fetchone()[0]
            reports = conn.execute(
                "SELECT COUNT(DISTINCT report_file) FROM power_outages WHERE report_file IS NOT NULL"
            ).fetchone()[0]
            span = conn.execute(
                "SELECT MIN(created_at) AS first_seen, MAX(created_at) AS last_seen FROM power_outages"
            ).fetchone()
            rows = conn.execute(
                """
                SELECT COALESCE(NULLIF(district, ''), '-') AS district, COUNT(*) AS cnt
                FROM power_outages
                GROUP BY 1
                ORDER BY cnt DESC, district ASC
                LIMIT ?
                """,
                (top,)
            ).fetchall()
        return {
            "total": total,
            "place_count": places,
            "report_count": reports,
            "first_seen": span["first_seen"],
            "last_seen": span["last_seen"],
            "top_districts": [(row["district"], row["cnt"]) for row in rows],
        }
