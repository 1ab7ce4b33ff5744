"""Database migration management"""
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# 当前数据库版本
CURRENT_VERSION = 3

# 迁移脚本
MIGRATIONS = {
    # 版本 1: 初始版本（subscribers / check_history / settings）
    1: [],

    # 版本 2: 订阅者软删除与最后通知时间
    2: [
        "ALTER TABLE subscribers ADD COLUMN is_active INTEGER NOT NULL DEFAULT 1",
        "ALTER TABLE subscribers ADD COLUMN last_notified TEXT",
        "ALTER TABLE subscribers ADD COLUMN updated_at TEXT NOT NULL DEFAULT ''",
        "UPDATE subscribers SET updated_at = subscribed_at WHERE updated_at = ''",
        "CREATE INDEX IF NOT EXISTS idx_subscribers_active ON subscribers(is_active, subscribed_at)",
    ],

    # 版本 3: 停电记录审计表
    3: [
        "CREATE TABLE IF NOT EXISTS power_outages ("
        " id INTEGER PRIMARY KEY AUTOINCREMENT, district TEXT, place TEXT, addresses TEXT,"
        " date_from TEXT, date_to TEXT, energy TEXT, report_file TEXT,"
        " content_hash TEXT NOT NULL UNIQUE, created_at TEXT NOT NULL)",
        "CREATE INDEX IF NOT EXISTS idx_power_outages_district ON power_outages(district)",
        "CREATE INDEX IF NOT EXISTS idx_power_outages_created ON power_outages(created_at)",
    ],
}


def get_schema_version(db_path: Path) -> int:
    """获取当前数据库版本"""
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if not cursor.fetchone():
            # 表不存在，根据已有结构推断版本
            tables = {
                row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
            if "power_outages" in tables:
                return 3
            columns = [row[1] for row in conn.execute("PRAGMA table_info(subscribers)")]
            if "is_active" in columns:
                return 2
            return 1

        cursor = conn.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1")
        row = cursor.fetchone()
        return row[0] if row else 1
    finally:
        conn.close()


def set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """设置数据库版本"""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
    """)
    conn.execute(
        "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, ?)",
        (version, datetime.now().isoformat())
    )


def migrate(db_path: Path, target_version: Optional[int] = None) -> Tuple[int, int]:
    """执行数据库迁移

    Args:
        db_path: 数据库文件路径
        target_version: 目标版本，默认为最新版本

    Returns:
        (旧版本, 新版本)
    """
    if target_version is None:
        target_version = CURRENT_VERSION

    current = get_schema_version(db_path)

    if current >= target_version:
        logger.info(f"数据库已是最新版本 (v{current})")
        return current, current

    conn = sqlite3.connect(db_path)
    try:
        for version in range(current + 1, target_version + 1):
            if version not in MIGRATIONS:
                continue

            logger.info(f"执行迁移 v{version - 1} → v{version}...")

            for sql in MIGRATIONS[version]:
                try:
                    conn.execute(sql)
                    logger.debug(f"  执行: {sql[:50]}...")
                except sqlite3.OperationalError as e:
                    # 忽略 "duplicate column" 错误
                    if "duplicate column" in str(e).lower():
                        logger.debug(f"  跳过（已存在）: {sql[:50]}...")
                    else:
                        raise

            set_schema_version(conn, version)
            conn.commit()
            logger.info(f"  ✅ 迁移到 v{version} 完成")

        return current, target_version
    except Exception as e:
        conn.rollback()
        logger.error(f"迁移失败: {e}")
        raise
    finally:
        conn.close()


def check_migration_needed(db_path: Path) -> Tuple[bool, int, int]:
    """检查是否需要迁移

    Returns:
        (是否需要迁移, 当前版本, 最新版本)
    """
    if not db_path.exists():
        return False, 0, CURRENT_VERSION

    current = get_schema_version(db_path)
    return current < CURRENT_VERSION, current, CURRENT_VERSION
