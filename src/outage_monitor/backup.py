import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .database import REQUIRED_TABLES

logger = logging.getLogger(__name__)


class BackupManager:
    """Daily copies of the SQLite database"""

    def __init__(self, db_path: Path, backup_dir: Path, keep: int = 7):
        self.db_path = Path(db_path)
        self.backup_dir = Path(backup_dir)
        self.keep = keep

    def create(self, now: Optional[datetime] = None) -> Path:
        """Copy the database, validate the copy, then drop old backups"""
        if not self.db_path.exists():
            raise FileNotFoundError(f"database not found: {self.db_path}")

        now = now or datetime.now()
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        path = self.backup_dir / f"backup_{now.strftime('%Y-%m-%d_%H-%M-%S')}.db"

        # sqlite backup API 保证拷贝一致
        src = sqlite3.connect(self.db_path)
        dst = sqlite3.connect(path)
        try:
            src.backup(dst)
        finally:
            dst.close()
            src.close()

        if not self.validate(path):
            path.unlink()
            raise RuntimeError(f"backup is not a valid database: {path.name}")

        logger.info(f"💾 数据库备份完成: {path.name} ({path.stat().st_size // 1024} KB)")
        self.cleanup()
        return path

    @staticmethod
    def validate(path: Path) -> bool:
        """Open read-only and check the required tables exist"""
        try:
            conn = sqlite3.connect(f"file:{path}?mode=ro", uri=True)
            try:
                names = {
                    row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
                }
            finally:
                conn.close()
        except sqlite3.Error:
            return False
        return all(table in names for table in REQUIRED_TABLES)

    def list_backups(self) -> List[Path]:
        """Backup files, newest first"""
        if not self.backup_dir.exists():
            return []
        return sorted(self.backup_dir.glob("backup_*.db"), key=lambda p: p.name, reverse=True)

    def cleanup(self) -> int:
        removed = 0
        for path in self.list_backups()[self.keep:]:
            path.unlink()
            removed += 1
        if removed:
            logger.info(f"🗑️ 已删除旧备份 {removed} 个")
        return removed

    async def auto_backup(self) -> None:
        """Scheduled job body, never raises"""
        try:
            self.create()
        except Exception as e:
            logger.error(f"❌ 自动备份失败: {e}")
