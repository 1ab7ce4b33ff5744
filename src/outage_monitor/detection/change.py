import hashlib
import logging
from typing import List, Sequence

from ..models import OutageRecord

logger = logging.getLogger(__name__)

EMPTY_HASH = "empty"
HASH_LENGTH = 16


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def hash_records(records: Sequence[OutageRecord]) -> str:
    """Order-independent digest over place, start, end and addresses"""
    if not records:
        return EMPTY_HASH
    lines = sorted(
        f"{r.place}|{r.date_from}|{r.date_to}|{r.addresses}" for r in records
    )
    return _digest("||".join(lines))


def record_digest(record: OutageRecord) -> str:
    """Digest of a single record, used as the audit table key"""
    return _digest("|".join((
        record.district, record.place, record.addresses,
        record.date_from, record.date_to, record.energy,
    )))


class ChangeDetector:
    """Compares an observation with the latest stored snapshot"""

    def __init__(self, snapshots):
        self.snapshots = snapshots

    def has_changed(self, current: List[OutageRecord]) -> bool:
        """True when current differs from the latest snapshot

        No snapshot yet counts as changed only if current is non-empty.
        Any failure while reading the snapshot reports a change, so a broken
        store can cause a duplicate notification but never a missed one.
        """
        try:
            current_hash = hash_records(current)
            latest = self.snapshots.latest()
            if latest is None:
                changed = len(current) > 0
                logger.info(f"🔎 无历史快照，当前 {len(current)} 条，changed={changed}")
                return changed
            changed = latest.result_hash != current_hash
            logger.info(f"🔎 快照对比: {latest.result_hash} → {current_hash}，changed={changed}")
            return changed
        except Exception as e:
            logger.error(f"❌ 变更检测失败，按有变化处理: {e}")
            return True
