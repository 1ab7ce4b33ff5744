import json
import logging
import re
import unicodedata
from datetime import date
from typing import Iterable, List, Optional

from ..models import OutageRecord

logger = logging.getLogger(__name__)

# (pattern, group order as year/month/day)
_DATE_PATTERNS = (
    (re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{4})"), (3, 2, 1)),
    (re.compile(r"(\d{4})-(\d{2})-(\d{2})"), (1, 2, 3)),
    (re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})"), (3, 2, 1)),
)


def extract_date(text: Optional[str]) -> Optional[date]:
    """Find the first DD.MM.YYYY, YYYY-MM-DD or DD/MM/YYYY date in text"""
    if not text or not text.strip() or text.strip() == "-":
        return None
    for pattern, (y, m, d) in _DATE_PATTERNS:
        match = pattern.search(text)
        if match:
            try:
                return date(int(match.group(y)), int(match.group(m)), int(match.group(d)))
            except ValueError:
                # 31.02.2025 之类的非法日期
                return None
    return None


def _strip_marks(text: str) -> str:
    chars = []
    for ch in text:
        if ch == "й":
            chars.append(ch)
            continue
        decomposed = unicodedata.normalize("NFKD", ch)
        chars.append("".join(c for c in decomposed if not unicodedata.combining(c)))
    return "".join(chars)


def normalize_place(place: Optional[str]) -> str:
    """Lower-case, diacritic-insensitive place name

    "ё" folds to "е", runs of whitespace become "_", anything that is not a
    word character is dropped.
    """
    if not place:
        return ""
    text = unicodedata.normalize("NFC", place).lower().replace("ё", "е")
    text = _strip_marks(text)
    text = re.sub(r"\s+", "_", text.strip())
    return re.sub(r"[^\w]", "", text)


def content_key(record: OutageRecord) -> str:
    """Dedup key: start date plus normalized place"""
    day = extract_date(record.date_from)
    if day is None:
        payload = json.dumps(record.to_dict(), ensure_ascii=False, sort_keys=True)
        return f"no_date:{payload}"
    return f"{day.isoformat()}|{normalize_place(record.place)}"


def deduplicate(records: Iterable[OutageRecord]) -> List[OutageRecord]:
    """Keep the first record for every content key, in input order"""
    seen = set()
    unique: List[OutageRecord] = []
    removed = 0
    for record in records:
        key = content_key(record)
        if key in seen:
            removed += 1
            logger.debug(f"去重: 跳过重复记录 {key}")
            continue
        if key.startswith("no_date:"):
            logger.warning(f"去重: 无法解析日期 \"{record.date_from}\"，保留该记录")
        seen.add(key)
        unique.append(record)

    if removed:
        logger.info(f"🧹 去重: 移除 {removed} 条重复记录，剩余 {len(unique)} 条")
    return unique


def filter_upcoming(records: Iterable[OutageRecord], today: Optional[date] = None) -> List[OutageRecord]:
    """Drop records that started before today; undated records are kept"""
    today = today or date.today()
    result = []
    for record in records:
        day = extract_date(record.date_from)
        if day is None or day >= today:
            result.append(record)
    return result
