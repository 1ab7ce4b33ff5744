from .change import ChangeDetector, hash_records, record_digest
from .dedup import content_key, deduplicate, extract_date, filter_upcoming, normalize_place

__all__ = [
    "ChangeDetector",
    "content_key",
    "deduplicate",
    "extract_date",
    "filter_upcoming",
    "hash_records",
    "normalize_place",
    "record_digest",
]
