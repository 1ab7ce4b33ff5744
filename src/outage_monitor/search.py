from typing import List

from .detection.dedup import extract_date
from .errors import SearchQueryError
from .models import SearchFilters

DEFAULT_LIMIT = 10
MAX_LIMIT = 50

_KEYS = {
    "район": "district",
    "district": "district",
    "место": "place",
    "place": "place",
    "дата": "date",
    "date": "date",
    "лимит": "limit",
    "limit": "limit",
}


def parse_search_query(text: str) -> SearchFilters:
    """Parse `key:value` tokens into SearchFilters

    Bare words are joined into the district filter. Unknown keys and bad
    values raise SearchQueryError.
    """
    filters = SearchFilters(limit=DEFAULT_LIMIT)
    bare: List[str] = []

    for token in (text or "").split():
        if ":" not in token:
            bare.append(token)
            continue

        key, _, value = token.partition(":")
        field = _KEYS.get(key.lower())
        if field is None:
            raise SearchQueryError(f"unknown filter '{key}'")
        if not value:
            raise SearchQueryError(f"empty value for '{key}'")

        if field == "district":
            filters.district = value
        elif field == "place":
            filters.place = value
        elif field == "date":
            day = extract_date(value)
            if day is None:
                raise SearchQueryError(f"bad date '{value}'")
            filters.date_from = day
        else:
            try:
                limit = int(value)
            except ValueError:
                raise SearchQueryError(f"bad limit '{value}'") from None
            if limit < 1:
                raise SearchQueryError("limit must be positive")
            filters.limit = min(limit, MAX_LIMIT)

    if bare:
        joined = " ".join(bare)
        filters.district = f"{filters.district} {joined}" if filters.district else joined

    return filters
