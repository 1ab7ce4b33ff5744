import logging
from datetime import date, timedelta
from typing import Callable, List, Optional, Sequence
from urllib.parse import quote

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from ..config import SourceConfig
from ..errors import SourceError
from ..models import OutageRecord
from .base import BaseSource

logger = logging.getLogger(__name__)

# "Показать" in windows-1251
FILTER_SET = "%CF%EE%EA%E0%E7%E0%F2%FC"

# 提取每行所有单元格文本
ROWS_SCRIPT = """
rows => rows.map(row => Array.from(row.querySelectorAll('td')).map(td => (td.textContent || '').trim()))
"""


def format_date(day: date) -> str:
    return day.strftime("%d.%m.%Y")


def encode_cp1251(text: str) -> str:
    """Percent-encode text as windows-1251, the encoding the search form expects"""
    return quote(text, safe=".", encoding="cp1251", errors="replace")


def build_search_url(config: SourceConfig, date_from: date, date_to: date) -> str:
    params = [
        f"state={config.state}",
        f"district={encode_cp1251(config.district)}",
        f"places={encode_cp1251(config.places)}",
        "street=",
        f"dateFrom={format_date(date_from)}",
        f"dateTo={format_date(date_to)}",
        f"filter_set={FILTER_SET}",
    ]
    return f"{config.base_url}?{'&'.join(params)}"


def _fold(text: str) -> str:
    return text.lower().replace("ё", "е")


def row_matches_place(cells: Sequence[str], place: str) -> bool:
    needle = _fold(place)
    return any(needle in _fold(cell) for cell in cells)


def parse_row(cells: Sequence[str]) -> OutageRecord:
    """Map table cells to a record

    Columns: district, place, addresses, then start, end and energy each
    split over two cells.
    """
    def cell(i: int) -> str:
        return cells[i].strip() if i < len(cells) and cells[i] else ""

    def joined(i: int) -> str:
        return f"{cell(i)} {cell(i + 1)}".strip()

    return OutageRecord(
        district=cell(0),
        place=cell(1),
        addresses=cell(2),
        date_from=joined(3),
        date_to=joined(5),
        energy=joined(7),
    )


def extract_records(rows: Sequence[Sequence[str]], place: str) -> List[OutageRecord]:
    records = []
    for cells in rows:
        if not cells:
            continue
        if row_matches_place(cells, place):
            records.append(parse_row(cells))
    return records


class RossetiSource(BaseSource):
    """Outage table scraped from the grid operator's search page"""

    def __init__(self, config: SourceConfig, today: Optional[Callable[[], date]] = None):
        self.config = config
        self._today = today or date.today

    def get_source_name(self) -> str:
        return f"Rosseti ({self.config.my_place})"

    def search_url(self) -> str:
        today = self._today()
        return build_search_url(self.config, today - timedelta(days=self.config.lookback_days), today)

    def _load_rows(self, url: str) -> List[List[str]]:
        with sync_playwright() as p:
            browser = p.chromium.launch(headless=self.config.headless)
            try:
                page = browser.new_page()
                page.goto(url, wait_until="domcontentloaded", timeout=self.config.page_timeout * 1000)
                page.wait_for_selector("table", timeout=self.config.table_timeout * 1000)
                return page.eval_on_selector_all("table tr", ROWS_SCRIPT)
            finally:
                browser.close()

    def fetch(self) -> List[OutageRecord]:
        url = self.search_url()
        logger.info(f"🌐 打开页面: {url}")
        try:
            rows = self._load_rows(url)
        except PlaywrightError as e:
            raise SourceError(f"page load failed: {e}") from e

        records = extract_records(rows, self.config.my_place)
        logger.info(f"📋 表格共 {len(rows)} 行，匹配 {self.config.my_place}: {len(records)} 条")
        return records
