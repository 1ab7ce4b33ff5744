"""Tests for the outage table source (no browser involved)."""

from datetime import date
from urllib.parse import unquote

import pytest
from playwright.sync_api import Error as PlaywrightError

from outage_monitor.config import SourceConfig
from outage_monitor.errors import SourceError
from outage_monitor.source.rosseti import (
    FILTER_SET,
    RossetiSource,
    build_search_url,
    encode_cp1251,
    extract_records,
    parse_row,
    row_matches_place,
)

ROW = [
    "Мясниковский", "х.Ленинаван", "ул. Ленина 1-10",
    "10.01.2025", "08:00", "10.01.2025", "17:00", "ТП-12", "Ф-3",
]


class TestSearchUrl:
    def test_cp1251_encoding(self):
        assert encode_cp1251("х.Ленинаван") == "%F5.%CB%E5%ED%E8%ED%E0%E2%E0%ED"
        assert unquote(encode_cp1251("Мясниковский"), encoding="cp1251") == "Мясниковский"

    def test_filter_set_is_show(self):
        assert unquote(FILTER_SET, encoding="cp1251") == "Показать"

    def test_build(self):
        url = build_search_url(SourceConfig(), date(2024, 12, 11), date(2025, 1, 10))
        assert url.startswith("https://dp.rosseti-yug.ru/res/?state=549&district=")
        assert "&street=&dateFrom=11.12.2024&dateTo=10.01.2025&" in url
        assert url.endswith(f"filter_set={FILTER_SET}")

    def test_lookback_window(self):
        source = RossetiSource(SourceConfig(lookback_days=30), today=lambda: date(2025, 1, 10))
        assert "dateFrom=11.12.2024&dateTo=10.01.2025" in source.search_url()


class TestRows:
    def test_parse_row(self):
        record = parse_row(ROW)
        assert record.district == "Мясниковский"
        assert record.place == "х.Ленинаван"
        assert record.addresses == "ул. Ленина 1-10"
        assert record.date_from == "10.01.2025 08:00"
        assert record.date_to == "10.01.2025 17:00"
        assert record.energy == "ТП-12 Ф-3"

    def test_parse_short_row(self):
        record = parse_row(["Мясниковский", "х.Ленинаван"])
        assert record.addresses == ""
        assert record.date_from == ""

    def test_match_ignores_case_and_yo(self):
        assert row_matches_place(["Х.ЛЕНИНАВАН"], "Ленинаван")
        assert row_matches_place(["с.Ёлкино"], "елкино")
        assert not row_matches_place(["с.Чалтырь"], "Ленинаван")

    def test_extract_skips_header_and_other_places(self):
        rows = [[], ROW, ["Мясниковский", "с.Чалтырь", "ул. 1"]]
        records = extract_records(rows, "Ленинаван")
        assert len(records) == 1
        assert records[0].place == "х.Ленинаван"


class TestFetch:
    def test_browser_error_becomes_source_error(self, monkeypatch):
        source = RossetiSource(SourceConfig())

        def fail(url):
            raise PlaywrightError("Timeout 60000ms exceeded")

        monkeypatch.setattr(source, "_load_rows", fail)
        with pytest.raises(SourceError):
            source.fetch()

    def test_fetch_filters_rows(self, monkeypatch):
        source = RossetiSource(SourceConfig())
        monkeypatch.setattr(source, "_load_rows", lambda url: [ROW, ["x", "с.Чалтырь"]])
        records = source.fetch()
        assert [r.place for r in records] == ["х.Ленинаван"]
