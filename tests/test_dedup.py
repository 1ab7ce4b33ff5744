"""Tests for record canonicalization and deduplication."""

from datetime import date

from outage_monitor.detection.dedup import (
    content_key,
    deduplicate,
    extract_date,
    filter_upcoming,
    normalize_place,
)
from outage_monitor.models import OutageRecord

from conftest import make_record


class TestExtractDate:
    def test_dotted(self):
        assert extract_date("10.01.2025 08:00") == date(2025, 1, 10)

    def test_iso(self):
        assert extract_date("2025-01-10T08:00") == date(2025, 1, 10)

    def test_slashed(self):
        assert extract_date("10/01/2025") == date(2025, 1, 10)

    def test_single_digit_day_and_month(self):
        assert extract_date("5.1.2025") == date(2025, 1, 5)

    def test_empty_and_dash(self):
        assert extract_date("") is None
        assert extract_date("   ") is None
        assert extract_date("-") is None
        assert extract_date(None) is None

    def test_invalid_calendar_date(self):
        assert extract_date("31.02.2025") is None

    def test_no_date(self):
        assert extract_date("скоро") is None


class TestNormalizePlace:
    def test_case_and_whitespace(self):
        assert normalize_place("  Ленинаван ") == normalize_place("ленинаван")

    def test_yo_folds_to_ye(self):
        assert normalize_place("Хутор Ёлкин") == normalize_place("хутор елкин")

    def test_short_i_is_kept(self):
        assert "й" in normalize_place("Мясниковский")

    def test_spaces_become_underscore(self):
        assert normalize_place("Большие  Салы") == "большие_салы"

    def test_punctuation_dropped(self):
        assert normalize_place("х.Ленинаван") == "хленинаван"

    def test_empty(self):
        assert normalize_place("") == ""
        assert normalize_place(None) == ""


class TestContentKey:
    def test_dated_key(self):
        record = make_record(place="Ленинаван", date_from="10.01.2025 08:00")
        assert content_key(record) == "2025-01-10|ленинаван"

    def test_undated_key_uses_full_record(self):
        a = make_record(date_from="по согласованию", addresses="ул. 1")
        b = make_record(date_from="по согласованию", addresses="ул. 2")
        assert content_key(a).startswith("no_date:")
        assert content_key(a) != content_key(b)


class TestDeduplicate:
    def test_same_day_same_place_collapses(self):
        records = [
            OutageRecord(place="Ленинаван", date_from="10.01.2025 08:00"),
            OutageRecord(place="ленинаван ", date_from="10.01.2025"),
        ]
        result = deduplicate(records)
        assert len(result) == 1
        assert result[0] is records[0]

    def test_keeps_first_in_order(self):
        records = [
            make_record(place="A", date_from="11.01.2025"),
            make_record(place="B", date_from="10.01.2025"),
            make_record(place="a", date_from="2025-01-11"),
        ]
        result = deduplicate(records)
        assert [r.place for r in result] == ["A", "B"]

    def test_different_days_kept(self):
        records = [
            make_record(date_from="10.01.2025 08:00"),
            make_record(date_from="11.01.2025 08:00"),
        ]
        assert len(deduplicate(records)) == 2

    def test_undated_records_only_collapse_when_identical(self):
        a = make_record(date_from="-", addresses="ул. 1")
        b = make_record(date_from="-", addresses="ул. 2")
        c = make_record(date_from="-", addresses="ул. 1")
        assert deduplicate([a, b, c]) == [a, b]

    def test_empty(self):
        assert deduplicate([]) == []

    def test_output_keys_are_distinct(self):
        records = [
            make_record(place=place, date_from=day)
            for place in ("Ленинаван", "ленинаван", "Чалтырь", "Ёлкино", "елкино")
            for day in ("10.01.2025", "2025-01-10", "11/01/2025", "-")
        ]
        result = deduplicate(records)
        keys = [content_key(r) for r in result]
        assert len(result) <= len(records)
        assert len(keys) == len(set(keys))


class TestFilterUpcoming:
    def test_drops_past_keeps_today_and_future(self):
        records = [
            make_record(date_from="09.01.2025 08:00"),
            make_record(date_from="10.01.2025 08:00"),
            make_record(date_from="15.01.2025 08:00"),
        ]
        result = filter_upcoming(records, today=date(2025, 1, 10))
        assert [r.date_from for r in result] == ["10.01.2025 08:00", "15.01.2025 08:00"]

    def test_undated_kept(self):
        record = make_record(date_from="")
        assert filter_upcoming([record], today=date(2025, 1, 10)) == [record]
