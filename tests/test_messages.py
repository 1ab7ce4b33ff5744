from datetime import datetime

import pytest

from outage_monitor.messages import format_dt, hours_text, interval_notice, new_subscriber_notice, tally_text
from outage_monitor.models import BulkResult, Subscriber


class TestMessages:
    @pytest.mark.parametrize("n,expected", [
        (1, "1 час"),
        (3, "3 часа"),
        (6, "6 часов"),
        (11, "11 часов"),
        (21, "21 час"),
        (22, "22 часа"),
    ])
    def test_hours_text(self, n, expected):
        assert hours_text(n) == expected

    def test_interval_notice(self):
        text = interval_notice(6, 1)
        assert "Было: каждые 6 часов" in text
        assert "Стало: каждые 1 час" in text

    def test_new_subscriber_escapes_name(self):
        sub = Subscriber(chat_id=7, username=None, first_name="<Ann>", subscribed_at=datetime(2025, 1, 10, 9, 30))
        text = new_subscriber_notice(sub, 3, reactivated=False)
        assert "&lt;Ann&gt;" in text
        assert "10.01.2025 09:30" in text
        assert "подписчиков: 3" in text

    def test_tally_text(self):
        text = tally_text("done", BulkResult(total=4, success_count=3, failure_count=1, expected_count=5))
        assert "Эффективность: 75%" in text
        assert "Ожидалось: 5" in text

    def test_format_dt_none(self):
        assert format_dt(None) == "—"
