"""Tests for application startup wiring."""

import pytest

from outage_monitor.app import STARTUP_CHECK_JOB_ID, Application
from outage_monitor.config import AppConfig, ConfigManager
from outage_monitor.database import Database
from outage_monitor.scheduler import CHECK_JOB_ID


def _make_app(tmp_path, check_on_startup):
    config = AppConfig(bot_token="123:abc", check_on_startup=check_on_startup)
    app = Application(config, Database(tmp_path / "data.db"), ConfigManager(tmp_path))
    runs = []

    async def fake_run():
        runs.append(True)

    app.cycle.run = fake_run
    return app, runs


@pytest.mark.asyncio
class TestStartChecks:
    async def test_startup_check_is_scheduled_not_awaited(self, tmp_path):
        app, runs = _make_app(tmp_path, check_on_startup=True)
        try:
            app.start_checks()
            assert app.scheduler.get_job(STARTUP_CHECK_JOB_ID) is not None
            assert runs == []
            assert app.checker.is_running
        finally:
            app.checker.shutdown()

    async def test_no_startup_check_when_disabled(self, tmp_path):
        app, _ = _make_app(tmp_path, check_on_startup=False)
        try:
            app.start_checks()
            assert app.scheduler.get_job(STARTUP_CHECK_JOB_ID) is None
            assert app.scheduler.get_job(CHECK_JOB_ID) is not None
        finally:
            app.checker.shutdown()
