"""Tests for the periodic check scheduler."""

from datetime import datetime, timedelta

import pytest

from outage_monitor.scheduler import CheckScheduler, validate_interval


async def _noop():
    pass


class TestValidateInterval:
    @pytest.mark.parametrize("hours", [1, 6, 24])
    def test_valid(self, hours):
        assert validate_interval(hours) == hours

    @pytest.mark.parametrize("hours", [0, 25, -1, True, "3", 2.5])
    def test_invalid(self, hours):
        with pytest.raises(ValueError):
            validate_interval(hours)


@pytest.mark.asyncio
class TestCheckScheduler:
    async def test_start_and_stop(self):
        checker = CheckScheduler(_noop)
        try:
            checker.start(6)
            assert checker.is_running
            assert checker.interval_hours == 6

            checker.stop()
            assert not checker.is_running
            assert checker.next_run_time is None
            checker.stop()
        finally:
            checker.shutdown()

    async def test_set_interval_reschedules_from_now(self):
        checker = CheckScheduler(_noop)
        try:
            checker.start(24)
            before = checker.next_run_time
            checker.set_interval(3)

            next_run = checker.next_run_time
            now = datetime.now(next_run.tzinfo)
            assert checker.interval_hours == 3
            assert now < next_run <= now + timedelta(hours=3)
            assert next_run < before
        finally:
            checker.shutdown()

    async def test_restart_keeps_single_job(self):
        checker = CheckScheduler(_noop)
        try:
            checker.start(6)
            checker.start(6)
            assert len(checker.scheduler.get_jobs()) == 1
        finally:
            checker.shutdown()

    async def test_invalid_interval_leaves_job_alone(self):
        checker = CheckScheduler(_noop)
        try:
            checker.start(6)
            with pytest.raises(ValueError):
                checker.set_interval(0)
            assert checker.is_running
            assert checker.interval_hours == 6
        finally:
            checker.shutdown()

    async def test_shutdown_when_never_started(self):
        CheckScheduler(_noop).shutdown()
