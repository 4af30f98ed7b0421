from __future__ import annotations

from datetime import datetime, timezone

import pytest

from relay_monitor.scheduler import JobScheduler
from relay_monitor.scheduler.job_scheduler import MAX_CONCURRENT_RUNS, build_cron_trigger, cron_day_of_week

# Sunday 2026-10-18, 00:00 UTC
SUNDAY = datetime(2026, 10, 18, tzinfo=timezone.utc)


def _next(expression: str, now: datetime = SUNDAY, tz: str = "UTC") -> datetime:
    return build_cron_trigger(expression, tz).get_next_fire_time(None, now).astimezone(timezone.utc)


@pytest.mark.parametrize(
    "expression,expected_day",
    [
        ("0 9 * * 0", 18),
        ("0 9 * * 7", 18),
        ("0 9 * * 1", 19),
        ("0 9 * * 5", 23),
        ("0 9 * * 6", 24),
        ("0 9 * * 1-5", 19),
        ("0 9 * * 5-7", 18),
        ("0 9 * * 2,4", 20),
        ("0 9 * * sat", 24),
        ("0 9 * * *", 18),
    ],
)
def test_weekdays_follow_cron_numbering(expression, expected_day) -> None:
    fire = _next(expression)
    assert (fire.day, fire.hour, fire.minute) == (expected_day, 9, 0)


def test_sunday_is_not_shifted_to_monday() -> None:
    assert _next("0 9 * * 0").weekday() == 6
    assert _next("0 9 * * 1").weekday() == 0


def test_weekday_step_starts_from_sunday() -> None:
    monday_noon = datetime(2026, 10, 19, 12, tzinfo=timezone.utc)
    assert _next("0 9 * * */2", monday_noon).day == 20
    assert cron_day_of_week("*/2") == "sun,tue,thu,sat"


@pytest.mark.parametrize(
    "field,expected",
    [
        ("*", "*"),
        ("0", "sun"),
        ("7", "sun"),
        ("1-5", "mon,tue,wed,thu,fri"),
        ("5-7", "sun,fri,sat"),
        ("0,6", "sun,sat"),
        ("1/3", "mon,thu"),
        ("MON-wed", "mon,tue,wed"),
    ],
)
def test_cron_day_of_week(field, expected) -> None:
    assert cron_day_of_week(field) == expected


@pytest.mark.parametrize("expression", ["0 9 * * 8", "0 9 * * 5-1", "0 9 * * funday", "0 9 * * 1/0", "0 9 * *"])
def test_invalid_expressions(expression) -> None:
    with pytest.raises(ValueError):
        build_cron_trigger(expression)


def test_trigger_uses_configured_timezone() -> None:
    # 09:00 in Amsterdam is 07:00 UTC while summer time lasts (until 2026-10-25)
    assert _next("0 9 * * 1", tz="Europe/Amsterdam") == datetime(2026, 10, 19, 7, tzinfo=timezone.utc)


def _noop() -> None:
    return None


def test_job_status_and_overlap_policy() -> None:
    jobs = JobScheduler()
    jobs.add_cron_job("site:1", _noop, "30 6 * * 1-5", tz="Asia/Tokyo", description="Site one")

    [status] = jobs.list_jobs()
    assert status["job_id"] == "site:1"
    assert status["cron"] == "30 6 * * 1-5"
    assert status["timezone"] == "Asia/Tokyo"
    assert status["description"] == "Site one"
    assert jobs.scheduler.get_job("site:1").max_instances == MAX_CONCURRENT_RUNS > 1

    assert jobs.get_job_status("missing") is None
    assert jobs.remove_job("site:1") is True
    assert jobs.list_jobs() == []


@pytest.mark.asyncio
async def test_running_scheduler_reports_next_run() -> None:
    jobs = JobScheduler()
    await jobs.start()
    try:
        jobs.add_cron_job("global", _noop, "0 9 * * *", tz="UTC")
        status = jobs.get_job_status("global")
        next_run = datetime.fromisoformat(status["next_run"])
        assert (next_run.hour, next_run.minute) == (9, 0)
    finally:
        await jobs.stop()
