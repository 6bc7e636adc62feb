from datetime import date, datetime, timezone

import pytest

from backend.app.clock import BusinessClock, get_business_clock, month_bounds, period_label, week_start


def _clock_at(utc: datetime, tz: str = "America/Mexico_City") -> BusinessClock:
    return BusinessClock(tz, now=lambda: utc)


def test_business_date_follows_local_zone_not_utc():
    # 03:15 UTC on the 19th is still the evening of the 18th in Mexico City
    clock = _clock_at(datetime(2026, 10, 19, 3, 15, tzinfo=timezone.utc))

    assert clock.business_date() == date(2026, 10, 18)
    assert clock.business_hour() == 21


def test_timezone_is_configurable(monkeypatch):
    monkeypatch.setenv("BUSINESS_TIMEZONE", "America/Tijuana")
    clock = get_business_clock()
    assert clock.timezone_name == "America/Tijuana"


def test_is_future_compares_date_then_hour():
    clock = _clock_at(datetime(2026, 10, 18, 20, 10, tzinfo=timezone.utc))  # 14:10 local
    today = clock.business_date()

    assert clock.is_future(today, 15)
    assert not clock.is_future(today, 14)
    assert not clock.is_future(date(2026, 10, 17), 23)
    assert clock.is_future(date(2026, 10, 19), 0)


def test_naive_clock_source_is_rejected():
    clock = BusinessClock("America/Mexico_City", now=lambda: datetime(2026, 10, 18, 12, 0))
    with pytest.raises(ValueError):
        clock.now()


@pytest.mark.parametrize(
    "hour,label",
    [(0, "23:00 - 00:00"), (1, "00:00 - 01:00"), (10, "09:00 - 10:00"), (23, "22:00 - 23:00")],
)
def test_period_label(hour, label):
    assert period_label(hour) == label


def test_week_and_month_bounds():
    assert week_start(date(2026, 10, 18)) == date(2026, 10, 12)
    assert week_start(date(2026, 10, 12)) == date(2026, 10, 12)
    assert month_bounds(2028, 2) == (date(2028, 2, 1), date(2028, 2, 29))
