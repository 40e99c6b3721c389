"""Calendar boundary tests for the reference time zone."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from session_guard.core.timeutils import Period, as_utc, elapsed_minutes, period_bounds

SAO_PAULO = ZoneInfo("America/Sao_Paulo")
BERLIN = ZoneInfo("Europe/Berlin")


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "period, start, end",
    [
        (Period.TODAY, _utc(2026, 3, 11, 3), _utc(2026, 3, 12, 3)),
        (Period.WEEK, _utc(2026, 3, 9, 3), _utc(2026, 3, 16, 3)),
        (Period.MONTH, _utc(2026, 3, 1, 3), _utc(2026, 4, 1, 3)),
        (Period.YEAR, _utc(2026, 1, 1, 3), _utc(2027, 1, 1, 3)),
    ],
)
def test_period_bounds_in_sao_paulo(period, start, end):
    assert period_bounds(period, _utc(2026, 3, 11, 15), SAO_PAULO) == (start, end)


def test_december_month_rolls_into_next_year():
    start, end = period_bounds(Period.MONTH, _utc(2026, 12, 20, 12), SAO_PAULO)

    assert start == _utc(2026, 12, 1, 3)
    assert end == _utc(2027, 1, 1, 3)


def test_day_across_dst_change_is_23_hours():
    # Europe/Berlin springs forward on 2026-03-29.
    start, end = period_bounds(Period.TODAY, _utc(2026, 3, 29, 12), BERLIN)

    assert start == _utc(2026, 3, 28, 23)
    assert end == _utc(2026, 3, 29, 22)


def test_week_starting_in_previous_year():
    # Friday 2027-01-01; its week began Monday 2026-12-28.
    start, _ = period_bounds(Period.WEEK, _utc(2027, 1, 1, 15), SAO_PAULO)

    assert start == _utc(2026, 12, 28, 3)


def test_elapsed_minutes_floors_and_clamps():
    start = _utc(2026, 3, 11, 12)

    assert elapsed_minutes(start, _utc(2026, 3, 11, 12, 9, 59)) == 9
    assert elapsed_minutes(start, _utc(2026, 3, 11, 11, 50)) == 0


def test_as_utc_handles_naive_and_aware_values():
    naive = datetime(2026, 3, 11, 12)
    aware = datetime(2026, 3, 11, 9, tzinfo=SAO_PAULO)

    assert as_utc(naive) == _utc(2026, 3, 11, 12)
    assert as_utc(aware).tzinfo == timezone.utc
    assert as_utc(aware) == _utc(2026, 3, 11, 12)
