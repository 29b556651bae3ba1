from __future__ import annotations

import pytest

from medtrack.time_window import NOT_ELIGIBLE, evaluate, scheduled_instant, window_bounds

from .conftest import at, make_medication


class TestWindowBoundaries:
    med = make_medication(times=("09:00",))

    def test_fifteen_minutes_early_is_on_time(self) -> None:
        status = evaluate(self.med, at(8, 45))
        assert status.eligible and not status.is_late

    def test_sixteen_minutes_early_is_not_eligible(self) -> None:
        assert evaluate(self.med, at(8, 44)) == NOT_ELIGIBLE

    def test_grace_period_end_is_on_time(self) -> None:
        status = evaluate(self.med, at(9, 15))
        assert status.eligible and not status.is_late
        assert status.label == "on-time"

    def test_one_minute_past_grace_is_late(self) -> None:
        status = evaluate(self.med, at(9, 16))
        assert status.eligible and status.is_late
        assert status.minutes_late == 16
        assert status.label == "late"

    def test_four_hours_after_is_last_loggable_minute(self) -> None:
        status = evaluate(self.med, at(13, 0))
        assert status.eligible and status.minutes_late == 240
        assert status.hours_late == 4

    def test_past_late_allowance_is_not_eligible(self) -> None:
        status = evaluate(self.med, at(13, 1))
        assert not status.eligible
        assert status.label == "not-time"


def test_first_matching_window_wins_in_stored_order() -> None:
    med = make_medication(times=("10:00", "09:00"))
    status = evaluate(med, at(10, 5))
    assert status.matched_time is not None
    assert status.matched_time.hour == 10
    assert not status.is_late


def test_seconds_are_ignored() -> None:
    med = make_medication(times=("09:00",))
    assert not evaluate(med, at(9, 15, 59)).is_late


@pytest.mark.parametrize(
    ("dose", "now"),
    [
        ("23:50", at(0, 10)),   # late allowance does not spill into the next day
        ("00:05", at(23, 55)),  # early allowance does not reach back into the previous day
    ],
)
def test_windows_do_not_wrap_midnight(dose: str, now) -> None:
    assert not evaluate(make_medication(times=(dose,)), now).eligible


def test_window_bounds_are_inclusive_minutes() -> None:
    med = make_medication(times=("09:00",))
    assert window_bounds(med.times_of_day[0]) == (8 * 60 + 45, 13 * 60)


def test_scheduled_instant_keeps_timezone_and_drops_seconds() -> None:
    now = at(9, 7, 42)
    instant = scheduled_instant(now, make_medication().times_of_day[0])
    assert instant == at(8, 0)
    assert instant.tzinfo is now.tzinfo
