"""Dose logging windows computed from wall-clock minutes-of-day.

A dose scheduled at T may be logged from T-15min through T+4h inclusive,
and counts as late once the clock passes T+15min.

Windows are evaluated against the current day only and never wrap past
midnight: a 23:50 dose stops being loggable at 23:59 and its late allowance
does not spill into the next morning. Likewise a 00:05 dose cannot be
logged at 23:55 the evening before.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time

from .models import Medication

EARLY_ALLOWANCE_MINUTES = 15
ON_TIME_GRACE_MINUTES = 15
LATE_ALLOWANCE_MINUTES = 4 * 60


@dataclass(frozen=True)
class WindowStatus:
    eligible: bool
    is_late: bool = False
    minutes_late: int = 0
    matched_time: time | None = None

    @property
    def hours_late(self) -> int:
        return self.minutes_late // 60

    @property
    def label(self) -> str:
        if not self.eligible:
            return "not-time"
        return "late" if self.is_late else "on-time"


NOT_ELIGIBLE = WindowStatus(eligible=False)


def minutes_of_day(value: datetime | time) -> int:
    return value.hour * 60 + value.minute


def window_bounds(dose_time: time) -> tuple[int, int]:
    """Inclusive (start, end) minutes-of-day of the logging window."""
    dose_minutes = minutes_of_day(dose_time)
    return dose_minutes - EARLY_ALLOWANCE_MINUTES, dose_minutes + LATE_ALLOWANCE_MINUTES


def evaluate(medication: Medication, now: datetime) -> WindowStatus:
    """Return the first configured dose window (stored order) containing ``now``."""
    current = minutes_of_day(now)

    for dose_time in medication.times_of_day:
        start, end = window_bounds(dose_time)
        if not start <= current <= end:
            continue

        dose_minutes = minutes_of_day(dose_time)
        if current <= dose_minutes + ON_TIME_GRACE_MINUTES:
            return WindowStatus(eligible=True, matched_time=dose_time)
        return WindowStatus(
            eligible=True,
            is_late=True,
            minutes_late=current - dose_minutes,
            matched_time=dose_time,
        )

    return NOT_ELIGIBLE


def scheduled_instant(now: datetime, dose_time: time) -> datetime:
    """Today's occurrence of ``dose_time`` in the same timezone as ``now``."""
    return now.replace(hour=dose_time.hour, minute=dose_time.minute, second=0, microsecond=0)
