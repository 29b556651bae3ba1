"""Upcoming-dose projection across a profile's medications."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone

from .models import Medication
from .time_window import minutes_of_day, scheduled_instant

UPCOMING_LIMIT = 5


@dataclass(frozen=True)
class UpcomingDose:
    medication_id: str
    medication_name: str
    dosage: str
    scheduled_time: datetime
    time_until: timedelta

    @property
    def countdown(self) -> str:
        """Short ``"3h 20m"`` rendering of ``time_until``."""
        total_minutes = int(self.time_until.total_seconds() // 60)
        hours, minutes = divmod(total_minutes, 60)
        return f"{hours}h {minutes}m"


def next_occurrence(dose_time: time, now: datetime) -> datetime:
    """Today's instance of ``dose_time`` if still ahead of ``now``, else tomorrow's.

    Tomorrow's instance is built from the calendar date so it keeps the
    wall-clock time across a UTC offset change.
    """
    candidate = scheduled_instant(now, dose_time)
    if elapsed(now, candidate) > timedelta(0):
        return candidate
    return datetime.combine(now.date() + timedelta(days=1), dose_time, tzinfo=now.tzinfo)


def elapsed(start: datetime, end: datetime) -> timedelta:
    """Real time between two aware datetimes, even when they share a DST zone."""
    return end.astimezone(timezone.utc) - start.astimezone(timezone.utc)


def compute_upcoming(
    medications: Iterable[Medication],
    now: datetime,
    *,
    limit: int = UPCOMING_LIMIT,
) -> list[UpcomingDose]:
    """Next ``limit`` dose instants across all medications, soonest first.

    The cap applies to the flattened list, not per medication.
    """
    upcoming: list[UpcomingDose] = []
    for med in medications:
        for dose_time in med.times_of_day:
            at = next_occurrence(dose_time, now)
            upcoming.append(
                UpcomingDose(
                    medication_id=med.id,
                    medication_name=med.name,
                    dosage=med.dosage,
                    scheduled_time=at,
                    time_until=elapsed(now, at),
                )
            )

    upcoming.sort(key=lambda dose: dose.time_until)
    return upcoming[:limit]


def next_dose_time(medication: Medication, now: datetime) -> time:
    """First configured time later than the current minute, else the first one (tomorrow)."""
    current = minutes_of_day(now)
    for dose_time in medication.times_of_day:
        if minutes_of_day(dose_time) > current:
            return dose_time
    return medication.times_of_day[0]
