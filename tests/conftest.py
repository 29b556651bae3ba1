from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from medtrack.models import DEFAULT_PROFILE_ID, Medication

DAY = date(2026, 3, 10)


def at(hour: int, minute: int = 0, second: int = 0, *, day: date = DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, second, tzinfo=timezone.utc)


def make_medication(
    *,
    id: str = "med-1",
    name: str = "Aspirin",
    times: tuple[str, ...] = ("08:00",),
    category: str = "Prescription",
    profile_id: str = DEFAULT_PROFILE_ID,
) -> Medication:
    return Medication(
        id=id,
        name=name,
        dosage="81mg",
        frequency=len(times),
        times=times,
        category=category,
        profile_id=profile_id,
        start_date=DAY,
    )


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(at(8, 5))
