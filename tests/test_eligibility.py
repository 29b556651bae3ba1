from __future__ import annotations

import pytest

from medtrack.eligibility import can_log_taken, daily_progress, ensure_can_log_taken, taken_count
from medtrack.errors import DailyLimitReachedError
from medtrack.models import DoseLog

from .conftest import DAY, at, make_medication


def _log(log_id: str, status: str = "taken", *, medication_id: str = "med-1", when=None) -> DoseLog:
    when = when or at(8, 5)
    return DoseLog(
        id=log_id,
        medication_id=medication_id,
        profile_id="default",
        status=status,
        scheduled_time=when,
        timestamp=when,
    )


def test_only_taken_logs_for_the_day_count() -> None:
    logs = [
        _log("a"),
        _log("b", "missed"),
        _log("c", "skipped"),
        _log("d", medication_id="other"),
        _log("e", when=at(8, 5, day=DAY.replace(day=9))),
    ]
    assert taken_count(logs, "med-1", DAY) == 1


def test_cap_reached_after_frequency_taken_logs() -> None:
    med = make_medication(times=("08:00", "20:00"))
    logs = [_log("a")]
    assert can_log_taken(med, logs, DAY)

    logs.append(_log("b", when=at(20, 1)))
    assert not can_log_taken(med, logs, DAY)
    with pytest.raises(DailyLimitReachedError, match="all 2 doses for Aspirin"):
        ensure_can_log_taken(med, logs, DAY)


def test_missed_logs_never_block_taken() -> None:
    med = make_medication()
    logs = [_log(str(i), "missed") for i in range(5)]
    ensure_can_log_taken(med, logs, DAY)


def test_daily_progress_fraction() -> None:
    med = make_medication(times=("08:00", "12:00", "18:00", "22:00"))
    progress = daily_progress(med, [_log("a")], DAY)
    assert (progress.taken, progress.expected) == (1, 4)
    assert progress.fraction == 0.25
    assert progress.can_log_more
