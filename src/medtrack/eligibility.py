"""Daily cap on "taken" logs per medication.

Only "taken" logs count against a medication's frequency; "missed" and
"skipped" logs are never capped.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from .errors import DailyLimitReachedError
from .models import DoseLog, Medication


@dataclass(frozen=True)
class DailyProgress:
    taken: int
    expected: int

    @property
    def can_log_more(self) -> bool:
        return self.taken < self.expected

    @property
    def fraction(self) -> float:
        return self.taken / self.expected if self.expected else 0.0


def taken_count(logs: Iterable[DoseLog], medication_id: str, day: date) -> int:
    return sum(
        1
        for log in logs
        if log.medication_id == medication_id and log.status == "taken" and log.day == day
    )


def can_log_taken(medication: Medication, logs: Iterable[DoseLog], day: date) -> bool:
    return taken_count(logs, medication.id, day) < medication.frequency


def ensure_can_log_taken(medication: Medication, logs: Iterable[DoseLog], day: date) -> None:
    if not can_log_taken(medication, logs, day):
        raise DailyLimitReachedError(medication.name, medication.frequency)


def daily_progress(medication: Medication, logs: Iterable[DoseLog], day: date) -> DailyProgress:
    return DailyProgress(
        taken=taken_count(logs, medication.id, day),
        expected=medication.frequency,
    )
