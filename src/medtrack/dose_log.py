"""Append-only dose log collection.

``append`` is the only mutation and returns a new store; existing entries
are never edited or removed. Insertion order is preserved so "the last N
logs" always means the most recent ones.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from .errors import InvalidInputError
from .models import DoseLog, DoseStatus


@dataclass(frozen=True)
class NewDoseLog:
    """A dose log before the store assigns its id and creation timestamp."""

    medication_id: str
    profile_id: str
    status: DoseStatus
    scheduled_time: datetime
    actual_time: datetime | None = None
    notes: str | None = None
    is_late: bool = False
    minutes_late: int = 0


class DoseLogStore:
    __slots__ = ("_logs", "_ids")

    def __init__(self, logs: Iterable[DoseLog] = ()) -> None:
        self._logs: tuple[DoseLog, ...] = tuple(logs)
        self._ids = frozenset(log.id for log in self._logs)

    def __len__(self) -> int:
        return len(self._logs)

    def __iter__(self) -> Iterator[DoseLog]:
        return iter(self._logs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DoseLogStore):
            return NotImplemented
        return self._logs == other._logs

    def __repr__(self) -> str:
        return f"DoseLogStore({len(self._logs)} logs)"

    @property
    def logs(self) -> tuple[DoseLog, ...]:
        return self._logs

    def append(
        self,
        entry: NewDoseLog,
        *,
        timestamp: datetime,
        log_id: str | None = None,
    ) -> tuple[DoseLogStore, DoseLog]:
        new_id = log_id or uuid.uuid4().hex
        if new_id in self._ids:
            raise InvalidInputError(f"Duplicate dose log id {new_id!r}", field="id")

        log = DoseLog(
            id=new_id,
            medication_id=entry.medication_id,
            profile_id=entry.profile_id,
            status=entry.status,
            scheduled_time=entry.scheduled_time,
            actual_time=entry.actual_time,
            notes=entry.notes,
            timestamp=timestamp,
            is_late=entry.is_late,
            minutes_late=entry.minutes_late,
        )
        return DoseLogStore((*self._logs, log)), log

    def query(self, predicate: Callable[[DoseLog], bool]) -> list[DoseLog]:
        return [log for log in self._logs if predicate(log)]

    def for_profile(self, profile_id: str) -> list[DoseLog]:
        return self.query(lambda log: log.profile_id == profile_id)

    def for_medication(self, medication_id: str) -> list[DoseLog]:
        return self.query(lambda log: log.medication_id == medication_id)

    def on_day(self, day: date) -> list[DoseLog]:
        return self.query(lambda log: log.day == day)

    def recent(self, limit: int, *, profile_id: str | None = None) -> list[DoseLog]:
        """Most recent ``limit`` logs, newest first."""
        pool = self._logs if profile_id is None else self.for_profile(profile_id)
        if limit <= 0:
            return []
        return list(reversed(pool[-limit:]))

    def to_snapshot(self) -> list[dict[str, Any]]:
        return [log.model_dump(mode="json") for log in self._logs]

    @classmethod
    def from_snapshot(cls, raw: Iterable[dict[str, Any]]) -> DoseLogStore:
        return cls(DoseLog.model_validate(item) for item in raw)
