"""Entity types shared by every tracker component.

All entities are frozen: a change is always a new instance, and the
collections holding them are replaced whole.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

DoseStatus = Literal["taken", "missed", "skipped"]
DOSE_STATUSES: tuple[DoseStatus, ...] = ("taken", "missed", "skipped")

Category = Literal[
    "Prescription",
    "Over-the-Counter",
    "Vitamin/Supplement",
    "Herbal",
    "Emergency",
    "As Needed",
]
CATEGORIES: tuple[str, ...] = (
    "Prescription",
    "Over-the-Counter",
    "Vitamin/Supplement",
    "Herbal",
    "Emergency",
    "As Needed",
)

RELATIONSHIPS: tuple[str, ...] = (
    "Self",
    "Spouse/Partner",
    "Child",
    "Parent",
    "Sibling",
    "Grandparent",
    "Grandchild",
    "Other Family",
    "Caregiver",
)

DEFAULT_PROFILE_ID = "default"
DEFAULT_PROFILE_NAME = "My Profile"
DEFAULT_DOSE_TIMES: tuple[str, ...] = ("08:00", "12:00", "18:00", "22:00")

POINTS_PER_LEVEL = 100

_TIME_OF_DAY_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time_of_day(value: str) -> time:
    """Parse a 24-hour ``HH:MM`` string. Raises ValueError otherwise."""
    match = _TIME_OF_DAY_RE.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"time must be HH:MM (24h), got {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def default_times(frequency: int) -> list[str]:
    """Suggested dose times for a new medication taken ``frequency`` times a day."""
    return [
        DEFAULT_DOSE_TIMES[i] if i < len(DEFAULT_DOSE_TIMES) else DEFAULT_DOSE_TIMES[0]
        for i in range(frequency)
    ]


def level_for_points(points: int) -> int:
    return points // POINTS_PER_LEVEL + 1


def _normalized_non_empty(value: str, *, field_name: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{field_name} must not be empty")
    return normalized


def _trim_optional(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


class Medication(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    dosage: str
    frequency: int = Field(ge=1)
    times: tuple[str, ...]
    category: Category
    profile_id: str
    start_date: date
    end_date: date | None = None
    instructions: str | None = None

    @field_validator("id", "name", "dosage", "profile_id")
    @classmethod
    def validate_required_strings(cls, value: str, info: Any) -> str:
        return _normalized_non_empty(value, field_name=info.field_name)

    @field_validator("times")
    @classmethod
    def validate_times(cls, values: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(parse_time_of_day(v).strftime("%H:%M") for v in values)

    @field_validator("instructions")
    @classmethod
    def trim_instructions(cls, value: str | None) -> str | None:
        return _trim_optional(value)

    @model_validator(mode="after")
    def validate_schedule(self) -> Medication:
        if len(self.times) != self.frequency:
            raise ValueError(
                f"times must list exactly {self.frequency} entries, got {len(self.times)}"
            )
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    @property
    def times_of_day(self) -> tuple[time, ...]:
        return tuple(parse_time_of_day(t) for t in self.times)


class DoseLog(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    medication_id: str
    profile_id: str
    status: DoseStatus
    scheduled_time: datetime
    actual_time: datetime | None = None
    notes: str | None = None
    timestamp: datetime
    is_late: bool = False
    minutes_late: int = Field(default=0, ge=0)

    @field_validator("notes")
    @classmethod
    def trim_notes(cls, value: str | None) -> str | None:
        return _trim_optional(value)

    @property
    def day(self) -> date:
        """Calendar day of the log, in the offset it was recorded with."""
        return self.timestamp.date()


class Profile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    relationship: str
    date_of_birth: date | None = None
    is_active: bool = True

    @field_validator("id", "name", "relationship")
    @classmethod
    def validate_required_strings(cls, value: str, info: Any) -> str:
        return _normalized_non_empty(value, field_name=info.field_name)

    @property
    def is_default(self) -> bool:
        return self.id == DEFAULT_PROFILE_ID

    def age(self, on: date) -> int | None:
        if self.date_of_birth is None:
            return None
        born = self.date_of_birth
        years = on.year - born.year
        if (on.month, on.day) < (born.month, born.day):
            years -= 1
        return years


def default_profile(name: str | None = None) -> Profile:
    return Profile(
        id=DEFAULT_PROFILE_ID,
        name=name or DEFAULT_PROFILE_NAME,
        relationship="Self",
    )


class RewardsState(BaseModel):
    """Per-user rewards. ``level`` is derived from ``points`` on every read."""

    model_config = ConfigDict(frozen=True)

    points: int = Field(default=0, ge=0)
    streak: int = Field(default=0, ge=0)
    achievements: tuple[str, ...] = ()
    last_log_date: date | None = None
    has_first_log: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def level(self) -> int:
        return level_for_points(self.points)
