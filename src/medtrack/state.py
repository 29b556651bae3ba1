"""Explicit application state and the reducer-style actions that change it.

Each action takes the current ``TrackerState`` and returns a ``Transition``
holding the complete next state plus the names of the collections it
replaced. Actions that fail raise a ``TrackerError`` and leave the input
state untouched.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any

from pydantic import ValidationError

from .dose_log import DoseLogStore, NewDoseLog
from .eligibility import ensure_can_log_taken
from .errors import (
    InvalidInputError,
    OutsideDoseWindowError,
    ProtectedProfileError,
    UnknownEntityError,
)
from .models import (
    DEFAULT_PROFILE_ID,
    DOSE_STATUSES,
    DoseLog,
    Medication,
    Profile,
    RewardsState,
    default_profile,
    default_times,
)
from .rewards import RewardsUpdate, fold
from .time_window import evaluate, scheduled_instant

logger = logging.getLogger(__name__)

MEDICATIONS = "medications"
DOSE_LOGS = "dose_logs"
PROFILES = "profiles"
REWARDS = "rewards"
COLLECTIONS: tuple[str, ...] = (MEDICATIONS, DOSE_LOGS, PROFILES, REWARDS)

_EDITABLE_PROFILE_FIELDS = frozenset({"name", "relationship", "date_of_birth"})


@dataclass(frozen=True)
class TrackerState:
    medications: tuple[Medication, ...] = ()
    dose_logs: DoseLogStore = field(default_factory=DoseLogStore)
    profiles: tuple[Profile, ...] = field(default_factory=lambda: (default_profile(),))
    rewards: RewardsState = field(default_factory=RewardsState)
    active_profile_id: str = DEFAULT_PROFILE_ID

    def medication(self, medication_id: str) -> Medication | None:
        return next((m for m in self.medications if m.id == medication_id), None)

    def profile(self, profile_id: str) -> Profile | None:
        return next((p for p in self.profiles if p.id == profile_id), None)

    @property
    def active_profile(self) -> Profile | None:
        return self.profile(self.active_profile_id)

    @property
    def active_medications(self) -> list[Medication]:
        return [m for m in self.medications if m.profile_id == self.active_profile_id]

    @property
    def active_logs(self) -> list[DoseLog]:
        return self.dose_logs.for_profile(self.active_profile_id)


@dataclass(frozen=True)
class Transition:
    state: TrackerState
    changed: tuple[str, ...] = ()
    medication: Medication | None = None
    profile: Profile | None = None
    dose_log: DoseLog | None = None
    rewards: RewardsUpdate | None = None


def _invalid(exc: ValidationError) -> InvalidInputError:
    first = exc.errors()[0] if exc.errors() else {}
    loc = first.get("loc") or ()
    field_name = str(loc[0]) if loc else None
    message = first.get("msg", str(exc))
    if field_name:
        message = f"{field_name}: {message}"
    return InvalidInputError(message, field=field_name)


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Medications and doses
# ---------------------------------------------------------------------------


def add_medication(
    state: TrackerState,
    *,
    name: str,
    dosage: str,
    frequency: int,
    category: str,
    now: datetime,
    times: list[str] | tuple[str, ...] | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    instructions: str | None = None,
    medication_id: str | None = None,
) -> Transition:
    """Create a medication owned by the active profile."""
    if state.active_profile is None:
        raise UnknownEntityError(f"Unknown profile {state.active_profile_id!r}", field="profile_id")
    if times is None and isinstance(frequency, int) and frequency >= 1:
        times = default_times(frequency)

    try:
        medication = Medication(
            id=medication_id or _new_id(),
            name=name,
            dosage=dosage,
            frequency=frequency,
            times=tuple(times or ()),
            category=category,
            profile_id=state.active_profile_id,
            start_date=start_date or now.date(),
            end_date=end_date,
            instructions=instructions,
        )
    except ValidationError as exc:
        raise _invalid(exc) from exc

    if state.medication(medication.id) is not None:
        raise InvalidInputError(f"Duplicate medication id {medication.id!r}", field="id")

    next_state = replace(state, medications=(*state.medications, medication))
    logger.info("Medication added: %s (%dx daily)", medication.name, medication.frequency)
    return Transition(next_state, changed=(MEDICATIONS,), medication=medication)


def log_dose(
    state: TrackerState,
    medication_id: str,
    status: str,
    *,
    now: datetime,
    notes: str | None = None,
    log_id: str | None = None,
) -> Transition:
    """Append a dose log while one of the medication's windows is open.

    Taken doses are capped per day and folded into rewards.
    """
    if status not in DOSE_STATUSES:
        raise InvalidInputError(
            f"status must be one of {', '.join(DOSE_STATUSES)}, got {status!r}", field="status"
        )

    medication = state.medication(medication_id)
    if medication is None:
        raise UnknownEntityError(f"Unknown medication {medication_id!r}", field="medication_id")

    window = evaluate(medication, now)
    if not window.eligible:
        raise OutsideDoseWindowError(medication.name)
    if status == "taken":
        ensure_can_log_taken(medication, state.dose_logs, now.date())

    entry = NewDoseLog(
        medication_id=medication.id,
        profile_id=medication.profile_id,
        status=status,
        scheduled_time=scheduled_instant(now, window.matched_time),
        actual_time=now if status == "taken" else None,
        notes=notes,
        is_late=window.is_late,
        minutes_late=window.minutes_late,
    )
    try:
        dose_logs, log = state.dose_logs.append(entry, timestamp=now, log_id=log_id)
    except ValidationError as exc:
        raise _invalid(exc) from exc

    if status == "taken":
        update = fold(state.rewards, log)
        next_state = replace(state, dose_logs=dose_logs, rewards=update.state)
        logger.info(
            "Dose taken: %s (+%d points, streak=%d)",
            medication.name,
            update.points_earned,
            update.state.streak,
            extra={"medtrack_medication_id": medication.id, "medtrack_log_id": log.id},
        )
        return Transition(next_state, changed=(DOSE_LOGS, REWARDS), dose_log=log, rewards=update)
    elif status in ("missed", "skipped"):
        next_state = replace(state, dose_logs=dose_logs)
        logger.info(
            "Dose %s: %s",
            status,
            medication.name,
            extra={"medtrack_medication_id": medication.id, "medtrack_log_id": log.id},
        )
        return Transition(next_state, changed=(DOSE_LOGS,), dose_log=log)
    raise AssertionError(f"unhandled dose status {status!r}")


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


def add_profile(
    state: TrackerState,
    *,
    name: str,
    relationship: str,
    date_of_birth: date | None = None,
    profile_id: str | None = None,
) -> Transition:
    try:
        profile = Profile(
            id=profile_id or _new_id(),
            name=name,
            relationship=relationship,
            date_of_birth=date_of_birth,
        )
    except ValidationError as exc:
        raise _invalid(exc) from exc

    if state.profile(profile.id) is not None:
        raise InvalidInputError(f"Duplicate profile id {profile.id!r}", field="id")
    return Transition(
        replace(state, profiles=(*state.profiles, profile)),
        changed=(PROFILES,),
        profile=profile,
    )


def update_profile(state: TrackerState, profile_id: str, **changes: Any) -> Transition:
    unknown = set(changes) - _EDITABLE_PROFILE_FIELDS
    if unknown:
        raise InvalidInputError(
            f"Cannot edit profile field(s): {', '.join(sorted(unknown))}",
            field=sorted(unknown)[0],
        )
    current = state.profile(profile_id)
    if current is None:
        raise UnknownEntityError(f"Unknown profile {profile_id!r}", field="profile_id")

    try:
        updated = Profile.model_validate({**current.model_dump(), **changes})
    except ValidationError as exc:
        raise _invalid(exc) from exc

    profiles = tuple(updated if p.id == profile_id else p for p in state.profiles)
    return Transition(replace(state, profiles=profiles), changed=(PROFILES,), profile=updated)


def delete_profile(state: TrackerState, profile_id: str) -> Transition:
    if profile_id == DEFAULT_PROFILE_ID:
        raise ProtectedProfileError("Cannot delete the default profile", field="profile_id")
    if profile_id == state.active_profile_id:
        raise ProtectedProfileError("Cannot delete the currently active profile", field="profile_id")
    removed = state.profile(profile_id)
    if removed is None:
        raise UnknownEntityError(f"Unknown profile {profile_id!r}", field="profile_id")

    profiles = tuple(p for p in state.profiles if p.id != profile_id)
    return Transition(replace(state, profiles=profiles), changed=(PROFILES,), profile=removed)


def select_profile(state: TrackerState, profile_id: str) -> Transition:
    """Switch the active profile. The selection is session state and is not persisted."""
    profile = state.profile(profile_id)
    if profile is None:
        raise UnknownEntityError(f"Unknown profile {profile_id!r}", field="profile_id")
    return Transition(replace(state, active_profile_id=profile_id), profile=profile)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


def snapshot(state: TrackerState, collection: str) -> Any:
    """JSON-serializable form of one collection."""
    if collection == MEDICATIONS:
        return [m.model_dump(mode="json") for m in state.medications]
    if collection == DOSE_LOGS:
        return state.dose_logs.to_snapshot()
    if collection == PROFILES:
        return [p.model_dump(mode="json") for p in state.profiles]
    if collection == REWARDS:
        return state.rewards.model_dump(mode="json")
    raise KeyError(collection)


def from_snapshots(
    raw: dict[str, Any],
    *,
    default_profile_name: str | None = None,
) -> TrackerState:
    """Rebuild state from stored snapshots.

    Missing or invalid collections fall back to their empty default and are
    logged; one bad collection never discards the others.
    """
    state = TrackerState(profiles=(default_profile(default_profile_name),))

    def _load(collection: str, parse: Any) -> Any:
        value = raw.get(collection)
        if value is None:
            return None
        try:
            return parse(value)
        except (ValidationError, TypeError, ValueError) as exc:
            logger.warning("Discarding unreadable %s snapshot: %s", collection, exc)
            return None

    medications = _load(MEDICATIONS, lambda v: tuple(Medication.model_validate(m) for m in v))
    dose_logs = _load(DOSE_LOGS, DoseLogStore.from_snapshot)
    profiles = _load(PROFILES, lambda v: tuple(Profile.model_validate(p) for p in v))
    rewards = _load(REWARDS, RewardsState.model_validate)

    if profiles is not None and not any(p.id == DEFAULT_PROFILE_ID for p in profiles):
        profiles = (default_profile(default_profile_name), *profiles)

    return replace(
        state,
        medications=medications if medications is not None else state.medications,
        dose_logs=dose_logs if dose_logs is not None else state.dose_logs,
        profiles=profiles if profiles is not None else state.profiles,
        rewards=rewards if rewards is not None else state.rewards,
    )
