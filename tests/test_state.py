from __future__ import annotations

from datetime import date

import pytest

from medtrack import state as reducers
from medtrack.errors import (
    DailyLimitReachedError,
    InvalidInputError,
    OutsideDoseWindowError,
    ProtectedProfileError,
    UnknownEntityError,
)
from medtrack.models import DEFAULT_PROFILE_ID
from medtrack.state import DOSE_LOGS, MEDICATIONS, PROFILES, REWARDS, TrackerState

from .conftest import at


def _with_aspirin(state: TrackerState | None = None, **overrides) -> TrackerState:
    fields = dict(name="Aspirin", dosage="81mg", frequency=1, category="Prescription",
                  times=["08:00"], now=at(7, 0), medication_id="asp")
    fields.update(overrides)
    return reducers.add_medication(state or TrackerState(), **fields).state


def test_end_to_end_first_dose() -> None:
    state = _with_aspirin()
    transition = reducers.log_dose(state, "asp", "taken", now=at(8, 5))

    assert len(transition.state.dose_logs) == 1
    rewards = transition.state.rewards
    assert (rewards.points, rewards.streak, rewards.level) == (65, 1, 1)
    assert rewards.achievements == ("first-log",)
    assert transition.changed == (DOSE_LOGS, REWARDS)

    log = transition.dose_log
    assert log.scheduled_time == at(8, 0)
    assert log.actual_time == at(8, 5)
    assert log.profile_id == DEFAULT_PROFILE_ID
    assert not log.is_late


def test_add_medication_defaults_times_and_active_profile() -> None:
    transition = reducers.add_medication(
        TrackerState(), name="Vitamin D", dosage="1000 IU", frequency=2,
        category="Vitamin/Supplement", now=at(7, 0),
    )
    med = transition.medication
    assert med.times == ("08:00", "12:00")
    assert med.profile_id == DEFAULT_PROFILE_ID
    assert med.start_date == date(2026, 3, 10)
    assert transition.changed == (MEDICATIONS,)


def test_add_medication_rejects_invalid_input_without_change() -> None:
    state = TrackerState()
    with pytest.raises(InvalidInputError) as excinfo:
        reducers.add_medication(state, name="", dosage="1", frequency=1,
                                category="Prescription", now=at(7, 0))
    assert excinfo.value.field == "name"
    assert state.medications == ()


def test_frequency_cap_leaves_store_unchanged() -> None:
    state = _with_aspirin()
    state = reducers.log_dose(state, "asp", "taken", now=at(8, 5)).state

    with pytest.raises(DailyLimitReachedError):
        reducers.log_dose(state, "asp", "taken", now=at(9, 0))
    assert len(state.dose_logs) == 1


def test_missed_and_skipped_are_uncapped_and_earn_nothing() -> None:
    state = _with_aspirin()
    state = reducers.log_dose(state, "asp", "taken", now=at(8, 5)).state
    transition = reducers.log_dose(state, "asp", "missed", now=at(11, 0), notes=" forgot ")

    assert transition.changed == (DOSE_LOGS,)
    assert transition.state.rewards == state.rewards
    log = transition.dose_log
    assert log.actual_time is None
    assert log.notes == "forgot"
    assert log.scheduled_time == at(8, 0)

    skipped = reducers.log_dose(transition.state, "asp", "skipped", now=at(11, 1))
    assert len(skipped.state.dose_logs) == 3


@pytest.mark.parametrize("hour, minute", [(7, 44), (12, 1), (3, 0)])
@pytest.mark.parametrize("status", ["taken", "missed", "skipped"])
def test_log_dose_outside_every_window_is_rejected(status: str, hour: int, minute: int) -> None:
    state = _with_aspirin()
    with pytest.raises(OutsideDoseWindowError) as excinfo:
        reducers.log_dose(state, "asp", status, now=at(hour, minute))

    assert excinfo.value.code == "outside_window"
    assert "Aspirin" in excinfo.value.message
    assert len(state.dose_logs) == 0
    assert state.rewards.points == 0


def test_window_edges_are_loggable() -> None:
    state = _with_aspirin()
    early = reducers.log_dose(state, "asp", "skipped", now=at(7, 45)).dose_log
    last = reducers.log_dose(state, "asp", "missed", now=at(12, 0)).dose_log
    assert early.scheduled_time == last.scheduled_time == at(8, 0)
    assert last.is_late and last.minutes_late == 240


def test_late_dose_is_recorded_with_minutes() -> None:
    state = _with_aspirin()
    log = reducers.log_dose(state, "asp", "taken", now=at(9, 30)).dose_log
    assert log.is_late and log.minutes_late == 90


def test_log_dose_rejects_unknown_medication_and_status() -> None:
    state = _with_aspirin()
    with pytest.raises(UnknownEntityError):
        reducers.log_dose(state, "nope", "taken", now=at(8, 5))
    with pytest.raises(InvalidInputError, match="status"):
        reducers.log_dose(state, "asp", "forgotten", now=at(8, 5))


class TestProfiles:
    def test_add_edit_and_remove(self) -> None:
        state = reducers.add_profile(TrackerState(), name="Sam", relationship="Child",
                                     profile_id="sam").state
        state = reducers.update_profile(state, "sam", name="Samuel").state
        assert state.profile("sam").name == "Samuel"

        transition = reducers.delete_profile(state, "sam")
        assert transition.state.profile("sam") is None
        assert transition.changed == (PROFILES,)

    def test_default_profile_cannot_be_deleted(self) -> None:
        with pytest.raises(ProtectedProfileError, match="default profile"):
            reducers.delete_profile(TrackerState(), DEFAULT_PROFILE_ID)

    def test_active_profile_cannot_be_deleted(self) -> None:
        state = reducers.add_profile(TrackerState(), name="Sam", relationship="Child",
                                     profile_id="sam").state
        state = reducers.select_profile(state, "sam").state
        with pytest.raises(ProtectedProfileError, match="currently active"):
            reducers.delete_profile(state, "sam")

    def test_id_and_active_flag_are_not_editable(self) -> None:
        with pytest.raises(InvalidInputError):
            reducers.update_profile(TrackerState(), DEFAULT_PROFILE_ID, id="other")

    def test_select_profile_scopes_medications_and_changes_nothing_persistent(self) -> None:
        state = reducers.add_profile(TrackerState(), name="Sam", relationship="Child",
                                     profile_id="sam").state
        state = _with_aspirin(state)
        transition = reducers.select_profile(state, "sam")

        assert transition.changed == ()
        assert transition.state.active_medications == []
        kid = _with_aspirin(transition.state, medication_id="kid-med", name="Ibuprofen")
        assert [m.name for m in kid.active_medications] == ["Ibuprofen"]
        assert kid.medication("kid-med").profile_id == "sam"


def test_snapshots_round_trip() -> None:
    state = _with_aspirin()
    state = reducers.log_dose(state, "asp", "taken", now=at(8, 5)).state
    raw = {name: reducers.snapshot(state, name) for name in reducers.COLLECTIONS}

    restored = reducers.from_snapshots(raw)
    assert restored.medications == state.medications
    assert restored.dose_logs == state.dose_logs
    assert restored.rewards == state.rewards
    assert restored.profiles == state.profiles


def test_invalid_snapshot_falls_back_to_default(caplog: pytest.LogCaptureFixture) -> None:
    state = _with_aspirin()
    raw = {
        MEDICATIONS: reducers.snapshot(state, MEDICATIONS),
        DOSE_LOGS: [{"id": "broken"}],
        REWARDS: {"points": -5},
        PROFILES: [{"id": "sam", "name": "Sam", "relationship": "Child"}],
    }
    restored = reducers.from_snapshots(raw, default_profile_name="Ada")

    assert len(restored.medications) == 1
    assert len(restored.dose_logs) == 0
    assert restored.rewards.points == 0
    assert [p.id for p in restored.profiles] == [DEFAULT_PROFILE_ID, "sam"]
    assert restored.profiles[0].name == "Ada"
    assert "Discarding unreadable dose_logs snapshot" in caplog.text
