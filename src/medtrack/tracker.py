"""Session-scoped tracker: owns the state, persistence, and notifications.

A ``Tracker`` exists only while a user session exists. Every action runs
one reducer from :mod:`medtrack.state`, swaps in the complete next state,
then writes back each collection the action replaced. Storage failures
never roll back the in-memory state; they are logged and surfaced on the
``ActionResult``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any

from . import state as reducers
from .analytics import AdherenceReport, build_report
from .auth import AuthEvent, IdentityProvider, Session
from .eligibility import DailyProgress, daily_progress
from .errors import AuthError, InvalidInputError, StorageError
from .models import Medication
from .notifications import DoseDueChannel, NotificationTrigger
from .rewards import RewardsSummary, summarize
from .scheduler import UPCOMING_LIMIT, UpcomingDose, compute_upcoming, next_dose_time
from .state import COLLECTIONS, TrackerState, Transition
from .storage import SnapshotStore, snapshot_key

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ActionResult:
    state: TrackerState
    transition: Transition
    storage_error: StorageError | None = None

    @property
    def persisted(self) -> bool:
        return self.storage_error is None


@dataclass(frozen=True)
class MedicationProgress:
    medication: Medication
    progress: DailyProgress
    next_dose: time


class Tracker:
    def __init__(
        self,
        session: Session,
        store: SnapshotStore,
        *,
        clock: Clock = _utc_now,
        poll_interval_seconds: float = 30.0,
    ) -> None:
        self.session = session
        self.store = store
        self.clock = clock
        self.channel = DoseDueChannel()
        self._state = TrackerState()
        self._closed = False
        self._unsubscribe: Callable[[], None] | None = None
        self._pending_close: asyncio.Task[None] | None = None
        self._trigger = NotificationTrigger(
            self._notification_source,
            self.channel,
            clock=clock,
            poll_interval_seconds=poll_interval_seconds,
        )

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def notifications(self) -> NotificationTrigger:
        return self._trigger

    # -- persistence ------------------------------------------------------

    async def load(self) -> TrackerState:
        """Read every collection for this user. Unreadable snapshots load as empty."""
        raw: dict[str, Any] = {}
        for collection in COLLECTIONS:
            key = snapshot_key(collection, self.session.user_id)
            try:
                raw[collection] = await self.store.get(key)
            except StorageError as exc:
                logger.warning(
                    "Failed to load %s: %s",
                    collection,
                    exc,
                    extra={"medtrack_user_id": self.session.user_id, "medtrack_storage_key": key},
                )
                raw[collection] = None

        self._state = reducers.from_snapshots(raw, default_profile_name=self.session.display_name)
        logger.info(
            "Tracker loaded: %d medications, %d logs",
            len(self._state.medications),
            len(self._state.dose_logs),
            extra={"medtrack_user_id": self.session.user_id},
        )
        return self._state

    async def _apply(self, transition: Transition) -> ActionResult:
        self._state = transition.state
        failure: StorageError | None = None
        for collection in transition.changed:
            key = snapshot_key(collection, self.session.user_id)
            try:
                await self.store.set(key, reducers.snapshot(self._state, collection))
            except StorageError as exc:
                logger.error(
                    "Failed to persist %s: %s",
                    collection,
                    exc,
                    extra={"medtrack_user_id": self.session.user_id, "medtrack_storage_key": key},
                )
                if failure is None:
                    failure = exc
        return ActionResult(self._state, transition, failure)

    def _ensure_open(self) -> None:
        if self._closed:
            raise AuthError("Session has ended; sign in again")

    # -- actions ----------------------------------------------------------

    async def add_medication(self, **fields: Any) -> ActionResult:
        self._ensure_open()
        return await self._apply(reducers.add_medication(self._state, now=self.clock(), **fields))

    async def log_dose(
        self, medication_id: str, status: str, *, notes: str | None = None
    ) -> ActionResult:
        self._ensure_open()
        result = await self._apply(
            reducers.log_dose(self._state, medication_id, status, now=self.clock(), notes=notes)
        )
        if status in ("taken", "missed"):
            self._trigger.acknowledge(medication_id, status)
        return result

    async def add_profile(self, **fields: Any) -> ActionResult:
        self._ensure_open()
        return await self._apply(reducers.add_profile(self._state, **fields))

    async def update_profile(self, profile_id: str, **changes: Any) -> ActionResult:
        self._ensure_open()
        return await self._apply(reducers.update_profile(self._state, profile_id, **changes))

    async def delete_profile(self, profile_id: str) -> ActionResult:
        self._ensure_open()
        return await self._apply(reducers.delete_profile(self._state, profile_id))

    def select_profile(self, profile_id: str) -> TrackerState:
        self._ensure_open()
        self._state = reducers.select_profile(self._state, profile_id).state
        self._trigger.prompter.reset()
        return self._state

    # -- prompt responses -------------------------------------------------

    async def acknowledge(self, medication_id: str, status: str) -> ActionResult:
        """Answer a dose-due prompt with "taken" or "missed"."""
        if status not in ("taken", "missed"):
            raise InvalidInputError(
                f"Prompts can only be answered taken or missed, got {status!r}", field="status"
            )
        return await self.log_dose(medication_id, status)

    def snooze(self, medication_id: str) -> bool:
        return self._trigger.snooze(medication_id) is not None

    def dismiss(self, medication_id: str) -> bool:
        return self._trigger.dismiss(medication_id) is not None

    # -- read models ------------------------------------------------------

    def upcoming(self, limit: int = UPCOMING_LIMIT) -> list[UpcomingDose]:
        return compute_upcoming(self._state.active_medications, self.clock(), limit=limit)

    def today(self) -> list[MedicationProgress]:
        now = self.clock()
        logs = self._state.active_logs
        return [
            MedicationProgress(
                medication=med,
                progress=daily_progress(med, logs, now.date()),
                next_dose=next_dose_time(med, now),
            )
            for med in self._state.active_medications
        ]

    def report(self, today: date | None = None) -> AdherenceReport:
        return build_report(
            self._state.active_medications,
            self._state.active_logs,
            today or self.clock().date(),
        )

    def rewards_summary(self) -> RewardsSummary:
        return summarize(self._state.rewards, self._state.dose_logs.logs)

    # -- lifecycle --------------------------------------------------------

    def _notification_source(self) -> tuple[list[Medication], list[Any]]:
        return self._state.active_medications, self._state.active_logs

    def start_notifications(self) -> asyncio.Task[None]:
        self._ensure_open()
        return self._trigger.start()

    def attach(self, provider: IdentityProvider) -> None:
        """Tear the tracker down when the provider reports a sign-out."""

        def on_session_change(event: AuthEvent, session: Session | None) -> None:
            if event == "SIGNED_OUT" and not self._closed:
                self._pending_close = asyncio.get_running_loop().create_task(self.close())

        self._unsubscribe = provider.subscribe(on_session_change)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._trigger.stop()
        self.channel.close()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._state = TrackerState()
        logger.info("Tracker closed", extra={"medtrack_user_id": self.session.user_id})

    async def wait_closed(self) -> None:
        if self._pending_close is not None:
            await self._pending_close


async def open_tracker(
    provider: IdentityProvider,
    store: SnapshotStore,
    *,
    clock: Clock = _utc_now,
    poll_interval_seconds: float = 30.0,
) -> Tracker | None:
    """Build and load a tracker for the current session, or None when signed out."""
    try:
        session = await provider.get_session()
    except AuthError as exc:
        logger.warning("Could not read session: %s", exc)
        return None
    if session is None:
        return None

    tracker = Tracker(session, store, clock=clock, poll_interval_seconds=poll_interval_seconds)
    await tracker.load()
    tracker.attach(provider)
    return tracker
