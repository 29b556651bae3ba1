"""Simulated dose-due notifications.

``DosePrompter`` is the per-medication state machine::

    idle -> due -> taken | missed      (closed for that window occurrence)
                -> snoozed | dismissed -> due  (re-armed after a delay, only
                                                while daily capacity remains)

A prompt fires once per medication per window occurrence, where an
occurrence is the (day, matched dose time) pair from the window evaluator.

``NotificationTrigger`` drives the prompter from an asyncio poll loop and
owns the re-arm timers; both are torn down by ``stop()``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Literal

from .eligibility import can_log_taken
from .models import DoseLog, Medication
from .time_window import evaluate, scheduled_instant

logger = logging.getLogger(__name__)

SNOOZE_DELAY = timedelta(minutes=5)

PromptStatus = Literal["idle", "due", "taken", "missed", "snoozed", "dismissed"]
Acknowledgement = Literal["taken", "missed"]
Suppression = Literal["snoozed", "dismissed"]

_SUPPRESSED: frozenset[str] = frozenset({"snoozed", "dismissed"})


@dataclass(frozen=True)
class DoseDue:
    medication_id: str
    medication_name: str
    dosage: str
    scheduled_time: datetime


DoseDueListener = Callable[[DoseDue], None]


class DoseDueChannel:
    """Publish/subscribe channel for dose-due events, scoped to one session."""

    def __init__(self) -> None:
        self._listeners: list[DoseDueListener] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: DoseDueListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: DoseDue) -> None:
        if self._closed:
            logger.debug("Dropping dose-due event on closed channel: %s", event.medication_id)
            return
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Dose-due listener failed for %s", event.medication_id)

    def close(self) -> None:
        self._listeners.clear()
        self._closed = True


@dataclass
class _Prompt:
    occurrence: tuple[date, time]
    event: DoseDue
    status: PromptStatus


class DosePrompter:
    def __init__(self) -> None:
        self._prompts: dict[str, _Prompt] = {}

    def status(self, medication_id: str) -> PromptStatus:
        prompt = self._prompts.get(medication_id)
        return prompt.status if prompt is not None else "idle"

    def tick(
        self,
        medications: Sequence[Medication],
        logs: Sequence[DoseLog],
        now: datetime,
    ) -> list[DoseDue]:
        """Advance every medication's prompt; returns the events that became due."""
        fired: list[DoseDue] = []
        for med in medications:
            window = evaluate(med, now)
            prompt = self._prompts.get(med.id)

            if not window.eligible or window.matched_time is None:
                if prompt is not None and prompt.status not in _SUPPRESSED:
                    del self._prompts[med.id]
                continue

            occurrence = (now.date(), window.matched_time)
            if prompt is not None and prompt.occurrence == occurrence:
                continue
            if not can_log_taken(med, logs, now.date()):
                continue

            event = DoseDue(
                medication_id=med.id,
                medication_name=med.name,
                dosage=med.dosage,
                scheduled_time=scheduled_instant(now, window.matched_time),
            )
            self._prompts[med.id] = _Prompt(occurrence, event, "due")
            fired.append(event)
        return fired

    def acknowledge(self, medication_id: str, outcome: Acknowledgement) -> bool:
        """Close the current occurrence for good. Returns False when nothing was prompted."""
        prompt = self._prompts.get(medication_id)
        if prompt is None:
            return False
        prompt.status = outcome
        return True

    def suppress(self, medication_id: str, how: Suppression) -> timedelta | None:
        """Hide a due prompt; returns the delay after which it should be re-armed."""
        prompt = self._prompts.get(medication_id)
        if prompt is None or prompt.status != "due":
            return None
        prompt.status = how
        return SNOOZE_DELAY

    def rearm(
        self,
        medication_id: str,
        medications: Sequence[Medication],
        logs: Sequence[DoseLog],
        now: datetime,
    ) -> DoseDue | None:
        prompt = self._prompts.get(medication_id)
        if prompt is None or prompt.status not in _SUPPRESSED:
            return None

        med = next((m for m in medications if m.id == medication_id), None)
        if med is None:
            del self._prompts[medication_id]
            return None
        if not can_log_taken(med, logs, now.date()):
            logger.debug("Not re-arming %s: daily doses complete", med.name)
            return None

        prompt.status = "due"
        return prompt.event

    def reset(self) -> None:
        self._prompts.clear()


StateSource = Callable[[], tuple[Sequence[Medication], Sequence[DoseLog]]]


class NotificationTrigger:
    """Polls the prompter on a fixed interval and publishes due doses."""

    def __init__(
        self,
        source: StateSource,
        channel: DoseDueChannel,
        *,
        clock: Callable[[], datetime],
        poll_interval_seconds: float = 30.0,
        snooze_delay: timedelta = SNOOZE_DELAY,
    ) -> None:
        self._source = source
        self._channel = channel
        self._clock = clock
        self._poll_interval = poll_interval_seconds
        self._snooze_delay = snooze_delay
        self._prompter = DosePrompter()
        self._shutdown = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._stopped = False

    @property
    def prompter(self) -> DosePrompter:
        return self._prompter

    @property
    def pending_rearms(self) -> tuple[str, ...]:
        return tuple(self._timers)

    def check(self) -> list[DoseDue]:
        """Run one tick and publish whatever became due."""
        if self._stopped:
            return []
        medications, logs = self._source()
        events = self._prompter.tick(medications, logs, self._clock())
        for event in events:
            logger.info(
                "Dose due: %s at %s",
                event.medication_name,
                event.scheduled_time.strftime("%H:%M"),
                extra={"medtrack_medication_id": event.medication_id},
            )
            self._channel.publish(event)
        return events

    def start(self) -> asyncio.Task[None]:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def run(self) -> None:
        logger.info("Notification trigger started (poll_interval=%.1fs)", self._poll_interval)
        while not self._shutdown.is_set():
            try:
                self.check()
            except Exception:
                logger.exception("Error in notification tick")

            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self._poll_interval)
                break  # shutdown was set
            except TimeoutError:
                pass
        logger.info("Notification trigger stopped")

    def acknowledge(self, medication_id: str, outcome: Acknowledgement) -> None:
        self._cancel_timer(medication_id)
        self._prompter.acknowledge(medication_id, outcome)

    def snooze(self, medication_id: str) -> asyncio.TimerHandle | None:
        return self._suppress(medication_id, "snoozed")

    def dismiss(self, medication_id: str) -> asyncio.TimerHandle | None:
        return self._suppress(medication_id, "dismissed")

    def _suppress(self, medication_id: str, how: Suppression) -> asyncio.TimerHandle | None:
        if self._stopped or self._prompter.suppress(medication_id, how) is None:
            return None
        self._cancel_timer(medication_id)
        handle = asyncio.get_running_loop().call_later(
            self._snooze_delay.total_seconds(), self._rearm, medication_id
        )
        self._timers[medication_id] = handle
        logger.debug("Prompt for %s %s; re-arm in %s", medication_id, how, self._snooze_delay)
        return handle

    def _rearm(self, medication_id: str) -> None:
        self._timers.pop(medication_id, None)
        if self._stopped:
            return
        medications, logs = self._source()
        event = self._prompter.rearm(medication_id, medications, logs, self._clock())
        if event is not None:
            self._channel.publish(event)

    def _cancel_timer(self, medication_id: str) -> None:
        handle = self._timers.pop(medication_id, None)
        if handle is not None:
            handle.cancel()

    async def stop(self) -> None:
        """Stop polling and cancel every pending re-arm; nothing fires afterwards."""
        self._stopped = True
        self._shutdown.set()
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        if self._task is not None:
            await self._task
            self._task = None
        self._prompter.reset()
