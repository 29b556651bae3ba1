from __future__ import annotations

import asyncio
from datetime import timedelta

from medtrack.models import DoseLog
from medtrack.notifications import SNOOZE_DELAY, DoseDue, DoseDueChannel, DosePrompter, NotificationTrigger

from .conftest import FakeClock, at, make_medication


def _taken(log_id: str, when=None) -> DoseLog:
    when = when or at(8, 5)
    return DoseLog(
        id=log_id,
        medication_id="med-1",
        profile_id="default",
        status="taken",
        scheduled_time=at(8, 0),
        timestamp=when,
    )


class TestDosePrompter:
    med = make_medication(times=("08:00", "20:00"))

    def test_fires_once_per_window_entry(self) -> None:
        prompter = DosePrompter()
        assert prompter.tick([self.med], [], at(7, 40)) == []

        fired = prompter.tick([self.med], [], at(7, 45))
        assert [e.scheduled_time for e in fired] == [at(8, 0)]
        assert prompter.status("med-1") == "due"
        assert prompter.tick([self.med], [], at(8, 30)) == []

    def test_next_window_fires_again(self) -> None:
        prompter = DosePrompter()
        prompter.tick([self.med], [], at(8, 0))
        prompter.acknowledge("med-1", "taken")
        assert prompter.tick([self.med], [_taken("a")], at(12, 30)) == []
        assert prompter.status("med-1") == "idle"

        fired = prompter.tick([self.med], [_taken("a")], at(19, 50))
        assert [e.scheduled_time for e in fired] == [at(20, 0)]

    def test_acknowledged_occurrence_stays_closed(self) -> None:
        prompter = DosePrompter()
        prompter.tick([self.med], [], at(8, 0))
        assert prompter.acknowledge("med-1", "missed")
        assert prompter.tick([self.med], [], at(8, 10)) == []
        assert prompter.status("med-1") == "missed"

    def test_no_prompt_when_daily_doses_complete(self) -> None:
        prompter = DosePrompter()
        logs = [_taken("a"), _taken("b")]
        assert prompter.tick([self.med], logs, at(20, 0)) == []

    def test_snooze_rearms_only_with_capacity(self) -> None:
        prompter = DosePrompter()
        (event,) = prompter.tick([self.med], [], at(8, 0))
        assert prompter.suppress("med-1", "snoozed") == SNOOZE_DELAY
        assert prompter.suppress("med-1", "snoozed") is None

        assert prompter.rearm("med-1", [self.med], [], at(8, 5)) == event
        assert prompter.status("med-1") == "due"

        prompter.suppress("med-1", "dismissed")
        full = [_taken("a"), _taken("b")]
        assert prompter.rearm("med-1", [self.med], full, at(8, 10)) is None
        assert prompter.status("med-1") == "dismissed"


def test_channel_unsubscribe_and_close() -> None:
    channel = DoseDueChannel()
    seen: list[str] = []
    unsubscribe = channel.subscribe(lambda e: seen.append(e.medication_id))
    event = DoseDue("med-1", "Aspirin", "81mg", at(8, 0))

    channel.publish(event)
    unsubscribe()
    channel.publish(event)
    assert seen == ["med-1"]

    channel.subscribe(lambda e: seen.append("late"))
    channel.close()
    channel.publish(event)
    assert seen == ["med-1"]
    assert channel.closed


def test_failing_listener_does_not_block_others() -> None:
    channel = DoseDueChannel()
    seen: list[str] = []

    def broken(event: DoseDue) -> None:
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(lambda e: seen.append(e.medication_id))
    channel.publish(DoseDue("med-1", "Aspirin", "81mg", at(8, 0)))
    assert seen == ["med-1"]


class TestNotificationTrigger:
    def _trigger(self, clock: FakeClock, logs: list[DoseLog] | None = None):
        channel = DoseDueChannel()
        seen: list[DoseDue] = []
        channel.subscribe(seen.append)
        med = make_medication()
        trigger = NotificationTrigger(
            lambda: ([med], logs or []),
            channel,
            clock=clock,
            poll_interval_seconds=0.01,
            snooze_delay=timedelta(milliseconds=20),
        )
        return trigger, seen

    async def test_poll_loop_publishes_and_stops(self) -> None:
        clock = FakeClock(at(8, 0))
        trigger, seen = self._trigger(clock)
        trigger.start()
        await asyncio.sleep(0.05)
        await trigger.stop()

        assert len(seen) == 1
        assert seen[0].medication_name == "Aspirin"

    async def test_snooze_rearms_after_delay(self) -> None:
        clock = FakeClock(at(8, 0))
        trigger, seen = self._trigger(clock)
        trigger.check()

        assert trigger.snooze("med-1") is not None
        assert trigger.pending_rearms == ("med-1",)
        await asyncio.sleep(0.05)

        assert len(seen) == 2
        assert trigger.pending_rearms == ()
        await trigger.stop()

    async def test_stop_cancels_pending_rearm(self) -> None:
        clock = FakeClock(at(8, 0))
        trigger, seen = self._trigger(clock)
        trigger.check()
        trigger.dismiss("med-1")

        await trigger.stop()
        await asyncio.sleep(0.05)
        assert len(seen) == 1
        assert trigger.check() == []

    async def test_acknowledge_cancels_rearm(self) -> None:
        clock = FakeClock(at(8, 0))
        trigger, seen = self._trigger(clock)
        trigger.check()
        trigger.snooze("med-1")
        trigger.acknowledge("med-1", "taken")

        await asyncio.sleep(0.05)
        assert len(seen) == 1
        assert trigger.prompter.status("med-1") == "taken"
        await trigger.stop()
