"""medtrack command-line interface."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

import click

from .auth import IdentityProvider, LocalIdentityProvider, SupabaseIdentityProvider
from .config import Config
from .errors import TrackerError
from .export import ALL_TIME, DateRange, csv_filename, export_csv, export_pdf, filter_logs, pdf_filename
from .logging import setup_logging
from .models import CATEGORIES, DOSE_STATUSES, RELATIONSHIPS, Medication
from .notifications import DoseDue
from .rewards import ACHIEVEMENTS, points_for_dose
from .storage import PostgresSnapshotStore, store_from_config
from .time_window import evaluate
from .tracker import ActionResult, Tracker, open_tracker

logger = logging.getLogger(__name__)

_DATE = click.DateTime(formats=["%Y-%m-%d"])


@dataclass
class Options:
    config: Config
    user_id: str
    email: str | None
    password: str | None
    profile: str | None


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


async def _open(opts: Options, provider: IdentityProvider) -> Tracker:
    store = store_from_config(opts.config)
    if isinstance(store, PostgresSnapshotStore):
        await store.ensure_schema()
    if opts.email:
        await provider.sign_in(opts.email, opts.password or "")

    tracker = await open_tracker(
        provider,
        store,
        clock=opts.config.now,
        poll_interval_seconds=opts.config.poll_interval_seconds,
    )
    if tracker is None:
        raise TrackerError("Not signed in")
    if opts.profile:
        tracker.select_profile(opts.profile)
    return tracker


def _provider(opts: Options) -> IdentityProvider:
    if not opts.email:
        return LocalIdentityProvider(user_id=opts.user_id)
    if not opts.config.supabase_url or not opts.config.supabase_anon_key:
        _fail("SUPABASE_URL and SUPABASE_ANON_KEY must be set to sign in with --email.")
    return SupabaseIdentityProvider(opts.config.supabase_url, opts.config.supabase_anon_key)


def _run(ctx: click.Context, action: Callable[[Tracker], Awaitable[None]]) -> None:
    opts: Options = ctx.obj

    async def runner() -> None:
        provider = _provider(opts)
        try:
            tracker = await _open(opts, provider)
            try:
                await action(tracker)
            finally:
                await tracker.close()
        finally:
            if isinstance(provider, SupabaseIdentityProvider):
                await provider.aclose()

    try:
        asyncio.run(runner())
    except TrackerError as exc:
        _fail(exc.message)


def _report_storage(result: ActionResult) -> None:
    if result.storage_error is not None:
        click.echo(f"Warning: change kept in memory but not saved ({result.storage_error.message})", err=True)


def _find_medication(tracker: Tracker, ref: str) -> Medication:
    meds = tracker.state.active_medications
    for med in meds:
        if med.id == ref:
            return med
    matches = [med for med in meds if med.name.lower() == ref.lower()]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise TrackerError(f"{ref!r} matches {len(matches)} medications; use the id")
    raise TrackerError(f"No medication {ref!r} in the active profile")


@click.group()
@click.option("--user-id", default="local", show_default=True, help="Local user id (offline mode).")
@click.option("--email", help="Sign in with the identity provider.")
@click.option("--password", help="Password for --email.")
@click.option("--profile", help="Profile id to act on for this invocation.")
@click.option("--verbose", "-v", is_flag=True, help="Log at INFO instead of WARNING.")
@click.pass_context
def main(
    ctx: click.Context,
    user_id: str,
    email: str | None,
    password: str | None,
    profile: str | None,
    verbose: bool,
):
    """Medication adherence tracker."""
    try:
        config = Config.from_env()
    except RuntimeError as exc:
        _fail(str(exc))
    setup_logging(config.log_format, logging.INFO if verbose else logging.WARNING)
    if email and not password:
        password = click.prompt("Password", hide_input=True)
    ctx.obj = Options(config=config, user_id=user_id, email=email, password=password, profile=profile)


# ---------------------------------------------------------------------------
# Medications and doses
# ---------------------------------------------------------------------------


@main.command("add-medication")
@click.option("--name", required=True)
@click.option("--dosage", required=True, help='e.g. "10mg".')
@click.option("--frequency", type=click.IntRange(min=1), default=1, show_default=True)
@click.option("--category", type=click.Choice(list(CATEGORIES)), default="Prescription", show_default=True)
@click.option("--time", "times", multiple=True, help="Dose time HH:MM; repeat once per daily dose.")
@click.option("--start-date", type=_DATE)
@click.option("--end-date", type=_DATE)
@click.option("--instructions")
@click.pass_context
def add_medication(
    ctx: click.Context,
    name: str,
    dosage: str,
    frequency: int,
    category: str,
    times: tuple[str, ...],
    start_date: datetime | None,
    end_date: datetime | None,
    instructions: str | None,
):
    """Add a medication to the active profile."""

    async def action(tracker: Tracker) -> None:
        result = await tracker.add_medication(
            name=name,
            dosage=dosage,
            frequency=frequency,
            category=category,
            times=list(times) or None,
            start_date=start_date.date() if start_date else None,
            end_date=end_date.date() if end_date else None,
            instructions=instructions,
        )
        med = result.transition.medication
        click.echo(f"Added {med.name} ({med.id}) at {', '.join(med.times)}")
        _report_storage(result)

    _run(ctx, action)


@main.command()
@click.pass_context
def medications(ctx: click.Context):
    """List the active profile's medications."""

    async def action(tracker: Tracker) -> None:
        meds = tracker.state.active_medications
        if not meds:
            click.echo("No medications yet.")
            return
        now = tracker.clock()
        for med in meds:
            window = evaluate(med, now)
            click.echo(
                f"{med.id}  {med.name} {med.dosage}  [{med.category}]  "
                f"{', '.join(med.times)}  ({window.label})"
            )
            if med.instructions:
                click.echo(f"    {med.instructions}")

    _run(ctx, action)


@main.command()
@click.argument("medication")
@click.option("--status", type=click.Choice(list(DOSE_STATUSES)), default="taken", show_default=True)
@click.option("--notes")
@click.pass_context
def log(ctx: click.Context, medication: str, status: str, notes: str | None):
    """Log a dose for MEDICATION (id or name)."""

    async def action(tracker: Tracker) -> None:
        med = _find_medication(tracker, medication)
        result = await tracker.log_dose(med.id, status, notes=notes)
        dose = result.transition.dose_log
        line = f"Logged {med.name}: {dose.status}"
        if dose.is_late:
            line += f" ({dose.minutes_late} min late)"
        click.echo(line)

        update = result.transition.rewards
        if update is not None:
            click.echo(f"+{update.points_earned} points, streak {update.state.streak} day(s)")
            if update.celebrate_first_log:
                click.echo("Congratulations on logging your first dose!")
            for key in update.unlocked:
                click.echo(f"Achievement unlocked: {ACHIEVEMENTS[key].title}")
        _report_storage(result)

    _run(ctx, action)


@main.command()
@click.pass_context
def today(ctx: click.Context):
    """Today's progress per medication."""

    async def action(tracker: Tracker) -> None:
        rows = tracker.today()
        if not rows:
            click.echo("No medications yet.")
            return
        now = tracker.clock()
        for row in rows:
            med = row.medication
            window = evaluate(med, now)
            if row.progress.can_log_more and window.eligible:
                hint = f"log now for {points_for_dose(window.is_late)} points"
            elif row.progress.can_log_more:
                hint = f"next dose {row.next_dose.strftime('%H:%M')}"
            else:
                hint = "all doses taken"
            click.echo(f"{med.name}: {row.progress.taken}/{row.progress.expected} taken, {hint}")

    _run(ctx, action)


@main.command()
@click.option("--limit", type=click.IntRange(min=1), default=5, show_default=True)
@click.pass_context
def upcoming(ctx: click.Context, limit: int):
    """Next scheduled doses, soonest first."""

    async def action(tracker: Tracker) -> None:
        doses = tracker.upcoming(limit)
        if not doses:
            click.echo("No upcoming doses.")
            return
        for dose in doses:
            click.echo(
                f"{dose.scheduled_time.strftime('%a %H:%M')}  {dose.medication_name} {dose.dosage}"
                f"  (in {dose.countdown})"
            )

    _run(ctx, action)


# ---------------------------------------------------------------------------
# Analytics and rewards
# ---------------------------------------------------------------------------


@main.command()
@click.pass_context
def analytics(ctx: click.Context):
    """Adherence report for the active profile."""

    async def action(tracker: Tracker) -> None:
        report = tracker.report()
        overall = report.overall
        click.echo(
            f"Overall: {overall.adherence}% ({overall.taken} taken, {overall.missed} missed, "
            f"{overall.total} logged)"
        )
        click.echo(
            f"Timing: {report.lateness.on_time_count} on time, {report.lateness.late_count} late "
            f"(avg {report.lateness.average_minutes_late} min)"
        )
        click.echo("Last 7 days:")
        for day in report.weekly:
            click.echo(f"  {day.day.strftime('%a %m-%d')}  {day.taken}/{day.expected}  {day.adherence}%")
        if report.medications:
            click.echo("Medications:")
            for med in report.medications:
                click.echo(f"  {med.name}: {med.adherence}% ({med.taken}/{med.total})")
        if report.categories:
            click.echo("Categories:")
            for cat in report.categories:
                click.echo(f"  {cat.category}: {cat.adherence}% across {cat.medication_count} medication(s)")
        summary = report.heatmap_summary
        click.echo(
            f"Calendar: {summary.perfect_days} perfect day(s), average {summary.average_adherence}%, "
            f"{summary.days_with_missed} day(s) with missed doses"
        )
        for insight in report.insights:
            click.echo(f"* {insight.message}")

    _run(ctx, action)


@main.command()
@click.pass_context
def rewards(ctx: click.Context):
    """Points, level, streak and achievements."""

    async def action(tracker: Tracker) -> None:
        summary = tracker.rewards_summary()
        click.echo(f"Level {summary.level} ({summary.level_title}), {summary.points} points")
        click.echo(f"{summary.points_to_next_level} points to level {summary.level + 1}")
        click.echo(f"Streak: {summary.streak} day(s)")
        click.echo(f"Doses taken: {summary.taken_doses} ({summary.on_time_doses} on time)")
        for status in summary.achievements:
            mark = "x" if status.unlocked else " "
            click.echo(f"  [{mark}] {status.achievement.title}: {status.achievement.description}")
        click.echo(summary.motivation)

    _run(ctx, action)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


@main.group()
def profiles():
    """Manage family member profiles."""


@profiles.command("list")
@click.pass_context
def list_profiles(ctx: click.Context):
    async def action(tracker: Tracker) -> None:
        on = tracker.clock().date()
        for profile in tracker.state.profiles:
            active = "*" if profile.id == tracker.state.active_profile_id else " "
            age = profile.age(on)
            suffix = f", {age} years" if age is not None else ""
            click.echo(f"{active} {profile.id}  {profile.name} ({profile.relationship}{suffix})")

    _run(ctx, action)


@profiles.command("add")
@click.option("--name", required=True)
@click.option("--relationship", type=click.Choice(list(RELATIONSHIPS)), required=True)
@click.option("--date-of-birth", type=_DATE)
@click.pass_context
def add_profile(ctx: click.Context, name: str, relationship: str, date_of_birth: datetime | None):
    async def action(tracker: Tracker) -> None:
        result = await tracker.add_profile(
            name=name,
            relationship=relationship,
            date_of_birth=date_of_birth.date() if date_of_birth else None,
        )
        click.echo(f"Added profile {result.transition.profile.name} ({result.transition.profile.id})")
        _report_storage(result)

    _run(ctx, action)


@profiles.command("edit")
@click.argument("profile_id")
@click.option("--name")
@click.option("--relationship", type=click.Choice(list(RELATIONSHIPS)))
@click.option("--date-of-birth", type=_DATE)
@click.pass_context
def edit_profile(
    ctx: click.Context,
    profile_id: str,
    name: str | None,
    relationship: str | None,
    date_of_birth: datetime | None,
):
    changes: dict[str, object] = {}
    if name is not None:
        changes["name"] = name
    if relationship is not None:
        changes["relationship"] = relationship
    if date_of_birth is not None:
        changes["date_of_birth"] = date_of_birth.date()
    if not changes:
        _fail("Nothing to change.")

    async def action(tracker: Tracker) -> None:
        result = await tracker.update_profile(profile_id, **changes)
        click.echo(f"Updated profile {result.transition.profile.name}")
        _report_storage(result)

    _run(ctx, action)


@profiles.command("remove")
@click.argument("profile_id")
@click.pass_context
def remove_profile(ctx: click.Context, profile_id: str):
    async def action(tracker: Tracker) -> None:
        result = await tracker.delete_profile(profile_id)
        click.echo(f"Removed profile {result.transition.profile.name}")
        _report_storage(result)

    _run(ctx, action)


# ---------------------------------------------------------------------------
# Export and notifications
# ---------------------------------------------------------------------------


@main.command()
@click.option("--format", "fmt", type=click.Choice(["csv", "pdf"]), default="csv", show_default=True)
@click.option("--days", type=click.IntRange(min=1), help="Only the last N days.")
@click.option("--start", type=_DATE, help="First day (inclusive).")
@click.option("--end", type=_DATE, help="Last day (inclusive).")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output file (default: suggested name).")
@click.pass_context
def export(
    ctx: click.Context,
    fmt: str,
    days: int | None,
    start: datetime | None,
    end: datetime | None,
    output: Path | None,
):
    """Export the active profile's data as CSV or PDF."""
    if days is not None and (start or end):
        _fail("Specify either --days or --start/--end, not both.")
    if days is not None:
        period = DateRange.last_days(days)
    elif start or end:
        if start and end and end < start:
            _fail("--end must not be before --start.")
        period = DateRange(start=start.date() if start else None, end=end.date() if end else None)
    else:
        period = ALL_TIME

    async def action(tracker: Tracker) -> None:
        now = tracker.clock()
        profile = tracker.state.active_profile
        profile_name = profile.name if profile else tracker.state.active_profile_id
        meds = tracker.state.active_medications
        logs = filter_logs(tracker.state.active_logs, period, now)
        on: date = now.date()

        if fmt == "csv":
            path = output or Path(csv_filename(profile_name, on))
            path.write_text(export_csv(meds, logs, profile_name=profile_name), encoding="utf-8")
        else:
            path = output or Path(pdf_filename(profile_name, on))
            path.write_bytes(
                export_pdf(meds, logs, profile_name=profile_name, period=period, generated_on=on)
            )
        click.echo(f"Wrote {len(logs)} log(s) to {path}")

    _run(ctx, action)


@main.command()
@click.option("--duration", type=float, help="Stop after this many seconds (default: until interrupted).")
@click.pass_context
def watch(ctx: click.Context, duration: float | None):
    """Print dose-due prompts as their windows open.

    Runs as a long-lived process, so it always logs at INFO in the
    configured MEDTRACK_LOG_FORMAT.
    """
    opts: Options = ctx.obj
    setup_logging(opts.config.log_format, logging.INFO)

    def show(event: DoseDue) -> None:
        logger.info(
            "Dose due: %s",
            event.medication_name,
            extra={
                "medtrack_medication_id": event.medication_id,
                "medtrack_scheduled_time": event.scheduled_time.isoformat(),
            },
        )
        click.echo(
            f"[{event.scheduled_time.strftime('%H:%M')}] Time to take {event.medication_name} "
            f"({event.dosage})"
        )

    async def action(tracker: Tracker) -> None:
        tracker.channel.subscribe(show)
        task = tracker.start_notifications()
        click.echo("Watching for due doses (Ctrl-C to stop)...")
        if duration is None:
            await task
        else:
            await asyncio.sleep(duration)

    try:
        _run(ctx, action)
    except KeyboardInterrupt:
        click.echo("Stopped.")


if __name__ == "__main__":
    main()
