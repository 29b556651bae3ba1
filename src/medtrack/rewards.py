"""Rewards engine: folds each newly taken dose into the user's rewards state.

The fold is applied in a fixed order:

1. first-ever taken dose: +50 and the ``first-log`` achievement
2. +10 base points
3. +5 when the dose was on time
4. streak update from the log's calendar day
5. +20 while the streak is >= 7 and a further +50 while it is >= 30,
   re-awarded on every qualifying fold
6. one-time achievements: ``week-streak`` (+50) when the streak reaches
   exactly 7, ``month-streak`` (+100) at exactly 30, ``points-500`` once
   points reach 500
7. ``last_log_date`` moves to the log's day

The fold is pure. Callers invoke it exactly once per newly created
"taken" log; nothing here guards against replaying the same log.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta

from .models import POINTS_PER_LEVEL, DoseLog, RewardsState

FIRST_LOG_BONUS = 50
BASE_POINTS = 10
ON_TIME_BONUS = 5

WEEK_STREAK_DAYS = 7
WEEK_STREAK_BONUS = 20
MONTH_STREAK_DAYS = 30
MONTH_STREAK_BONUS = 50

POINTS_MILESTONE = 500
RECENT_ACTIVITY_LIMIT = 10


@dataclass(frozen=True)
class Achievement:
    key: str
    title: str
    description: str
    points: int


ACHIEVEMENTS: dict[str, Achievement] = {
    "first-log": Achievement("first-log", "First Steps", "Logged your first dose", 50),
    "week-streak": Achievement("week-streak", "Week Warrior", "7 days in a row", 50),
    "month-streak": Achievement("month-streak", "Monthly Master", "30 days in a row", 100),
    "points-500": Achievement("points-500", "Point Collector", "Earned 500 points", 0),
}


@dataclass(frozen=True)
class RewardsUpdate:
    state: RewardsState
    points_earned: int
    unlocked: tuple[str, ...]
    # True only on the fold that set has_first_log; the presentation layer
    # decides how (and for how long) to celebrate.
    celebrate_first_log: bool


def points_for_dose(is_late: bool) -> int:
    """Points a taken dose earns before any first-log or streak bonus."""
    return BASE_POINTS if is_late else BASE_POINTS + ON_TIME_BONUS


def next_streak(streak: int, last_log_date: date | None, log_date: date) -> int:
    if last_log_date == log_date:
        return streak
    if last_log_date is not None and last_log_date == log_date - timedelta(days=1):
        return streak + 1
    return 1


def fold(state: RewardsState, log: DoseLog) -> RewardsUpdate:
    if log.status != "taken":
        raise ValueError(f"only taken doses earn rewards, got status={log.status!r}")

    points = state.points
    achievements = list(state.achievements)
    celebrate = False

    if not state.has_first_log:
        points += FIRST_LOG_BONUS
        if "first-log" not in achievements:
            achievements.append("first-log")
        celebrate = True

    points += BASE_POINTS
    if not log.is_late:
        points += ON_TIME_BONUS

    log_date = log.day
    streak = next_streak(state.streak, state.last_log_date, log_date)

    if streak >= WEEK_STREAK_DAYS:
        points += WEEK_STREAK_BONUS
    if streak >= MONTH_STREAK_DAYS:
        points += MONTH_STREAK_BONUS

    if streak == WEEK_STREAK_DAYS and "week-streak" not in achievements:
        achievements.append("week-streak")
        points += ACHIEVEMENTS["week-streak"].points
    if streak == MONTH_STREAK_DAYS and "month-streak" not in achievements:
        achievements.append("month-streak")
        points += ACHIEVEMENTS["month-streak"].points
    if points >= POINTS_MILESTONE and "points-500" not in achievements:
        achievements.append("points-500")

    new_state = RewardsState(
        points=points,
        streak=streak,
        achievements=tuple(achievements),
        last_log_date=log_date,
        has_first_log=True,
    )
    return RewardsUpdate(
        state=new_state,
        points_earned=points - state.points,
        unlocked=tuple(a for a in achievements if a not in state.achievements),
        celebrate_first_log=celebrate,
    )


# ---------------------------------------------------------------------------
# Read-side summary
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AchievementStatus:
    achievement: Achievement
    unlocked: bool


@dataclass(frozen=True)
class RewardsSummary:
    level: int
    level_title: str
    points: int
    streak: int
    progress_to_next_level: int
    points_to_next_level: int
    taken_doses: int
    on_time_doses: int
    achievements: tuple[AchievementStatus, ...]
    recent_logs: tuple[DoseLog, ...]
    motivation: str


def level_title(level: int) -> str:
    if level >= 10:
        return "Master"
    if level >= 5:
        return "Expert"
    if level >= 3:
        return "Advanced"
    return "Beginner"


def motivation_message(streak: int) -> str:
    if streak >= 7:
        return f"Amazing {streak}-day streak! You're building a great habit."
    if streak >= 3:
        return f"Great job! {streak} days in a row. Keep it up!"
    return "Every dose counts. Start building your streak today!"


def summarize(state: RewardsState, logs: Sequence[DoseLog]) -> RewardsSummary:
    progress = state.points % POINTS_PER_LEVEL
    taken = [log for log in logs if log.status == "taken"]
    return RewardsSummary(
        level=state.level,
        level_title=level_title(state.level),
        points=state.points,
        streak=state.streak,
        progress_to_next_level=progress,
        points_to_next_level=POINTS_PER_LEVEL - progress,
        taken_doses=len(taken),
        on_time_doses=sum(1 for log in taken if not log.is_late),
        achievements=tuple(
            AchievementStatus(a, a.key in state.achievements) for a in ACHIEVEMENTS.values()
        ),
        recent_logs=tuple(reversed(logs[-RECENT_ACTIVITY_LIMIT:])),
        motivation=motivation_message(state.streak),
    )
