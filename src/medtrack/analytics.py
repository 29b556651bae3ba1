"""Adherence analytics: read-only projections over medications and dose logs.

Nothing here is cached; every function recomputes from the collections it
is handed. All percentages round half up and are 0 whenever the
denominator is 0.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta

from .models import DoseLog, Medication

WEEKLY_WINDOW_DAYS = 7
HEATMAP_MONTHS_BACK = 2
HEATMAP_MAX_INTENSITY = 4
HEATMAP_BUCKET_PCT = 25

EXCELLENT_ADHERENCE_PCT = 90
LOW_ADHERENCE_PCT = 70


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def percent(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        return 0
    return _round_half_up(numerator * 100 / denominator)


def expected_daily_doses(medications: Sequence[Medication]) -> int:
    return sum(med.frequency for med in medications)


def _status_counts_by_day(logs: Sequence[DoseLog]) -> Counter[tuple[date, str]]:
    return Counter((log.day, log.status) for log in logs)


@dataclass(frozen=True)
class DailyAdherence:
    day: date
    taken: int
    expected: int
    adherence: int


def daily_adherence(
    medications: Sequence[Medication],
    logs: Sequence[DoseLog],
    today: date,
    *,
    days: int = WEEKLY_WINDOW_DAYS,
) -> list[DailyAdherence]:
    """Per-day taken vs. expected for the trailing ``days`` days, oldest first."""
    expected = expected_daily_doses(medications)
    counts = _status_counts_by_day(logs)
    result = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        taken = counts[(day, "taken")]
        result.append(
            DailyAdherence(day=day, taken=taken, expected=expected, adherence=percent(taken, expected))
        )
    return result


@dataclass(frozen=True)
class MedicationAdherence:
    medication_id: str
    name: str
    category: str
    taken: int
    missed: int
    total: int
    adherence: int


def medication_adherence(
    medications: Sequence[Medication],
    logs: Sequence[DoseLog],
) -> list[MedicationAdherence]:
    """Taken share of all logs per medication (not divided by frequency)."""
    counts = Counter((log.medication_id, log.status) for log in logs)
    totals = Counter(log.medication_id for log in logs)
    result = []
    for med in medications:
        taken = counts[(med.id, "taken")]
        total = totals[med.id]
        result.append(
            MedicationAdherence(
                medication_id=med.id,
                name=med.name,
                category=med.category,
                taken=taken,
                missed=counts[(med.id, "missed")],
                total=total,
                adherence=percent(taken, total),
            )
        )
    return result


@dataclass(frozen=True)
class CategoryAdherence:
    category: str
    medication_count: int
    taken: int
    total: int
    adherence: int


def category_adherence(
    medications: Sequence[Medication],
    logs: Sequence[DoseLog],
) -> list[CategoryAdherence]:
    """Aggregate taken/total across medications sharing a category, in first-seen order."""
    grouped: dict[str, list[MedicationAdherence]] = {}
    for stats in medication_adherence(medications, logs):
        grouped.setdefault(stats.category, []).append(stats)

    result = []
    for category, members in grouped.items():
        taken = sum(m.taken for m in members)
        total = sum(m.total for m in members)
        result.append(
            CategoryAdherence(
                category=category,
                medication_count=len(members),
                taken=taken,
                total=total,
                adherence=percent(taken, total),
            )
        )
    return result


@dataclass(frozen=True)
class OverallStats:
    total: int
    taken: int
    missed: int
    adherence: int


def overall_stats(logs: Sequence[DoseLog]) -> OverallStats:
    taken = sum(1 for log in logs if log.status == "taken")
    missed = sum(1 for log in logs if log.status == "missed")
    return OverallStats(
        total=len(logs),
        taken=taken,
        missed=missed,
        adherence=percent(taken, len(logs)),
    )


@dataclass(frozen=True)
class LatenessSummary:
    late_count: int
    on_time_count: int
    average_minutes_late: int


def lateness_summary(logs: Sequence[DoseLog]) -> LatenessSummary:
    taken = [log for log in logs if log.status == "taken"]
    late = [log for log in taken if log.is_late]
    average = _round_half_up(sum(log.minutes_late for log in late) / len(late)) if late else 0
    return LatenessSummary(
        late_count=len(late),
        on_time_count=len(taken) - len(late),
        average_minutes_late=average,
    )


# ---------------------------------------------------------------------------
# Calendar heatmap
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HeatmapDay:
    day: date
    taken: int
    missed: int
    expected: int
    adherence: int
    intensity: int
    # Any missed dose flags the day regardless of intensity.
    has_missed: bool


@dataclass(frozen=True)
class HeatmapSummary:
    perfect_days: int
    average_adherence: int
    days_with_missed: int
    total_taken: int


def heatmap_window(today: date) -> tuple[date, date]:
    """First day of the month two months back through the last day of this month."""
    month_index = today.year * 12 + (today.month - 1) - HEATMAP_MONTHS_BACK
    start = date(month_index // 12, month_index % 12 + 1, 1)

    next_month_index = today.year * 12 + today.month
    end = date(next_month_index // 12, next_month_index % 12 + 1, 1) - timedelta(days=1)
    return start, end


def calendar_heatmap(
    medications: Sequence[Medication],
    logs: Sequence[DoseLog],
    today: date,
) -> list[HeatmapDay]:
    start, end = heatmap_window(today)
    expected = expected_daily_doses(medications)
    counts = _status_counts_by_day(logs)

    days = []
    day = start
    while day <= end:
        taken = counts[(day, "taken")]
        missed = counts[(day, "missed")]
        rate = taken * 100 / expected if expected > 0 else 0.0
        days.append(
            HeatmapDay(
                day=day,
                taken=taken,
                missed=missed,
                expected=expected,
                adherence=_round_half_up(rate),
                intensity=min(_round_half_up(rate / HEATMAP_BUCKET_PCT), HEATMAP_MAX_INTENSITY),
                has_missed=missed > 0,
            )
        )
        day += timedelta(days=1)
    return days


def heatmap_summary(days: Sequence[HeatmapDay]) -> HeatmapSummary:
    average = _round_half_up(sum(d.adherence for d in days) / len(days)) if days else 0
    return HeatmapSummary(
        perfect_days=sum(1 for d in days if d.adherence == 100),
        average_adherence=average,
        days_with_missed=sum(1 for d in days if d.has_missed),
        total_taken=sum(d.taken for d in days),
    )


# ---------------------------------------------------------------------------
# Insights and full report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Insight:
    kind: str  # excellent, needs_attention, frequently_missed
    message: str


def insights(overall: OverallStats, medications: Sequence[MedicationAdherence]) -> list[Insight]:
    result = []
    if overall.adherence >= EXCELLENT_ADHERENCE_PCT:
        result.append(
            Insight(
                "excellent",
                f"Excellent adherence! You're maintaining a {overall.adherence}% adherence rate.",
            )
        )
    if overall.adherence < LOW_ADHERENCE_PCT and overall.total > 0:
        result.append(
            Insight(
                "needs_attention",
                f"Your adherence rate is {overall.adherence}%. Consider setting more reminders "
                "or discussing with your healthcare provider.",
            )
        )
    struggling = [m for m in medications if m.missed > m.taken]
    if struggling:
        names = ", ".join(f"{m.name} ({m.missed} missed)" for m in struggling)
        result.append(
            Insight(
                "frequently_missed",
                f"Often missed: {names}. Consider adjusting dose times or setting additional reminders.",
            )
        )
    return result


@dataclass(frozen=True)
class AdherenceReport:
    weekly: list[DailyAdherence]
    medications: list[MedicationAdherence]
    categories: list[CategoryAdherence]
    overall: OverallStats
    lateness: LatenessSummary
    heatmap: list[HeatmapDay]
    heatmap_summary: HeatmapSummary
    insights: list[Insight]


def build_report(
    medications: Sequence[Medication],
    logs: Sequence[DoseLog],
    today: date,
) -> AdherenceReport:
    per_medication = medication_adherence(medications, logs)
    overall = overall_stats(logs)
    heatmap = calendar_heatmap(medications, logs, today)
    return AdherenceReport(
        weekly=daily_adherence(medications, logs, today),
        medications=per_medication,
        categories=category_adherence(medications, logs),
        overall=overall,
        lateness=lateness_summary(logs),
        heatmap=heatmap,
        heatmap_summary=heatmap_summary(heatmap),
        insights=insights(overall, per_medication),
    )
