"""CSV and PDF exports of a profile's medications and dose logs."""

from __future__ import annotations

import csv
import io
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from fpdf import FPDF, XPos, YPos

from .analytics import percent
from .models import DoseLog, Medication

CSV_COLUMNS = (
    "Date",
    "Time",
    "Medication",
    "Dosage",
    "Category",
    "Status",
    "Scheduled Time",
    "Actual Time",
    "Notes",
)
PDF_RECENT_LOGS = 20


@dataclass(frozen=True)
class DateRange:
    """Export period: trailing ``days``, an inclusive ``start``..``end``, or all time."""

    days: int | None = None
    start: date | None = None
    end: date | None = None

    @classmethod
    def last_days(cls, days: int) -> DateRange:
        if days < 1:
            raise ValueError("days must be positive")
        return cls(days=days)

    @classmethod
    def between(cls, start: date, end: date) -> DateRange:
        if end < start:
            raise ValueError("end must not be before start")
        return cls(start=start, end=end)

    def contains(self, log: DoseLog, now: datetime) -> bool:
        if self.days is not None:
            return log.timestamp >= now - timedelta(days=self.days)
        if self.start is not None and log.day < self.start:
            return False
        if self.end is not None and log.day > self.end:
            return False
        return True

    def describe(self) -> str:
        if self.days is not None:
            return f"Last {self.days} days"
        if self.start is not None or self.end is not None:
            return f"{self.start or '...'} to {self.end or '...'}"
        return "All time"


ALL_TIME = DateRange()


def filter_logs(logs: Sequence[DoseLog], period: DateRange, now: datetime) -> list[DoseLog]:
    return [log for log in logs if period.contains(log, now)]


def _clock(value: datetime | None) -> str:
    return value.strftime("%H:%M:%S") if value is not None else ""


def csv_filename(profile_name: str, on: date) -> str:
    return f"medtrack-data-{profile_name}-{on.isoformat()}.csv"


def pdf_filename(profile_name: str, on: date) -> str:
    return f"medtrack-report-{profile_name}-{on.isoformat()}.pdf"


def export_csv(
    medications: Sequence[Medication],
    logs: Sequence[DoseLog],
    *,
    profile_name: str,
) -> str:
    """Header, a blank row, a SUMMARY row, then one row per log."""
    by_id = {med.id: med for med in medications}
    taken = sum(1 for log in logs if log.status == "taken")

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    writer.writerow([""] * len(CSV_COLUMNS))
    writer.writerow(
        [
            "SUMMARY",
            "",
            f"Total Medications: {len(medications)}",
            f"Total Logs: {len(logs)}",
            f"Taken: {taken}",
            f"Adherence: {percent(taken, len(logs))}%",
            "",
            "",
            f"Profile: {profile_name}",
        ]
    )
    for log in logs:
        med = by_id.get(log.medication_id)
        writer.writerow(
            [
                log.timestamp.date().isoformat(),
                _clock(log.timestamp),
                med.name if med else "Unknown",
                med.dosage if med else "",
                med.category if med else "",
                log.status,
                _clock(log.scheduled_time),
                _clock(log.actual_time),
                log.notes or "",
            ]
        )
    return buf.getvalue()


def _latin1(text: str) -> str:
    # Core PDF fonts only cover latin-1.
    return text.encode("latin-1", "replace").decode("latin-1")


def export_pdf(
    medications: Sequence[Medication],
    logs: Sequence[DoseLog],
    *,
    profile_name: str,
    period: DateRange,
    generated_on: date,
) -> bytes:
    by_id = {med.id: med for med in medications}
    taken = sum(1 for log in logs if log.status == "taken")
    missed = sum(1 for log in logs if log.status == "missed")

    pdf = FPDF()
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.add_page()

    def line(text: str, size: int = 12, style: str = "", indent: float = 0) -> None:
        pdf.set_font("Helvetica", style, size)
        pdf.set_x(pdf.l_margin + indent)
        pdf.cell(0, size * 0.6, _latin1(text), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    line("Medication Adherence Report", 20, "B")
    line(f"Profile: {profile_name}")
    line(f"Generated: {generated_on.isoformat()}")
    line(f"Period: {period.describe()}")
    pdf.ln(6)

    line("Summary", 16, "B")
    line(f"Total Medications: {len(medications)}")
    line(f"Total Dose Logs: {len(logs)}")
    line(f"Doses Taken: {taken}")
    line(f"Doses Missed: {missed}")
    line(f"Adherence Rate: {percent(taken, len(logs))}%")
    pdf.ln(6)

    line("Active Medications", 16, "B")
    for index, med in enumerate(medications, start=1):
        line(f"{index}. {med.name} - {med.dosage} ({med.frequency}x daily)", 10)
        line(f"Category: {med.category}", 10, indent=5)
        line(f"Times: {', '.join(med.times)}", 10, indent=5)

    if logs:
        pdf.add_page()
        line("Recent Dose Logs", 16, "B")
        for log in logs[-PDF_RECENT_LOGS:]:
            med = by_id.get(log.medication_id)
            line(log.timestamp.strftime("%Y-%m-%d %H:%M"), 10)
            line(f"{med.name if med else 'Unknown'} - {log.status.upper()}", 10)
            if log.notes:
                line(f"Notes: {log.notes}", 10, indent=5)
            pdf.ln(2)

    return bytes(pdf.output())
