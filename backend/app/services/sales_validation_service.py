"""
Day-level integrity checks for hourly sales.

Flags what the write path should have prevented but legacy or imported data may
still carry: duplicate hours, totals that go backwards, stored amounts that no
longer match the cumulative difference, and gaps between the first and last
reading of a machine.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional

from backend.app import config
from backend.app.cache import CacheRegistry
from backend.app.models import SaleRecord
from backend.app.sales.cumulative import money
from backend.app.sales.store import SaleStore
from backend.app.services import sales_service

logger = logging.getLogger(__name__)

SUM_TOLERANCE = 0.01


@dataclass(frozen=True)
class EntryValidation:
    record_id: str
    hour: int
    machine_id: str
    amount: float
    cumulative_total: float
    last_updated: Optional[datetime]
    issues: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MachineSummary:
    missing_hours: List[int]
    negative_deltas: int
    non_monotonic_readings: int
    duplicate_hours: int
    amount_mismatches: int
    sum_mismatch: bool


@dataclass(frozen=True)
class MachineValidation:
    machine_id: str
    entries: List[EntryValidation]
    computed_total: float
    stored_total: float
    last_cumulative_total: Optional[float]
    summary: MachineSummary

    @property
    def has_issues(self) -> bool:
        s = self.summary
        return (
            any(entry.issues for entry in self.entries)
            or bool(s.missing_hours)
            or s.negative_deltas > 0
            or s.non_monotonic_readings > 0
            or s.duplicate_hours > 0
            or s.sum_mismatch
        )


@dataclass(frozen=True)
class DailyValidationReport:
    sale_date: date
    machines: Dict[str, MachineValidation]
    overall_total: float

    @property
    def has_issues(self) -> bool:
        return any(m.has_issues for m in self.machines.values())


@dataclass(frozen=True)
class FixDetail:
    record_id: str
    machine_id: str
    hour: int
    from_amount: float
    to_amount: float


@dataclass(frozen=True)
class FixResult:
    sale_date: date
    fixed: int
    skipped: int
    details: List[FixDetail]


def validate_machine_entries(machine_id: str, rows: List[SaleRecord]) -> MachineValidation:
    ordered = sorted(rows, key=lambda r: (r.hour, r.last_updated or datetime.min))

    entries: List[EntryValidation] = []
    hours_seen: set[int] = set()
    duplicate_hours = 0
    negative_deltas = 0
    non_monotonic = 0
    mismatches = 0
    computed_total = 0.0
    stored_total = 0.0
    prev_total: Optional[float] = None

    for row in ordered:
        issues: List[str] = []
        if row.hour in hours_seen:
            issues.append("duplicate hour entry")
            duplicate_hours += 1
        hours_seen.add(row.hour)

        total = money(row.cumulative_total)
        if prev_total is not None and total < prev_total:
            issues.append(f"non-monotonic: {total:.2f} < previous {prev_total:.2f}")
            non_monotonic += 1

        expected = money(total - (prev_total or 0.0))
        if expected < 0:
            issues.append(f"negative delta: {expected:.2f}")
            negative_deltas += 1
        if abs(expected - money(row.amount)) > SUM_TOLERANCE:
            issues.append(f"amount mismatch: stored={money(row.amount):.2f}, expected delta={expected:.2f}")
            mismatches += 1

        computed_total = money(computed_total + max(0.0, expected))
        stored_total = money(stored_total + (row.amount or 0.0))
        prev_total = total

        entries.append(
            EntryValidation(
                record_id=row.id,
                hour=row.hour,
                machine_id=machine_id,
                amount=money(row.amount),
                cumulative_total=total,
                last_updated=row.last_updated,
                issues=issues,
            )
        )

    missing_hours: List[int] = []
    if hours_seen:
        missing_hours = [h for h in range(min(hours_seen), max(hours_seen) + 1) if h not in hours_seen]

    sum_mismatch = prev_total is not None and abs(prev_total - computed_total) > SUM_TOLERANCE

    return MachineValidation(
        machine_id=machine_id,
        entries=entries,
        computed_total=computed_total,
        stored_total=stored_total,
        last_cumulative_total=prev_total,
        summary=MachineSummary(
            missing_hours=missing_hours,
            negative_deltas=negative_deltas,
            non_monotonic_readings=non_monotonic,
            duplicate_hours=duplicate_hours,
            amount_mismatches=mismatches,
            sum_mismatch=sum_mismatch,
        ),
    )


def validate_day(store: SaleStore, sale_date: date) -> DailyValidationReport:
    grouped: Dict[str, List[SaleRecord]] = {machine: [] for machine in config.machine_ids()}
    for row in store.query(sale_date):
        grouped.setdefault(row.machine_id, []).append(row)

    machines = {machine: validate_machine_entries(machine, rows) for machine, rows in grouped.items()}
    return DailyValidationReport(
        sale_date=sale_date,
        machines=machines,
        overall_total=money(sum(m.computed_total for m in machines.values())),
    )


def fix_day_deltas(
    store: SaleStore,
    sale_date: date,
    *,
    tolerance: float = SUM_TOLERANCE,
    registry: Optional[CacheRegistry] = None,
) -> FixResult:
    """
    Rewrite every stored amount that drifted from max(0, total - previous total).
    Uses the same ordered cascade as edits, so a failed write stops and reports.
    """
    readings = store.query(sale_date)
    details: List[FixDetail] = []
    configured = set(config.machine_ids())
    for machine in sorted({row.machine_id for row in readings}):
        if machine not in configured:
            logger.warning("skipping delta fix for unconfigured machine %s on %s", machine, sale_date)
            continue
        result = sales_service.recompute_cascade(
            store,
            sale_date,
            machine,
            tolerance=tolerance,
            registry=registry,
        )
        details.extend(
            FixDetail(
                record_id=change.record_id,
                machine_id=machine,
                hour=change.hour,
                from_amount=change.old_amount,
                to_amount=change.new_amount,
            )
            for change in result.changes
        )

    if details:
        logger.info("fixed %s hourly amounts on %s", len(details), sale_date)
    return FixResult(
        sale_date=sale_date,
        fixed=len(details),
        skipped=len(readings) - len(details),
        details=details,
    )


def summarize_report(report: DailyValidationReport) -> str:
    day = report.sale_date.isoformat()
    if not report.has_issues:
        return f"No issues found for {day}"

    lines = [f"Validation report for {day}", ""]
    for machine_id, machine in report.machines.items():
        if not machine.has_issues:
            lines.append(f"Machine {machine_id}: no issues")
            continue

        s = machine.summary
        lines.append(f"Machine {machine_id}: issues detected")
        if s.duplicate_hours:
            lines.append(f"  - {s.duplicate_hours} duplicate hour(s)")
        if s.missing_hours:
            shown = ", ".join(str(h) for h in s.missing_hours[:5])
            more = f" (+{len(s.missing_hours) - 5} more)" if len(s.missing_hours) > 5 else ""
            lines.append(f"  - missing hours: {shown}{more}")
        if s.negative_deltas:
            lines.append(f"  - {s.negative_deltas} negative delta(s)")
        if s.non_monotonic_readings:
            lines.append(f"  - {s.non_monotonic_readings} non-monotonic reading(s)")
        if s.amount_mismatches:
            lines.append(f"  - {s.amount_mismatches} stored amount(s) out of date")
        if s.sum_mismatch:
            last = "N/A" if machine.last_cumulative_total is None else f"{machine.last_cumulative_total:.2f}"
            lines.append(f"  - sum mismatch: computed={machine.computed_total:.2f}, final cumulative={last}")
        lines.append(f"  - computed total: ${machine.computed_total:.2f}")
        lines.append("")

    lines.append(f"Total: ${report.overall_total:.2f}")
    return "\n".join(lines)


def report_to_csv(report: DailyValidationReport) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["machine_id", "hour", "amount", "cumulative_total", "last_updated", "issues"])
    for machine in report.machines.values():
        for entry in machine.entries:
            writer.writerow(
                [
                    entry.machine_id,
                    entry.hour,
                    f"{entry.amount:.2f}",
                    f"{entry.cumulative_total:.2f}",
                    entry.last_updated.isoformat() if entry.last_updated else "",
                    "; ".join(entry.issues),
                ]
            )
    return buf.getvalue()
