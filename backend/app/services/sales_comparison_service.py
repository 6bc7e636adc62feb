"""
Side-by-side sales comparisons across days.

Responsibility:
- Turn a comparison mode (custom range or date list, last 7 days, month to
  date, same weekday and hour over recent weeks) into a list of business dates.
- Load per-machine daily totals for many dates with one store query, reusing
  and filling the `sales:{date}:totals` cache entries the single-day read uses.
- Report best, worst and average days.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from backend.app import config
from backend.app.cache import CacheRegistry, caches, read_through_many, sales_totals_key
from backend.app.clock import BusinessClock, month_bounds
from backend.app.errors import ValidationError
from backend.app.sales.cumulative import money, validate_hour
from backend.app.sales.store import SaleStore
from backend.app.services import dashboard_service, sales_service

logger = logging.getLogger(__name__)

MODES = ("custom", "weekly", "monthly", "weekday_hour")

MAX_COMPARISON_DAYS = 366
MAX_WEEKS = 52
DEFAULT_WEEKS = 8
WARMUP_DAYS = 7

# date.weekday() order
WEEKDAY_NAMES = ("Lunes", "Martes", "Miércoles", "Jueves", "Viernes", "Sábado", "Domingo")


@dataclass(frozen=True)
class DayComparison:
    sale_date: date
    weekday: int
    weekday_name: str
    machines: Dict[str, float]
    total: float
    peak_hour: Optional[int]
    peak_amount: float


@dataclass(frozen=True)
class ComparisonStats:
    best: float
    best_date: date
    worst: float
    worst_date: date
    average: float


@dataclass(frozen=True)
class ComparisonResult:
    mode: str
    machines: List[str]
    days: List[DayComparison]
    stats: Optional[ComparisonStats]
    hour: Optional[int] = None


# -------------------------
# Date selection
# -------------------------

def date_range(start: date, end: date) -> List[date]:
    if end < start:
        raise ValidationError("comparison start must not be after end")
    span = (end - start).days + 1
    if span > MAX_COMPARISON_DAYS:
        raise ValidationError(f"comparison covers {span} days; at most {MAX_COMPARISON_DAYS} are allowed")
    return [start + timedelta(days=offset) for offset in range(span)]


def last_n_weekdays(end: date, weekday: int, count: int) -> List[date]:
    """The `count` most recent dates on or before `end` falling on `weekday` (Monday=0), oldest first."""
    if not 0 <= weekday <= 6:
        raise ValidationError("weekday must be between 0 (Monday) and 6 (Sunday)")
    if not 1 <= count <= MAX_WEEKS:
        raise ValidationError(f"week count must be between 1 and {MAX_WEEKS}")
    latest = end - timedelta(days=(end.weekday() - weekday) % 7)
    return [latest - timedelta(weeks=back) for back in reversed(range(count))]


def dates_for_mode(
    mode: str,
    *,
    end: date,
    start: Optional[date] = None,
    dates: Optional[Sequence[date]] = None,
) -> List[date]:
    """Dates compared by the day-level modes; `weekday_hour` picks its own in `compare_weekday_hour`."""
    if mode == "custom":
        if dates:
            unique = sorted(set(dates))
            if len(unique) > MAX_COMPARISON_DAYS:
                raise ValidationError(f"at most {MAX_COMPARISON_DAYS} dates can be compared")
            return unique
        if start is None:
            raise ValidationError("custom comparisons need a list of dates or a start date")
        return date_range(start, end)
    if mode == "weekly":
        return date_range(end - timedelta(days=6), end)
    if mode == "monthly":
        first, _ = month_bounds(end.year, end.month)
        return date_range(first, end)
    raise ValidationError(f"unknown comparison mode {mode!r}; expected one of {', '.join(MODES)}")


def _selected_machines(machines: Optional[Iterable[str]]) -> List[str]:
    configured = config.machine_ids()
    if not machines:
        return list(configured)
    selected = []
    for machine in machines:
        machine = machine.strip()
        if machine not in configured:
            raise ValidationError(f"unknown machine {machine!r}; expected one of {', '.join(configured)}")
        if machine not in selected:
            selected.append(machine)
    return selected


# -------------------------
# Loading
# -------------------------

def batch_daily_totals(
    store: SaleStore,
    dates: Iterable[date],
    *,
    registry: Optional[CacheRegistry] = None,
) -> Dict[date, Dict[str, Dict[str, Any]]]:
    """
    `compute_daily_totals` for many dates at once.

    Cached dates are served from the sales cache; the rest come from a single
    range query and are written back under their per-day keys.
    """
    registry = registry if registry is not None else caches
    keys = {day: sales_totals_key(day) for day in sorted(set(dates))}

    def _load(missing: List[date]) -> Dict[date, Dict[str, Dict[str, Any]]]:
        wanted = set(missing)
        rows_by_day: Dict[date, list] = {day: [] for day in missing}
        for row in store.query_range(min(missing), max(missing)):
            if row.sale_date in wanted:
                rows_by_day[row.sale_date].append(row)
        return {day: sales_service.totals_by_machine(rows) for day, rows in rows_by_day.items()}

    return read_through_many(registry.sales, keys, _load)


# -------------------------
# Comparisons
# -------------------------

def summarize(days: Sequence[DayComparison]) -> Optional[ComparisonStats]:
    """Best and worst by total (earliest date wins ties) plus the plain average."""
    if not days:
        return None
    best = max(days, key=lambda d: (d.total, -d.sale_date.toordinal()))
    worst = min(days, key=lambda d: (d.total, d.sale_date.toordinal()))
    return ComparisonStats(
        best=best.total,
        best_date=best.sale_date,
        worst=worst.total,
        worst_date=worst.sale_date,
        average=money(sum(d.total for d in days) / len(days)),
    )


def _day(day: date, machines: Dict[str, float], hourly: List[float], peak_hour: Optional[int] = None) -> DayComparison:
    if peak_hour is None:
        peak_amount = max(hourly) if hourly else 0.0
        # earliest hour wins ties; a day without sales has no peak
        peak_hour = hourly.index(peak_amount) if peak_amount > 0 else None
    else:
        peak_amount = hourly[peak_hour]
    return DayComparison(
        sale_date=day,
        weekday=day.weekday(),
        weekday_name=WEEKDAY_NAMES[day.weekday()],
        machines=machines,
        total=money(sum(machines.values())),
        peak_hour=peak_hour,
        peak_amount=money(peak_amount),
    )


def compare_days(
    store: SaleStore,
    dates: Sequence[date],
    *,
    machines: Optional[Iterable[str]] = None,
    mode: str = "custom",
    registry: Optional[CacheRegistry] = None,
) -> ComparisonResult:
    """Whole-day totals for each date, restricted to the selected machines."""
    selected = _selected_machines(machines)
    totals = batch_daily_totals(store, dates, registry=registry)

    days = []
    for day, per_machine in totals.items():
        combined = [
            money(sum(per_machine[m]["hourly"][hour] for m in selected if m in per_machine))
            for hour in range(24)
        ]
        machine_totals = {m: per_machine[m]["total"] if m in per_machine else 0.0 for m in selected}
        days.append(_day(day, machine_totals, combined))

    logger.info("compared %s days (%s) for machines %s", len(days), mode, ",".join(selected))
    return ComparisonResult(mode=mode, machines=selected, days=days, stats=summarize(days))


def compare_weekday_hour(
    store: SaleStore,
    weekday: int,
    hour: int,
    *,
    end: date,
    count: int = DEFAULT_WEEKS,
    machines: Optional[Iterable[str]] = None,
    registry: Optional[CacheRegistry] = None,
) -> ComparisonResult:
    """
    One hour of one weekday across the last `count` weeks, e.g. every
    Wednesday's 21:00 slot. Each day's figures cover that hour only.
    """
    validate_hour(hour)
    selected = _selected_machines(machines)
    dates = last_n_weekdays(end, weekday, count)
    totals = batch_daily_totals(store, dates, registry=registry)

    days = []
    for day, per_machine in totals.items():
        machine_amounts = {m: per_machine[m]["hourly"][hour] if m in per_machine else 0.0 for m in selected}
        hourly = [0.0] * 24
        hourly[hour] = money(sum(machine_amounts.values()))
        days.append(_day(day, machine_amounts, hourly, peak_hour=hour))

    logger.info("compared %s %s at %02d:00 for machines %s", len(days), WEEKDAY_NAMES[weekday], hour, ",".join(selected))
    return ComparisonResult(mode="weekday_hour", machines=selected, days=days, stats=summarize(days), hour=hour)


# -------------------------
# Warmup
# -------------------------

def warmup_cache(
    store: SaleStore,
    clock: BusinessClock,
    *,
    days: int = WARMUP_DAYS,
    registry: Optional[CacheRegistry] = None,
) -> Dict[str, Any]:
    """Preload daily totals for the last `days` business dates and today's dashboard."""
    if days < 1:
        raise ValidationError("warmup needs at least one day")
    registry = registry if registry is not None else caches
    today = clock.business_date()
    dates = [today - timedelta(days=back) for back in range(days)]
    batch_daily_totals(store, dates, registry=registry)
    dashboard_service.dashboard_summary(store, today, registry=registry)
    logger.info("cache warmed for %s days ending %s", days, today)
    return {"through": today, "days": days}
