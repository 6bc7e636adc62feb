from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional

from backend.app import config
from backend.app.cache import CacheRegistry, caches, dashboard_key, read_through
from backend.app.clock import month_bounds, week_start
from backend.app.sales.cumulative import money
from backend.app.sales.store import SaleStore


def period_total(store: SaleStore, start: date, end: date) -> Dict[str, Any]:
    """Sum of hourly amounts per machine over [start, end]."""
    if end < start:
        raise ValueError("end must not be before start")
    by_machine: Dict[str, float] = {machine: 0.0 for machine in config.machine_ids()}
    for row in store.query_range(start, end):
        by_machine[row.machine_id] = money(by_machine.get(row.machine_id, 0.0) + (row.amount or 0.0))
    return {
        "start": start,
        "end": end,
        "machines": by_machine,
        "total": money(sum(by_machine.values())),
    }


def dashboard_summary(
    store: SaleStore,
    day: date,
    *,
    registry: Optional[CacheRegistry] = None,
) -> Dict[str, Any]:
    """
    Day, week-to-date (Monday start) and month-to-date totals as of `day`.
    Cached under dashboard:{day}; any sales write drops every dashboard entry.
    """
    registry = registry if registry is not None else caches

    def _load() -> Dict[str, Any]:
        month_start, _ = month_bounds(day.year, day.month)
        return {
            "date": day,
            "day": period_total(store, day, day),
            "week": period_total(store, week_start(day), day),
            "month": period_total(store, month_start, day),
        }

    return read_through(registry.dashboard, dashboard_key(day), _load)
