from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from backend.app import config
from backend.app.cache import CacheRegistry, caches, read_through, sales_entries_key, sales_totals_key
from backend.app.clock import BusinessClock, get_business_clock
from backend.app.errors import (
    CascadeIncompleteError,
    NotFoundError,
    PersistenceError,
    ReplaceConfirmationRequired,
    ValidationError,
)
from backend.app.models import SaleRecord
from backend.app.sales.cumulative import (
    AmountChange,
    check_sandwich,
    delta,
    hourly_breakdown,
    neighbors,
    plan_cascade,
    validate_hour,
    validate_total,
)
from backend.app.sales.store import SaleStore, StoreOp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeResult:
    sale_date: date
    machine_id: str
    updated: int
    total: int
    changes: List[AmountChange] = field(default_factory=list)


def _registry(registry: Optional[CacheRegistry]) -> CacheRegistry:
    return registry if registry is not None else caches


def _require_machine(machine_id: str) -> str:
    machine_id = (machine_id or "").strip()
    allowed = config.machine_ids()
    if machine_id not in allowed:
        raise ValidationError(f"unknown machine {machine_id!r}; expected one of {', '.join(allowed)}")
    return machine_id


def _require_record(store: SaleStore, record_id: str) -> SaleRecord:
    record = store.get(record_id)
    if record is None:
        raise NotFoundError(record_id)
    return record


def _slot_occupant(readings: List[SaleRecord], hour: int) -> Optional[SaleRecord]:
    for reading in readings:
        if reading.hour == hour:
            return reading
    return None


def _invalidate(registry: CacheRegistry, sale_date: date) -> None:
    removed = registry.invalidate_sales_date(sale_date)
    logger.debug("invalidated %s cache entries for %s", removed, sale_date)


def _cascade(
    store: SaleStore,
    sale_date: date,
    machine_id: str,
    *,
    after_hour: Optional[int],
    tolerance: float = 0.0,
) -> CascadeResult:
    """
    Rewrite stale amounts in ascending hour order, one write at a time.

    Stops at the first failed write and reports how many landed; the written
    prefix stays consistent because amounts only depend on stored totals.
    """
    readings = store.query(sale_date, machine_id)
    changes = plan_cascade(readings, after_hour=after_hour, tolerance=tolerance)
    for written, change in enumerate(changes):
        try:
            store.update(change.record_id, {"amount": change.new_amount})
        except (PersistenceError, NotFoundError) as exc:
            logger.warning(
                "cascade for machine %s on %s stopped at hour %s after %s of %s writes",
                machine_id,
                sale_date,
                change.hour,
                written,
                len(changes),
            )
            raise CascadeIncompleteError(
                written=written,
                total=len(changes),
                failed_record_id=change.record_id,
                cause=exc,
            ) from exc
    if changes:
        logger.info(
            "recomputed %s hourly amounts for machine %s on %s",
            len(changes),
            machine_id,
            sale_date,
        )
    return CascadeResult(
        sale_date=sale_date,
        machine_id=machine_id,
        updated=len(changes),
        total=len(changes),
        changes=changes,
    )


# -------------------------
# Writes
# -------------------------

def record_reading(
    store: SaleStore,
    sale_date: date,
    machine_id: str,
    hour: int,
    cumulative_total: float,
    *,
    operator_id: Optional[str] = None,
    notes: Optional[str] = None,
    replace: bool = False,
    clock: Optional[BusinessClock] = None,
    registry: Optional[CacheRegistry] = None,
) -> SaleRecord:
    """
    Store the machine's cumulative total at the end of `hour`.

    The total must sit between the nearest earlier and later readings of the
    same machine/day. An occupied slot is only replaced when `replace` is set;
    later readings get their amounts recomputed against the new total.
    """
    hour = validate_hour(hour)
    total = validate_total(cumulative_total)
    machine_id = _require_machine(machine_id)
    clock = clock or get_business_clock()
    registry = _registry(registry)

    if clock.is_future(sale_date, hour):
        raise ValidationError(
            f"cannot record hour {hour} of {sale_date.isoformat()}: it has not finished yet "
            f"(business time is {clock.now():%Y-%m-%d %H:%M})"
        )

    readings = store.query(sale_date, machine_id)
    existing = _slot_occupant(readings, hour)
    if existing is not None and not replace:
        raise ReplaceConfirmationRequired(existing)

    prev, nxt = neighbors(readings, hour, exclude_id=existing.id if existing else None)
    check_sandwich(total, prev, nxt)

    fields: Dict[str, Any] = {
        "sale_date": sale_date,
        "machine_id": machine_id,
        "hour": hour,
        "cumulative_total": total,
        "amount": delta(total, prev.cumulative_total if prev else None),
        "operator_id": operator_id,
        "notes": notes or "",
    }

    try:
        if existing is not None:
            logger.info(
                "replacing hour %s of machine %s on %s (%.2f -> %.2f)",
                hour,
                machine_id,
                sale_date,
                existing.cumulative_total,
                total,
            )
            record = store.batch_write(
                [
                    StoreOp(kind="delete", record_id=existing.id),
                    StoreOp(kind="create", fields=fields),
                ]
            )[0]
        else:
            record = store.create(fields)
        _cascade(store, sale_date, machine_id, after_hour=hour)
    finally:
        _invalidate(registry, sale_date)
    return record


def edit_reading(
    store: SaleStore,
    record_id: str,
    new_cumulative_total: float,
    *,
    notes: Optional[str] = None,
    registry: Optional[CacheRegistry] = None,
) -> SaleRecord:
    """Change a stored total, then recompute every later amount of that machine/day."""
    total = validate_total(new_cumulative_total)
    registry = _registry(registry)
    record = _require_record(store, record_id)
    sale_date, machine_id, hour = record.sale_date, record.machine_id, record.hour

    readings = store.query(sale_date, machine_id)
    prev, nxt = neighbors(readings, hour, exclude_id=record.id)
    check_sandwich(total, prev, nxt)

    patch: Dict[str, Any] = {
        "cumulative_total": total,
        "amount": delta(total, prev.cumulative_total if prev else None),
    }
    if notes is not None:
        patch["notes"] = notes

    try:
        record = store.update(record.id, patch)
        _cascade(store, sale_date, machine_id, after_hour=hour)
    finally:
        _invalidate(registry, sale_date)
    return record


def delete_reading(
    store: SaleStore,
    record_id: str,
    *,
    patch_next: bool = False,
    registry: Optional[CacheRegistry] = None,
) -> Optional[SaleRecord]:
    """
    Remove a reading.

    Plain deletes leave later amounts untouched unless CASCADE_ON_DELETE is on.
    With `patch_next`, the following reading's amount is rebased onto the new
    previous total in the same transaction; that record is returned.
    """
    registry = _registry(registry)
    record = _require_record(store, record_id)
    sale_date, machine_id, hour = record.sale_date, record.machine_id, record.hour

    patched: Optional[SaleRecord] = None
    try:
        if patch_next:
            readings = store.query(sale_date, machine_id)
            prev, nxt = neighbors(readings, hour, exclude_id=record.id)
            ops = [StoreOp(kind="delete", record_id=record.id)]
            if nxt is not None:
                ops.append(
                    StoreOp(
                        kind="update",
                        record_id=nxt.id,
                        fields={"amount": delta(nxt.cumulative_total, prev.cumulative_total if prev else None)},
                    )
                )
            written = store.batch_write(ops)
            patched = written[0] if written else None
        else:
            store.delete(record.id)
            if config.cascade_on_delete():
                _cascade(store, sale_date, machine_id, after_hour=hour)
    finally:
        _invalidate(registry, sale_date)
    return patched


def recompute_cascade(
    store: SaleStore,
    sale_date: date,
    machine_id: str,
    *,
    after_hour: Optional[int] = None,
    tolerance: float = 0.0,
    registry: Optional[CacheRegistry] = None,
) -> CascadeResult:
    """Repair stale amounts for one machine/day. Running it twice reports 0 updates the second time."""
    machine_id = _require_machine(machine_id)
    if after_hour is not None:
        validate_hour(after_hour)
    registry = _registry(registry)
    try:
        return _cascade(store, sale_date, machine_id, after_hour=after_hour, tolerance=tolerance)
    finally:
        _invalidate(registry, sale_date)


# -------------------------
# Reads
# -------------------------

def list_sales(
    store: SaleStore,
    sale_date: date,
    machine_id: Optional[str] = None,
    *,
    registry: Optional[CacheRegistry] = None,
) -> List[Dict[str, Any]]:
    registry = _registry(registry)

    def _load() -> List[Dict[str, Any]]:
        return [row.as_dict() for row in store.query(sale_date, machine_id)]

    return read_through(registry.sales, sales_entries_key(sale_date, machine_id), _load)


def totals_by_machine(rows: Iterable[SaleRecord]) -> Dict[str, Dict[str, Any]]:
    """machine_id -> {"hourly": [24 amounts], "total": sum}. Hours without readings count 0."""
    by_machine: Dict[str, List[SaleRecord]] = {machine: [] for machine in config.machine_ids()}
    for row in rows:
        by_machine.setdefault(row.machine_id, []).append(row)
    out: Dict[str, Dict[str, Any]] = {}
    for machine, machine_rows in by_machine.items():
        hourly = hourly_breakdown(machine_rows)
        out[machine] = {"hourly": hourly, "total": round(sum(hourly), 2)}
    return out


def compute_daily_totals(
    store: SaleStore,
    sale_date: date,
    *,
    registry: Optional[CacheRegistry] = None,
) -> Dict[str, Dict[str, Any]]:
    """Per-machine hourly amounts and totals for one day; every configured machine is present."""
    registry = _registry(registry)
    return read_through(
        registry.sales,
        sales_totals_key(sale_date),
        lambda: totals_by_machine(store.query(sale_date)),
    )
