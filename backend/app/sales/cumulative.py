"""
Cumulative-to-delta rules for hourly machine readings.

Responsibility:
- Turn a machine's cumulative meter readings for one business day into hourly
  sale amounts, and decide which stored amounts must change after an edit.

Design notes:
- Pure functions over anything with `id`, `hour`, `cumulative_total` and
  `amount`; no store access here.
- Readings are ordered by hour. Gaps are allowed: the previous reading is the
  nearest earlier hour that has one, and the first reading of the day is
  measured from 0.
- Money is kept to cents so repeated recomputes never drift.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from backend.app.errors import ValidationError

HOURS_PER_DAY = 24


class Reading(Protocol):
    id: str
    hour: int
    cumulative_total: float
    amount: float


@dataclass(frozen=True)
class AmountChange:
    record_id: str
    hour: int
    old_amount: float
    new_amount: float


def money(value: float) -> float:
    return round(float(value or 0.0), 2)


def validate_hour(hour: int) -> int:
    if isinstance(hour, bool) or not isinstance(hour, int):
        raise ValidationError(f"hour must be an integer between 0 and 23, got {hour!r}")
    if not 0 <= hour < HOURS_PER_DAY:
        raise ValidationError(f"hour must be between 0 and 23, got {hour}")
    return hour


def validate_total(total: float) -> float:
    try:
        value = float(total)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"cumulative total must be a number, got {total!r}") from exc
    if value != value or value in (float("inf"), float("-inf")):
        raise ValidationError("cumulative total must be a finite number")
    if value < 0:
        raise ValidationError(f"cumulative total cannot be negative ({value:.2f})")
    return money(value)


def ordered(readings: Iterable[Reading]) -> List[Reading]:
    return sorted(readings, key=lambda r: r.hour)


def neighbors(
    readings: Iterable[Reading],
    hour: int,
    *,
    exclude_id: Optional[str] = None,
) -> Tuple[Optional[Reading], Optional[Reading]]:
    """Nearest reading strictly before and strictly after `hour`."""
    prev: Optional[Reading] = None
    nxt: Optional[Reading] = None
    for reading in readings:
        if exclude_id is not None and reading.id == exclude_id:
            continue
        if reading.hour < hour and (prev is None or reading.hour > prev.hour):
            prev = reading
        elif reading.hour > hour and (nxt is None or reading.hour < nxt.hour):
            nxt = reading
    return prev, nxt


def check_sandwich(total: float, prev: Optional[Reading], nxt: Optional[Reading]) -> None:
    """A total must sit between its neighbours' totals, inclusive."""
    if prev is not None and total < prev.cumulative_total:
        raise ValidationError(
            f"new total {total:.2f} is less than the previous hour's total "
            f"{prev.cumulative_total:.2f} (hour {prev.hour})"
        )
    if nxt is not None and total > nxt.cumulative_total:
        raise ValidationError(
            f"new total {total:.2f} is greater than the next hour's total "
            f"{nxt.cumulative_total:.2f} (hour {nxt.hour})"
        )


def delta(total: float, prev_total: Optional[float]) -> float:
    # clamp only guards legacy rows that already break monotonicity
    return max(0.0, money(total - (prev_total or 0.0)))


def expected_amounts(readings: Iterable[Reading]) -> List[Tuple[Reading, float]]:
    out: List[Tuple[Reading, float]] = []
    prev_total: Optional[float] = None
    for reading in ordered(readings):
        out.append((reading, delta(reading.cumulative_total, prev_total)))
        prev_total = reading.cumulative_total
    return out


def plan_cascade(
    readings: Iterable[Reading],
    *,
    after_hour: Optional[int] = None,
    tolerance: float = 0.0,
) -> List[AmountChange]:
    """
    Amount changes needed so every reading (later than `after_hour`, if given)
    equals its total minus the previous reading's total. Ascending hour order.
    Applying the plan and planning again yields nothing.
    """
    changes: List[AmountChange] = []
    for reading, expected in expected_amounts(readings):
        if after_hour is not None and reading.hour <= after_hour:
            continue
        current = money(reading.amount)
        if abs(current - expected) > tolerance:
            changes.append(
                AmountChange(
                    record_id=reading.id,
                    hour=reading.hour,
                    old_amount=current,
                    new_amount=expected,
                )
            )
    return changes


def hourly_breakdown(readings: Sequence[Reading]) -> List[float]:
    hourly = [0.0] * HOURS_PER_DAY
    for reading in readings:
        hourly[reading.hour] = money(hourly[reading.hour] + (reading.amount or 0.0))
    return hourly
