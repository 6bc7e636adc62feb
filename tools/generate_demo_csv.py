# tools/generate_demo_csv.py
from __future__ import annotations

import csv
import random
from datetime import date, timedelta
from pathlib import Path
from typing import List, Tuple

MACHINES = ["76", "79"]

# shop hours; readings are taken at the close of each hour
OPEN_HOUR = 9
CLOSE_HOUR = 21

Row = Tuple[str, int, str, float, str]


def hour_multiplier(h: int) -> float:
    """
    Rough foot-traffic curve.
    - lunch and after-work peaks
    - quiet first hour
    """
    if h in (13, 14):
        return 1.4
    if h in (18, 19, 20):
        return 1.6
    if h == OPEN_HOUR + 1:
        return 0.6
    return 1.0


def weekday_multiplier(d: date) -> float:
    # draw nights: Wednesday and Saturday
    if d.weekday() in (2, 5):
        return 1.3
    if d.weekday() == 6:
        return 0.8
    return 1.0


def daterange(start: date, end: date):
    d = start
    while d <= end:
        yield d
        d += timedelta(days=1)


def write_csv(path: Path, rows: List[Row]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(["date", "hour", "machine_id", "cumulative_total", "notes"])
        for r in rows:
            w.writerow(r)


def generate(
    start: date,
    end: date,
    seed: int = 7,
    skip_rate: float = 0.05,
) -> List[Row]:
    """Cumulative readings per machine per hour; `skip_rate` leaves gaps like a missed reading."""
    rng = random.Random(seed)
    rows: List[Row] = []

    for d in daterange(start, end):
        day_mult = weekday_multiplier(d)
        for machine in MACHINES:
            total = 0.0
            for h in range(OPEN_HOUR + 1, CLOSE_HOUR + 1):
                total = round(total + rng.uniform(40, 420) * hour_multiplier(h) * day_mult, 2)
                if rng.random() < skip_rate:
                    continue
                rows.append((d.isoformat(), h, machine, total, ""))

    return rows


if __name__ == "__main__":
    out = Path("backend/data/demo_sales.csv")
    rows = generate(start=date(2026, 9, 1), end=date(2026, 9, 30), seed=42)
    write_csv(out, rows)
    print(f"Wrote {len(rows)} rows to {out}")
