from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from backend.app.cache import CacheRegistry, caches
from backend.app.clock import BusinessClock, period_label, utcnow
from backend.app.errors import ValidationError
from backend.app.sales.cumulative import money
from backend.app.sales.store import SaleStore
from backend.app.services import sales_service

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "date",
    "hour",
    "period",
    "machine_id",
    "amount",
    "cumulative_total",
    "operator_id",
    "notes",
    "last_updated",
]

REQUIRED_IMPORT_COLUMNS = ("date", "hour", "machine_id", "cumulative_total")

BOM = "\ufeff"


@dataclass(frozen=True)
class ImportRowError:
    line: int
    message: str


@dataclass(frozen=True)
class ImportResult:
    imported: int
    errors: List[ImportRowError] = field(default_factory=list)


@dataclass(frozen=True)
class _ParsedRow:
    line: int
    sale_date: date
    machine_id: str
    hour: int
    cumulative_total: float
    operator_id: Optional[str]
    notes: Optional[str]


def export_sales_csv(
    store: SaleStore,
    start: date,
    end: date,
    machine_id: Optional[str] = None,
) -> str:
    if end < start:
        raise ValidationError("export range end must not be before start")
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for row in store.query_range(start, end, machine_id):
        writer.writerow(
            [
                row.sale_date.isoformat(),
                row.hour,
                period_label(row.hour),
                row.machine_id,
                f"{row.amount:.2f}",
                f"{row.cumulative_total:.2f}",
                row.operator_id or "",
                row.notes or "",
                row.last_updated.isoformat() if row.last_updated else "",
            ]
        )
    return buf.getvalue()


def export_sales_json(
    store: SaleStore,
    start: date,
    end: date,
    machine_id: Optional[str] = None,
    *,
    exported_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Same rows as the CSV export, wrapped with a metadata block. Values are JSON-ready."""
    if end < start:
        raise ValidationError("export range end must not be before start")
    rows = store.query_range(start, end, machine_id)
    sales = []
    for row in rows:
        data = row.as_dict()
        data["sale_date"] = row.sale_date.isoformat()
        data["period"] = period_label(row.hour)
        data["last_updated"] = row.last_updated.isoformat() if row.last_updated else None
        sales.append(data)
    return {
        "metadata": {
            "exported_at": (exported_at or utcnow()).isoformat(),
            "start": start.isoformat(),
            "end": end.isoformat(),
            "machine_id": machine_id,
            "total_records": len(sales),
            "total_amount": money(sum(row.amount or 0.0 for row in rows)),
        },
        "sales": sales,
    }


def _parse_hour(raw: str) -> int:
    text = (raw or "").strip()
    if ":" in text:
        text = text.split(":", 1)[0]
    try:
        return int(text)
    except ValueError as exc:
        raise ValidationError(f"invalid hour {raw!r}") from exc


def _parse_row(line: int, raw: Dict[str, str]) -> _ParsedRow:
    missing = [col for col in REQUIRED_IMPORT_COLUMNS if not (raw.get(col) or "").strip()]
    if missing:
        raise ValidationError(f"missing value for {', '.join(missing)}")
    try:
        sale_date = date.fromisoformat(raw["date"].strip())
    except ValueError as exc:
        raise ValidationError(f"invalid date {raw['date']!r}") from exc
    try:
        total = float(raw["cumulative_total"].strip())
    except ValueError as exc:
        raise ValidationError(f"invalid cumulative total {raw['cumulative_total']!r}") from exc
    return _ParsedRow(
        line=line,
        sale_date=sale_date,
        machine_id=raw["machine_id"].strip(),
        hour=_parse_hour(raw["hour"]),
        cumulative_total=total,
        operator_id=(raw.get("operator_id") or "").strip() or None,
        notes=(raw.get("notes") or "").strip() or None,
    )


def import_sales_csv(
    store: SaleStore,
    content: str,
    *,
    operator_id: Optional[str] = None,
    clock: Optional[BusinessClock] = None,
    registry: Optional[CacheRegistry] = None,
) -> ImportResult:
    """
    Load readings from CSV (the export format; `amount` is ignored and derived).

    Rows are applied per (date, machine) in ascending hour order and replace any
    occupied slot. Bad rows are reported and skipped; store failures abort.
    """
    registry = registry if registry is not None else caches
    # spreadsheet exports usually start with a UTF-8 byte order mark
    reader = csv.DictReader(io.StringIO(content.removeprefix(BOM)))
    header = [name.strip() for name in (reader.fieldnames or [])]
    absent = [col for col in REQUIRED_IMPORT_COLUMNS if col not in header]
    if absent:
        raise ValidationError(f"CSV is missing required columns: {', '.join(absent)}")
    reader.fieldnames = header

    errors: List[ImportRowError] = []
    parsed: List[_ParsedRow] = []
    # line 1 is the header
    for line, raw in enumerate(reader, start=2):
        try:
            parsed.append(_parse_row(line, raw))
        except ValidationError as exc:
            errors.append(ImportRowError(line=line, message=str(exc)))

    def _order(row: _ParsedRow) -> Tuple[date, str, int, int]:
        return (row.sale_date, row.machine_id, row.hour, row.line)

    imported = 0
    try:
        for row in sorted(parsed, key=_order):
            try:
                sales_service.record_reading(
                    store,
                    row.sale_date,
                    row.machine_id,
                    row.hour,
                    row.cumulative_total,
                    operator_id=row.operator_id or operator_id,
                    notes=row.notes,
                    replace=True,
                    clock=clock,
                    registry=registry,
                )
                imported += 1
            except ValidationError as exc:
                errors.append(ImportRowError(line=row.line, message=str(exc)))
    finally:
        registry.invalidate_all()

    errors.sort(key=lambda e: e.line)
    logger.info("imported %s sale readings (%s rejected)", imported, len(errors))
    return ImportResult(imported=imported, errors=errors)
