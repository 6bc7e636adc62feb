from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from backend.app.api.deps import (
    get_cache_registry,
    get_clock,
    get_sale_store,
    require_permission_dep,
)
from backend.app.cache import CacheRegistry
from backend.app.clock import BusinessClock, period_label
from backend.app.errors import ValidationError
from backend.app.permissions import VENTAS_READ, VENTAS_WRITE, UserProfile
from backend.app.sales.store import SqlSaleStore
from backend.app.services import (
    sales_comparison_service,
    sales_csv_service,
    sales_service,
    sales_validation_service,
)

router = APIRouter(prefix="/api/sales", tags=["sales"])


# -------------------------
# Schemas
# -------------------------

class SaleRecordOut(BaseModel):
    id: str
    sale_date: date
    machine_id: str
    hour: int
    period: str
    cumulative_total: float
    amount: float
    operator_id: Optional[str] = None
    notes: Optional[str] = None
    last_updated: datetime


class SaleReadingIn(BaseModel):
    sale_date: date
    machine_id: str
    hour: int = Field(..., ge=0, le=23)
    cumulative_total: float = Field(..., ge=0)
    notes: Optional[str] = None
    replace: bool = False


class SaleEditIn(BaseModel):
    cumulative_total: float = Field(..., ge=0)
    notes: Optional[str] = None


class DeleteOut(BaseModel):
    deleted_id: str
    patched: Optional[SaleRecordOut] = None


class AmountChangeOut(BaseModel):
    record_id: str
    hour: int
    old_amount: float
    new_amount: float


class CascadeOut(BaseModel):
    sale_date: date
    machine_id: str
    updated: int
    changes: List[AmountChangeOut]


class MachineTotalsOut(BaseModel):
    hourly: List[float]
    total: float


class DailyTotalsOut(BaseModel):
    sale_date: date
    machines: Dict[str, MachineTotalsOut]
    grand_total: float


class EntryValidationOut(BaseModel):
    record_id: str
    hour: int
    amount: float
    cumulative_total: float
    issues: List[str]


class MachineValidationOut(BaseModel):
    machine_id: str
    has_issues: bool
    computed_total: float
    stored_total: float
    last_cumulative_total: Optional[float] = None
    missing_hours: List[int]
    negative_deltas: int
    non_monotonic_readings: int
    duplicate_hours: int
    amount_mismatches: int
    sum_mismatch: bool
    entries: List[EntryValidationOut]


class ValidationReportOut(BaseModel):
    sale_date: date
    has_issues: bool
    overall_total: float
    summary: str
    machines: List[MachineValidationOut]


class FixDetailOut(BaseModel):
    record_id: str
    machine_id: str
    hour: int
    from_amount: float
    to_amount: float


class FixResultOut(BaseModel):
    sale_date: date
    fixed: int
    skipped: int
    details: List[FixDetailOut]


class ImportIn(BaseModel):
    content: str


class ImportErrorOut(BaseModel):
    line: int
    message: str


class ImportOut(BaseModel):
    imported: int
    errors: List[ImportErrorOut]


class DayComparisonOut(BaseModel):
    sale_date: date
    weekday: int
    weekday_name: str
    machines: Dict[str, float]
    total: float
    peak_hour: Optional[int] = None
    peak_amount: float


class ComparisonStatsOut(BaseModel):
    best: float
    best_date: date
    worst: float
    worst_date: date
    average: float


class ComparisonOut(BaseModel):
    mode: str
    machines: List[str]
    hour: Optional[int] = None
    days: List[DayComparisonOut]
    stats: Optional[ComparisonStatsOut] = None


def record_out(record) -> SaleRecordOut:
    data = record if isinstance(record, dict) else record.as_dict()
    return SaleRecordOut(period=period_label(data["hour"]), **data)


# -------------------------
# CSV (declared before /{sale_date} so the literal paths win)
# -------------------------

@router.get("/export.csv", response_class=PlainTextResponse)
def export_sales(
    start: date = Query(...),
    end: date = Query(...),
    machine_id: Optional[str] = Query(None),
    store: SqlSaleStore = Depends(get_sale_store),
    _profile: UserProfile = Depends(require_permission_dep(VENTAS_READ)),
):
    content = sales_csv_service.export_sales_csv(store, start, end, machine_id)
    filename = f"ventas_{machine_id or 'todas'}_{start.isoformat()}_{end.isoformat()}.csv"
    return PlainTextResponse(
        content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/export.json")
def export_sales_as_json(
    start: date = Query(...),
    end: date = Query(...),
    machine_id: Optional[str] = Query(None),
    store: SqlSaleStore = Depends(get_sale_store),
    _profile: UserProfile = Depends(require_permission_dep(VENTAS_READ)),
):
    payload = sales_csv_service.export_sales_json(store, start, end, machine_id)
    filename = f"ventas_{machine_id or 'todas'}_{start.isoformat()}_{end.isoformat()}.json"
    return JSONResponse(
        payload,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/import", response_model=ImportOut)
def import_sales(
    req: ImportIn,
    store: SqlSaleStore = Depends(get_sale_store),
    clock: BusinessClock = Depends(get_clock),
    registry: CacheRegistry = Depends(get_cache_registry),
    profile: UserProfile = Depends(require_permission_dep(VENTAS_WRITE)),
):
    result = sales_csv_service.import_sales_csv(
        store,
        req.content,
        operator_id=profile.email,
        clock=clock,
        registry=registry,
    )
    return ImportOut(
        imported=result.imported,
        errors=[ImportErrorOut(line=e.line, message=e.message) for e in result.errors],
    )


# -------------------------
# Comparison (also before /{sale_date})
# -------------------------

@router.get("/comparison", response_model=ComparisonOut)
def compare_sales(
    mode: str = Query("weekly"),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    dates: Optional[List[date]] = Query(None),
    machines: Optional[List[str]] = Query(None),
    weekday: Optional[int] = Query(None, ge=0, le=6),
    hour: Optional[int] = Query(None, ge=0, le=23),
    count: int = Query(sales_comparison_service.DEFAULT_WEEKS, ge=1, le=sales_comparison_service.MAX_WEEKS),
    store: SqlSaleStore = Depends(get_sale_store),
    clock: BusinessClock = Depends(get_clock),
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_permission_dep(VENTAS_READ)),
):
    """
    Modes: custom (start..end or repeated `dates`), weekly (7 days ending at
    `end`), monthly (month to date of `end`) and weekday_hour (one weekday and
    hour, Monday=0, over the last `count` weeks). `end` defaults to business today.
    """
    end = end or clock.business_date()
    if mode == "weekday_hour":
        if weekday is None or hour is None:
            raise ValidationError("weekday_hour comparisons need weekday and hour")
        result = sales_comparison_service.compare_weekday_hour(
            store,
            weekday,
            hour,
            end=end,
            count=count,
            machines=machines,
            registry=registry,
        )
    else:
        days = sales_comparison_service.dates_for_mode(mode, end=end, start=start, dates=dates)
        result = sales_comparison_service.compare_days(
            store,
            days,
            machines=machines,
            mode=mode,
            registry=registry,
        )
    return ComparisonOut(**asdict(result))


# -------------------------
# Records
# -------------------------

@router.post("", response_model=SaleRecordOut, status_code=201)
def record_reading(
    req: SaleReadingIn,
    store: SqlSaleStore = Depends(get_sale_store),
    clock: BusinessClock = Depends(get_clock),
    registry: CacheRegistry = Depends(get_cache_registry),
    profile: UserProfile = Depends(require_permission_dep(VENTAS_WRITE)),
):
    """
    Record a machine's cumulative total for one hour.
    An occupied slot answers 409 until the request is resent with replace=true.
    """
    record = sales_service.record_reading(
        store,
        req.sale_date,
        req.machine_id,
        req.hour,
        req.cumulative_total,
        operator_id=profile.email,
        notes=req.notes,
        replace=req.replace,
        clock=clock,
        registry=registry,
    )
    return record_out(record)


@router.patch("/records/{record_id}", response_model=SaleRecordOut)
def edit_reading(
    record_id: str,
    req: SaleEditIn,
    store: SqlSaleStore = Depends(get_sale_store),
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_permission_dep(VENTAS_WRITE)),
):
    record = sales_service.edit_reading(
        store,
        record_id,
        req.cumulative_total,
        notes=req.notes,
        registry=registry,
    )
    return record_out(record)


@router.delete("/records/{record_id}", response_model=DeleteOut)
def delete_reading(
    record_id: str,
    patch_next: bool = Query(False),
    store: SqlSaleStore = Depends(get_sale_store),
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_permission_dep(VENTAS_WRITE)),
):
    patched = sales_service.delete_reading(store, record_id, patch_next=patch_next, registry=registry)
    return DeleteOut(deleted_id=record_id, patched=record_out(patched) if patched else None)


# -------------------------
# Per-day views
# -------------------------

@router.get("/{sale_date}", response_model=List[SaleRecordOut])
def list_sales(
    sale_date: date,
    machine_id: Optional[str] = Query(None),
    store: SqlSaleStore = Depends(get_sale_store),
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_permission_dep(VENTAS_READ)),
):
    rows = sales_service.list_sales(store, sale_date, machine_id, registry=registry)
    return [record_out(row) for row in rows]


@router.get("/{sale_date}/totals", response_model=DailyTotalsOut)
def daily_totals(
    sale_date: date,
    store: SqlSaleStore = Depends(get_sale_store),
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_permission_dep(VENTAS_READ)),
):
    totals = sales_service.compute_daily_totals(store, sale_date, registry=registry)
    return DailyTotalsOut(
        sale_date=sale_date,
        machines={machine: MachineTotalsOut(**data) for machine, data in totals.items()},
        grand_total=round(sum(data["total"] for data in totals.values()), 2),
    )


@router.post("/{sale_date}/{machine_id}/recompute", response_model=CascadeOut)
def recompute(
    sale_date: date,
    machine_id: str,
    after_hour: Optional[int] = Query(None, ge=0, le=23),
    store: SqlSaleStore = Depends(get_sale_store),
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_permission_dep(VENTAS_WRITE)),
):
    result = sales_service.recompute_cascade(
        store,
        sale_date,
        machine_id,
        after_hour=after_hour,
        registry=registry,
    )
    return CascadeOut(
        sale_date=result.sale_date,
        machine_id=result.machine_id,
        updated=result.updated,
        changes=[AmountChangeOut(**vars(c)) for c in result.changes],
    )


@router.get("/{sale_date}/validation", response_model=ValidationReportOut)
def validate_day(
    sale_date: date,
    store: SqlSaleStore = Depends(get_sale_store),
    _profile: UserProfile = Depends(require_permission_dep(VENTAS_READ)),
):
    report = sales_validation_service.validate_day(store, sale_date)
    machines = []
    for machine in report.machines.values():
        s = machine.summary
        machines.append(
            MachineValidationOut(
                machine_id=machine.machine_id,
                has_issues=machine.has_issues,
                computed_total=machine.computed_total,
                stored_total=machine.stored_total,
                last_cumulative_total=machine.last_cumulative_total,
                missing_hours=s.missing_hours,
                negative_deltas=s.negative_deltas,
                non_monotonic_readings=s.non_monotonic_readings,
                duplicate_hours=s.duplicate_hours,
                amount_mismatches=s.amount_mismatches,
                sum_mismatch=s.sum_mismatch,
                entries=[
                    EntryValidationOut(
                        record_id=e.record_id,
                        hour=e.hour,
                        amount=e.amount,
                        cumulative_total=e.cumulative_total,
                        issues=e.issues,
                    )
                    for e in machine.entries
                ],
            )
        )
    return ValidationReportOut(
        sale_date=report.sale_date,
        has_issues=report.has_issues,
        overall_total=report.overall_total,
        summary=sales_validation_service.summarize_report(report),
        machines=machines,
    )


@router.get("/{sale_date}/validation.csv", response_class=PlainTextResponse)
def validation_csv(
    sale_date: date,
    store: SqlSaleStore = Depends(get_sale_store),
    _profile: UserProfile = Depends(require_permission_dep(VENTAS_READ)),
):
    report = sales_validation_service.validate_day(store, sale_date)
    return PlainTextResponse(sales_validation_service.report_to_csv(report), media_type="text/csv")


@router.post("/{sale_date}/fix-deltas", response_model=FixResultOut)
def fix_deltas(
    sale_date: date,
    store: SqlSaleStore = Depends(get_sale_store),
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_permission_dep(VENTAS_WRITE)),
):
    result = sales_validation_service.fix_day_deltas(store, sale_date, registry=registry)
    return FixResultOut(
        sale_date=result.sale_date,
        fixed=result.fixed,
        skipped=result.skipped,
        details=[FixDetailOut(**vars(d)) for d in result.details],
    )
