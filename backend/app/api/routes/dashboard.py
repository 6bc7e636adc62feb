from __future__ import annotations

import datetime as dt
from datetime import date
from typing import Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backend.app.api.deps import get_cache_registry, get_clock, get_sale_store, require_permission_dep
from backend.app.cache import CacheRegistry
from backend.app.clock import BusinessClock
from backend.app.permissions import DASHBOARD_READ, UserProfile
from backend.app.sales.store import SqlSaleStore
from backend.app.services import dashboard_service

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


class PeriodTotalOut(BaseModel):
    start: date
    end: date
    machines: Dict[str, float]
    total: float


class DashboardOut(BaseModel):
    date: dt.date
    day: PeriodTotalOut
    week: PeriodTotalOut
    month: PeriodTotalOut


def _summary(store: SqlSaleStore, day: date, registry: CacheRegistry) -> DashboardOut:
    return DashboardOut(**dashboard_service.dashboard_summary(store, day, registry=registry))


@router.get("", response_model=DashboardOut)
def today_dashboard(
    store: SqlSaleStore = Depends(get_sale_store),
    clock: BusinessClock = Depends(get_clock),
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_permission_dep(DASHBOARD_READ)),
):
    return _summary(store, clock.business_date(), registry)


@router.get("/{day}", response_model=DashboardOut)
def dashboard_for_day(
    day: date,
    store: SqlSaleStore = Depends(get_sale_store),
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_permission_dep(DASHBOARD_READ)),
):
    return _summary(store, day, registry)
