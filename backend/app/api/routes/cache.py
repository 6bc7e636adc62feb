from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from backend.app.api.deps import (
    get_cache_registry,
    get_clock,
    get_sale_store,
    require_permission_dep,
    require_role_dep,
)
from backend.app.cache import CacheRegistry
from backend.app.clock import BusinessClock
from backend.app.permissions import ADMIN_ALL, SUPERVISOR, UserProfile
from backend.app.sales.store import SqlSaleStore
from backend.app.services import sales_comparison_service

router = APIRouter(prefix="/api/cache", tags=["cache"])


class InvalidateIn(BaseModel):
    # None clears everything; a trailing ":" clears that prefix, anything else one exact key
    key_or_prefix: Optional[str] = None


class RemovedOut(BaseModel):
    removed: int


class WarmupOut(BaseModel):
    through: date
    days: int


@router.get("/stats")
def cache_stats(
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_permission_dep(ADMIN_ALL)),
) -> Dict[str, Any]:
    return registry.global_stats()


@router.get("/entries")
def cache_entries(
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_permission_dep(ADMIN_ALL)),
) -> Dict[str, Any]:
    return {cache.name: cache.snapshot() for cache in registry.all()}


@router.post("/invalidate", response_model=RemovedOut)
def invalidate(
    req: InvalidateIn,
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_permission_dep(ADMIN_ALL)),
):
    if not req.key_or_prefix:
        return RemovedOut(removed=registry.invalidate_all())
    return RemovedOut(removed=sum(cache.invalidate(req.key_or_prefix) for cache in registry.all()))


@router.post("/cleanup", response_model=RemovedOut)
def cleanup(
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_permission_dep(ADMIN_ALL)),
):
    return RemovedOut(removed=registry.cleanup())


@router.post("/warmup", response_model=WarmupOut)
def warmup(
    days: int = Query(sales_comparison_service.WARMUP_DAYS, ge=1, le=31),
    store: SqlSaleStore = Depends(get_sale_store),
    clock: BusinessClock = Depends(get_clock),
    registry: CacheRegistry = Depends(get_cache_registry),
    _profile: UserProfile = Depends(require_role_dep(SUPERVISOR)),
):
    return WarmupOut(**sales_comparison_service.warmup_cache(store, clock, days=days, registry=registry))
