# backend/app/api/deps.py
from __future__ import annotations

from typing import Callable

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.cache import CacheRegistry, caches
from backend.app.clock import BusinessClock, get_business_clock
from backend.app.db import get_db
from backend.app.models import User, utcnow
from backend.app.permissions import OPERADOR, ROLE_ORDER, UserProfile, can, profile_for, role_at_least
from backend.app.sales.store import SqlSaleStore


def get_sale_store(db: Session = Depends(get_db)) -> SqlSaleStore:
    return SqlSaleStore(db)


def get_clock() -> BusinessClock:
    return get_business_clock()


def get_cache_registry() -> CacheRegistry:
    return caches


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """
    Identity from the X-User-Email header set by the auth provider in front of us.

    NOTE:
    - Unknown emails are provisioned with the lowest role; promotion happens
      outside this API.
    - db must be injected via Depends(get_db) so FastAPI doesn't treat Session
      as a Pydantic field.
    """
    email = request.headers.get("X-User-Email")
    if not email:
        raise HTTPException(status_code=401, detail="Missing X-User-Email header")

    normalized = email.strip().lower()
    if not normalized:
        raise HTTPException(status_code=401, detail="Invalid X-User-Email header")

    user = db.execute(select(User).where(User.email == normalized)).scalars().first()
    if not user:
        user = User(
            email=normalized,
            name=normalized.split("@")[0],
            role=OPERADOR,
            is_active=True,
            created_at=utcnow(),
            updated_at=utcnow(),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


def get_current_profile(user: User = Depends(get_current_user)) -> UserProfile:
    if user.role not in ROLE_ORDER:
        raise HTTPException(status_code=403, detail=f"unknown role {user.role!r}")
    return profile_for(user.email, user.role, is_active=user.is_active)


def require_permission_dep(permission: str) -> Callable[..., UserProfile]:
    """
    FastAPI dependency factory gating a route on one permission.

    Usage:
      @router.post("/api/sales")
      def create(profile: UserProfile = Depends(require_permission_dep(VENTAS_WRITE))):
          ...
    """
    def _dep(profile: UserProfile = Depends(get_current_profile)) -> UserProfile:
        if not profile.is_active:
            raise HTTPException(status_code=403, detail="user is inactive")
        if not can(profile, permission):
            raise HTTPException(status_code=403, detail=f"missing permission {permission}")
        return profile

    return _dep


def require_role_dep(role: str) -> Callable[..., UserProfile]:
    """Gate a route on a minimum role; higher roles pass too."""
    def _dep(profile: UserProfile = Depends(get_current_profile)) -> UserProfile:
        if not profile.is_active:
            raise HTTPException(status_code=403, detail="user is inactive")
        if not role_at_least(profile.role, role):
            raise HTTPException(status_code=403, detail=f"requires role {role} or higher")
        return profile

    return _dep
