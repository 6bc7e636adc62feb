from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backend.app.api.deps import get_current_profile, get_current_user
from backend.app.models import User
from backend.app.permissions import MENU_SECTIONS, UserProfile, can_access_menu, visible_menu


router = APIRouter(prefix="/api", tags=["users"])


class MenuItemOut(BaseModel):
    id: str
    name: str
    path: str


class MeOut(BaseModel):
    id: str
    email: str
    name: Optional[str]
    role: str
    role_display_name: str
    role_level: int
    is_active: bool
    permissions: List[str]
    menu_access: List[str]
    sections: Dict[str, bool]
    menu: List[MenuItemOut]


@router.get("/me", response_model=MeOut)
def get_me(
    user: User = Depends(get_current_user),
    profile: UserProfile = Depends(get_current_profile),
):
    return MeOut(
        id=user.id,
        email=user.email,
        name=user.name,
        role=profile.role,
        role_display_name=profile.role_display_name,
        role_level=profile.role_level,
        is_active=profile.is_active,
        permissions=sorted(profile.permissions),
        menu_access=list(profile.menu_access),
        sections={section: can_access_menu(profile, section) for section in MENU_SECTIONS},
        menu=[MenuItemOut(id=item.id, name=item.name, path=item.path) for item in visible_menu(profile)],
    )
