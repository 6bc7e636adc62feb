"""
Roles, permissions and menu visibility.

Permissions are `category:action` strings. Holding `category:all` grants every
action in that category; nothing else is implied.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional

OPERADOR = "operador"
SUPERVISOR = "supervisor"
ADMIN = "admin"

ROLE_ORDER = {
    OPERADOR: 1,
    SUPERVISOR: 2,
    ADMIN: 3,
}

ROLE_DISPLAY_NAMES = {
    OPERADOR: "Operador",
    SUPERVISOR: "Supervisor",
    ADMIN: "Administrador",
}

DASHBOARD_READ = "dashboard:read"

VENTAS_ALL = "ventas:all"
VENTAS_READ = "ventas:read"
VENTAS_WRITE = "ventas:write"

BOLETOS_CREATE = "boletos:create"
BOLETOS_READ = "boletos:read"

ROLLOS_CREATE = "rollos:create"
ROLLOS_READ = "rollos:read"
ROLLOS_UPDATE = "rollos:update"
ROLLOS_DELETE = "rollos:delete"

COMISIONES_ALL = "comisiones:all"
COMISIONES_READ = "comisiones:read"

PREMIADOS_ALL = "premiados:all"
PREMIADOS_READ = "premiados:read"

PROMEDIO_BOLETO_ALL = "promedio-boleto:all"

SORTEOS_ALL = "sorteos:all"
SORTEOS_READ = "sorteos:read"

ADMIN_ALL = "admin:all"
USERS_ALL = "users:all"

_OPERADOR_PERMISSIONS = (
    DASHBOARD_READ,
    VENTAS_ALL,
    BOLETOS_CREATE,
    BOLETOS_READ,
    ROLLOS_CREATE,
    ROLLOS_READ,
)

_SUPERVISOR_PERMISSIONS = _OPERADOR_PERMISSIONS + (
    ROLLOS_UPDATE,
    ROLLOS_DELETE,
    COMISIONES_ALL,
    PREMIADOS_ALL,
    PROMEDIO_BOLETO_ALL,
    SORTEOS_ALL,
)

_ADMIN_PERMISSIONS = _SUPERVISOR_PERMISSIONS + (
    ADMIN_ALL,
    USERS_ALL,
)

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    OPERADOR: frozenset(_OPERADOR_PERMISSIONS),
    SUPERVISOR: frozenset(_SUPERVISOR_PERMISSIONS),
    ADMIN: frozenset(_ADMIN_PERMISSIONS),
}

MENU_SECTIONS = ("dashboard", "ventas", "finanzas", "sorteos", "operacion")

ROLE_MENU_ACCESS: Dict[str, List[str]] = {
    OPERADOR: ["dashboard", "ventas", "operacion"],
    SUPERVISOR: ["dashboard", "ventas", "finanzas", "sorteos", "operacion"],
    ADMIN: ["all"],
}


def is_authorized(permission_set: Iterable[str], required: str) -> bool:
    granted = set(permission_set)
    if required in granted:
        return True
    category = required.split(":", 1)[0]
    return f"{category}:all" in granted


def role_at_least(role: Optional[str], required_role: str) -> bool:
    return ROLE_ORDER.get(role or "", 0) >= ROLE_ORDER.get(required_role, 0)


def has_menu_access(menu_access: Iterable[str], section: str) -> bool:
    sections = set(menu_access)
    return "all" in sections or section in sections


@dataclass(frozen=True)
class UserProfile:
    email: str
    role: str
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    menu_access: tuple = ()
    is_active: bool = True

    @property
    def role_level(self) -> int:
        return ROLE_ORDER.get(self.role, 0)

    @property
    def role_display_name(self) -> str:
        return ROLE_DISPLAY_NAMES.get(self.role, self.role)


def profile_for(email: str, role: str, is_active: bool = True) -> UserProfile:
    return UserProfile(
        email=email,
        role=role,
        permissions=ROLE_PERMISSIONS.get(role, frozenset()),
        menu_access=tuple(ROLE_MENU_ACCESS.get(role, [])),
        is_active=is_active,
    )


def can(profile: Optional[UserProfile], permission: str) -> bool:
    if profile is None or not profile.is_active:
        return False
    return is_authorized(profile.permissions, permission)


def can_access_menu(profile: Optional[UserProfile], section: str) -> bool:
    if profile is None or not profile.is_active:
        return False
    return has_menu_access(profile.menu_access, section)


@dataclass(frozen=True)
class MenuItem:
    id: str
    name: str
    path: str
    permission: str


MENU_ITEMS: List[MenuItem] = [
    MenuItem("dashboard", "Dashboard", "/", DASHBOARD_READ),
    MenuItem("sales-hourly", "Ventas por Hora", "/sales/hourly", VENTAS_READ),
    MenuItem("sales-comparison", "Comparación de Ventas", "/sales/comparison", VENTAS_READ),
    MenuItem("rollos", "Rollos", "/rollos", ROLLOS_READ),
    MenuItem("comisiones", "Comisiones", "/finances/commissions", COMISIONES_READ),
    MenuItem("tickets", "Boletos Vendidos", "/finances/tickets", BOLETOS_READ),
    MenuItem("paid-prizes", "Boletos Premiados Pagados", "/finances/paid-prizes", PREMIADOS_READ),
    MenuItem("premiados", "Premiados", "/premiados", PREMIADOS_READ),
    MenuItem("sorteos", "Sorteos", "/sorteos", SORTEOS_READ),
    MenuItem("admin", "Administración", "/admin", ADMIN_ALL),
]


def visible_menu(profile: Optional[UserProfile]) -> List[MenuItem]:
    return [item for item in MENU_ITEMS if can(profile, item.permission)]
