import pytest

from backend.app.permissions import (
    ADMIN,
    ADMIN_ALL,
    COMISIONES_READ,
    DASHBOARD_READ,
    OPERADOR,
    ROLLOS_DELETE,
    SUPERVISOR,
    VENTAS_READ,
    VENTAS_WRITE,
    can,
    can_access_menu,
    has_menu_access,
    is_authorized,
    profile_for,
    role_at_least,
    visible_menu,
)


def test_exact_permission_is_granted():
    assert is_authorized({"ventas:read"}, "ventas:read")
    assert not is_authorized({"ventas:read"}, "ventas:write")


def test_category_all_expands_to_every_action():
    assert is_authorized({"ventas:all"}, "ventas:read")
    assert is_authorized({"ventas:all"}, "ventas:write")
    assert not is_authorized({"ventas:all"}, "rollos:read")


def test_read_does_not_imply_write_or_all():
    assert not is_authorized({"comisiones:read"}, "comisiones:all")
    assert not is_authorized(set(), "dashboard:read")


@pytest.mark.parametrize(
    "role,permission,expected",
    [
        (OPERADOR, VENTAS_WRITE, True),
        (OPERADOR, DASHBOARD_READ, True),
        (OPERADOR, ROLLOS_DELETE, False),
        (OPERADOR, COMISIONES_READ, False),
        (SUPERVISOR, "comisiones:write", True),
        (SUPERVISOR, ROLLOS_DELETE, True),
        (SUPERVISOR, ADMIN_ALL, False),
        (ADMIN, "users:write", True),
        (ADMIN, ADMIN_ALL, True),
    ],
)
def test_role_permissions(role, permission, expected):
    assert can(profile_for("user@example.com", role), permission) is expected


def test_inactive_profile_has_no_permissions():
    profile = profile_for("user@example.com", ADMIN, is_active=False)
    assert not can(profile, VENTAS_READ)
    assert visible_menu(profile) == []
    assert not can(None, VENTAS_READ)


def test_role_hierarchy():
    assert role_at_least(ADMIN, SUPERVISOR)
    assert role_at_least(SUPERVISOR, SUPERVISOR)
    assert not role_at_least(OPERADOR, SUPERVISOR)
    assert not role_at_least(None, OPERADOR)


def test_menu_access_sections():
    assert has_menu_access(["all"], "finanzas")
    assert has_menu_access(["dashboard", "ventas"], "ventas")
    assert not has_menu_access(["dashboard", "ventas"], "finanzas")


def test_visible_menu_grows_with_role():
    operador = [item.id for item in visible_menu(profile_for("a@example.com", OPERADOR))]
    supervisor = [item.id for item in visible_menu(profile_for("b@example.com", SUPERVISOR))]
    admin = [item.id for item in visible_menu(profile_for("c@example.com", ADMIN))]

    assert "sales-hourly" in operador
    assert "comisiones" not in operador
    assert "comisiones" in supervisor
    assert "admin" not in supervisor
    assert "admin" in admin
    assert set(operador) < set(supervisor) < set(admin)


def test_profile_display_fields():
    profile = profile_for("c@example.com", ADMIN)
    assert profile.role_display_name == "Administrador"
    assert profile.role_level == 3


def test_profile_menu_sections_follow_role():
    operador = profile_for("a@example.com", OPERADOR)
    assert can_access_menu(operador, "operacion")
    assert not can_access_menu(operador, "finanzas")
    assert can_access_menu(profile_for("c@example.com", ADMIN), "finanzas")
    assert not can_access_menu(profile_for("c@example.com", ADMIN, is_active=False), "ventas")
    assert not can_access_menu(None, "dashboard")
