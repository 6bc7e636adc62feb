from datetime import date

from backend.app.api.deps import get_sale_store
from backend.app.errors import PersistenceError
from backend.app.main import app
from backend.app.permissions import ADMIN, SUPERVISOR
from backend.app.sales.store import SqlSaleStore

OPERATOR = {"X-User-Email": "operador@example.com"}
DAY = "2026-10-17"


def _post(api_client, hour, total, machine="76", day=DAY, headers=OPERATOR, **extra):
    body = {"sale_date": day, "machine_id": machine, "hour": hour, "cumulative_total": total}
    body.update(extra)
    return api_client.post("/api/sales", json=body, headers=headers)


def test_missing_identity_is_unauthorized(api_client):
    resp = api_client.get(f"/api/sales/{DAY}")
    assert resp.status_code == 401


def test_record_and_list_readings(api_client):
    first = _post(api_client, 9, 100)
    second = _post(api_client, 10, 250)

    assert first.status_code == 201, first.text
    assert second.json()["amount"] == 150
    assert second.json()["period"] == "09:00 - 10:00"
    assert second.json()["operator_id"] == "operador@example.com"

    listed = api_client.get(f"/api/sales/{DAY}", params={"machine_id": "76"}, headers=OPERATOR)
    assert listed.status_code == 200
    assert [(r["hour"], r["amount"]) for r in listed.json()] == [(9, 100), (10, 150)]


def test_occupied_slot_answers_conflict_until_confirmed(api_client):
    original = _post(api_client, 9, 100).json()

    conflict = _post(api_client, 9, 110)
    assert conflict.status_code == 409
    assert conflict.json()["existing"]["id"] == original["id"]
    assert conflict.json()["existing"]["cumulative_total"] == 100

    replaced = _post(api_client, 9, 110, replace=True)
    assert replaced.status_code == 201
    assert replaced.json()["cumulative_total"] == 110


def test_rule_violations_answer_unprocessable(api_client):
    _post(api_client, 9, 100)

    backwards = _post(api_client, 10, 50)
    assert backwards.status_code == 422
    assert "less than the previous hour's total" in backwards.json()["detail"]

    assert _post(api_client, 24, 50).status_code == 422
    assert _post(api_client, 11, -1).status_code == 422
    assert _post(api_client, 21, 500, day="2026-10-18").status_code == 422


def test_edit_and_delete_records(api_client):
    h9 = _post(api_client, 9, 100).json()
    _post(api_client, 10, 250)

    edited = api_client.patch(
        f"/api/sales/records/{h9['id']}",
        json={"cumulative_total": 120, "notes": "recount"},
        headers=OPERATOR,
    )
    assert edited.status_code == 200
    assert edited.json()["notes"] == "recount"

    totals = api_client.get(f"/api/sales/{DAY}/totals", headers=OPERATOR).json()
    assert totals["machines"]["76"]["hourly"][10] == 130
    assert totals["grand_total"] == 250

    deleted = api_client.delete(
        f"/api/sales/records/{h9['id']}",
        params={"patch_next": True},
        headers=OPERATOR,
    )
    assert deleted.status_code == 200
    assert deleted.json()["patched"]["amount"] == 250

    missing = api_client.delete(f"/api/sales/records/{h9['id']}", headers=OPERATOR)
    assert missing.status_code == 404
    assert missing.json()["record_id"] == h9["id"]


def test_recompute_validation_and_fix_endpoints(api_client, store):
    _post(api_client, 9, 100)
    h10 = _post(api_client, 10, 250).json()
    store.update(h10["id"], {"amount": 1.0})

    report = api_client.get(f"/api/sales/{DAY}/validation", headers=OPERATOR).json()
    assert report["has_issues"]
    machine = next(m for m in report["machines"] if m["machine_id"] == "76")
    assert machine["amount_mismatches"] == 1

    csv_resp = api_client.get(f"/api/sales/{DAY}/validation.csv", headers=OPERATOR)
    assert csv_resp.status_code == 200
    assert csv_resp.headers["content-type"].startswith("text/csv")

    fixed = api_client.post(f"/api/sales/{DAY}/fix-deltas", headers=OPERATOR).json()
    assert fixed["fixed"] == 1
    assert fixed["details"][0]["to_amount"] == 150

    store.update(h10["id"], {"amount": 1.0})
    recomputed = api_client.post(
        f"/api/sales/{DAY}/76/recompute",
        params={"after_hour": 9},
        headers=OPERATOR,
    ).json()
    assert recomputed["updated"] == 1
    assert recomputed["changes"][0]["record_id"] == h10["id"]


def test_csv_round_trip_endpoints(api_client):
    imported = api_client.post(
        "/api/sales/import",
        json={"content": "date,hour,machine_id,cumulative_total\n2026-10-17,9,79,80\n2026-10-17,10,79,200\n"},
        headers=OPERATOR,
    )
    assert imported.status_code == 200
    assert imported.json() == {"imported": 2, "errors": []}

    exported = api_client.get(
        "/api/sales/export.csv",
        params={"start": DAY, "end": DAY, "machine_id": "79"},
        headers=OPERATOR,
    )
    assert exported.status_code == 200
    assert 'filename="ventas_79_2026-10-17_2026-10-17.csv"' in exported.headers["content-disposition"]
    assert exported.text.splitlines()[2].startswith("2026-10-17,10,09:00 - 10:00,79,120.00,200.00,")


def test_store_failures_answer_service_unavailable(api_client, sqlite_session):
    class _DownStore(SqlSaleStore):
        def create(self, fields):
            raise PersistenceError("disk full")

    app.dependency_overrides[get_sale_store] = lambda: _DownStore(sqlite_session)
    try:
        resp = _post(api_client, 9, 100)
    finally:
        app.dependency_overrides.pop(get_sale_store, None)

    assert resp.status_code == 503
    assert resp.json()["detail"] == "Could not save the change. Please try again."


def test_partial_cascade_answers_with_written_count(api_client, sqlite_session, store):
    h9 = _post(api_client, 9, 100).json()
    _post(api_client, 10, 250)
    h11 = _post(api_client, 11, 400).json()
    store.update(h11["id"], {"amount": 0.0})

    class _FlakyStore(SqlSaleStore):
        """Second update (the first cascade write) times out."""

        def __init__(self, db):
            super().__init__(db)
            self.calls = 0

        def update(self, record_id, patch):
            self.calls += 1
            if self.calls == 2:
                raise PersistenceError("timeout")
            return super().update(record_id, patch)

    app.dependency_overrides[get_sale_store] = lambda: _FlakyStore(sqlite_session)
    try:
        resp = api_client.patch(
            f"/api/sales/records/{h9['id']}",
            json={"cumulative_total": 120},
            headers=OPERATOR,
        )
    finally:
        app.dependency_overrides.pop(get_sale_store, None)

    assert resp.status_code == 503
    body = resp.json()
    assert (body["written"], body["total"]) == (0, 2)
    assert "cascade stopped" in body["detail"]


def test_permissions_gate_admin_routes(api_client, make_user):
    make_user("admin@example.com", ADMIN)
    make_user("inactive@example.com", SUPERVISOR, is_active=False)
    make_user("odd@example.com", "auditor")

    assert api_client.get("/api/cache/stats", headers=OPERATOR).status_code == 403
    assert api_client.get("/api/cache/stats", headers={"X-User-Email": "inactive@example.com"}).status_code == 403
    assert api_client.get(f"/api/sales/{DAY}", headers={"X-User-Email": "odd@example.com"}).status_code == 403

    admin = {"X-User-Email": "Admin@Example.com"}
    stats = api_client.get("/api/cache/stats", headers=admin)
    assert stats.status_code == 200
    assert set(stats.json()) == {"sales", "dashboard", "overall"}


def test_cache_admin_endpoints(api_client, make_user, registry):
    make_user("admin@example.com", ADMIN)
    admin = {"X-User-Email": "admin@example.com"}

    _post(api_client, 9, 100)
    api_client.get(f"/api/sales/{DAY}", headers=OPERATOR)
    api_client.get(f"/api/sales/{DAY}/totals", headers=OPERATOR)

    entries = api_client.get("/api/cache/entries", headers=admin).json()
    assert [e["key"] for e in entries["sales"]] == [
        f"sales:{DAY}:entries:all",
        f"sales:{DAY}:totals",
    ]

    removed = api_client.post("/api/cache/invalidate", json={"key_or_prefix": f"sales:{DAY}:totals"}, headers=admin)
    assert removed.json() == {"removed": 1}
    assert api_client.post("/api/cache/invalidate", json={}, headers=admin).json() == {"removed": 1}
    assert api_client.post("/api/cache/cleanup", headers=admin).json() == {"removed": 0}


def test_me_lists_role_and_visible_menu(api_client, make_user):
    make_user("super@example.com", SUPERVISOR)

    resp = api_client.get("/api/me", headers={"X-User-Email": "super@example.com"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["role"] == SUPERVISOR
    assert body["role_display_name"] == "Supervisor"
    assert body["role_level"] == 2
    assert "comisiones:all" in body["permissions"]
    menu_ids = [item["id"] for item in body["menu"]]
    assert "comisiones" in menu_ids
    assert "admin" not in menu_ids


def test_unknown_email_is_provisioned_as_operador(api_client):
    body = api_client.get("/api/me", headers={"X-User-Email": "new.person@example.com"}).json()
    assert body["role"] == "operador"
    assert body["name"] == "new.person"


def test_dashboard_defaults_to_business_today(api_client, clock):
    _post(api_client, 9, 100, day=clock.business_date().isoformat())

    resp = api_client.get("/api/dashboard", headers=OPERATOR)

    assert resp.status_code == 200
    body = resp.json()
    assert body["date"] == "2026-10-18"
    assert body["day"]["total"] == 100
    assert date.fromisoformat(body["week"]["start"]) == date(2026, 10, 12)


def test_comparison_endpoint_modes(api_client):
    _post(api_client, 9, 100)
    _post(api_client, 10, 250)
    _post(api_client, 9, 40, day="2026-10-16")

    weekly = api_client.get("/api/sales/comparison", params={"mode": "weekly", "end": DAY}, headers=OPERATOR)
    assert weekly.status_code == 200, weekly.text
    body = weekly.json()
    assert [d["sale_date"] for d in body["days"]][-2:] == ["2026-10-16", DAY]
    assert body["stats"]["best_date"] == DAY
    assert body["stats"]["best"] == 250

    picked = api_client.get(
        "/api/sales/comparison",
        params=[("mode", "custom"), ("dates", DAY), ("dates", "2026-10-16"), ("machines", "76")],
        headers=OPERATOR,
    )
    assert [d["total"] for d in picked.json()["days"]] == [40, 250]
    assert picked.json()["machines"] == ["76"]

    slot = api_client.get(
        "/api/sales/comparison",
        params={"mode": "weekday_hour", "weekday": 5, "hour": 10, "count": 2},
        headers=OPERATOR,
    )
    assert slot.status_code == 200
    assert [(d["sale_date"], d["total"]) for d in slot.json()["days"]] == [("2026-10-10", 0), (DAY, 150)]

    missing_hour = api_client.get("/api/sales/comparison", params={"mode": "weekday_hour", "weekday": 5}, headers=OPERATOR)
    assert missing_hour.status_code == 422
    assert api_client.get("/api/sales/comparison", params={"mode": "yearly"}, headers=OPERATOR).status_code == 422


def test_json_export_endpoint(api_client):
    _post(api_client, 9, 100)
    _post(api_client, 10, 250)

    resp = api_client.get("/api/sales/export.json", params={"start": DAY, "end": DAY}, headers=OPERATOR)

    assert resp.status_code == 200
    assert 'filename="ventas_todas_2026-10-17_2026-10-17.json"' in resp.headers["content-disposition"]
    body = resp.json()
    assert body["metadata"]["total_records"] == 2
    assert body["metadata"]["total_amount"] == 250
    assert [(row["hour"], row["period"]) for row in body["sales"]] == [(9, "08:00 - 09:00"), (10, "09:00 - 10:00")]

    inverted = api_client.get("/api/sales/export.json", params={"start": DAY, "end": "2026-10-01"}, headers=OPERATOR)
    assert inverted.status_code == 422


def test_me_reports_menu_sections(api_client, make_user):
    operador = api_client.get("/api/me", headers=OPERATOR).json()
    assert operador["menu_access"] == ["dashboard", "ventas", "operacion"]
    assert operador["sections"]["ventas"] is True
    assert operador["sections"]["finanzas"] is False

    make_user("admin@example.com", ADMIN)
    admin = api_client.get("/api/me", headers={"X-User-Email": "admin@example.com"}).json()
    assert admin["menu_access"] == ["all"]
    assert all(admin["sections"].values())


def test_cache_warmup_requires_supervisor(api_client, make_user, registry):
    assert api_client.post("/api/cache/warmup", headers=OPERATOR).status_code == 403

    make_user("super@example.com", SUPERVISOR)
    resp = api_client.post("/api/cache/warmup", params={"days": 2}, headers={"X-User-Email": "super@example.com"})

    assert resp.status_code == 200
    assert resp.json() == {"through": "2026-10-18", "days": 2}
    assert registry.sales.stats().size == 2
    assert registry.dashboard.stats().size == 1
