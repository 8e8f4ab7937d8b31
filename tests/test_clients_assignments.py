import pytest

from clientflow.models.models import ActivityLog, Client, ClientAssignment, ClientService
from clientflow.client.admin import AdminWorkspace
from clientflow.client.employee import EmployeeWorkspace
from clientflow.client.errors import ApiError, format_error

from conftest import make_client, service_id, signed_in


@pytest.fixture
def ids(db, employee, other_employee):
    return {
        "seo": str(service_id(db, "seo")),
        "ads": str(service_id(db, "google_ads")),
        "emma": str(employee.id),
        "omar": str(other_employee.id),
    }


def new_client_body(ids, **extra):
    return {
        "name": "Acme Roofing",
        "industry": "Construction",
        "priority": "high",
        "contact_email": "owner@acme.io",
        "weekly_meeting_day": 2,
        "service_ids": [ids["seo"], ids["ads"]],
        "assignments": [
            {"employee_id": ids["emma"], "service_id": ids["seo"], "is_account_manager": True},
            {"employee_id": ids["omar"], "service_id": ids["ads"]},
        ],
        **extra,
    }


def test_admin_creates_client_with_services_and_team(client, db, admin_headers, ids):
    resp = client.post("/api/clients", json=new_client_body(ids), headers=admin_headers)
    assert resp.status_code == 201
    data = resp.json()
    assert data["name"] == "Acme Roofing"
    assert sorted(data["service_ids"]) == sorted([ids["seo"], ids["ads"]])
    assert {(a["employee_id"], a["service_id"]) for a in data["assignments"]} == {
        (ids["emma"], ids["seo"]),
        (ids["omar"], ids["ads"]),
    }
    assert db.query(ClientService).count() == 2
    assert db.query(ClientAssignment).count() == 2
    assert db.query(ActivityLog).filter(ActivityLog.entity_type == "client", ActivityLog.action == "CREATE").count() == 1


def test_repeated_assignment_is_a_unique_violation(client, db, admin_headers, ids):
    created = client.post("/api/clients", json=new_client_body(ids), headers=admin_headers).json()
    body = {"client_id": created["id"], "employee_id": ids["emma"], "service_id": ids["seo"]}
    resp = client.post("/api/assignments", json=body, headers=admin_headers)
    assert resp.status_code == 409
    assert resp.json()["code"] == "23505"
    assert db.query(ClientAssignment).count() == 2


def test_reassigning_after_delete_restores_the_row(client, db, admin_headers, employee, ids):
    created = client.post("/api/clients", json=new_client_body(ids), headers=admin_headers).json()
    emma_id = db.query(ClientAssignment).filter(ClientAssignment.employee_id == employee.id).one().id
    resp = client.delete(f"/rest/v1/client_assignments?id=eq.{emma_id}", headers=admin_headers)
    assert resp.status_code == 200

    body = {"client_id": created["id"], "employee_id": ids["emma"], "service_id": ids["seo"]}
    resp = client.post("/api/assignments", json=body, headers=admin_headers)
    assert resp.status_code == 201
    assert resp.json()["id"] == str(emma_id)
    assert resp.json()["is_active"] is True
    assert resp.json()["is_account_manager"] is False

    db.expire_all()
    rows = db.query(ClientAssignment).all()
    assert len(rows) == 2
    assert all(a.deleted_at is None for a in rows)
    assert db.query(ActivityLog).filter(ActivityLog.entity_type == "assignment", ActivityLog.action == "RESTORE").count() == 1


def test_assignment_needs_an_enabled_service(client, db, admin_headers, ids):
    acme = make_client(db, "Acme", slugs=["seo"])
    body = {"client_id": str(acme.id), "employee_id": ids["emma"], "service_id": ids["ads"]}
    resp = client.post("/api/assignments", json=body, headers=admin_headers)
    assert resp.status_code == 400
    assert "not enabled" in resp.json()["detail"]


def test_create_is_all_or_nothing(client, db, admin_headers, ids):
    # The second assignment uses a service that is not enabled
    body = new_client_body(ids, service_ids=[ids["seo"]])
    resp = client.post("/api/clients", json=body, headers=admin_headers)
    assert resp.status_code == 400
    assert db.query(Client).count() == 0
    assert db.query(ClientService).count() == 0
    assert db.query(ClientAssignment).count() == 0


def test_update_replaces_sets_and_keeps_surviving_ids(client, db, admin_headers, employee, ids):
    created = client.post("/api/clients", json=new_client_body(ids), headers=admin_headers).json()
    kept = db.query(ClientAssignment).filter(ClientAssignment.employee_id == employee.id).one().id

    resp = client.patch(
        f"/api/clients/{created['id']}",
        json={
            "status": "paused",
            "service_ids": [ids["seo"]],
            "assignments": [{"employee_id": ids["emma"], "service_id": ids["seo"], "is_account_manager": True}],
        },
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "paused"
    assert resp.json()["service_ids"] == [ids["seo"]]
    db.expire_all()
    [remaining] = db.query(ClientAssignment).all()
    assert remaining.id == kept


def test_disabling_a_service_drops_its_assignments(client, db, admin_headers, ids):
    created = client.post("/api/clients", json=new_client_body(ids), headers=admin_headers).json()
    client.patch(f"/api/clients/{created['id']}", json={"service_ids": [ids["seo"]]}, headers=admin_headers)
    assert [str(a.employee_id) for a in db.query(ClientAssignment).all()] == [ids["emma"]]


def test_delete_is_soft_and_deactivates_team(client, db, admin_headers, ids):
    created = client.post("/api/clients", json=new_client_body(ids), headers=admin_headers).json()
    assert client.delete(f"/api/clients/{created['id']}", headers=admin_headers).json() == {"status": "ok"}
    db.expire_all()
    assert db.query(Client).one().deleted_at is not None
    assert all(not a.is_active for a in db.query(ClientAssignment).all())
    assert client.get(f"/api/clients/{created['id']}", headers=admin_headers).status_code == 404


def test_employee_sees_only_assigned_clients(client, db, admin_headers, employee_headers, ids):
    client.post("/api/clients", json=new_client_body(ids), headers=admin_headers)
    make_client(db, "Unassigned Co", slugs=["seo"])
    names = [c["name"] for c in client.get("/api/clients", headers=employee_headers).json()]
    assert names == ["Acme Roofing"]
    assert client.post("/api/clients", json={"name": "Nope"}, headers=employee_headers).status_code == 403


def test_invalid_status_is_rejected(client, admin_headers):
    resp = client.post("/api/clients", json={"name": "Acme", "status": "archived"}, headers=admin_headers)
    assert resp.status_code == 422


@pytest.mark.anyio
async def test_admin_workspace_flow(backend_factory, admin, ids):
    backend = backend_factory()
    ws = AdminWorkspace(backend, await signed_in(backend, admin.email))

    services = {s["slug"]: s["id"] for s in await ws.services()}
    assert services["seo"] == ids["seo"]

    created = await ws.create_client(
        {"name": "Initech", "website": "https://initech.example"},
        service_ids=[ids["seo"]],
        assignments=[{"employee_id": ids["emma"], "service_id": ids["seo"]}],
    )
    assert [c["name"] for c in await ws.clients()] == ["Initech"]

    with pytest.raises(ApiError) as err:
        await ws.assign(created["id"], ids["emma"], ids["seo"])
    assert err.value.code == "23505"
    assert format_error(err.value) == "This record already exists. Please check your data and try again."

    with pytest.raises(ApiError) as err:
        await ws.assign(created["id"], ids["omar"], ids["ads"])
    assert err.value.status == 400

    omar = await ws.assign(created["id"], ids["omar"], ids["seo"])
    deactivated = await ws.deactivate_assignment(omar["id"])
    assert deactivated["is_active"] is False
    active = await ws.assignments(client_id=created["id"])
    assert [a["employee_id"] for a in active] == [ids["emma"]]
    assert len(await ws.assignments(client_id=created["id"], include_inactive=True)) == 2

    await ws.remove_assignment(omar["id"])
    assert len(await ws.assignments(client_id=created["id"], include_inactive=True)) == 1


@pytest.mark.anyio
async def test_client_form_is_validated_before_sending(backend_factory, admin):
    backend = backend_factory()
    ws = AdminWorkspace(backend, await signed_in(backend, admin.email))
    with pytest.raises(ApiError):
        await ws.create_client({"name": "  "})
    with pytest.raises(ApiError):
        await ws.create_client({"name": "Acme", "contact_email": "not-an-email"})
    with pytest.raises(ApiError):
        await ws.update_client("any", {"website": "initech"})


@pytest.mark.anyio
async def test_employee_lists_own_assignments(backend_factory, client, admin_headers, employee, ids):
    client.post("/api/clients", json=new_client_body(ids), headers=admin_headers)
    backend = backend_factory()
    ws = EmployeeWorkspace(backend, await signed_in(backend, employee.email))
    [mine] = await ws.my_assignments()
    assert mine["clients"]["name"] == "Acme Roofing"
    assert mine["services"]["slug"] == "seo"
    assert [c["name"] for c in await ws.my_clients()] == ["Acme Roofing"]
