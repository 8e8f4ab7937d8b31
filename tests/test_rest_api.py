from datetime import date, datetime, timezone

import pytest

from clientflow.models.models import ClientCredential, DailyTaskLog, Task, WeeklyReport
from clientflow.services.crypto import encrypt_secret

from conftest import assign, auth_headers, make_client, make_portal_user, service_id


SINGLE = {"Accept": "application/vnd.pgrst.object+json"}


@pytest.fixture
def acme(db):
    return make_client(db, "Acme", slugs=["seo", "google_ads"], industry="Roofing")


@pytest.fixture
def globex(db):
    return make_client(db, "Globex", slugs=["seo"], industry="Retail", status="paused")


def make_task(db, assignee, creator, title, due=date(2024, 1, 20), client=None, **kw):
    t = Task(title=title, assigned_to=assignee.id, created_by=creator.id, due_date=due,
             client_id=client.id if client else None, **kw)
    db.add(t)
    db.commit()
    return t


def test_requires_a_token(client):
    resp = client.get("/rest/v1/clients")
    assert resp.status_code == 401


def test_filters_order_and_count(client, admin_headers, acme, globex):
    resp = client.get(
        "/rest/v1/clients",
        params={"select": "id,name,status", "status": "eq.active", "order": "name.asc"},
        headers={**admin_headers, "Prefer": "count=exact"},
    )
    assert resp.status_code == 200
    assert resp.json() == [{"id": str(acme.id), "name": "Acme", "status": "active"}]
    assert resp.headers["content-range"] == "0-0/1"

    resp = client.get("/rest/v1/clients", params={"name": "in.(Acme,Globex)", "order": "name.desc"}, headers=admin_headers)
    assert [c["name"] for c in resp.json()] == ["Globex", "Acme"]

    resp = client.get("/rest/v1/clients", params={"industry": "ilike.*roof*"}, headers=admin_headers)
    assert [c["name"] for c in resp.json()] == ["Acme"]

    resp = client.get("/rest/v1/clients", params={"status": "not.eq.active"}, headers=admin_headers)
    assert [c["name"] for c in resp.json()] == ["Globex"]


def test_boolean_filters(client, db, admin_headers, employee, other_employee, acme):
    assign(db, acme, employee, "seo")
    retired = assign(db, acme, other_employee, "seo")
    retired.is_active = False
    db.commit()

    def employees(**params):
        resp = client.get("/rest/v1/client_assignments", params={"select": "employee_id", **params}, headers=admin_headers)
        assert resp.status_code == 200
        return [r["employee_id"] for r in resp.json()]

    assert employees(is_active="eq.true") == [str(employee.id)]
    assert employees(is_active="eq.false") == [str(other_employee.id)]
    assert employees(is_active="neq.true") == [str(other_employee.id)]
    assert employees(is_active="not.eq.false") == [str(employee.id)]

    resp = client.get("/rest/v1/client_assignments", params={"is_active": "gt.true"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["code"] == "PGRST100"


def test_null_filters(client, db, admin_headers, acme):
    make_client(db, "Initech", website="https://initech.example")

    def names(**params):
        return [c["name"] for c in client.get("/rest/v1/clients", params={"order": "name", **params}, headers=admin_headers).json()]

    assert names(website="eq.null") == ["Acme"]
    assert names(website="neq.null") == ["Initech"]
    assert names(website="is.null") == ["Acme"]


def test_paging(client, admin_headers, acme, globex):
    resp = client.get(
        "/rest/v1/clients",
        params={"order": "name.asc", "limit": "1", "offset": "1"},
        headers={**admin_headers, "Prefer": "count=exact"},
    )
    assert [c["name"] for c in resp.json()] == ["Globex"]
    assert resp.headers["content-range"] == "1-1/2"


def test_embeds_follow_foreign_keys(client, db, admin_headers, employee, acme):
    assign(db, acme, employee, "seo", is_account_manager=True)
    resp = client.get(
        "/rest/v1/client_assignments",
        params={"select": "id,is_account_manager,clients(name),services(slug),profiles:employee_id(full_name)"},
        headers=admin_headers,
    )
    [row] = resp.json()
    assert row["clients"] == {"name": "Acme"}
    assert row["services"] == {"slug": "seo"}
    assert row["profiles"] == {"full_name": "Emma Employee"}
    assert row["is_account_manager"] is True

    # One-to-many in the other direction
    resp = client.get("/rest/v1/clients", params={"select": "name,client_services(service_id)", "id": f"eq.{acme.id}"}, headers=admin_headers)
    assert len(resp.json()[0]["client_services"]) == 2


def test_single_object(client, admin_headers, acme, globex):
    resp = client.get("/rest/v1/clients", params={"id": f"eq.{acme.id}"}, headers={**admin_headers, **SINGLE})
    assert resp.status_code == 200
    assert resp.json()["name"] == "Acme"

    resp = client.get("/rest/v1/clients", headers={**admin_headers, **SINGLE})
    assert resp.status_code == 406
    assert resp.json()["code"] == "PGRST116"


def test_unknown_table_and_column(client, admin_headers):
    resp = client.get("/rest/v1/invoices", headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["code"] == "42P01"

    resp = client.get("/rest/v1/clients", params={"colour": "eq.red"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["code"] == "42703"

    resp = client.get("/rest/v1/clients", params={"id": "eq.not-a-uuid"}, headers=admin_headers)
    assert resp.json()["code"] == "22P02"


def test_insert_update_and_unique_violation(client, db, admin_headers, acme, employee):
    body = {"client_id": str(acme.id), "employee_id": str(employee.id), "service_id": str(service_id(db, "seo"))}
    resp = client.post("/rest/v1/client_assignments", json=body, headers={**admin_headers, "Prefer": "return=representation"})
    assert resp.status_code == 201
    created = resp.json()[0]
    assert created["is_active"] is True

    resp = client.post("/rest/v1/client_assignments", json=body, headers=admin_headers)
    assert resp.status_code == 409
    assert resp.json()["code"] == "23505"

    resp = client.patch(f"/rest/v1/client_assignments?id=eq.{created['id']}", json={"is_active": False}, headers=admin_headers)
    assert resp.json()[0]["is_active"] is False


def test_update_needs_a_filter(client, admin_headers, acme):
    resp = client.patch("/rest/v1/clients", json={"status": "paused"}, headers=admin_headers)
    assert resp.status_code == 400


def test_upsert_on_conflict(client, db, employee, employee_headers, acme):
    a = assign(db, acme, employee, "seo")
    body = {"assignment_id": str(a.id), "log_date": "2024-01-15", "metrics": {"keywords_ranked": 3}, "status": "pending"}
    headers = {**employee_headers, "Prefer": "return=representation,resolution=merge-duplicates"}
    first = client.post("/rest/v1/daily_task_logs?on_conflict=assignment_id,log_date", json=body, headers=headers).json()[0]
    body["metrics"] = {"keywords_ranked": 5}
    second = client.post("/rest/v1/daily_task_logs?on_conflict=assignment_id,log_date", json=body, headers=headers).json()[0]
    assert first["id"] == second["id"]
    assert second["metrics"] == {"keywords_ranked": 5}
    assert db.query(DailyTaskLog).count() == 1


def test_delete_is_soft_where_supported(client, db, admin, admin_headers, employee):
    task = make_task(db, employee, admin, "Audit landing pages")
    resp = client.delete(f"/rest/v1/tasks?id=eq.{task.id}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()[0]["title"] == "Audit landing pages"

    db.expire_all()
    assert db.get(Task, task.id).deleted_at is not None
    assert client.get("/rest/v1/tasks", headers=admin_headers).json() == []
    # Deleting again touches nothing
    assert client.delete(f"/rest/v1/tasks?id=eq.{task.id}", headers=admin_headers).json() == []


def test_employee_only_sees_own_tasks(client, db, admin, employee, other_employee, employee_headers):
    mine = make_task(db, employee, admin, "Mine")
    raised = make_task(db, other_employee, employee, "Raised for Omar")
    make_task(db, other_employee, admin, "Not mine")

    titles = {t["title"] for t in client.get("/rest/v1/tasks", headers=employee_headers).json()}
    assert titles == {mine.title, raised.title}

    # The column alias narrows the same way the client does
    resp = client.get("/rest/v1/tasks", params={"employee_id": f"eq.{employee.id}"}, headers=employee_headers)
    assert [t["title"] for t in resp.json()] == ["Mine"]


def test_employee_cannot_touch_other_rows(client, db, admin, employee, other_employee, employee_headers):
    theirs = make_task(db, other_employee, admin, "Not mine")
    resp = client.patch(f"/rest/v1/tasks?id=eq.{theirs.id}", json={"status": "completed"}, headers=employee_headers)
    assert resp.json() == []
    db.expire_all()
    assert db.get(Task, theirs.id).status == "pending"


def test_insert_violating_row_security_is_refused(client, db, employee, other_employee, employee_headers, acme):
    theirs = assign(db, acme, other_employee, "seo")
    resp = client.post(
        "/rest/v1/daily_task_logs",
        json={"assignment_id": str(theirs.id), "log_date": "2024-01-15", "metrics": {}},
        headers=employee_headers,
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "42501"


def test_employee_cannot_promote_self(client, employee, employee_headers):
    resp = client.patch(f"/rest/v1/profiles?id=eq.{employee.id}", json={"role": "admin"}, headers=employee_headers)
    assert resp.status_code == 403
    assert resp.json()["code"] == "42501"

    resp = client.patch(f"/rest/v1/profiles?id=eq.{employee.id}", json={"phone": "555-123-4567"}, headers=employee_headers)
    assert resp.json()[0]["phone"] == "555-123-4567"


def test_employee_cannot_write_clients(client, employee_headers, acme):
    resp = client.patch(f"/rest/v1/clients?id=eq.{acme.id}", json={"name": "Hacked"}, headers=employee_headers)
    assert resp.json() == []
    resp = client.post("/rest/v1/clients", json={"name": "New"}, headers=employee_headers)
    assert resp.status_code == 403


def test_credential_secret_never_leaves_the_table_api(client, db, admin, admin_headers, acme):
    db.add(ClientCredential(client_id=acme.id, tool_name="Ahrefs", username="ops@acme.io",
                            encrypted_password=encrypt_secret("hunter22"), created_by=admin.id))
    db.commit()
    [row] = client.get("/rest/v1/client_credentials", headers=admin_headers).json()
    assert "encrypted_password" not in row
    resp = client.patch(f"/rest/v1/client_credentials?id=eq.{row['id']}", json={"encrypted_password": "x"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["code"] == "PGRST204"


def test_portal_sees_only_approved_reports_of_its_client(client, db, admin, employee, acme, globex):
    def report(c, status):
        r = WeeklyReport(employee_id=employee.id, client_id=c.id, service_id=service_id(db, "seo"),
                         week_start_date=date(2024, 1, 15), work_summary=f"{c.name} {status}",
                         status=status, approval_status=status, is_draft=False,
                         submitted_at=datetime(2024, 1, 19, tzinfo=timezone.utc))
        db.add(r)
        return r

    report(acme, "approved")
    report(acme, "submitted")
    report(globex, "approved")
    db.commit()
    portal = make_portal_user(db, "contact@acme.io", acme.id)
    headers = auth_headers(portal.auth_user_id, portal.email)

    rows = client.get("/rest/v1/weekly_reports", params={"select": "work_summary,clients(name)"}, headers=headers).json()
    assert rows == [{"work_summary": "Acme approved", "clients": {"name": "Acme"}}]
    assert [c["name"] for c in client.get("/rest/v1/clients", headers=headers).json()] == ["Acme"]
    assert client.get("/rest/v1/tasks", headers=headers).json() == []


def test_embed_respects_row_security(client, db, admin, employee, other_employee, employee_headers, acme):
    # Omar's assignment is invisible to Emma even through an embed
    a = assign(db, acme, other_employee, "seo")
    db.add(DailyTaskLog(assignment_id=a.id, log_date=date(2024, 1, 15), metrics={}, status="pending"))
    db.commit()
    rows = client.get("/rest/v1/clients", params={"select": "name,client_assignments(id)"}, headers=employee_headers).json()
    assert rows == [{"name": "Acme", "client_assignments": []}]
