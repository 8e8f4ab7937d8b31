from datetime import date

import pytest

from clientflow.models.models import WeeklyReport
from clientflow.storage.provider import object_key
from clientflow.storage.local_provider import LocalStorageProvider

from conftest import auth_headers, make_client, service_id


def upload(client, headers, path, content=b"hello", bucket="shared-documents", upsert=False):
    extra = {"x-upsert": "true"} if upsert else {}
    return client.post(
        f"/storage/v1/object/{bucket}/{path}",
        files={"file": (path.rsplit("/", 1)[-1], content, "text/plain")},
        headers={**headers, **extra},
    )


def test_object_keys_reject_parent_segments():
    assert object_key("shared-documents", "/c-1/brief.pdf") == "shared-documents/c-1/brief.pdf"
    with pytest.raises(ValueError):
        object_key("shared-documents", "c-1/../../etc/passwd")


def test_local_provider_round_trip(tmp_path):
    storage = LocalStorageProvider(str(tmp_path))
    storage.copy_in(b"data", "report-attachments/r-1/a.txt")
    assert storage.exists("report-attachments/r-1/a.txt")
    assert storage.read("report-attachments/r-1/a.txt") == b"data"
    assert storage.delete("report-attachments/r-1/a.txt") is True
    assert storage.delete("report-attachments/r-1/a.txt") is False
    assert storage.read("report-attachments/r-1/a.txt") is None


def test_upload_download_and_remove(client, admin_headers):
    resp = upload(client, admin_headers, "c-1/brief.txt", b"campaign brief")
    assert resp.status_code == 200
    assert resp.json() == {"Key": "shared-documents/c-1/brief.txt", "path": "c-1/brief.txt"}

    resp = client.get("/storage/v1/object/public/shared-documents/c-1/brief.txt")
    assert resp.content == b"campaign brief"
    assert resp.headers["content-type"].startswith("text/plain")

    resp = client.request("DELETE", "/storage/v1/object/shared-documents", json={"prefixes": ["c-1/brief.txt", "c-1/missing.txt"]},
                          headers=admin_headers)
    assert resp.json() == [{"name": "c-1/brief.txt", "bucket_id": "shared-documents"}]
    assert client.get("/storage/v1/object/public/shared-documents/c-1/brief.txt").status_code == 404


@pytest.fixture
def own_report(db, employee):
    acme = make_client(db, "Acme", slugs=["seo"])
    r = WeeklyReport(employee_id=employee.id, client_id=acme.id, service_id=service_id(db, "seo"),
                     week_start_date=date(2024, 1, 15), status="draft", is_draft=True)
    db.add(r)
    db.commit()
    return r


def test_existing_objects_need_upsert(client, employee_headers, own_report):
    path = f"{own_report.id}/a.txt"
    assert upload(client, employee_headers, path, bucket="report-attachments").status_code == 200
    resp = upload(client, employee_headers, path, b"v2", bucket="report-attachments")
    assert resp.status_code == 409
    assert upload(client, employee_headers, path, b"v2", bucket="report-attachments", upsert=True).status_code == 200
    assert client.get(f"/storage/v1/object/public/report-attachments/{path}").content == b"v2"


def test_only_the_author_writes_report_attachments(client, employee_headers, other_employee, own_report):
    path = f"{own_report.id}/a.txt"
    assert upload(client, employee_headers, path, bucket="report-attachments").status_code == 200
    other_headers = auth_headers(other_employee.id, other_employee.email)

    resp = client.request("DELETE", "/storage/v1/object/report-attachments", json={"prefixes": [path]}, headers=other_headers)
    assert resp.status_code == 403
    assert resp.json()["code"] == "42501"
    assert upload(client, other_headers, path, b"mine now", bucket="report-attachments", upsert=True).status_code == 403
    assert upload(client, employee_headers, "not-a-report/a.txt", bucket="report-attachments").status_code == 403
    assert client.get(f"/storage/v1/object/public/report-attachments/{path}").content == b"hello"

    resp = client.request("DELETE", "/storage/v1/object/report-attachments", json={"prefixes": [path]}, headers=employee_headers)
    assert resp.json() == [{"name": path, "bucket_id": "report-attachments"}]


def test_shared_documents_are_admin_only(client, admin_headers, employee_headers):
    assert upload(client, admin_headers, "c-1/brief.txt").status_code == 200
    assert upload(client, employee_headers, "c-1/other.txt").status_code == 403

    resp = client.request("DELETE", "/storage/v1/object/shared-documents", json={"prefixes": ["c-1/brief.txt"]},
                          headers=employee_headers)
    assert resp.status_code == 403
    assert client.get("/storage/v1/object/public/shared-documents/c-1/brief.txt").content == b"hello"


def test_unknown_bucket(client, admin_headers):
    assert upload(client, admin_headers, "x.txt", bucket="avatars").status_code == 404


def test_uploads_need_a_staff_account(client):
    resp = client.post("/storage/v1/object/shared-documents/x.txt", files={"file": ("x.txt", b"x", "text/plain")})
    assert resp.status_code == 401
