from datetime import date

import pytest

from clientflow.models.models import ReportAttachment
from clientflow.client.attachments import BUCKET, attachment_path
from clientflow.client.autosave import ReportDraftSession
from clientflow.client.employee import EmployeeWorkspace
from clientflow.client.errors import ApiError

from conftest import assign, make_client, signed_in


def test_path_keeps_only_the_extension():
    path = attachment_path("r-1", "Weekly Screenshot.PNG", timestamp_ms=1705312800000, token="a1b2c3d4")
    assert path == "r-1/1705312800000-a1b2c3d4.png"


def test_path_without_extension():
    assert attachment_path("r-1", "README", timestamp_ms=1, token="x").endswith(".bin")


def test_paths_do_not_collide():
    assert attachment_path("r-1", "a.pdf") != attachment_path("r-1", "a.pdf")


@pytest.fixture
def report_env(db, employee):
    acme = make_client(db, "Acme", slugs=["seo"])
    a = assign(db, acme, employee, "seo")
    return {"id": str(a.id), "client_id": str(a.client_id), "service_id": str(a.service_id)}


async def _draft(backend, state, assignment):
    draft = ReportDraftSession(backend, state, assignment, week_start=date(2024, 1, 15))
    draft.edit(work_summary="Draft with evidence")
    await draft.save()
    return draft.draft_report_id


@pytest.mark.anyio
async def test_upload_stores_object_and_row(backend_factory, employee, report_env, db, tmp_path):
    backend = backend_factory()
    state = await signed_in(backend, employee.email)
    ws = EmployeeWorkspace(backend, state)
    report_id = await _draft(backend, state, report_env)

    content = b"keyword,position\nroofing,3\n"
    row = await ws.attach(report_id, "ranking.csv", content)
    assert row["file_name"] == "ranking.csv"
    assert row["file_size"] == len(content)
    assert row["file_type"] == "text/csv"
    assert row["uploaded_by"] == state.user_id
    assert row["file_path"].startswith(f"{report_id}/")
    assert row["file_url"].endswith(f"/storage/v1/object/public/{BUCKET}/{row['file_path']}")
    assert (tmp_path / "storage" / BUCKET / row["file_path"]).read_bytes().startswith(b"keyword")

    listed = await ws.attachments(report_id)
    assert [a["id"] for a in listed] == [row["id"]]

    await ws.remove_attachment(row)
    assert db.query(ReportAttachment).count() == 0
    assert not (tmp_path / "storage" / BUCKET / row["file_path"]).exists()


@pytest.mark.anyio
async def test_oversized_file_is_rejected_before_upload(backend_factory, employee, report_env, tmp_path):
    backend = backend_factory()
    state = await signed_in(backend, employee.email)
    ws = EmployeeWorkspace(backend, state)
    report_id = await _draft(backend, state, report_env)

    with pytest.raises(ApiError) as err:
        await ws.attach(report_id, "huge.zip", b"0" * (10 * 1024 * 1024 + 1))
    assert err.value.status == 413
    assert err.value.message == "File size must be less than 10MB"
    assert not (tmp_path / "storage" / BUCKET).exists()


@pytest.mark.anyio
async def test_failed_row_insert_removes_the_object(backend_factory, employee, other_employee, report_env, db, tmp_path):
    # Someone else's report: the object uploads but the row is refused
    owner_backend = backend_factory()
    owner = await signed_in(owner_backend, employee.email)
    report_id = await _draft(owner_backend, owner, report_env)

    backend = backend_factory()
    state = await signed_in(backend, other_employee.email)
    with pytest.raises(ApiError) as err:
        await EmployeeWorkspace(backend, state).attach(report_id, "notes.txt", b"hello")
    assert err.value.code == "42501"
    assert db.query(ReportAttachment).count() == 0
    bucket_dir = tmp_path / "storage" / BUCKET / report_id
    assert not bucket_dir.exists() or not any(bucket_dir.iterdir())
