import json

import httpx
import pytest

from clientflow.roles import Role
from clientflow.client.backend import Backend
from clientflow.client.secure_query import (
    DEFAULT_ERROR,
    EMPLOYEE_SCOPED_TABLES,
    USER_SCOPED_TABLES,
    QueryOptions,
    SecureQuery,
    build_query,
    secure_filter,
)
from clientflow.client.session import AppState, SessionStatus
from clientflow.services.row_security import EMPLOYEE_OWNED, USER_OWNED


EMPLOYEE_ID = "11111111-1111-1111-1111-111111111111"
ADMIN_ID = "22222222-2222-2222-2222-222222222222"

EMPLOYEE = AppState(status=SessionStatus.AUTHENTICATED, user={"id": EMPLOYEE_ID}, profile={"role": "employee"}, role=Role.EMPLOYEE)
ADMIN = AppState(status=SessionStatus.AUTHENTICATED, user={"id": ADMIN_ID}, profile={"role": "admin"}, role=Role.ADMIN)


class Recorder:
    """MockTransport handler that remembers every request and serves fixed rows."""

    def __init__(self, rows=None, status=200, total=None):
        self.rows = rows if rows is not None else [{"id": "a"}, {"id": "b"}]
        self.status = status
        self.total = total if total is not None else len(self.rows)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status >= 400:
            return httpx.Response(self.status, json={"code": "42501", "message": "permission denied for table tasks"})
        end = max(len(self.rows) - 1, 0)
        return httpx.Response(200, json=self.rows, headers={"Content-Range": f"0-{end}/{self.total}"})

    @property
    def last_params(self):
        return list(self.requests[-1].url.params.multi_items())


def make_backend(recorder: Recorder) -> Backend:
    return Backend("http://backend.test", transport=httpx.MockTransport(recorder))


def test_client_allowlists_match_backend_ownership():
    assert EMPLOYEE_SCOPED_TABLES == set(EMPLOYEE_OWNED)
    assert USER_SCOPED_TABLES == set(USER_OWNED)


@pytest.mark.parametrize("table", sorted(EMPLOYEE_SCOPED_TABLES))
def test_employee_tables_are_narrowed_to_the_caller(table):
    q = build_query(make_backend(Recorder()), EMPLOYEE, QueryOptions(table=table))
    assert ("employee_id", f"eq.{EMPLOYEE_ID}") in q.params()


@pytest.mark.parametrize("table", sorted(USER_SCOPED_TABLES))
def test_user_tables_are_narrowed_to_the_caller(table):
    q = build_query(make_backend(Recorder()), EMPLOYEE, QueryOptions(table=table))
    assert ("user_id", f"eq.{EMPLOYEE_ID}") in q.params()


@pytest.mark.parametrize("table", sorted(EMPLOYEE_SCOPED_TABLES | USER_SCOPED_TABLES))
def test_admins_are_never_narrowed(table):
    assert secure_filter(table, ADMIN) is None
    params = build_query(make_backend(Recorder()), ADMIN, QueryOptions(table=table)).params()
    assert not any(k in ("employee_id", "user_id") for k, _ in params)


@pytest.mark.parametrize("table", ["clients", "services", "client_services", "report_templates"])
@pytest.mark.parametrize("state", [EMPLOYEE, ADMIN])
def test_other_tables_get_no_implicit_filter(table, state):
    assert secure_filter(table, state) is None
    params = build_query(make_backend(Recorder()), state, QueryOptions(table=table)).params()
    assert params == [("select", "*")]


def test_empty_and_sentinel_filters_are_skipped():
    opts = QueryOptions(
        table="clients",
        filters={"status": "active", "priority": "_all", "industry": "all", "notes": "", "website": None},
    )
    params = build_query(make_backend(Recorder()), ADMIN, opts).params()
    assert params == [("select", "*"), ("status", "eq.active")]


def test_order_and_paging():
    opts = QueryOptions(table="tasks", order_by="due_date", ascending=True, page=3, page_size=10)
    q = build_query(make_backend(Recorder()), ADMIN, opts)
    params = dict(q.params())
    assert params["order"] == "due_date.asc"
    assert params["offset"] == "20"
    assert params["limit"] == "10"
    assert "count=exact" in q.headers()["Prefer"]


def test_limit_applies_without_paging():
    opts = QueryOptions(table="tasks", order_by="created_at", limit=5)
    params = dict(build_query(make_backend(Recorder()), ADMIN, opts).params())
    assert params["order"] == "created_at.desc"
    assert params["limit"] == "5"
    assert "offset" not in params


@pytest.mark.anyio
async def test_refetch_is_stable_without_mutations():
    recorder = Recorder(rows=[{"id": "t1"}, {"id": "t2"}], total=7)
    query = SecureQuery(make_backend(recorder), EMPLOYEE, QueryOptions(table="tasks", limit=2))
    await query.refetch()
    first = (json.dumps(query.data), query.total_count)
    await query.refetch()
    await query.refetch()
    assert (json.dumps(query.data), query.total_count) == first
    assert query.total_count == 7
    assert query.loading is False
    assert query.error is None
    assert len(recorder.requests) == 3


@pytest.mark.anyio
async def test_update_refetches_only_when_dependencies_change():
    recorder = Recorder()
    query = SecureQuery(make_backend(recorder), EMPLOYEE, QueryOptions(table="tasks", filters={"status": "pending"}))
    assert await query.update() is True
    assert await query.update() is False
    assert await query.update(filters={"status": "pending"}) is False
    assert await query.update(filters={"status": "completed"}) is True
    assert await query.update(page=2, page_size=25) is True
    assert len(recorder.requests) == 3
    assert ("status", "eq.completed") in recorder.last_params


@pytest.mark.anyio
async def test_disabled_queries_do_not_fetch():
    recorder = Recorder()
    query = SecureQuery(make_backend(recorder), EMPLOYEE, QueryOptions(table="tasks", enabled=False))
    await query.refetch()
    assert recorder.requests == []
    assert query.loading is False


@pytest.mark.anyio
async def test_failures_are_stored_not_raised():
    recorder = Recorder(status=403)
    query = SecureQuery(make_backend(recorder), EMPLOYEE, QueryOptions(table="tasks"))
    await query.refetch()
    assert query.error == "permission denied for table tasks"
    assert query.loading is False
    assert query.data == []
    assert len(recorder.requests) == 1
    assert DEFAULT_ERROR == "Failed to load data"
