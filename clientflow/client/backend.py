"""
Async client for the ClientFlow backend.

Wraps the table API (/rest/v1), remote procedures, object storage and the
internal /api endpoints behind one httpx.AsyncClient. Every non-2xx response is
raised as ApiError carrying the backend's error code.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union
import uuid

import httpx

from ..config import settings
from ..logging import structlog
from .errors import ApiError


SINGLE_OBJECT = "application/vnd.pgrst.object+json"


def _fmt(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def _fmt_list_item(value: Any) -> str:
    text = _fmt(value)
    if any(ch in text for ch in ',()"'):
        return '"' + text.replace('"', '\\"') + '"'
    return text


def error_from_response(resp: httpx.Response) -> ApiError:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        if "message" in body or "code" in body:
            return ApiError(
                body.get("message") or resp.reason_phrase,
                code=body.get("code"),
                status=resp.status_code,
                details=body.get("details"),
                hint=body.get("hint"),
            )
        detail = body.get("detail") or body.get("error")
        if isinstance(detail, list):
            detail = "; ".join(str(d.get("msg", d)) if isinstance(d, dict) else str(d) for d in detail)
        if detail:
            return ApiError(str(detail), status=resp.status_code)
    return ApiError(resp.text or resp.reason_phrase or f"HTTP {resp.status_code}", status=resp.status_code)


@dataclass
class QueryResult:
    data: Any
    count: Optional[int] = None
    status: int = 200


class TableQuery:
    """
    Builder for one request against /rest/v1/{table}.

        rows = await backend.table("tasks").select("*, clients(name)").eq("status", "pending").order("due_date")
    """

    def __init__(self, backend: "Backend", table: str):
        self._backend = backend
        self.table = table
        self.method = "GET"
        self.filters: List[Tuple[str, str]] = []
        self.columns: Optional[str] = None
        self.count: Optional[str] = None
        self.orders: List[str] = []
        self.offset: Optional[int] = None
        self.row_limit: Optional[int] = None
        self.body: Any = None
        self.prefer: List[str] = []
        self.on_conflict: Optional[str] = None
        self.single_row = False
        self.maybe_single_row = False

    # -- verbs --
    def select(self, columns: str = "*", count: Optional[str] = None) -> "TableQuery":
        self.columns = columns
        self.count = count
        return self

    def insert(self, values: Union[Dict, List[Dict]], returning: bool = True) -> "TableQuery":
        self.method = "POST"
        self.body = values
        self.prefer.append("return=representation" if returning else "return=minimal")
        return self

    def upsert(self, values: Union[Dict, List[Dict]], on_conflict: Optional[str] = None, ignore_duplicates: bool = False) -> "TableQuery":
        self.insert(values)
        self.prefer.append("resolution=ignore-duplicates" if ignore_duplicates else "resolution=merge-duplicates")
        self.on_conflict = on_conflict
        return self

    def update(self, values: Dict) -> "TableQuery":
        self.method = "PATCH"
        self.body = values
        self.prefer.append("return=representation")
        return self

    def delete(self) -> "TableQuery":
        self.method = "DELETE"
        self.prefer.append("return=representation")
        return self

    # -- filters --
    def _add(self, column: str, op: str, value: Any) -> "TableQuery":
        self.filters.append((column, f"{op}.{_fmt(value)}"))
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "eq", value)

    def neq(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "neq", value)

    def gt(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "gt", value)

    def gte(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "gte", value)

    def lt(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "lt", value)

    def lte(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "lte", value)

    def like(self, column: str, pattern: str) -> "TableQuery":
        return self._add(column, "like", pattern)

    def ilike(self, column: str, pattern: str) -> "TableQuery":
        return self._add(column, "ilike", pattern)

    def is_(self, column: str, value: Optional[bool]) -> "TableQuery":
        return self._add(column, "is", value)

    def in_(self, column: str, values: Iterable[Any]) -> "TableQuery":
        self.filters.append((column, f"in.({','.join(_fmt_list_item(v) for v in values)})"))
        return self

    # -- shaping --
    def order(self, column: str, desc: bool = False, nulls_first: Optional[bool] = None) -> "TableQuery":
        part = f"{column}.{'desc' if desc else 'asc'}"
        if nulls_first is not None:
            part += ".nullsfirst" if nulls_first else ".nullslast"
        self.orders.append(part)
        return self

    def range(self, start: int, end: int) -> "TableQuery":
        self.offset = start
        self.row_limit = end - start + 1
        return self

    def limit(self, n: int) -> "TableQuery":
        self.row_limit = n
        return self

    def single(self) -> "TableQuery":
        self.single_row = True
        return self

    def maybe_single(self) -> "TableQuery":
        self.maybe_single_row = True
        return self

    # -- request --
    def params(self) -> List[Tuple[str, str]]:
        params: List[Tuple[str, str]] = []
        if self.columns is not None:
            params.append(("select", self.columns))
        params.extend(self.filters)
        if self.orders:
            params.append(("order", ",".join(self.orders)))
        if self.offset:
            params.append(("offset", str(self.offset)))
        if self.row_limit is not None:
            params.append(("limit", str(self.row_limit)))
        if self.on_conflict:
            params.append(("on_conflict", self.on_conflict))
        return params

    def headers(self) -> Dict[str, str]:
        prefer = list(self.prefer)
        if self.count:
            prefer.append(f"count={self.count}")
        headers = {}
        if prefer:
            headers["Prefer"] = ",".join(prefer)
        if self.single_row:
            headers["Accept"] = SINGLE_OBJECT
        return headers

    async def execute(self) -> QueryResult:
        resp = await self._backend.request(
            self.method,
            f"/rest/v1/{self.table}",
            params=self.params(),
            json=self.body,
            headers=self.headers(),
        )
        data = resp.json() if resp.content else None
        if self.maybe_single_row and isinstance(data, list):
            if len(data) > 1:
                raise ApiError("JSON object requested, multiple (or no) rows returned", code="PGRST116", status=406)
            data = data[0] if data else None
        return QueryResult(data=data, count=_parse_count(resp.headers.get("content-range")), status=resp.status_code)

    def __await__(self):
        return self.execute().__await__()


def _parse_count(content_range: Optional[str]) -> Optional[int]:
    if not content_range or "/" not in content_range:
        return None
    total = content_range.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else None


class StorageBucket:
    def __init__(self, backend: "Backend", bucket: str):
        self._backend = backend
        self.bucket = bucket

    async def upload(
        self,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        cache_control: str = "3600",
        upsert: bool = False,
    ) -> Dict:
        resp = await self._backend.request(
            "POST",
            f"/storage/v1/object/{self.bucket}/{path.lstrip('/')}",
            files={"file": (path.rsplit("/", 1)[-1], content, content_type)},
            headers={"x-upsert": "true" if upsert else "false", "cache-control": cache_control},
        )
        return resp.json()

    def get_public_url(self, path: str) -> str:
        return f"{self._backend.url}/storage/v1/object/public/{self.bucket}/{path.lstrip('/')}"

    async def download(self, path: str) -> bytes:
        resp = await self._backend.request("GET", f"/storage/v1/object/public/{self.bucket}/{path.lstrip('/')}")
        return resp.content

    async def remove(self, paths: Sequence[str]) -> List[Dict]:
        resp = await self._backend.request("DELETE", f"/storage/v1/object/{self.bucket}", json={"prefixes": list(paths)})
        return resp.json()


class Storage:
    def __init__(self, backend: "Backend"):
        self._backend = backend

    def from_(self, bucket: str) -> StorageBucket:
        return StorageBucket(self._backend, bucket)


class Backend:
    """
    One connection to the backend. ``access_token`` is kept current by the auth
    client and sent as a bearer token on every request.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        http: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        from .auth import AuthClient

        self.url = (url or settings.clientflow_url).rstrip("/")
        self._http = http or httpx.AsyncClient(base_url=self.url, transport=transport, timeout=timeout)
        self.access_token: Optional[str] = None
        self.auth = AuthClient(self)
        self.storage = Storage(self)

    async def __aenter__(self) -> "Backend":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def send(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ) -> httpx.Response:
        """Send without raising on HTTP errors. Transport failures still raise ApiError."""
        all_headers = {}
        bearer = token or self.access_token
        if bearer:
            all_headers["Authorization"] = f"Bearer {bearer}"
        all_headers.update(headers or {})
        if kwargs.get("json") is None:
            kwargs.pop("json", None)
        else:
            kwargs["json"] = _jsonable(kwargs["json"])
        try:
            return await self._http.request(method, path, headers=all_headers, **kwargs)
        except httpx.TimeoutException as e:
            structlog.get_logger().warning("backend_timeout", method=method, path=path)
            raise ApiError(f"Request timeout: {e}") from e
        except httpx.TransportError as e:
            structlog.get_logger().warning("backend_network_error", method=method, path=path, error=str(e))
            raise ApiError(f"Network error: {e}") from e

    async def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        resp = await self.send(method, path, **kwargs)
        if resp.status_code >= 400:
            raise error_from_response(resp)
        return resp

    def table(self, name: str) -> TableQuery:
        return TableQuery(self, name)

    async def rpc(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        resp = await self.request("POST", f"/rest/v1/rpc/{name}", json=params or {})
        return resp.json()

    async def fetch_profile(self, access_token: str) -> httpx.Response:
        """GET /api/profile with an explicit token; the caller interprets the status."""
        return await self.send("GET", "/api/profile", token=access_token)

    async def api(self, method: str, path: str, **kwargs) -> Any:
        resp = await self.request(method, f"/api/{path.lstrip('/')}", **kwargs)
        if not resp.content:
            return None
        if resp.headers.get("content-type", "").startswith("application/json"):
            return resp.json()
        return resp.content


