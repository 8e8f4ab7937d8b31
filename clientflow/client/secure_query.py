"""
Secure query: a parameterized fetch that narrows well-known tables to the
caller's own rows when the caller is not an admin.

The backend's row security is what actually enforces access; this narrowing
keeps requests scoped the same way on the client.
"""
from dataclasses import dataclass, field, replace
import json
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..logging import structlog
from .backend import TableQuery
from .errors import ApiError
from .session import AppState


# Tables narrowed by employee_id for non-admins. On tasks the gateway maps
# employee_id onto assigned_to.
EMPLOYEE_SCOPED_TABLES = frozenset({
    "weekly_reports",
    "client_assignments",
    "tasks",
    "time_entries",
    "daily_tasks",
})

# Tables narrowed by user_id for non-admins.
USER_SCOPED_TABLES = frozenset({
    "notifications",
    "dashboard_widgets",
    "activity_logs",
})

# Filter values meaning "no filter"
_SKIP_VALUES = ("", "_all", "all")

DEFAULT_ERROR = "Failed to load data"


def _skip(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value in _SKIP_VALUES)


@dataclass(frozen=True)
class QueryOptions:
    table: str
    select: str = "*"
    filters: Mapping[str, Any] = field(default_factory=dict)
    order_by: Optional[str] = None
    ascending: bool = False
    limit: Optional[int] = None
    page: Optional[int] = None
    page_size: Optional[int] = None
    enabled: bool = True

    def dependency_key(self) -> tuple:
        return (
            self.table,
            self.select,
            json.dumps(dict(self.filters), sort_keys=True, default=str),
            self.order_by,
            self.ascending,
            self.page,
            self.page_size,
            self.limit,
            self.enabled,
        )


def secure_filter(table: str, state: AppState) -> Optional[Tuple[str, str]]:
    """The implicit (column, value) equality filter for this caller, if any."""
    if state.is_admin or not state.user_id:
        return None
    if table in EMPLOYEE_SCOPED_TABLES:
        return ("employee_id", state.user_id)
    if table in USER_SCOPED_TABLES:
        return ("user_id", state.user_id)
    return None


def build_query(backend, state: AppState, options: QueryOptions) -> TableQuery:
    q = backend.table(options.table).select(options.select, count="exact")
    implicit = secure_filter(options.table, state)
    if implicit is not None:
        q = q.eq(*implicit)
    for column, value in options.filters.items():
        if _skip(value):
            continue
        q = q.eq(column, value)
    if options.order_by:
        q = q.order(options.order_by, desc=not options.ascending)
    if options.page and options.page_size:
        start = (options.page - 1) * options.page_size
        q = q.range(start, start + options.page_size - 1)
    elif options.limit:
        q = q.limit(options.limit)
    return q


class SecureQuery:
    """
    Holds the result of one secure query: data, loading, error, total_count.

    update() re-runs the query only when something it depends on changed;
    refetch() always re-runs it. Failures are stored as a message, never retried.
    """

    def __init__(self, backend, state: AppState, options: QueryOptions):
        self._backend = backend
        self.state = state
        self.options = options
        self.data: List[Dict[str, Any]] = []
        self.loading = options.enabled
        self.error: Optional[str] = None
        self.total_count = 0
        self._last_key: Optional[tuple] = None

    def _key(self) -> tuple:
        return self.options.dependency_key() + (self.state.user_id, self.state.role)

    async def refetch(self) -> None:
        self._last_key = self._key()
        if not self.options.enabled or not self.state.user_id:
            self.loading = False
            return
        self.loading = True
        self.error = None
        try:
            result = await build_query(self._backend, self.state, self.options)
        except ApiError as e:
            structlog.get_logger().warning("secure_query_failed", table=self.options.table, code=e.code, error=e.message)
            self.error = e.message or DEFAULT_ERROR
        else:
            self.data = result.data or []
            self.total_count = result.count if result.count is not None else len(self.data)
        finally:
            self.loading = False

    async def update(self, options: Optional[QueryOptions] = None, state: Optional[AppState] = None, **changes) -> bool:
        """Apply new options and re-fetch if the dependency key moved. Returns whether it fetched."""
        if options is not None:
            self.options = options
        if changes:
            self.options = replace(self.options, **changes)
        if state is not None:
            self.state = state
        if self._key() == self._last_key:
            return False
        await self.refetch()
        return True
