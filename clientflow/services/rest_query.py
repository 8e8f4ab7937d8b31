"""
Table registry and query-string grammar for the generic table API.

Supports the subset of the PostgREST dialect the application uses:
  select=id,name,clients(id,name),profiles:employee_id(full_name)
  col=eq.value | neq | gt | gte | lt | lte | like | ilike | in.(a,b) | is.null   (optionally not.<op>)
  order=col.desc.nullslast,other
"""
import operator
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import and_, not_
from sqlalchemy.orm import Session

from ..models.models import (
    Profile,
    ClientPortalUser,
    Client,
    Service,
    ClientService,
    ClientAssignment,
    ClientCredential,
    ClientNote,
    SharedDocument,
    Task,
    DailyTask,
    TimeEntry,
    DailyTaskLog,
    Feedback,
    ReportTemplate,
    WeeklyReport,
    ReportAttachment,
    ReportFeedback,
    Notification,
    ActivityLog,
    DashboardWidget,
)
from .pg_errors import (
    BackendError,
    UNDEFINED_TABLE,
    UNDEFINED_COLUMN,
    INVALID_TEXT_REPRESENTATION,
    UNKNOWN_COLUMN_IN_PAYLOAD,
)


EXPOSED_MODELS = [
    Profile, ClientPortalUser, Client, Service, ClientService, ClientAssignment,
    ClientCredential, ClientNote, SharedDocument, Task, DailyTask, TimeEntry,
    DailyTaskLog, Feedback, ReportTemplate, WeeklyReport, ReportAttachment,
    ReportFeedback, Notification, ActivityLog, DashboardWidget,
]
TABLES = {m.__tablename__: m for m in EXPOSED_MODELS}

# Never leave the server through the table API
HIDDEN_COLUMNS = {"client_credentials": {"encrypted_password"}}
# Columns written only through dedicated endpoints
READONLY_COLUMNS = {"client_credentials": {"encrypted_password"}}
# Alternate names callers may use for a column
COLUMN_ALIASES = {"tasks": {"employee_id": "assigned_to"}}

OPERATORS = {"eq", "neq", "gt", "gte", "lt", "lte", "like", "ilike", "in", "is"}
RESERVED_PARAMS = {"select", "order", "limit", "offset", "on_conflict", "columns"}


def get_model(table: str):
    model = TABLES.get(table)
    if model is None:
        raise BackendError(UNDEFINED_TABLE, f'relation "public.{table}" does not exist')
    return model


def column_names(model) -> List[str]:
    return [c.key for c in model.__table__.columns]


def resolve_column(model, name: str, payload: bool = False):
    table = model.__tablename__
    name = COLUMN_ALIASES.get(table, {}).get(name, name)
    col = model.__table__.columns.get(name)
    if col is None:
        if payload:
            raise BackendError(UNKNOWN_COLUMN_IN_PAYLOAD, f"Could not find the '{name}' column of '{table}' in the schema cache")
        raise BackendError(UNDEFINED_COLUMN, f"column {table}.{name} does not exist")
    return col


def coerce(col, value: Any) -> Any:
    """Convert a JSON / query-string value into the Python type the column stores."""
    if value is None:
        return None
    try:
        py_type = col.type.python_type
    except NotImplementedError:
        return value
    try:
        if py_type is uuid.UUID:
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        if py_type is datetime:
            if isinstance(value, datetime):
                return value
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        if py_type is date:
            if isinstance(value, date):
                return value
            return date.fromisoformat(str(value)[:10])
        if py_type is bool:
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in ("true", "t", "1"):
                return True
            if text in ("false", "f", "0"):
                return False
            raise ValueError(text)
        if py_type is int:
            return int(value)
        if py_type is float:
            return float(value)
        if py_type is str:
            return str(value)
    except (TypeError, ValueError):
        raise BackendError(INVALID_TEXT_REPRESENTATION, f'invalid input syntax for type {py_type.__name__}: "{value}"')
    return value


def clean_payload(model, values: Dict[str, Any]) -> Dict[str, Any]:
    table = model.__tablename__
    readonly = READONLY_COLUMNS.get(table, set())
    out = {}
    for key, value in values.items():
        col = resolve_column(model, key, payload=True)
        if col.key in readonly:
            raise BackendError(UNKNOWN_COLUMN_IN_PAYLOAD, f"column '{col.key}' of '{table}' cannot be written through the table API")
        out[col.key] = coerce(col, value)
    return out


def row_to_dict(model, row, columns: Optional[List[str]] = None) -> Dict[str, Any]:
    hidden = HIDDEN_COLUMNS.get(model.__tablename__, set())
    keys = columns if columns is not None else column_names(model)
    return {k: getattr(row, k) for k in keys if k not in hidden}


# ---------- select= ----------

@dataclass
class Embed:
    name: str
    alias: Optional[str] = None
    hint: Optional[str] = None
    items: List[Union[str, "Embed"]] = field(default_factory=list)

    @property
    def key(self) -> str:
        return self.alias or self.name


def _split_top_level(text: str) -> List[str]:
    parts, depth, buf = [], 0, []
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(buf).strip())
            buf = []
        else:
            buf.append(ch)
    if depth != 0:
        raise BackendError("PGRST100", f'failed to parse select parameter ({text})')
    tail = "".join(buf).strip()
    if tail:
        parts.append(tail)
    return [p for p in parts if p]


def parse_select(text: Optional[str]) -> List[Union[str, Embed]]:
    if not text:
        return ["*"]
    items: List[Union[str, Embed]] = []
    for part in _split_top_level(text):
        if "(" in part:
            head, inner = part.split("(", 1)
            inner = inner.rsplit(")", 1)[0]
            alias = None
            if ":" in head:
                alias, head = head.split(":", 1)
            hint = None
            if "!" in head:
                head, hint = head.split("!", 1)
            items.append(Embed(name=head.strip(), alias=alias.strip() if alias else None,
                               hint=hint.strip() if hint else None, items=parse_select(inner)))
        else:
            items.append(part.strip())
    return items


def _fk_columns(model, target_table: str) -> list:
    return [c for c in model.__table__.columns for fk in c.foreign_keys if fk.column.table.name == target_table]


def resolve_embed(model, embed: Embed) -> Tuple[Any, str, Any, bool]:
    """Return (target_model, local_column, remote_column, many) for an embedded resource."""
    table = model.__tablename__
    base_cols = model.__table__.columns
    # profiles:employee_id(...) -> embed through a named foreign-key column
    if embed.name in base_cols and base_cols[embed.name].foreign_keys:
        col = base_cols[embed.name]
        fk = next(iter(col.foreign_keys))
        return get_model(fk.column.table.name), col.key, fk.column.key, False
    target = get_model(embed.name)
    outgoing = _fk_columns(model, target.__tablename__)
    if embed.hint:
        outgoing = [c for c in outgoing if c.key == embed.hint]
    if len(outgoing) == 1:
        col = outgoing[0]
        fk = next(fk for fk in col.foreign_keys if fk.column.table.name == target.__tablename__)
        return target, col.key, fk.column.key, False
    incoming = _fk_columns(target, table)
    if embed.hint:
        incoming = [c for c in incoming if c.key == embed.hint]
    if len(outgoing) == 0 and len(incoming) == 1:
        col = incoming[0]
        fk = next(fk for fk in col.foreign_keys if fk.column.table.name == table)
        return target, fk.column.key, col.key, True
    raise BackendError(
        "PGRST201" if (outgoing or incoming) else "PGRST200",
        f"Could not embed '{embed.name}' from '{table}'",
        hint="Disambiguate with alias:fk_column(...) or name!fk_column(...)",
    )


def plain_columns(model, items: List[Union[str, Embed]]) -> List[str]:
    names: List[str] = []
    for item in items:
        if isinstance(item, Embed):
            continue
        if item == "*":
            names.extend(c for c in column_names(model) if c not in names)
        else:
            col = resolve_column(model, item)
            if col.key not in names:
                names.append(col.key)
    return names


def serialize_rows(db: Session, model, rows: list, items: List[Union[str, Embed]], scope_for=None) -> List[dict]:
    """Serialize rows with their embedded resources.

    ``scope_for(model)`` returns the row-security clause for an embedded table
    so embeds never reveal rows the caller could not select directly.
    """
    columns = plain_columns(model, items)
    out = [row_to_dict(model, r, columns) for r in rows]
    for item in items:
        if not isinstance(item, Embed):
            continue
        target, local_key, remote_key, many = resolve_embed(model, item)
        local_values = {getattr(r, local_key) for r in rows if getattr(r, local_key) is not None}
        related = []
        if local_values:
            q = db.query(target).filter(getattr(target, remote_key).in_(local_values))
            if "deleted_at" in target.__table__.columns:
                q = q.filter(target.deleted_at.is_(None))
            clause = scope_for(target) if scope_for else None
            if clause is False:
                related = []
            else:
                if clause is not None:
                    q = q.filter(clause)
                related = q.all()
        rendered = serialize_rows(db, target, related, item.items, scope_for)
        grouped: Dict[Any, list] = {}
        for rel_row, rel_dict in zip(related, rendered):
            grouped.setdefault(getattr(rel_row, remote_key), []).append(rel_dict)
        for row, data in zip(rows, out):
            matches = grouped.get(getattr(row, local_key), [])
            data[item.key] = matches if many else (matches[0] if matches else None)
    return out


# ---------- filters / order ----------

def _split_in_list(raw: str) -> List[str]:
    raw = raw.strip()
    if raw.startswith("(") and raw.endswith(")"):
        raw = raw[1:-1]
    values, buf, quoted = [], [], False
    for ch in raw:
        if ch == '"':
            quoted = not quoted
        elif ch == "," and not quoted:
            values.append("".join(buf).strip())
            buf = []
        else:
            buf.append(ch)
    if buf or values:
        values.append("".join(buf).strip())
    return [v for v in values if v != ""]


_COMPARISONS = {
    "eq": operator.eq,
    "neq": operator.ne,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}


def build_filter(model, name: str, expr: str):
    col = resolve_column(model, name)
    negate = False
    if expr.startswith("not."):
        negate, expr = True, expr[4:]
    if "." not in expr:
        raise BackendError("PGRST100", f'failed to parse filter ({name}={expr})')
    op, raw = expr.split(".", 1)
    if op not in OPERATORS:
        raise BackendError("PGRST100", f'unknown operator "{op}"')
    attr = getattr(model, col.key)
    if op == "is":
        value = {"null": None, "true": True, "false": False}.get(raw.lower(), "invalid")
        if value == "invalid":
            raise BackendError("PGRST100", f'failed to parse filter ({name}={expr})')
        clause = attr.is_(value)
    elif op == "in":
        clause = attr.in_([coerce(col, v) for v in _split_in_list(raw)])
    elif op in ("like", "ilike"):
        pattern = raw.replace("*", "%")
        clause = attr.like(pattern) if op == "like" else attr.ilike(pattern)
    else:
        value = None if raw == "null" else coerce(col, raw)
        if (value is None or isinstance(value, bool)) and op not in ("eq", "neq"):
            raise BackendError("PGRST100", f'failed to parse filter ({name}={expr})')
        if value is None:
            clause = attr.is_(None) if op == "eq" else attr.is_not(None)
        else:
            clause = _COMPARISONS[op](attr, value)
    return not_(clause) if negate else clause


def build_filters(model, params: List[Tuple[str, str]]):
    clauses = [build_filter(model, k, v) for k, v in params if k not in RESERVED_PARAMS]
    return and_(*clauses) if clauses else None


def build_order(model, text: Optional[str]) -> list:
    if not text:
        return []
    out = []
    for part in text.split(","):
        bits = part.strip().split(".")
        attr = getattr(model, resolve_column(model, bits[0]).key)
        direction = attr.desc() if "desc" in bits[1:] else attr.asc()
        if "nullsfirst" in bits[1:]:
            direction = direction.nulls_first()
        elif "nullslast" in bits[1:]:
            direction = direction.nulls_last()
        out.append(direction)
    return out
