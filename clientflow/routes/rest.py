from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import Actor, get_current_actor
from ..services import rest_query as rq
from ..services.pg_errors import BackendError, NO_ROWS, from_integrity_error, INSUFFICIENT_PRIVILEGE
from ..services.row_security import read_clause, write_clause, ensure_row_allowed
from ..services.procedures import call_procedure
from ..logging import structlog


router = APIRouter(prefix="/rest/v1", tags=["rest"])

SINGLE_OBJECT = "application/vnd.pgrst.object+json"


def _prefer(request: Request) -> str:
    return request.headers.get("prefer", "").lower()


def _filter_params(request: Request) -> List[tuple]:
    return [(k, v) for k, v in request.query_params.multi_items() if k not in rq.RESERVED_PARAMS]


def _visible(db: Session, actor: Actor, model, request: Request):
    q = db.query(model)
    if "deleted_at" in model.__table__.columns:
        q = q.filter(model.deleted_at.is_(None))
    clause = read_clause(actor, model.__tablename__)
    if clause is False:
        return None
    if clause is not None:
        q = q.filter(clause)
    where = rq.build_filters(model, _filter_params(request))
    if where is not None:
        q = q.filter(where)
    return q


def _writable(db: Session, actor: Actor, model, request: Request):
    params = _filter_params(request)
    if not params:
        raise BackendError("21000", "UPDATE/DELETE requires a WHERE clause", status_code=400)
    clause = write_clause(actor, model.__tablename__)
    if clause is False:
        return []
    q = db.query(model).filter(rq.build_filters(model, params))
    if "deleted_at" in model.__table__.columns:
        q = q.filter(model.deleted_at.is_(None))
    if clause is not None:
        q = q.filter(clause)
    return q.all()


def _render(db: Session, actor: Actor, model, rows: list, request: Request) -> list:
    items = rq.parse_select(request.query_params.get("select"))
    return rq.serialize_rows(db, model, rows, items, scope_for=lambda m: read_clause(actor, m.__tablename__))


def _respond(data: list, request: Request, status_code: int = 200, headers: Optional[dict] = None):
    if "return=minimal" in _prefer(request) and request.method != "GET":
        return Response(status_code=204 if request.method != "POST" else 201, headers=headers)
    if SINGLE_OBJECT in request.headers.get("accept", ""):
        if len(data) != 1:
            raise BackendError(
                NO_ROWS,
                "JSON object requested, multiple (or no) rows returned",
                details=f"The result contains {len(data)} rows",
            )
        return JSONResponse(jsonable_encoder(data[0]), status_code=status_code, headers=headers)
    return JSONResponse(jsonable_encoder(data), status_code=status_code, headers=headers)


def _commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise from_integrity_error(e)


@router.post("/rpc/{name}")
def rpc(name: str, params: Optional[Dict[str, Any]] = Body(default=None), actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    result = call_procedure(name, db, actor, params or {})
    return JSONResponse(jsonable_encoder(result))


@router.get("/{table}")
def select_rows(table: str, request: Request, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    model = rq.get_model(table)
    q = _visible(db, actor, model, request)
    params = request.query_params
    offset = int(params.get("offset") or 0)
    limit = int(params["limit"]) if params.get("limit") else None
    if q is None:
        rows, total = [], 0
    else:
        total = q.order_by(None).count() if "count=exact" in _prefer(request) else None
        for order in rq.build_order(model, params.get("order")):
            q = q.order_by(order)
        if offset:
            q = q.offset(offset)
        if limit is not None:
            q = q.limit(limit)
        rows = q.all()
    data = _render(db, actor, model, rows, request)
    end = offset + len(data) - 1
    range_part = f"{offset}-{end}" if data else "*"
    headers = {"Content-Range": f"{range_part}/{total if total is not None else '*'}"}
    return _respond(data, request, headers=headers)


@router.post("/{table}")
def insert_rows(table: str, request: Request, payload: Any = Body(...), actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    model = rq.get_model(table)
    records = payload if isinstance(payload, list) else [payload]
    prefer = _prefer(request)
    upsert = "resolution=merge-duplicates" in prefer
    ignore = "resolution=ignore-duplicates" in prefer
    conflict_cols = [c.strip() for c in (request.query_params.get("on_conflict") or "id").split(",")]
    conflict_cols = [rq.resolve_column(model, c).key for c in conflict_cols]
    written = []
    for record in records:
        values = rq.clean_payload(model, record)
        existing = None
        if (upsert or ignore) and all(values.get(c) is not None for c in conflict_cols):
            existing = db.query(model).filter(*[getattr(model, c) == values[c] for c in conflict_cols]).first()
        if existing is not None:
            if ignore:
                continue
            clause = write_clause(actor, table)
            if clause is False or (clause is not None and db.query(model).filter(model.id == existing.id, clause).first() is None):
                raise BackendError(INSUFFICIENT_PRIVILEGE, f"new row violates row-level security policy for table \"{table}\"")
            merged = {**rq.row_to_dict(model, existing, rq.column_names(model)), **values}
            ensure_row_allowed(db, actor, table, merged)
            for k, v in values.items():
                setattr(existing, k, v)
            written.append(existing)
            continue
        try:
            ensure_row_allowed(db, actor, table, values)
        except BackendError:
            raise BackendError(INSUFFICIENT_PRIVILEGE, f"new row violates row-level security policy for table \"{table}\"")
        row = model(**values)
        db.add(row)
        written.append(row)
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        raise from_integrity_error(e)
    _commit(db)
    structlog.get_logger().info("rest_insert", table=table, rows=len(written), upsert=upsert, actor=str(actor.id))
    return _respond(_render(db, actor, model, written, request), request, status_code=201)


@router.patch("/{table}")
def update_rows(table: str, request: Request, payload: Dict[str, Any] = Body(...), actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    model = rq.get_model(table)
    values = rq.clean_payload(model, payload)
    rows = _writable(db, actor, model, request)
    for row in rows:
        merged = {**rq.row_to_dict(model, row, rq.column_names(model)), **values}
        ensure_row_allowed(db, actor, table, merged)
        for k, v in values.items():
            setattr(row, k, v)
    _commit(db)
    return _respond(_render(db, actor, model, rows, request), request)


@router.delete("/{table}")
def delete_rows(table: str, request: Request, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    model = rq.get_model(table)
    rows = _writable(db, actor, model, request)
    data = _render(db, actor, model, rows, request)
    soft = "deleted_at" in model.__table__.columns
    for row in rows:
        if soft:
            row.deleted_at = datetime.now(timezone.utc)
        else:
            db.delete(row)
    _commit(db)
    structlog.get_logger().info("rest_delete", table=table, rows=len(rows), soft=soft, actor=str(actor.id))
    return _respond(data, request)
