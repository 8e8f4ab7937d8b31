"""
Postgres-style error reporting for the table API.

Every failure the gateway returns carries a SQLSTATE-like ``code`` so callers can
map it to a user-facing message without parsing free text. IntegrityError from
any driver (psycopg2 or sqlite3) is normalized to the same codes.
"""
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, DataError


UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
NOT_NULL_VIOLATION = "23502"
CHECK_VIOLATION = "23514"
INVALID_TEXT_REPRESENTATION = "22P02"
UNDEFINED_TABLE = "42P01"
UNDEFINED_COLUMN = "42703"
INSUFFICIENT_PRIVILEGE = "42501"
NO_ROWS = "PGRST116"
UNKNOWN_COLUMN_IN_PAYLOAD = "PGRST204"

_STATUS_BY_CODE = {
    UNIQUE_VIOLATION: 409,
    FOREIGN_KEY_VIOLATION: 409,
    NOT_NULL_VIOLATION: 400,
    CHECK_VIOLATION: 400,
    INVALID_TEXT_REPRESENTATION: 400,
    UNDEFINED_TABLE: 404,
    UNDEFINED_COLUMN: 400,
    INSUFFICIENT_PRIVILEGE: 403,
    NO_ROWS: 406,
    UNKNOWN_COLUMN_IN_PAYLOAD: 400,
}

_SQLITE_MARKERS = (
    ("UNIQUE constraint failed", UNIQUE_VIOLATION),
    ("FOREIGN KEY constraint failed", FOREIGN_KEY_VIOLATION),
    ("NOT NULL constraint failed", NOT_NULL_VIOLATION),
    ("CHECK constraint failed", CHECK_VIOLATION),
)


class BackendError(Exception):
    def __init__(self, code: str, message: str, details: Optional[str] = None, hint: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        self.hint = hint
        self.status_code = status_code or _STATUS_BY_CODE.get(code, 400)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details, "hint": self.hint}


def sqlstate_for(exc: Exception) -> str:
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None)
    if pgcode:
        return pgcode
    text = str(orig or exc)
    for marker, code in _SQLITE_MARKERS:
        if marker in text:
            return code
    if isinstance(exc, DataError):
        return INVALID_TEXT_REPRESENTATION
    return "23000"


def from_integrity_error(exc: IntegrityError) -> BackendError:
    code = sqlstate_for(exc)
    if code == UNIQUE_VIOLATION:
        message = "duplicate key value violates unique constraint"
    elif code == FOREIGN_KEY_VIOLATION:
        message = "insert or update violates foreign key constraint"
    elif code == NOT_NULL_VIOLATION:
        message = "null value violates not-null constraint"
    else:
        message = "integrity constraint violation"
    return BackendError(code, message, details=str(getattr(exc, "orig", exc)))


def permission_denied(table: str) -> BackendError:
    return BackendError(INSUFFICIENT_PRIVILEGE, f"permission denied for table {table}")


async def backend_error_handler(request: Request, exc: BackendError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def integrity_error_handler(request: Request, exc: IntegrityError):
    err = from_integrity_error(exc)
    return JSONResponse(status_code=err.status_code, content=err.to_dict())
