"""
Error classification and user-facing messages for the client SDK.
"""
from collections.abc import Mapping
from typing import Any, Optional


GENERIC_MESSAGE = "An unexpected error occurred. Please try again."

AUTH_ERROR_MARKERS = (
    "invalid claim",
    "expired",
    "invalid signature",
    "invalid token",
    "jwt",
    "unauthorized",
    "session",
)

CODE_MESSAGES = {
    "23505": "This record already exists. Please check your data and try again.",
    "23503": "Cannot delete: This record is being used elsewhere in the system.",
    "23502": "Required field is missing. Please fill in all required fields.",
    "42P01": "Database table not found. Please contact support.",
    "PGRST116": "No records found matching your criteria.",
    "22P02": "Invalid data format. Please check your input.",
}


class ApiError(Exception):
    """A failed backend call: non-2xx response, transport failure, or timeout."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
        details: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.details = details
        self.hint = hint

    def __repr__(self) -> str:
        return f"ApiError(message={self.message!r}, code={self.code!r}, status={self.status!r})"


def _field(error: Any, name: str) -> Any:
    if isinstance(error, Mapping):
        return error.get(name)
    return getattr(error, name, None)


def _message(error: Any) -> str:
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    msg = _field(error, "message")
    if msg is None and isinstance(error, BaseException):
        msg = str(error)
    return msg if isinstance(msg, str) else ""


def _status(error: Any) -> Optional[int]:
    if error is None or isinstance(error, str):
        return None
    for name in ("status", "status_code"):
        value = _field(error, name)
        if isinstance(value, int):
            return value
    return None


def is_auth_error(error: Any) -> bool:
    """True for 401/403 responses or messages that look like a dead session."""
    if not error:
        return False
    if _status(error) in (401, 403):
        return True
    message = _message(error).lower()
    return any(marker in message for marker in AUTH_ERROR_MARKERS)


def format_error(error: Any) -> str:
    if not error:
        return "An unexpected error occurred"
    if isinstance(error, str):
        return error

    code = _field(error, "code")
    if isinstance(code, str) and code:
        if code in CODE_MESSAGES:
            return CODE_MESSAGES[code]
        if code.startswith("23"):
            return "Database constraint violation. Please check your input."

    original = _message(error)
    if original:
        message = original.lower()
        if "invalid login" in message or "invalid credentials" in message:
            return "Invalid email or password. Please check your credentials and try again."
        if "user already registered" in message:
            return "An account with this email already exists. Try logging in instead."
        if "email not confirmed" in message:
            return "Please verify your email address before logging in."
        if "network" in message or "fetch" in message:
            return "Network error. Please check your internet connection and try again."
        if "timeout" in message:
            return "Request timed out. Please try again."
        if "jwt" in message or "token" in message:
            return "Your session has expired. Please log in again."
        if "permission" in message or "unauthorized" in message:
            return "You do not have permission to perform this action."
        return original

    return GENERIC_MESSAGE


def get_error_type(error: Any) -> str:
    """One of auth, network, database, validation, unknown."""
    if not error:
        return "unknown"
    message = _message(error).lower()
    if any(k in message for k in ("login", "auth", "token", "jwt")):
        return "auth"
    if any(k in message for k in ("network", "fetch", "timeout")):
        return "network"
    code = _field(error, "code")
    if isinstance(code, str) and code.startswith("23"):
        return "database"
    if "required" in message or "invalid" in message:
        return "validation"
    return "unknown"
