"""
Form validators run before anything is sent to the backend.

Each validator takes a value and returns a ValidationResult; validate_field runs a
list of them and stops at the first failure.
"""
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, NamedTuple, Optional, Sequence
from urllib.parse import urlparse


class ValidationResult(NamedTuple):
    is_valid: bool
    error: Optional[str] = None


OK = ValidationResult(True)

Rule = Callable[[Any], ValidationResult]

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^[\d\s\-+()]+$")


def _fail(message: str) -> ValidationResult:
    return ValidationResult(False, message)


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def validate_email(value: Optional[str]) -> ValidationResult:
    if not value:
        return _fail("Email is required")
    if not _EMAIL_RE.match(value):
        return _fail("Invalid email format")
    return OK


def validate_password(value: Optional[str]) -> ValidationResult:
    if not value:
        return _fail("Password is required")
    if len(value) < 8:
        return _fail("Password must be at least 8 characters")
    if not re.search(r"[A-Z]", value):
        return _fail("Password must contain an uppercase letter")
    if not re.search(r"[a-z]", value):
        return _fail("Password must contain a lowercase letter")
    if not re.search(r"[0-9]", value):
        return _fail("Password must contain a number")
    return OK


def validate_phone(value: Optional[str]) -> ValidationResult:
    if not value:
        return OK
    if not _PHONE_RE.match(value) or len(re.sub(r"\D", "", value)) < 10:
        return _fail("Invalid phone number (min 10 digits)")
    return OK


def validate_url(value: Optional[str]) -> ValidationResult:
    if not value:
        return OK
    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        return _fail("Invalid URL format")
    return OK


def validate_required(value: Any) -> ValidationResult:
    if value is None or value == "" or (isinstance(value, str) and not value.strip()):
        return _fail("This field is required")
    return OK


def validate_min_length(value: Optional[str], min_len: int) -> ValidationResult:
    if len(value or "") < min_len:
        return _fail(f"Minimum {min_len} characters required")
    return OK


def validate_max_length(value: Optional[str], max_len: int) -> ValidationResult:
    if len(value or "") > max_len:
        return _fail(f"Maximum {max_len} characters allowed")
    return OK


def validate_number(value: Any) -> ValidationResult:
    if value is None or value == "":
        return OK
    if _to_number(value) is None:
        return _fail("Must be a valid number")
    return OK


def validate_positive_number(value: Any) -> ValidationResult:
    num = _to_number(value)
    if num is None or num < 0:
        return _fail("Must be a positive number")
    return OK


def validate_percentage(value: Any) -> ValidationResult:
    num = _to_number(value)
    if num is None or num < 0 or num > 100:
        return _fail("Must be a percentage between 0 and 100")
    return OK


def _as_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value:
        return date.fromisoformat(str(value)[:10])
    return None


def validate_date_range(start: Any, end: Any) -> ValidationResult:
    try:
        start_d, end_d = _as_date(start), _as_date(end)
    except ValueError:
        return _fail("Please enter a valid date")
    if start_d and end_d and start_d > end_d:
        return _fail("End date must be after start date")
    return OK


def validate_file_size(size_bytes: Optional[int], max_mb: float = 10) -> ValidationResult:
    if size_bytes is None:
        return OK
    if size_bytes > max_mb * 1024 * 1024:
        return _fail(f"File size must be less than {max_mb:g}MB")
    return OK


def validate_file_type(filename: Optional[str], allowed: Iterable[str]) -> ValidationResult:
    if not filename:
        return OK
    allowed = [a.lower().lstrip(".") for a in allowed]
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if not ext or ext not in allowed:
        return _fail(f"Allowed file types: {', '.join(allowed)}")
    return OK


def password_strength(password: Optional[str]) -> tuple:
    """(score 0-6, label) for a password meter."""
    if not password:
        return 0, "None"
    score = 0
    score += len(password) >= 8
    score += len(password) >= 12
    score += bool(re.search(r"[a-z]", password))
    score += bool(re.search(r"[A-Z]", password))
    score += bool(re.search(r"[0-9]", password))
    score += bool(re.search(r"[^a-zA-Z0-9]", password))
    if score <= 2:
        return score, "Weak"
    if score <= 4:
        return score, "Fair"
    if score <= 5:
        return score, "Good"
    return score, "Strong"


def validate_field(value: Any, rules: Sequence[Rule]) -> ValidationResult:
    for rule in rules:
        result = rule(value)
        if not result.is_valid:
            return result
    return OK


def validate_form(values: Dict[str, Any], rules: Dict[str, Sequence[Rule]]) -> Dict[str, str]:
    """Field name -> first error message. An empty dict means the form is valid."""
    errors: Dict[str, str] = {}
    for field, field_rules in rules.items():
        result = validate_field(values.get(field), field_rules)
        if not result.is_valid and result.error:
            errors[field] = result.error
    return errors
