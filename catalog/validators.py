"""
Input validation and sanitization.

The check_* functions are pure: each returns a FieldCheck holding either the
normalized value or an error message. BookInputValidator composes them for
book creation and partial updates and raises a single ValidationError that
lists every offending field, so nothing is persisted from a rejected input.
"""

import re
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Iterable, List, Mapping, NamedTuple, Optional, Tuple

from catalog.errors import InvalidGradeError, ValidationError
from catalog.models import BookFields

YEAR_MIN = -6000
GRADE_MIN = 1
GRADE_MAX = 5
DEFAULT_CACHE_SIZE = 1000

TEXT_FIELDS = ("title", "author", "genre")
REQUIRED_BOOK_FIELDS = ("title", "author", "year", "genre")

XSS_ENTITY_MAP = {
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#39;",
    "/": "&#x2F;",
}
_ESCAPE_PATTERN = re.compile(r"[<>\"'/]")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class FieldCheck(NamedTuple):
    """Outcome of validating one field."""
    field: str
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def escape_html(text: str) -> str:
    """Replace HTML-significant characters with entities."""
    return _ESCAPE_PATTERN.sub(lambda match: XSS_ENTITY_MAP[match.group(0)], text)


class SanitizationCache:
    """
    Fixed-capacity memo of sanitized strings.

    When full, the entry inserted first is evicted. Reads do not refresh an
    entry's position.
    """

    def __init__(self, capacity: int = DEFAULT_CACHE_SIZE):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: "OrderedDict[str, str]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[str]:
        return self._entries.get(key)

    def put(self, key: str, value: str) -> None:
        if key not in self._entries and len(self._entries) >= self.capacity:
            self._entries.popitem(last=False)
        self._entries[key] = value

    def sanitize(self, text: str) -> str:
        cached = self._entries.get(text)
        if cached is not None:
            return cached
        sanitized = escape_html(text)
        self.put(text, sanitized)
        return sanitized


def as_integer(value: Any) -> Optional[int]:
    """
    Interpret value as an integer, or return None.

    Accepts ints, integral floats and numeric strings (form fields arrive as
    text). Booleans are rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        return int(number) if number.is_integer() else None
    return None


def check_text(field: str, value: Any, sanitize: Callable[[str], str] = escape_html) -> FieldCheck:
    if not isinstance(value, str) or not value.strip():
        return FieldCheck(field, error=f"Invalid or missing {field}")
    return FieldCheck(field, sanitize(value.strip()))


def check_year(value: Any, current_year: Optional[int] = None) -> FieldCheck:
    year_max = current_year if current_year is not None else datetime.utcnow().year
    year = as_integer(value)
    if year is None or year < YEAR_MIN or year > year_max:
        return FieldCheck(
            "year",
            error=f"Invalid year. Must be an integer between {YEAR_MIN} and current year",
        )
    return FieldCheck("year", year)


def check_grade(value: Any) -> FieldCheck:
    if value is None:
        return FieldCheck("rating", error="Rating is required")
    grade = as_integer(value)
    if grade is None or grade < GRADE_MIN or grade > GRADE_MAX:
        return FieldCheck("rating", error=f"Rating must be an integer between {GRADE_MIN} and {GRADE_MAX}")
    return FieldCheck("rating", grade)


def check_email(value: Any) -> FieldCheck:
    if not isinstance(value, str) or not value.strip():
        return FieldCheck("email", error="Email is required")
    email = value.strip().lower()
    if not EMAIL_PATTERN.match(email):
        return FieldCheck("email", error="Invalid email format")
    return FieldCheck("email", email)


def check_password(value: Any) -> FieldCheck:
    if not isinstance(value, str) or not value:
        return FieldCheck("password", error="Password is required")
    return FieldCheck("password", value)


def collect_errors(checks: Iterable[FieldCheck]) -> List[str]:
    return [check.error for check in checks if not check.ok]


def validate_grade(value: Any) -> int:
    """Return the grade as an int or raise InvalidGradeError."""
    check = check_grade(value)
    if not check.ok:
        raise InvalidGradeError(check.error)
    return check.value


def validate_credentials(email: Any, password: Any) -> Tuple[str, str]:
    """Normalize signup/login input or raise ValidationError."""
    checks = [check_email(email), check_password(password)]
    errors = collect_errors(checks)
    if errors:
        raise ValidationError("Invalid credentials input", errors=errors)
    return checks[0].value, checks[1].value


class BookInputValidator:
    """Validates book input; owns the sanitization cache."""

    def __init__(self, cache: Optional[SanitizationCache] = None, current_year: Optional[int] = None):
        self.cache = cache if cache is not None else SanitizationCache()
        self.current_year = current_year

    def _check(self, field: str, value: Any) -> FieldCheck:
        if field == "year":
            return check_year(value, self.current_year)
        return check_text(field, value, self.cache.sanitize)

    def validate_new(self, raw: Any) -> BookFields:
        """All required fields must be present and valid."""
        if not isinstance(raw, Mapping):
            raise ValidationError("Invalid book data")
        checks = [self._check(field, raw.get(field)) for field in REQUIRED_BOOK_FIELDS]
        errors = collect_errors(checks)
        if errors:
            raise ValidationError("Invalid book data", errors=errors)
        return BookFields(**{check.field: check.value for check in checks})

    def validate_changes(self, raw: Any) -> BookFields:
        """Only the supplied fields are checked; unknown keys are ignored."""
        if not isinstance(raw, Mapping):
            raise ValidationError("Invalid book data")
        checks = [
            self._check(field, raw[field])
            for field in REQUIRED_BOOK_FIELDS
            if field in raw
        ]
        errors = collect_errors(checks)
        if errors:
            raise ValidationError("Invalid book data", errors=errors)
        return BookFields(**{check.field: check.value for check in checks})
