"""
Field-Level Validation Rules

Sanitizers and validators for individual fields, declarative FieldRule
sets per dataset, and the row validator that applies a rule set to a
RawRow. Everything here is pure: no I/O, no database access.
"""

import math
import re
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

from etl.records import Accepted, FieldError, NormalizedRecord, Rejected, ValidationResult

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
EMAIL_MAX_LENGTH = 100
PHONE_MAX_LENGTH = 20
# Upper bound of a PostgreSQL INTEGER column
PG_INT_MAX = 2**31 - 1
UNKNOWN = "Unknown"

_HAZARDOUS_CHARS = re.compile(r"[<>'\"]")
_NAME_DISALLOWED = re.compile(r"[^\w\s-]")
_PHONE_DISALLOWED = re.compile(r"[^\d+\-() ]")
_WHITESPACE = re.compile(r"\s+")

GRADES = ("A", "A-", "B+", "B", "B-", "C+", "C", "C-", "D", "F")

# Field kinds
STRING = "string"
NAME = "name"
FULL_NAME = "full_name"
EMAIL = "email"
PHONE = "phone"
INTEGER = "integer"
NUMERIC = "numeric"
ENUM = "enum"


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _bound(value) -> str:
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def sanitize_string(value: Any, max_length: int = 255) -> str:
    """Trim, strip < > ' " and truncate. Non-string or empty input gives ''."""
    if not value or not isinstance(value, str):
        return ""
    return _HAZARDOUS_CHARS.sub("", value.strip())[:max_length]


def sanitize_name(value: Any, max_length: int = 50) -> str:
    """Keep word characters, spaces and hyphens; collapse whitespace."""
    if not value or not isinstance(value, str):
        return UNKNOWN
    cleaned = _NAME_DISALLOWED.sub("", value.strip())
    return _WHITESPACE.sub(" ", cleaned)[:max_length]


def validate_email(value: Any) -> Tuple[Optional[str], Optional[str]]:
    """
    Validate email format.

    Returns:
        Tuple of (normalized_email, error_message)
    """
    if not value or not isinstance(value, str):
        return None, "Email is required"

    email = value.strip().lower()

    if not EMAIL_REGEX.match(email):
        return None, "Invalid email format"

    if len(email) > EMAIL_MAX_LENGTH:
        return None, f"Email too long (max {EMAIL_MAX_LENGTH} characters)"

    return email, None


def validate_phone(value: Any) -> Optional[str]:
    """
    Sanitize a phone number.

    Phone is optional and never rejects a row, even though the students
    table declares the column; absence is stored as NULL.
    """
    if _is_missing(value):
        return None
    return _PHONE_DISALLOWED.sub("", str(value))[:PHONE_MAX_LENGTH]


def _check_range(number, kind: str, min_value, max_value) -> Optional[str]:
    if min_value is not None and number < min_value:
        return f"{kind} must be at least {_bound(min_value)}"
    if max_value is not None and number > max_value:
        return f"{kind} must be at most {_bound(max_value)}"
    return None


def validate_number(
    value: Any, min_value: Optional[float] = None, max_value: Optional[float] = None
) -> Tuple[Optional[float], Optional[str]]:
    """
    Parse a float and check it against optional bounds.

    Returns:
        Tuple of (number, error_message)
    """
    try:
        number = float(str(value).strip())
    except (ValueError, TypeError):
        return None, "Invalid number"

    if not math.isfinite(number):
        return None, "Invalid number"

    error = _check_range(number, "Number", min_value, max_value)
    if error:
        return None, error
    return number, None


def validate_integer(
    value: Any, min_value: Optional[int] = None, max_value: Optional[int] = None
) -> Tuple[Optional[int], Optional[str]]:
    """
    Parse an integer (decimal input is truncated) and check its bounds.

    Returns:
        Tuple of (integer, error_message)
    """
    try:
        number = float(str(value).strip())
    except (ValueError, TypeError):
        return None, "Invalid integer"

    if not math.isfinite(number):
        return None, "Invalid integer"

    integer = int(number)
    error = _check_range(integer, "Integer", min_value, max_value)
    if error:
        return None, error
    return integer, None


def parse_full_name(value: Any) -> Tuple[Optional[Tuple[str, str]], Optional[str]]:
    """
    Split a full name into (first_name, last_name).

    Everything after the first word is the last name; a single word gets
    'Unknown' as its last name.
    """
    if not value or not isinstance(value, str):
        return None, "Name is required"

    collapsed = _WHITESPACE.sub(" ", value.strip())
    if not collapsed:
        return None, "Name cannot be empty"

    parts = collapsed.split(" ")
    first_name = sanitize_name(parts[0])
    last_name = sanitize_name(" ".join(parts[1:]) or UNKNOWN)

    if not first_name or first_name == UNKNOWN:
        return None, "First name is required"

    return (first_name, last_name or UNKNOWN), None


@dataclass(frozen=True)
class FieldRule:
    """
    Validation rule for one target column.

    required: a missing or malformed value rejects the row.
    strict: a missing value is fine, a present malformed value rejects.
    Otherwise malformed or missing values fall back to default.
    """
    name: str
    kind: str = STRING
    source: Optional[str] = None
    required: bool = False
    strict: bool = False
    max_length: Optional[int] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    allowed: Tuple[str, ...] = ()
    default: Any = None
    label: Optional[str] = None

    @property
    def source_field(self) -> str:
        return self.source or self.name

    @property
    def display_name(self) -> str:
        return self.label or self.name.replace("_", " ").title()


def validate_field(rule: FieldRule, value: Any) -> Tuple[Any, Optional[str]]:
    """
    Apply one FieldRule to a raw value.

    Returns:
        Tuple of (normalized_value, error_reason)
    """
    missing = _is_missing(value)
    required_reason = f"{rule.display_name} is required"

    if rule.kind == FULL_NAME:
        return parse_full_name(value)

    if rule.kind == EMAIL:
        if missing and not rule.required:
            return rule.default, None
        return validate_email(value)

    if rule.kind == PHONE:
        return validate_phone(value), None

    if rule.kind == NAME:
        name = "" if missing else sanitize_name(value, rule.max_length or 50)
        if name:
            return name, None
        if rule.required:
            return None, required_reason
        return rule.default if rule.default is not None else UNKNOWN, None

    if rule.kind in (INTEGER, NUMERIC):
        if missing:
            return (None, required_reason) if rule.required else (rule.default, None)
        parse = validate_integer if rule.kind == INTEGER else validate_number
        number, error = parse(value, rule.min_value, rule.max_value)
        if error is None:
            return number, None
        if rule.required or rule.strict:
            return None, error
        return rule.default, None

    if rule.kind == ENUM:
        choice = "" if missing else sanitize_string(str(value), rule.max_length or 255).upper()
        if not choice:
            return (None, required_reason) if rule.required else (rule.default, None)
        if choice not in rule.allowed:
            return None, f"Invalid {rule.display_name.lower()} value '{choice}'"
        return choice, None

    if rule.kind == STRING:
        text = sanitize_string(value, rule.max_length or 255)
        if text:
            return text, None
        if rule.required:
            return None, required_reason
        return rule.default, None

    raise ValueError(f"Unknown field kind: {rule.kind}")


def validate(raw_row, rules: Sequence[FieldRule]) -> ValidationResult:
    """
    Validate one row against a rule set.

    Rules run in order and every failure is collected, so a rejected row
    reports all of its field errors at once.
    """
    row_index = getattr(raw_row, "index", None)
    values = {}
    errors = []

    for rule in rules:
        value, error = validate_field(rule, raw_row.get(rule.source_field))
        if error:
            errors.append(FieldError(rule.name, rule.display_name, error))
        elif rule.kind == FULL_NAME:
            values["first_name"], values["last_name"] = value
        else:
            values[rule.name] = value

    if errors:
        return Rejected(row_index=row_index, errors=tuple(errors))
    return Accepted(NormalizedRecord(row_index=row_index, values=values))


STUDENT_RULES = (
    FieldRule("name", FULL_NAME, source="student_name", required=True),
    FieldRule("email", EMAIL, required=True),
    FieldRule("phone", PHONE),
    FieldRule("department", STRING, max_length=100, default="General"),
    FieldRule("course", STRING, max_length=100, default="General"),
    FieldRule("credits", INTEGER, strict=True, min_value=1, max_value=10),
    FieldRule("grade", ENUM, max_length=5, allowed=GRADES),
    FieldRule(
        "enrollment_year", INTEGER, source="year", strict=True,
        min_value=1, max_value=5, default=1, label="Year",
    ),
)

NETFLIX_RULES = (
    FieldRule("show_id", STRING, required=True, max_length=10, label="show_id"),
    FieldRule("type", STRING, max_length=20, default=""),
    FieldRule("title", STRING, max_length=255, default=""),
    FieldRule("director", STRING, max_length=500, default=""),
    FieldRule("cast_members", STRING, source="cast", max_length=1000, default=""),
    FieldRule("country", STRING, max_length=255, default=""),
    FieldRule("date_added", STRING, max_length=50, default=""),
    FieldRule("release_year", INTEGER, min_value=1900, max_value=2030),
    FieldRule("rating", STRING, max_length=20, default=""),
    FieldRule("duration", STRING, max_length=20, default=""),
    FieldRule("listed_in", STRING, max_length=500, default=""),
    FieldRule("description", STRING, max_length=1000, default=""),
)

TITANIC_RULES = (
    FieldRule(
        "passenger_id", INTEGER, source="passengerid", required=True,
        max_value=PG_INT_MAX, label="PassengerId",
    ),
    FieldRule("survived", INTEGER, min_value=0, max_value=1, default=0),
    FieldRule("pclass", INTEGER, min_value=1, max_value=3, default=3),
    FieldRule("name", STRING, max_length=255, default=""),
    FieldRule("sex", STRING, max_length=10, default=""),
    FieldRule("age", NUMERIC, min_value=0, max_value=150),
    FieldRule("sibsp", INTEGER, min_value=0, max_value=10, default=0),
    FieldRule("parch", INTEGER, min_value=0, max_value=10, default=0),
    FieldRule("ticket", STRING, max_length=50, default=""),
    FieldRule("fare", NUMERIC, min_value=0, default=0.0),
    FieldRule("cabin", STRING, max_length=50, default=""),
    FieldRule("embarked", STRING, max_length=5, default=""),
)


class RecordValidator:
    """
    Validates complete rows using a fixed rule set.
    """

    def __init__(self, rules: Sequence[FieldRule], name: str = "record"):
        self.rules = tuple(rules)
        self.name = name

    @property
    def columns(self) -> Tuple[str, ...]:
        """Target columns produced by an accepted row, in rule order."""
        columns = []
        for rule in self.rules:
            if rule.kind == FULL_NAME:
                columns.extend(["first_name", "last_name"])
            else:
                columns.append(rule.name)
        return tuple(columns)

    def validate_record(self, raw_row) -> ValidationResult:
        result = validate(raw_row, self.rules)
        if not result.is_valid:
            logger.debug(f"{self.name} row {result.row_index} rejected: {result.message}")
        return result


def validate_student_row(raw_row) -> ValidationResult:
    return validate(raw_row, STUDENT_RULES)


def validate_netflix_row(raw_row) -> ValidationResult:
    return validate(raw_row, NETFLIX_RULES)


def validate_titanic_row(raw_row) -> ValidationResult:
    return validate(raw_row, TITANIC_RULES)
