"""
Able Account Data Model
Account record, categories, field limits and the coercion rules applied
before anything reaches the database.
"""

from dataclasses import dataclass, fields as dataclass_fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

# ============ Validation Constants ============
MAX_NAME_LEN = 200
MAX_URL_LEN = 200
MAX_USERNAME_LEN = 200
MAX_NOTES_LEN = 1000
MIN_INTERVAL_DAYS = 1
MAX_INTERVAL_DAYS = 365
DEFAULT_INTERVAL_DAYS = 90

MUTABLE_FIELDS = (
    "service_name",
    "url",
    "username",
    "category",
    "refresh_interval_days",
    "last_password_change",
    "notes",
)


class ValidationError(ValueError):
    """Raised when a record cannot be stored (e.g. empty service name)"""
    pass


class Category(str, Enum):
    GENERAL = "general"
    FINANCIAL = "financial"
    EMAIL = "email"
    SOCIAL = "social"
    SHOPPING = "shopping"
    STREAMING = "streaming"
    WORK = "work"
    GAMING = "gaming"

    @classmethod
    def coerce(cls, value: Any) -> "Category":
        """Unknown or missing categories fall back to GENERAL."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.GENERAL


class _Unset:
    """Marker for fields not supplied in a partial update."""

    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


UNSET = _Unset()


# ============ Timestamp helpers ============

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def to_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()

def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Returns None for missing, empty or unparseable values. Naive timestamps
    are read as UTC; a trailing 'Z' is accepted.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)

def normalize_timestamp(value: Any) -> Optional[str]:
    """ISO string for a parseable timestamp, otherwise None."""
    moment = parse_timestamp(value)
    return to_iso(moment) if moment else None

def clean_timestamp(value: Any, field_name: str) -> Optional[str]:
    """
    Timestamp supplied by a caller. None or blank means "no date";
    anything else must parse.

    Raises:
        ValidationError: non-empty value that is not ISO-8601
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    normalized = normalize_timestamp(value)
    if normalized is None:
        raise ValidationError(f"{field_name} is not a valid ISO-8601 timestamp: {value!r}")
    return normalized


# ============ Field coercion ============

def clean_text(value: Any, max_len: int) -> str:
    """Trim and clamp an optional text field; None becomes ''."""
    if value is None:
        return ""
    return str(value).strip()[:max_len]

def clean_service_name(value: Any) -> str:
    name = clean_text(value, MAX_NAME_LEN)
    if not name:
        raise ValidationError("service_name must be a non-empty string")
    return name

def coerce_interval(value: Any) -> int:
    """
    Refresh interval in days. Anything that is not an integer in
    [MIN_INTERVAL_DAYS, MAX_INTERVAL_DAYS] becomes DEFAULT_INTERVAL_DAYS.
    """
    if isinstance(value, bool):
        return DEFAULT_INTERVAL_DAYS
    if isinstance(value, float):
        if not value.is_integer():
            return DEFAULT_INTERVAL_DAYS
        value = int(value)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return DEFAULT_INTERVAL_DAYS
    if not isinstance(value, int):
        return DEFAULT_INTERVAL_DAYS
    if value < MIN_INTERVAL_DAYS or value > MAX_INTERVAL_DAYS:
        return DEFAULT_INTERVAL_DAYS
    return value


@dataclass
class Account:
    """A tracked service account (no secrets are stored, only rotation metadata)."""

    id: int
    service_name: str
    url: str = ""
    username: str = ""
    category: Category = Category.GENERAL
    refresh_interval_days: int = DEFAULT_INTERVAL_DAYS
    last_password_change: Optional[str] = None
    date_added: Optional[str] = None
    notes: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Account":
        return cls(
            id=int(row["id"]),
            service_name=row["service_name"] or "",
            url=row["url"] or "",
            username=row["username"] or "",
            category=Category.coerce(row["category"]),
            refresh_interval_days=coerce_interval(row["refresh_interval_days"]),
            last_password_change=row["last_password_change"] or None,
            date_added=row["date_added"] or None,
            notes=row["notes"] or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "service_name": self.service_name,
            "url": self.url,
            "username": self.username,
            "category": self.category.value,
            "refresh_interval_days": self.refresh_interval_days,
            "last_password_change": self.last_password_change,
            "date_added": self.date_added,
            "notes": self.notes,
        }


@dataclass
class AccountUpdate:
    """
    Partial update of an account's mutable fields.

    Fields left as UNSET are not touched. `last_password_change=None` (or "")
    clears the date (the account then reads as overdue); an unparseable
    date raises ValidationError.
    """

    service_name: Any = UNSET
    url: Any = UNSET
    username: Any = UNSET
    category: Any = UNSET
    refresh_interval_days: Any = UNSET
    last_password_change: Any = UNSET
    notes: Any = UNSET

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "AccountUpdate":
        """Build an update from a dict, ignoring keys that are not mutable fields."""
        return cls(**{k: v for k, v in values.items() if k in MUTABLE_FIELDS})

    def is_empty(self) -> bool:
        return not self.changes()

    def changes(self) -> Dict[str, Any]:
        """Validated column -> value mapping for the supplied fields."""
        result = {}
        for f in dataclass_fields(self):
            value = getattr(self, f.name)
            if value is UNSET:
                continue
            if f.name == "service_name":
                result[f.name] = clean_service_name(value)
            elif f.name == "url":
                result[f.name] = clean_text(value, MAX_URL_LEN)
            elif f.name == "username":
                result[f.name] = clean_text(value, MAX_USERNAME_LEN)
            elif f.name == "notes":
                result[f.name] = clean_text(value, MAX_NOTES_LEN)
            elif f.name == "category":
                result[f.name] = Category.coerce(value).value
            elif f.name == "refresh_interval_days":
                result[f.name] = coerce_interval(value)
            elif f.name == "last_password_change":
                result[f.name] = clean_timestamp(value, f.name)
        return result
