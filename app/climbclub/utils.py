from __future__ import annotations

import re
import uuid
from datetime import date, datetime, timezone


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def academic_year(today: date | None = None) -> str:
    """
    Academic year string for a date, rolling over in September.
    "2026/2027" from September 2026 through August 2027.
    """
    if today is None:
        today = date.today()
    if today.month < 9:
        return f"{today.year - 1}/{today.year}"
    return f"{today.year}/{today.year + 1}"


def membership_expiry_label(membership_year: str | None) -> str:
    """Expiry shown on membership cards: 31 Aug of the academic year's second half."""
    if not membership_year:
        return "N/A"
    parts = membership_year.split("/")
    if len(parts) != 2:
        return "N/A"
    end = parts[1].strip()
    if len(end) == 2:
        end = f"20{end}"
    return f"31 Aug {end}"


def normalize_type_id(raw: str) -> str:
    """Catalog id from free text: lower-case, non-alphanumerics collapsed to "_"."""
    s = re.sub(r"[^a-z0-9]+", "_", (raw or "").strip().lower())
    return s.strip("_")


def parse_datetime_utc(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.
    Naive values are taken as UTC. Returns None when unparseable.
    """
    if not value:
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_int(value, *, field: str) -> int:
    from app.climbclub.errors import ValidationFailed

    if isinstance(value, bool):
        raise ValidationFailed(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{field} must be an integer") from None


def clean_str(value) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def parse_str(value, *, field: str, strip: bool = True) -> str:
    """Text from a JSON value; missing is "" and anything but a string is rejected."""
    from app.climbclub.errors import ValidationFailed

    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationFailed(f"{field} must be a string")
    return value.strip() if strip else value
