"""Shared validation utilities"""

import re
import uuid
from datetime import date, datetime, timezone
from typing import Optional

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def validate_uuid(value: str) -> bool:
    """Validate UUID format"""
    try:
        uuid.UUID(value)
        return True
    except (ValueError, AttributeError, TypeError):
        return False


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Returns:
        Lowercase, stripped email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email
    email = email.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid email format")
    return email


def parse_datetime(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp into a naive UTC datetime.

    Offsets like "-0800" (as Acuity sends them) and a trailing "Z" are accepted;
    values without an offset are taken as UTC.

    Raises:
        ValueError: If the value is not a valid timestamp
    """
    if not value or not isinstance(value, str):
        raise ValueError("Invalid datetime")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # "+0800" -> "+08:00" for older interpreters
    text = re.sub(r"([+-]\d{2})(\d{2})$", r"\1:\2", text)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(value: str) -> date:
    """Parse YYYY-MM-DD; raises ValueError"""
    return datetime.strptime(value, "%Y-%m-%d").date()


def validate_month(value: str) -> bool:
    return bool(value and MONTH_PATTERN.match(value))


def slugify(value: str) -> str:
    """Lowercase, hyphen-separated slug"""
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower())
    return slug.strip("-")


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Render a stored (naive UTC) timestamp with an explicit Z"""
    if value is None:
        return None
    return value.replace(tzinfo=None).isoformat() + "Z"
