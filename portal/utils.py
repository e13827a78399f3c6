"""
Small shared helpers for time and email handling.
"""
import math
from datetime import datetime, timezone
from typing import Optional

SECONDS_PER_DAY = 24 * 60 * 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_until(target: datetime, now: Optional[datetime] = None) -> int:
    """Whole days until ``target``, rounded up (negative once it has passed)."""
    now = now or utcnow()
    delta = as_utc(target) - as_utc(now)
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def canonical_email(email: str) -> str:
    """Lowercased address with any ``+tag`` removed from the local part."""
    normalized = normalize_email(email)
    local, sep, domain = normalized.partition("@")
    if not sep or not local:
        return normalized
    return f"{local.split('+', 1)[0]}@{domain}"


def emails_match(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return canonical_email(a) == canonical_email(b)
