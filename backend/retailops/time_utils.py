# Overview: UTC time helpers shared by the ledger, order lifecycle and API serializers.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
"""
Time semantics

Every timestamp the engine stores (movement time, last_restocked_at,
expected/estimated/actual delivery, sale_date) is a UTC-naive datetime.
Clients send and receive ISO-8601 strings; offsets are folded into UTC on
the way in and a trailing 'Z' is added on the way out.
"""


def utcnow() -> datetime:
    """Server clock for movements, transitions and 'strictly future' checks."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a client-supplied delivery date.

    "" and None mean "not set". Naive strings are read as UTC; "Z" and
    "+HH:MM" offsets are converted. Raises ValueError on garbage, which
    validation.coerce_datetime turns into a ValidationError.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    return to_utc_naive(datetime.fromisoformat(s))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Wire format for every datetime in API responses and timeline notes."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def date_key(dt: Optional[datetime] = None) -> str:
    """Calendar day (UTC) as YYYYMMDD; the middle part of ORD/MO/TXN numbers."""
    return (dt or utcnow()).strftime("%Y%m%d")
