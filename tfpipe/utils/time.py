from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def utcnow_iso(now: Optional[datetime] = None) -> str:
    return (now or utcnow()).isoformat().replace("+00:00", "Z")


def compact_stamp(now: Optional[datetime] = None) -> str:
    """Filename-safe UTC timestamp, e.g. 20260101T120000Z."""
    return (now or utcnow()).strftime("%Y%m%dT%H%M%SZ")
