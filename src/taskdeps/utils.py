"""Provide utility helpers for timestamps and calendar dates."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_date(value: Any) -> Optional[date]:
    """Parse a calendar date from a ``date`` or ``YYYY-MM-DD`` string.

    Returns ``None`` when *value* cannot be interpreted as a date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None
