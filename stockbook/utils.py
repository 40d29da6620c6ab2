from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Optional


def iso_now() -> str:
    # Use UTC ISO timestamps for consistency.
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO date/datetime string; naive values are taken as UTC."""
    if not value:
        return None
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def safe_div(n: float, d: float) -> float:
    return float(n) / float(d) if d else 0.0


def round_money(value: float) -> int:
    # Whole currency units, halves round up.
    return math.floor(float(value) + 0.5)


def normalize_text(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", str(value or "").strip().lower())


def to_float(value, default: float = 0.0) -> float:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return default
    return f if f == f else default


def to_quantity(value, default: int = 1) -> int:
    """Floor to a whole quantity of at least 1."""
    f = to_float(value, 0.0) or float(default)
    return max(1, math.floor(f))
