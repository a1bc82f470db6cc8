"""
Shared helpers for the research models — ids, clock reads, and the
coercion rules every model applies to loosely-shaped input.
"""

import math
import time
from typing import Any, Dict, Iterable, Optional
from uuid import uuid4


def new_id() -> str:
    """Return a fresh opaque identifier."""
    return uuid4().hex[:16]


def now_ms() -> int:
    """Wall-clock milliseconds since the epoch (the persisted timestamp unit)."""
    return int(time.time() * 1000)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        numeric = float(value.strip() if isinstance(value, str) else value)
    except (OverflowError, ValueError):
        return None
    if not math.isfinite(numeric):
        return None
    return numeric


def coerce_int(value: Any, minimum: int = 0) -> int:
    """Coerce to an int no lower than ``minimum``; garbage becomes ``minimum``."""
    numeric = _as_number(value)
    if numeric is None:
        return minimum
    return max(int(numeric), minimum)


def coerce_signed_int(value: Any) -> int:
    """Coerce to a (possibly negative) int; garbage becomes 0."""
    numeric = _as_number(value)
    if numeric is None:
        return 0
    return int(numeric)


def coerce_optional_signed_int(value: Any) -> Optional[int]:
    """A finite number (any sign) as an int, otherwise None."""
    numeric = _as_number(value)
    return int(numeric) if numeric is not None else None


def coerce_optional_positive_int(value: Any) -> Optional[int]:
    """A finite number > 0 as an int, otherwise None."""
    numeric = _as_number(value)
    if numeric is None or numeric <= 0:
        return None
    return int(numeric)


def coerce_optional_int(value: Any) -> Optional[int]:
    """A finite number >= 0 as an int, otherwise None."""
    numeric = _as_number(value)
    if numeric is None or numeric < 0:
        return None
    return int(numeric)


def clean_str(value: Any) -> str:
    """Stripped string, or "" for anything that is not a string."""
    if not isinstance(value, str):
        return ""
    return value.strip()


def pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key wins; lets models accept camelCase and snake_case."""
    for key in keys:
        if key in data:
            return data[key]
    return default


def without(data: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    """Copy of ``data`` minus ``keys``; keeps unknown extras intact."""
    dropped = set(keys)
    return {k: v for k, v in data.items() if k not in dropped}
