"""Normalization and coercion functions for tabular import.

Cell-level helpers accept any raw cell value (str | int | float | bool | None)
and return the appropriate type, or None when the value is absent.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any

_TRUE_TOKENS = frozenset({"true", "yes", "1"})

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")
_NUMBER_PREFIX_RE = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")
_DATE_SPLIT_RE = re.compile(r"[/\-.]")

# Direct calendar formats, tried in order before the day/month/year fallback.
_DIRECT_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
)


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


def cell_text(value: Any) -> str | None:
    """Render a raw cell as trimmed text, or None when blank.

    Booleans render as 'true'/'false'; whole floats drop the '.0' that
    spreadsheet decoders add to integer cells.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return trim(str(value))


# ---------------------------------------------------------------------------
# Rule 2: normalize_column  (header / label / alias comparison form)
# ---------------------------------------------------------------------------

def normalize_column(name: str | None) -> str:
    """Lowercase, trim, collapse non-alphanumeric runs to '_', strip '_'.

    'Unit Price (ZMW)' → 'unit_price_zmw'.  Idempotent.
    """
    if name is None:
        return ""
    v = name.lower().strip()
    v = _NON_ALNUM_RE.sub("_", v)
    return v.strip("_")


# ---------------------------------------------------------------------------
# Rule 3: parse_number
# ---------------------------------------------------------------------------

def parse_number(value: Any) -> float | None:
    """Parse a leading decimal number after stripping currency and separators.

    Keeps only digits, '.' and '-', then reads the longest numeric prefix:
    '45,230.50 ZMW' → 45230.5.  Returns None when no number can be read,
    including NaN and infinite values.
    """
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        result = float(value)
    else:
        v = cell_text(value)
        if v is None:
            return None
        m = _NUMBER_PREFIX_RE.match(_NON_NUMERIC_RE.sub("", v))
        if not m:
            return None
        result = float(m.group(0))
    return result if math.isfinite(result) else None


# ---------------------------------------------------------------------------
# Rule 4: parse_bool
# ---------------------------------------------------------------------------

def parse_bool(value: Any) -> bool:
    """True iff the lowercased trimmed value is 'true', 'yes' or '1'."""
    if isinstance(value, bool):
        return value
    v = cell_text(value)
    return v is not None and v.lower() in _TRUE_TOKENS


# ---------------------------------------------------------------------------
# Rule 5: parse_calendar_date
# ---------------------------------------------------------------------------

def parse_calendar_date(value: Any) -> date | None:
    """Parse a calendar date from common spreadsheet renderings.

    Tries the direct formats first.  Otherwise splits on '/', '-' or '.'
    into [a, b, c]: a > 31 reads as Y-M-D, c > 31 reads as D/M/Y.
    '15/6/2024' → date(2024, 6, 15).  Anything else → None.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    v = cell_text(value)
    if v is None:
        return None

    for fmt in _DIRECT_DATE_FORMATS:
        try:
            return datetime.strptime(v, fmt).date()
        except ValueError:
            continue

    parts = _DATE_SPLIT_RE.split(v)
    if len(parts) != 3 or not all(p.strip().isdigit() for p in parts):
        return None
    a, b, c = (int(p) for p in parts)
    if a > 31:
        year, month, day = a, b, c
    elif c > 31:
        year, month, day = c, b, a
    else:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None
