"""
normalizers.py — raw cell value → typed value
==============================================
Spreadsheet cells arrive as numbers, strings, datetimes or blanks, in
whatever encoding the author happened to type.  Every helper here is total:
bad input yields a neutral default (``None`` or ``0``), never an exception.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from typing import Any, Optional

import pandas as pd

from models import (
    DONE_THRESHOLD,
    STATUS_CANCELLED,
    STATUS_DONE,
    STATUS_IN_PROGRESS,
    STATUS_LATE,
    STATUS_NOT_STARTED,
)

# Day zero of the spreadsheet serial date system
EXCEL_EPOCH = datetime(1899, 12, 30)

_DMY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2,4})$")
_CURRENCY_PREFIX_RE = re.compile(r"^(?:R\$|US\$|\$)")
_LEADING_INT_RE = re.compile(r"^\s*(-?\d+)")

# Label fragments → status, checked in this order
_STATUS_LABELS = (
    (("conclu", "entregue"), STATUS_DONE),
    (("cancel",), STATUS_CANCELLED),
    (("atrasado", "bloqueado"), STATUS_LATE),
)


# ══════════════════════════════════════════════════════════════════════════════
# Primitive helpers
# ══════════════════════════════════════════════════════════════════════════════

def clean(v: Any) -> str:
    """Return stripped string; '' when None/NaN/NaT."""
    if v is None or v is pd.NaT:
        return ""
    if isinstance(v, float) and (v != v):          # NaN fast-path
        return ""
    return str(v).strip()


def is_blank(v: Any) -> bool:
    return v is None or v is pd.NaT or (isinstance(v, float) and (v != v)) or clean(v) == ""


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


# ══════════════════════════════════════════════════════════════════════════════
# Dates
# ══════════════════════════════════════════════════════════════════════════════

def parse_date(v: Any) -> Optional[datetime]:
    """
    Convert a date-like cell to a naive ``datetime``, or None.

    Accepts datetime objects, spreadsheet serial numbers (days since
    1899-12-30, fraction truncated), ISO strings and ``DD/MM/YYYY`` /
    ``DD/MM/YY`` strings (two-digit years land in the 2000s).
    """
    if is_blank(v):
        return None
    if isinstance(v, pd.Timestamp):
        return None if pd.isna(v) else v.to_pydatetime().replace(tzinfo=None)
    if isinstance(v, datetime):
        return v.replace(tzinfo=None)
    if isinstance(v, date):
        return datetime(v.year, v.month, v.day)
    if _is_number(v):
        if not math.isfinite(v):
            return None
        try:
            return EXCEL_EPOCH + timedelta(days=int(v))
        except OverflowError:
            return None

    s = clean(v)
    try:
        return datetime.fromisoformat(s).replace(tzinfo=None)
    except ValueError:
        pass

    m = _DMY_RE.match(s)
    if m:
        day, month, year = (int(g) for g in m.groups())
        if year < 100:
            year += 2000
        try:
            return datetime(year, month, day)
        except ValueError:
            return None
    return None


# ══════════════════════════════════════════════════════════════════════════════
# Numbers
# ══════════════════════════════════════════════════════════════════════════════

def parse_currency(v: Any) -> float:
    """
    Convert a money cell to float; 0 when unparseable.

    ``R$ 1.234,56`` (comma after the last dot) reads as Brazilian notation,
    ``1,234.56`` as English notation.  Any other comma is a thousands
    separator, so ``100,50`` reads as 10050.
    """
    if _is_number(v):
        return float(v) if math.isfinite(v) else 0.0
    if is_blank(v):
        return 0.0

    s = _CURRENCY_PREFIX_RE.sub("", clean(v))
    s = re.sub(r"\s+", "", s)

    if "," in s and "." in s and s.index(",") > s.rindex("."):
        s = s.replace(".", "").replace(",", ".")
    else:
        s = s.replace(",", "")

    try:
        value = float(s)
    except ValueError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def parse_progress(v: Any) -> float:
    """
    Convert a progress cell to a percentage in [0, 100].

    Numbers up to 1 are fractions (0.5 → 50); larger numbers are already
    percentages.  Strings lose their ``%`` sign and are read as-is.
    """
    if _is_number(v):
        value = float(v)
        if value != value:
            return 0.0
        if value <= 1:
            value *= 100
    elif is_blank(v):
        return 0.0
    else:
        s = clean(v).replace("%", "").replace(",", ".").strip()
        try:
            value = float(s)
        except ValueError:
            return 0.0
        if value != value:
            return 0.0
    return min(max(value, 0.0), 100.0)


def parse_duration(v: Any) -> int:
    """Whole days from a duration cell; 0 for blanks, text and negatives."""
    if _is_number(v):
        if not math.isfinite(v):
            return 0
        return max(int(v), 0)
    m = _LEADING_INT_RE.match(clean(v))
    if not m:
        return 0
    return max(int(m.group(1)), 0)


# ══════════════════════════════════════════════════════════════════════════════
# Status
# ══════════════════════════════════════════════════════════════════════════════

def classify_status(label: Any, progress: float, is_past_deadline: bool = False) -> str:
    """
    Map a free-text status label plus progress and deadline to the status
    vocabulary.  A recognised label always beats what progress or dates say.
    """
    text = clean(label).lower()
    for fragments, status in _STATUS_LABELS:
        if any(f in text for f in fragments):
            return status

    if progress >= DONE_THRESHOLD:
        return STATUS_DONE
    if is_past_deadline:
        return STATUS_LATE
    if progress > 0:
        return STATUS_IN_PROGRESS
    return STATUS_NOT_STARTED
