"""
Value Coercion Utilities
========================

Spreadsheet cells come back as whatever the workbook author typed: numbers,
numbers-as-text, dates, dates-as-text, blanks. Every row kind the parser
produces goes through these same helpers so a "20" and a 20 always end up
as the same reading.

Author: Urban Tree Server Team
"""

import math
import re
from datetime import datetime, timezone
from typing import Optional


# Formats tried (in order) for timestamp text that isn't ISO-8601
_TIMESTAMP_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
)


def to_number(value) -> Optional[float]:
    """
    Coerce a cell value to a finite float.

    Rules:
        None / "" / whitespace  -> None
        int / float             -> kept if finite
        anything else           -> float(str(value)) if finite, else None

    Text with underscore digit grouping ("1_000") is not a number, even
    though float() accepts it.

    Booleans are not numbers here, even though Python says they are.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None

    text = str(value).strip()
    if not text or "_" in text:
        return None

    try:
        number = float(text)
    except ValueError:
        return None

    return number if math.isfinite(number) else None


def to_text(value) -> Optional[str]:
    """
    Coerce a cell value to a string, or None when the cell is blank.

    Integral floats are rendered without ".0" so a node typed as 12 in
    Excel reads back as "12", not "12.0".
    """
    if value is None:
        return None

    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))

    text = str(value)
    if text == "":
        return None
    return text


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse a cell value into an aware UTC datetime.

    Accepts datetime cells (naive ones are taken as UTC) and text in ISO-8601
    or one of the common spreadsheet formats. Returns None when the value
    can't be understood.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return _as_utc(value)

    text = str(value).strip()
    if not text:
        return None

    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return _as_utc(datetime.fromisoformat(iso_text))
    except ValueError:
        pass

    for fmt in _TIMESTAMP_FORMATS:
        try:
            return _as_utc(datetime.strptime(text, fmt))
        except ValueError:
            continue

    return None


def to_iso_instant(moment: datetime) -> str:
    """
    Format a datetime as a UTC ISO instant with millisecond precision.

    Example: 2024-01-01T10:15:00.000Z

    Every stored raw-reading timestamp uses this exact shape, so string
    order and time order agree.
    """
    moment = _as_utc(moment)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def normalize_bound(value: Optional[str]) -> Optional[str]:
    """
    Normalize a ?from= / ?to= query bound to the stored timestamp format.

    Returns None for a missing bound; raises ValueError for one that can't
    be parsed.
    """
    if value is None or not value.strip():
        return None

    moment = parse_timestamp(value)
    if moment is None:
        raise ValueError(f"Invalid timestamp: {value}")
    return to_iso_instant(moment)


def sanitize_filename(name: str) -> str:
    """
    Sanitize an uploaded filename before it goes into an import job record.

    Args:
        name: Original filename

    Returns:
        Filename with path separators and control characters replaced
    """
    sanitized = re.sub(r'[<>:"/\\|?*\x00-\x1f]', '_', name)
    sanitized = sanitized.strip('. ')
    return sanitized[:255] or "upload.xlsx"


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
