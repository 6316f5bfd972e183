"""
Utility modules for the urban tree server backend.
"""

from app.utils.validation import (
    to_number,
    to_text,
    parse_timestamp,
    to_iso_instant,
    normalize_bound,
    sanitize_filename,
)

__all__ = [
    "to_number",
    "to_text",
    "parse_timestamp",
    "to_iso_instant",
    "normalize_bound",
    "sanitize_filename",
]
