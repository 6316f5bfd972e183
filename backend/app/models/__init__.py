"""
Models Package
==============

This is where all our data models live.
Import from here instead of the individual files.

- workbook.py = rows the parser pulls out of a spreadsheet
- tree.py     = what the /api/trees endpoints send back
- imports.py  = import job status
- auth.py     = users, roles, login bodies
- tables.py   = SQLAlchemy tables (import these directly from app.models.tables)

Example:
    from app.models import RawReadingRow, BucketSize
"""

from .workbook import (
    # Rows coming out of the parser
    ReadingSource,
    NodeInfoRow,
    RawReadingRow,
    ComputedReadingRow,
    ParsedWorkbook,
)

from .tree import (
    # Query options
    SourceFilter,
    BucketSize,
    SortOrder,

    # What we send back to the frontend
    LatestReadingSummary,
    TreeSummary,
    TreeDetail,
    TreeListResponse,
    ReadingPoint,
    TreeReadingsResponse,
    ProcessedReadingPoint,
    ProcessedReadingsResponse,
    SummaryBucket,
    TreeSummaryResponse,
)

from .imports import ImportStatus, ImportJobResponse

from .auth import UserRole, AuthUser, LoginRequest, LoginResponse

__all__ = [
    "ReadingSource",
    "NodeInfoRow",
    "RawReadingRow",
    "ComputedReadingRow",
    "ParsedWorkbook",
    "SourceFilter",
    "BucketSize",
    "SortOrder",
    "LatestReadingSummary",
    "TreeSummary",
    "TreeDetail",
    "TreeListResponse",
    "ReadingPoint",
    "TreeReadingsResponse",
    "ProcessedReadingPoint",
    "ProcessedReadingsResponse",
    "SummaryBucket",
    "TreeSummaryResponse",
    "ImportStatus",
    "ImportJobResponse",
    "UserRole",
    "AuthUser",
    "LoginRequest",
    "LoginResponse",
]
