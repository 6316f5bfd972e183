"""
Services Package
================

These are the "workers" that do the actual work.

- parse_workbook: Turns an uploaded .xlsx into normalized rows
- ImportService: Writes parsed rows to the database and tracks the job
- ImportJobService: The import job audit trail
- TreeService / ReadingsService: Read-side queries
- SummaryService: Hour/day/all statistics over readings
- AuthService: Users, passwords and tokens
- Services: Builds all of the above on one Database
"""

from .database import Database
from .workbook_parser import parse_workbook
from .import_jobs import ImportJobService
from .importer import ImportService, RetryPolicy, NO_DELAY_RETRY
from .tree_service import TreeService
from .readings_service import ReadingsService
from .summary_service import SummaryService, aggregate_readings
from .auth_service import AuthService
from .container import Services

__all__ = [
    "Database",
    "parse_workbook",
    "ImportJobService",
    "ImportService",
    "RetryPolicy",
    "NO_DELAY_RETRY",
    "TreeService",
    "ReadingsService",
    "SummaryService",
    "aggregate_readings",
    "AuthService",
    "Services",
]
