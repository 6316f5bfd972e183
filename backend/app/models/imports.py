"""
Import Job Models
=================
Status tracking for workbook uploads.

Status Flow:
    PROCESSING  -> created the moment an upload arrives
    COMPLETED   -> every batch written
    FAILED      -> something gave up (prior batches are NOT rolled back)

PENDING exists for records created by other tools; the importer itself
starts jobs in PROCESSING.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Any, Optional
from datetime import datetime, timezone
from enum import Enum


class ImportStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ImportJobResponse(BaseModel):
    """An import job as returned by the API."""
    model_config = {"from_attributes": True}

    id: str
    file_name: str
    file_size: int
    status: ImportStatus
    sheets_processed: list[str] = Field(default_factory=list)
    records_imported: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    warnings: list[Any] = Field(default_factory=list)
    errors: list[Any] = Field(default_factory=list)
    started_at: datetime
    completed_at: Optional[datetime] = None

    @field_validator("started_at", "completed_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # SQLite hands timestamps back without tzinfo
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("sheets_processed", "warnings", "errors", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return value if value is not None else []
