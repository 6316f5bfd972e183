"""
Import Job Service
==================

Keeps the audit trail for workbook uploads: one import_jobs row per upload,
created when the upload arrives and updated once when it finishes.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select

from app.errors import NotFoundError
from app.models import ImportJobResponse, ImportStatus
from app.models.tables import ImportJob
from app.services.database import Database

logger = logging.getLogger(__name__)

# Columns an update is allowed to touch
_UPDATABLE = {
    "status",
    "sheets_processed",
    "records_imported",
    "records_skipped",
    "records_failed",
    "warnings",
    "errors",
    "completed_at",
}


class ImportJobService:
    """CRUD for import_jobs."""

    LIST_LIMIT = 50

    def __init__(self, database: Database):
        self.database = database

    def create_job(
        self,
        file_name: str,
        file_size: int,
        started_at: datetime,
        status: ImportStatus = ImportStatus.PROCESSING,
    ) -> ImportJobResponse:
        with self.database.session() as session:
            job = ImportJob(
                file_name=file_name,
                file_size=file_size,
                status=status.value,
                sheets_processed=[],
                records_imported=0,
                records_skipped=0,
                records_failed=0,
                warnings=[],
                errors=[],
                started_at=started_at,
            )
            session.add(job)
            session.flush()
            logger.info(f"[ImportJobs] Created job {job.id} for '{file_name}' ({file_size} bytes)")
            return ImportJobResponse.model_validate(job)

    def update_job(self, job_id: str, **patch: Any) -> ImportJobResponse:
        """
        Apply a partial update.

        Raises:
            NotFoundError: If the job doesn't exist
            ValueError: If patch names a column that can't be updated
        """
        unknown = set(patch) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update import job fields: {sorted(unknown)}")

        with self.database.session() as session:
            job = session.get(ImportJob, job_id)
            if job is None:
                raise NotFoundError(f"Import job not found: {job_id}")

            for field, value in patch.items():
                if isinstance(value, ImportStatus):
                    value = value.value
                setattr(job, field, value)

            session.flush()
            return ImportJobResponse.model_validate(job)

    def list_jobs(self) -> list[ImportJobResponse]:
        """Latest 50 jobs, newest first."""
        with self.database.session() as session:
            jobs = session.scalars(
                select(ImportJob)
                .order_by(ImportJob.started_at.desc())
                .limit(self.LIST_LIMIT)
            ).all()
            return [ImportJobResponse.model_validate(job) for job in jobs]

    def get_job(self, job_id: str) -> Optional[ImportJobResponse]:
        with self.database.session() as session:
            job = session.get(ImportJob, job_id)
            return ImportJobResponse.model_validate(job) if job else None
