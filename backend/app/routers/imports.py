"""
Imports API Router
==================

Workbook uploads and the import job history.

ALL ENDPOINTS:
-------------
POST /api/imports/upload  - Upload an .xlsx and import it (ADMIN only)
GET  /api/imports         - Latest 50 import jobs, newest first
GET  /api/imports/{id}    - One import job

The upload runs the whole import before responding. If it fails, the job
record is still there (status FAILED) and the response is a 500.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from app.models import AuthUser, ImportJobResponse
from app.routers.dependencies import get_services, require_admin
from app.services import Services
from app.utils.validation import sanitize_filename

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/imports", tags=["imports"])


@router.post("/upload", response_model=ImportJobResponse, status_code=201)
async def upload_import(
    file: Optional[UploadFile] = File(None, description="Workbook (.xlsx) to import"),
    user: AuthUser = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """
    Upload a workbook and import it.

    Send a multipart form with the workbook in the `file` field (10 MB max).
    You get back the finished import job with counts of imported and
    skipped rows and the sheets that were used.
    """
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded. Send the workbook in the 'file' field.")

    too_large = HTTPException(
        status_code=413,
        detail=f"File too large. Maximum size is {services.max_upload_bytes // (1024 * 1024)} MB.",
    )
    if file.size is not None and file.size > services.max_upload_bytes:
        raise too_large

    # Never read more than one byte past the limit
    content = await file.read(services.max_upload_bytes + 1)
    if len(content) > services.max_upload_bytes:
        raise too_large

    file_name = sanitize_filename(file.filename or "upload.xlsx")
    logger.info(f"[Imports] {user.email} uploaded '{file_name}' ({len(content)} bytes)")

    try:
        return await services.importer.import_workbook(
            file_name=file_name,
            file_size=len(content),
            buffer=content,
        )
    except Exception:
        logger.exception("[Imports] Import failed")
        raise HTTPException(status_code=500, detail="Failed to process import")


@router.get("", response_model=list[ImportJobResponse])
def list_imports(services: Services = Depends(get_services)):
    """Latest 50 import jobs, newest first."""
    try:
        return services.import_jobs.list_jobs()
    except Exception:
        logger.exception("[Imports] Listing import jobs failed")
        raise HTTPException(status_code=500, detail="Failed to fetch import jobs")


@router.get("/{job_id}", response_model=ImportJobResponse)
def get_import(job_id: str, services: Services = Depends(get_services)):
    """One import job by its ID."""
    try:
        job = services.import_jobs.get_job(job_id)
    except Exception:
        logger.exception(f"[Imports] Fetching import job {job_id} failed")
        raise HTTPException(status_code=500, detail="Failed to fetch import job")

    if job is None:
        raise HTTPException(status_code=404, detail="Import job not found")
    return job
