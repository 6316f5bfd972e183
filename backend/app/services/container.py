"""
Service Container
=================

Builds every service on top of one Database so main.py (and the tests) can
wire the whole backend with a single call.
"""

from dataclasses import dataclass
from typing import Optional

from app.services.auth_service import AuthService
from app.services.database import Database
from app.services.import_jobs import ImportJobService
from app.services.importer import ImportService, RetryPolicy
from app.services.readings_service import ReadingsService
from app.services.summary_service import SummaryService
from app.services.tree_service import TreeService


@dataclass
class Services:
    database: Database
    trees: TreeService
    readings: ReadingsService
    summary: SummaryService
    import_jobs: ImportJobService
    importer: ImportService
    auth: AuthService

    # Request-level settings the routers need
    max_upload_bytes: int = 10 * 1024 * 1024
    cookie_secure: bool = False

    @classmethod
    def build(
        cls,
        database: Database,
        jwt_secret: str,
        jwt_expires_hours: float = 24,
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: int = ImportService.BATCH_SIZE,
        batch_pause: float = ImportService.BATCH_PAUSE,
        bcrypt_rounds: int = 10,
        max_upload_bytes: int = 10 * 1024 * 1024,
        cookie_secure: bool = False,
    ) -> "Services":
        import_jobs = ImportJobService(database)
        return cls(
            database=database,
            trees=TreeService(database),
            readings=ReadingsService(database),
            summary=SummaryService(database),
            import_jobs=import_jobs,
            importer=ImportService(
                database,
                import_jobs,
                retry_policy=retry_policy,
                batch_size=batch_size,
                batch_pause=batch_pause,
            ),
            auth=AuthService(
                database,
                jwt_secret=jwt_secret,
                expires_hours=jwt_expires_hours,
                bcrypt_rounds=bcrypt_rounds,
            ),
            max_upload_bytes=max_upload_bytes,
            cookie_secure=cookie_secure,
        )
