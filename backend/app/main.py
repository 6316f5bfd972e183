"""
Urban Tree Server - Backend API
===============================
FastAPI application that imports tree-sensor workbooks and serves the
readings back to the dashboard.

ARCHITECTURE:
    Field nodes log to spreadsheets. Somebody uploads the workbook here,
    we parse it, upsert everything into the database, and the frontend
    reads trees / readings / summaries back out.

    [Excel workbook] --upload--> [This Backend] --upsert--> [Database]
                                        ^
                                        |
                                [Hosted Frontend]

WHAT GETS IMPORTED:
    1. nodeInfo        - one row per tree (name, species, location, ...)
    2. rawData/archive - sensor readings (temperature, pressure, dendrometer ...)
    3. any other sheet - processed sheets with calibrated dendrometer and
                         sap flow values, matched to raw readings by timestamp

HOW TO RUN:
    # Install dependencies (from the repo root)
    python -m venv venv
    source venv/bin/activate  # Windows: venv\\Scripts\\activate
    pip install -e .

    # Settings live in .env (see Config below)

    # Run the server
    cd backend
    uvicorn app.main:app --reload --port 8000

API DOCUMENTATION:
    After starting the server, visit:
    - Swagger UI: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
    - OpenAPI JSON: http://localhost:8000/openapi.json
"""

import logging
import os
import secrets
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.routers import auth_router, imports_router, trees_router, set_services, get_services
from app.services import Database, RetryPolicy, Services


# Load environment variables from .env file
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

class Config:
    """
    Application configuration loaded from environment variables.

    Environment Variables:
        DATABASE_URL: SQLAlchemy URL (default: sqlite:///./trees.db)
        AUTH_JWT_SECRET: Secret for signing login tokens
        AUTH_JWT_EXPIRES_HOURS: Token lifetime (default: 24)
        FRONTEND_URL: URL of the frontend for CORS
        MAX_UPLOAD_BYTES: Largest workbook we accept (default: 10 MB)
        IMPORT_BATCH_SIZE: Rows per upsert (default: 500)
        IMPORT_RETRY_ATTEMPTS / IMPORT_RETRY_DELAY: Per-batch retries (3, 2s)
        IMPORT_BATCH_PAUSE: Seconds between batches (default: 0.5)
        ADMIN_EMAIL / ADMIN_PASSWORD: Bootstrap admin account
        NODE_ENV / COOKIE_SECURE: Send the auth cookie over HTTPS only

    Defaults are set for local development.
    """

    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./trees.db")

    AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "")
    AUTH_JWT_EXPIRES_HOURS = float(os.getenv("AUTH_JWT_EXPIRES_HOURS", "24"))

    MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

    # Import tuning
    IMPORT_BATCH_SIZE = int(os.getenv("IMPORT_BATCH_SIZE", "500"))
    IMPORT_RETRY_ATTEMPTS = int(os.getenv("IMPORT_RETRY_ATTEMPTS", "3"))
    IMPORT_RETRY_DELAY = float(os.getenv("IMPORT_RETRY_DELAY", "2.0"))
    IMPORT_BATCH_PAUSE = float(os.getenv("IMPORT_BATCH_PAUSE", "0.5"))

    # Bootstrap admin (only created if the email isn't taken)
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")

    COOKIE_SECURE = (
        os.getenv("COOKIE_SECURE", "").lower() == "true"
        or os.getenv("NODE_ENV", "development") == "production"
    )

    # Frontend URL for CORS
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

    # Allowed CORS origins
    CORS_ORIGINS = [
        FRONTEND_URL,
        "http://localhost:5173",    # Vite dev server
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]


def build_services(database: Database) -> Services:
    jwt_secret = Config.AUTH_JWT_SECRET
    if not jwt_secret:
        logger.warning("[Startup] AUTH_JWT_SECRET is not set; using a random secret (tokens won't survive a restart)")
        jwt_secret = secrets.token_urlsafe(32)

    return Services.build(
        database,
        jwt_secret=jwt_secret,
        jwt_expires_hours=Config.AUTH_JWT_EXPIRES_HOURS,
        retry_policy=RetryPolicy(
            max_attempts=Config.IMPORT_RETRY_ATTEMPTS,
            delay=Config.IMPORT_RETRY_DELAY,
        ),
        batch_size=Config.IMPORT_BATCH_SIZE,
        batch_pause=Config.IMPORT_BATCH_PAUSE,
        max_upload_bytes=Config.MAX_UPLOAD_BYTES,
        cookie_secure=Config.COOKIE_SECURE,
    )


# =============================================================================
# APPLICATION LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    STARTUP:
        1. Connect to the database and create missing tables
        2. Build the services
        3. Create the bootstrap admin (if configured)
        4. Inject services into routers

    SHUTDOWN:
        1. Close database connections
    """
    # ========== STARTUP ==========
    logger.info("[Startup] Urban Tree Server starting")

    database = Database(Config.DATABASE_URL)
    database.create_all()

    services = build_services(database)

    if Config.ADMIN_EMAIL and Config.ADMIN_PASSWORD:
        admin = services.auth.ensure_admin(Config.ADMIN_EMAIL, Config.ADMIN_PASSWORD)
        logger.info(f"[Startup] Admin account ready: {admin.email}")

    set_services(services)

    logger.info(f"[Startup] Database: {database.dialect}")
    logger.info(f"[Startup] CORS origins: {len(Config.CORS_ORIGINS)} configured")
    logger.info("[Startup] API Documentation: http://localhost:8000/docs")

    yield  # Application runs here

    # ========== SHUTDOWN ==========
    logger.info("[Shutdown] Closing database connections")
    set_services(None)
    database.dispose()


# =============================================================================
# CREATE FASTAPI APPLICATION
# =============================================================================

app = FastAPI(
    title="Urban Tree Server API",
    description="""
## Overview

Imports tree-sensor workbooks and serves tree readings to the dashboard.

## How It Works

1. **Upload a workbook** - `POST /api/imports/upload` (admin only)
2. **We parse it** - nodeInfo, rawData/archive, and processed sheets
3. **Data lands in the database** - re-importing the same file is safe, rows are upserted
4. **Read it back** - trees, raw readings, processed readings, hourly/daily summaries

## Authentication

- `POST /api/auth/login` returns a token and also sets it as an httpOnly cookie
- Uploads require an ADMIN token (`Authorization: Bearer <token>` or the cookie)
- Read endpoints are open
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# =============================================================================
# CORS MIDDLEWARE
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed query params or bodies are a 400, not FastAPI's default 422."""
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "errors": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


# =============================================================================
# INCLUDE ROUTERS
# =============================================================================

app.include_router(auth_router)
app.include_router(imports_router)
app.include_router(trees_router)


# =============================================================================
# ROOT ENDPOINTS
# =============================================================================

@app.get(
    "/",
    summary="API Information",
    description="Get basic API information and available endpoints."
)
async def root():
    """
    Root endpoint with API overview.

    Returns links to all available endpoints.
    """
    return {
        "name": "Urban Tree Server API",
        "version": "1.0.0",
        "documentation": {
            "swagger": "/docs",
            "redoc": "/redoc",
            "openapi": "/openapi.json"
        },
        "endpoints": {
            "auth": {
                "login": "POST /api/auth/login",
                "logout": "POST /api/auth/logout",
                "me": "GET /api/auth/me"
            },
            "imports": {
                "upload": "POST /api/imports/upload",
                "list": "GET /api/imports",
                "get": "GET /api/imports/{id}"
            },
            "trees": {
                "list": "GET /api/trees",
                "get": "GET /api/trees/{id}",
                "readings": "GET /api/trees/{id}/readings",
                "latest": "GET /api/trees/{id}/readings/latest",
                "processed": "GET /api/trees/{id}/readings/processed",
                "summary": "GET /api/trees/{id}/readings/summary"
            }
        }
    }


@app.get(
    "/health",
    summary="Health Check",
    description="Check if the backend is running."
)
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get(
    "/dbcheck",
    summary="Database Check",
    description="Check that the database answers a trivial query."
)
def dbcheck(services: Services = Depends(get_services)):
    try:
        services.database.ping()
    except Exception:
        logger.exception("[Health] Database check failed")
        return JSONResponse(status_code=503, content={"status": "unavailable"})
    return {"status": "ok"}
