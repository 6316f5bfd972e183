"""
Trees API Router
================

Everything you can ask about a tree and its readings.

ALL ENDPOINTS:
-------------
GET /api/trees                               - List trees (search + paging)
GET /api/trees/{id}                          - One tree with its latest reading
GET /api/trees/{id}/readings                 - Raw readings
GET /api/trees/{id}/readings/latest          - Newest raw reading
GET /api/trees/{id}/readings/processed       - Computed readings (raw fallback)
GET /api/trees/{id}/readings/summary         - Hour/day/all statistics

TIME WINDOWS:
------------
from is inclusive, to is exclusive. Both take ISO-8601 timestamps, e.g.
    /api/trees/{id}/readings?from=2024-05-01T00:00:00Z&to=2024-05-02T00:00:00Z

Unknown ?source= values mean "all"; unknown ?bucket_size= values mean "day".

Handlers are plain `def`: the queries block, so FastAPI runs them in its
threadpool and an import in progress doesn't hold them up.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.errors import TreeNotFoundError, ValidationError
from app.models import (
    BucketSize,
    ProcessedReadingsResponse,
    ReadingPoint,
    SortOrder,
    SourceFilter,
    TreeDetail,
    TreeListResponse,
    TreeReadingsResponse,
    TreeSummaryResponse,
)
from app.routers.dependencies import get_services
from app.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trees", tags=["trees"])


def _source(value: Optional[str]) -> SourceFilter:
    if value in (SourceFilter.RAW_DATA.value, SourceFilter.ARCHIVE.value):
        return SourceFilter(value)
    return SourceFilter.ALL


def _order(value: Optional[str]) -> SortOrder:
    return SortOrder.DESC if value == SortOrder.DESC.value else SortOrder.ASC


def _bucket_size(value: Optional[str]) -> BucketSize:
    if value in (BucketSize.HOUR.value, BucketSize.ALL.value):
        return BucketSize(value)
    return BucketSize.DAY


def _flag(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.strip().lower() == "true"


# =============================================================================
# TREES
# =============================================================================

@router.get("", response_model=TreeListResponse)
def list_trees(
    active: Optional[str] = Query(None, description="'true' or 'false' (default: active trees only)"),
    search: Optional[str] = Query(None, description="Matches name, location, node id or species"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    with_latest: Optional[str] = Query(None, description="'true' to attach each tree's latest reading"),
    services: Services = Depends(get_services),
):
    """
    Get a page of trees, sorted by name.

    Examples:
    - /api/trees?search=oak
    - /api/trees?active=false&limit=20&offset=40
    - /api/trees?with_latest=true
    """
    active_flag = _flag(active)
    try:
        return services.trees.list_trees(
            active=True if active_flag is None else active_flag,
            search=search,
            limit=limit,
            offset=offset,
            with_latest=_flag(with_latest) is True,
        )
    except Exception:
        logger.exception("[Trees] Listing trees failed")
        raise HTTPException(status_code=500, detail="Failed to fetch trees")


@router.get("/{tree_id}", response_model=TreeDetail)
def get_tree(tree_id: str, services: Services = Depends(get_services)):
    """Get one tree, including its most recent raw reading."""
    try:
        tree = services.trees.get_tree(tree_id)
    except Exception:
        logger.exception(f"[Trees] Fetching tree {tree_id} failed")
        raise HTTPException(status_code=500, detail="Failed to fetch tree")

    if tree is None:
        raise HTTPException(status_code=404, detail="Tree not found")
    return tree


# =============================================================================
# READINGS
# =============================================================================

@router.get("/{tree_id}/readings", response_model=TreeReadingsResponse)
def get_tree_readings(
    tree_id: str,
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = Query(None),
    source: Optional[str] = Query(None, description="rawData, archive or all"),
    limit: int = Query(10000, ge=1),
    order: Optional[str] = Query(None, description="asc (default) or desc"),
    services: Services = Depends(get_services),
):
    """Raw readings for a tree in a time window."""
    try:
        return services.readings.get_readings(
            tree_id,
            from_=from_,
            to=to,
            source=_source(source),
            limit=limit,
            order=_order(order),
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception(f"[Trees] Fetching readings for {tree_id} failed")
        raise HTTPException(status_code=500, detail="Failed to fetch readings")


@router.get("/{tree_id}/readings/latest", response_model=ReadingPoint)
def get_tree_latest_reading(tree_id: str, services: Services = Depends(get_services)):
    """The newest raw reading for a tree."""
    try:
        latest = services.readings.get_latest_reading(tree_id)
    except Exception:
        logger.exception(f"[Trees] Fetching latest reading for {tree_id} failed")
        raise HTTPException(status_code=500, detail="Failed to fetch latest reading")

    if latest is None:
        raise HTTPException(status_code=404, detail="No readings found for tree")
    return latest


@router.get("/{tree_id}/readings/processed", response_model=ProcessedReadingsResponse)
def get_tree_processed_readings(
    tree_id: str,
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = Query(None),
    limit: int = Query(2000, ge=1, description="Capped at 2000"),
    order: Optional[str] = Query(None, description="asc (default) or desc"),
    source: Optional[str] = Query(None, description="rawData, archive or all (raw fallback only)"),
    services: Services = Depends(get_services),
):
    """
    Processed readings for a tree.

    If the tree has computed readings in the window you get those
    (source = "computed"). Otherwise you get raw readings in the same shape
    with the computed-only fields empty (source = "raw-fallback").
    """
    try:
        return services.readings.get_processed_readings(
            tree_id,
            from_=from_,
            to=to,
            limit=limit,
            order=_order(order),
            source=_source(source),
        )
    except TreeNotFoundError:
        raise HTTPException(status_code=404, detail="Tree not found")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception(f"[Trees] Fetching processed readings for {tree_id} failed")
        raise HTTPException(status_code=500, detail="Failed to fetch processed readings")


@router.get("/{tree_id}/readings/summary", response_model=TreeSummaryResponse)
def get_tree_reading_summary(
    tree_id: str,
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = Query(None),
    source: Optional[str] = Query(None, description="rawData, archive or all"),
    bucket_size: Optional[str] = Query(None, description="hour, day (default) or all"),
    limit: Optional[int] = Query(None, ge=1, description="Max raw readings scanned (default 50000)"),
    services: Services = Depends(get_services),
):
    """
    Count / avg / min / max per metric, bucketed by hour, day, or all at once.

    Only the first `limit` raw readings (oldest first) in the window are
    looked at.
    """
    try:
        return services.summary.summarize(
            tree_id,
            from_=from_,
            to=to,
            source=_source(source),
            bucket_size=_bucket_size(bucket_size),
            limit=limit,
        )
    except TreeNotFoundError:
        raise HTTPException(status_code=404, detail="Tree not found")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception(f"[Trees] Summarizing readings for {tree_id} failed")
        raise HTTPException(status_code=500, detail="Failed to fetch reading summary")
