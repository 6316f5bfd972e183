"""
Tree & Reading Models
=====================
Pydantic response models for the /api/trees endpoints.

- Tree models: what a tree (sensor node) looks like in lists and detail views
- Reading models: raw points, processed points, and summary buckets

Author: Urban Tree Server Team
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum


# =============================================================================
# ENUMS
# =============================================================================

class SourceFilter(str, Enum):
    """Query-side filter on a raw reading's data_source."""
    RAW_DATA = "rawData"
    ARCHIVE = "archive"
    ALL = "all"


class BucketSize(str, Enum):
    """
    Width of a summary bucket.

    - HOUR: start of the UTC hour
    - DAY: UTC midnight
    - ALL: one bucket spanning every reading
    """
    ALL = "all"
    DAY = "day"
    HOUR = "hour"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


# =============================================================================
# TREE MODELS
# =============================================================================

class LatestReadingSummary(BaseModel):
    """The handful of fields shown next to a tree in lists."""
    timestamp: str
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    dendrometer: Optional[float] = None
    sapflow1: Optional[float] = None
    data_source: Optional[str] = None


class TreeSummary(BaseModel):
    id: str = Field(..., description="Internal tree id (UUID)")
    node_id: str = Field(..., description="External node identifier")
    name: Optional[str] = None
    location: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    species: Optional[str] = None
    dbh: Optional[float] = None
    active: bool = True
    latest_reading: Optional[LatestReadingSummary] = None


class TreeDetail(TreeSummary):
    board_id: Optional[str] = None
    sensor_depths: Optional[str] = None
    site_pi: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TreeListResponse(BaseModel):
    items: list[TreeSummary] = Field(..., description="One page of trees")
    total: int = Field(..., description="Total trees matching the filters")


# =============================================================================
# READING MODELS
# =============================================================================

class ReadingPoint(BaseModel):
    """One raw reading, as stored."""
    timestamp: str
    temperature: Optional[float] = None
    pressure: Optional[float] = None
    humidity: Optional[float] = None
    dendrometer: Optional[float] = None
    sapflow1: Optional[float] = None
    sapflow2: Optional[float] = None
    sapflow3: Optional[float] = None
    sapflow4: Optional[float] = None
    battery: Optional[float] = None
    lipo_charge: Optional[float] = None
    data_source: Optional[str] = None


class TreeReadingsResponse(BaseModel):
    tree_id: str
    count: int = Field(..., description="Total readings matching the filters")
    items: list[ReadingPoint]


class ProcessedReadingPoint(BaseModel):
    """
    A processed reading. Raw-fallback points leave the computed-only
    fields (dendro_mm, sapflow, SF metrics) as null.
    """
    timestamp: str
    temperature: Optional[float] = None
    pressure: Optional[float] = None
    humidity: Optional[float] = None
    dendro_raw: Optional[float] = None
    dendro_mm: Optional[float] = None
    sapflow_cm_per_hr: Optional[float] = None
    sf_max_d: Optional[float] = None
    sf_signal: Optional[float] = None
    sf_noise: Optional[float] = None


class ProcessedReadingsResponse(BaseModel):
    tree_id: str
    node_id: str
    name: Optional[str] = None
    source: str = Field(..., description="'computed' or 'raw-fallback'")
    readings: list[ProcessedReadingPoint]
    total: int


class SummaryBucket(BaseModel):
    """Statistics for one time window."""
    bucket_start: str
    bucket_end: str
    bucket_size: BucketSize
    count: int = Field(..., description="Raw readings that fell in this window")

    avg_temperature: Optional[float] = None
    min_temperature: Optional[float] = None
    max_temperature: Optional[float] = None

    avg_pressure: Optional[float] = None
    min_pressure: Optional[float] = None
    max_pressure: Optional[float] = None

    avg_humidity: Optional[float] = None
    min_humidity: Optional[float] = None
    max_humidity: Optional[float] = None

    avg_dendro_raw: Optional[float] = None
    min_dendro_raw: Optional[float] = None
    max_dendro_raw: Optional[float] = None

    avg_dendro_mm: Optional[float] = None
    min_dendro_mm: Optional[float] = None
    max_dendro_mm: Optional[float] = None

    avg_sapflow_cm_per_hr: Optional[float] = None
    min_sapflow_cm_per_hr: Optional[float] = None
    max_sapflow_cm_per_hr: Optional[float] = None


class TreeSummaryResponse(BaseModel):
    tree_id: str
    node_id: str
    name: Optional[str] = None
    bucket_size: BucketSize
    buckets: list[SummaryBucket]
