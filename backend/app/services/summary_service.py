"""
Summary Service (Aggregation Engine)
====================================

Buckets a tree's readings into hour / day / all windows and reports
count, avg, min and max per metric.

HOW IT WORKS:
------------
1. Pull up to `limit` raw readings (oldest first) in [from, to)
2. Pull the computed readings whose timestamp string matches one of those
   raw timestamps exactly (that's the join; no re-parsing)
3. Drop every raw row into its bucket:
       hour -> start of the UTC hour
       day  -> UTC midnight
       all  -> one bucket, start = first reading, end = last reading + 1s
4. Per bucket keep a running count/sum/min/max for each metric. Missing or
   non-finite values are left out of that metric only; the row still
   counts toward the bucket.

The limit is a hard cap. Anything past it is simply not in the summary.

Sums are accumulated as exact partials (the same trick math.fsum uses), so
the averages come out identical no matter what order the rows arrive in.

Author: Urban Tree Server Team
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Iterable, Mapping, Optional

from sqlalchemy import select

from app.errors import TreeNotFoundError
from app.models import BucketSize, SourceFilter, SummaryBucket, TreeSummaryResponse
from app.models.tables import ComputedReading, RawReading, TreeNode
from app.services.database import Database
from app.services.readings_service import apply_window, time_range
from app.utils.validation import parse_timestamp, to_iso_instant

logger = logging.getLogger(__name__)


# Summary metric -> (where it comes from, column name)
METRICS = {
    "temperature": ("raw", "temperature"),
    "pressure": ("raw", "pressure"),
    "humidity": ("raw", "humidity"),
    "dendro_raw": ("raw", "dendrometer"),
    "dendro_mm": ("computed", "dendro_calibrated_mm"),
    "sapflow_cm_per_hr": ("computed", "sapflow_cm_per_hr"),
}

# Key of the single bucket used for bucket_size=all
ALL_BUCKET_KEY = 0


class MetricAggregate:
    """Running count / sum / min / max for one metric in one bucket."""

    __slots__ = ("count", "minimum", "maximum", "_partials")

    def __init__(self):
        self.count = 0
        self.minimum: Optional[float] = None
        self.maximum: Optional[float] = None
        self._partials: list[float] = []

    def add(self, value) -> None:
        if value is None or isinstance(value, bool):
            return
        value = float(value)
        if not math.isfinite(value):
            return

        self.count += 1
        self.minimum = value if self.minimum is None else min(self.minimum, value)
        self.maximum = value if self.maximum is None else max(self.maximum, value)

        # Shewchuk partials: exact running sum
        partials = self._partials
        i = 0
        x = value
        for y in partials:
            if abs(x) < abs(y):
                x, y = y, x
            hi = x + y
            lo = y - (hi - x)
            if lo:
                partials[i] = lo
                i += 1
            x = hi
        partials[i:] = [x]

    @property
    def total(self) -> float:
        return math.fsum(self._partials)

    @property
    def average(self) -> Optional[float]:
        if self.count == 0:
            return None
        return self.total / self.count


class _Bucket:
    __slots__ = ("start", "end", "count", "metrics")

    def __init__(self, start: datetime, end: datetime):
        self.start = start
        self.end = end
        self.count = 0
        self.metrics = {name: MetricAggregate() for name in METRICS}


def bucket_start(moment: datetime, bucket_size: BucketSize) -> datetime:
    """Truncate a UTC instant to the start of its hour or day."""
    if bucket_size == BucketSize.HOUR:
        return moment.replace(minute=0, second=0, microsecond=0)
    if bucket_size == BucketSize.DAY:
        return moment.replace(hour=0, minute=0, second=0, microsecond=0)
    raise ValueError(f"bucket_start has no meaning for bucket size '{bucket_size.value}'")


def bucket_end(start: datetime, bucket_size: BucketSize) -> datetime:
    if bucket_size == BucketSize.HOUR:
        return start + timedelta(hours=1)
    return start + timedelta(days=1)


def aggregate_readings(
    raw_rows: Iterable[Mapping],
    computed_by_timestamp: Mapping[str, Mapping],
    bucket_size: BucketSize,
) -> list[SummaryBucket]:
    """
    The pure aggregation step.

    Args:
        raw_rows: Raw readings (mappings with timestamp, temperature,
                  pressure, humidity, dendrometer). Any order.
        computed_by_timestamp: Computed readings keyed by their timestamp
                  string (mappings with dendro_calibrated_mm and
                  sapflow_cm_per_hr)
        bucket_size: hour, day or all

    Returns:
        Buckets sorted by start time
    """
    buckets: dict = {}
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    for row in raw_rows:
        moment = parse_timestamp(row.get("timestamp"))
        if moment is None:
            continue

        first_seen = moment if first_seen is None or moment < first_seen else first_seen
        last_seen = moment if last_seen is None or moment > last_seen else last_seen

        if bucket_size == BucketSize.ALL:
            key = ALL_BUCKET_KEY
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = _Bucket(moment, moment)
        else:
            key = bucket_start(moment, bucket_size)
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = _Bucket(key, bucket_end(key, bucket_size))

        bucket.count += 1

        computed = computed_by_timestamp.get(row.get("timestamp"))
        for name, (origin, column) in METRICS.items():
            if origin == "raw":
                bucket.metrics[name].add(row.get(column))
            elif computed is not None:
                bucket.metrics[name].add(computed.get(column))

    if bucket_size == BucketSize.ALL and ALL_BUCKET_KEY in buckets:
        only = buckets[ALL_BUCKET_KEY]
        only.start = first_seen
        only.end = last_seen + timedelta(seconds=1)

    return [
        _finalize(bucket, bucket_size)
        for bucket in sorted(buckets.values(), key=lambda b: b.start)
    ]


def _finalize(bucket: _Bucket, bucket_size: BucketSize) -> SummaryBucket:
    stats = {}
    for name, agg in bucket.metrics.items():
        stats[f"avg_{name}"] = agg.average
        stats[f"min_{name}"] = agg.minimum
        stats[f"max_{name}"] = agg.maximum

    return SummaryBucket(
        bucket_start=to_iso_instant(bucket.start),
        bucket_end=to_iso_instant(bucket.end),
        bucket_size=bucket_size,
        count=bucket.count,
        **stats,
    )


class SummaryService:
    """Loads readings for a tree and runs them through aggregate_readings."""

    DEFAULT_LIMIT = 50000
    LOOKUP_CHUNK = 500  # timestamps per IN (...) lookup

    def __init__(self, database: Database):
        self.database = database

    def summarize(
        self,
        tree_id: str,
        from_: Optional[str] = None,
        to: Optional[str] = None,
        source: SourceFilter = SourceFilter.ALL,
        bucket_size: BucketSize = BucketSize.DAY,
        limit: Optional[int] = None,
    ) -> TreeSummaryResponse:
        """
        Raises:
            TreeNotFoundError: If the tree doesn't exist
            ValidationError: If from/to aren't timestamps
        """
        from_, to = time_range(from_, to)
        max_rows = limit or self.DEFAULT_LIMIT

        with self.database.session() as session:
            tree = session.get(TreeNode, tree_id)
            if tree is None:
                raise TreeNotFoundError(tree_id)

            query = select(
                RawReading.timestamp,
                RawReading.temperature,
                RawReading.pressure,
                RawReading.humidity,
                RawReading.dendrometer,
            ).where(RawReading.tree_node_id == tree_id)
            query = apply_window(query, RawReading.timestamp, from_, to)
            if source != SourceFilter.ALL:
                query = query.where(RawReading.data_source == source.value)

            raw_rows = [
                dict(row._mapping)
                for row in session.execute(
                    query.order_by(RawReading.timestamp.asc()).limit(max_rows)
                )
            ]

            if not raw_rows:
                return TreeSummaryResponse(
                    tree_id=tree.id,
                    node_id=tree.node_id,
                    name=tree.name,
                    bucket_size=bucket_size,
                    buckets=[],
                )

            computed_by_timestamp = self._computed_for(
                session, tree_id, [row["timestamp"] for row in raw_rows]
            )

            response = TreeSummaryResponse(
                tree_id=tree.id,
                node_id=tree.node_id,
                name=tree.name,
                bucket_size=bucket_size,
                buckets=aggregate_readings(raw_rows, computed_by_timestamp, bucket_size),
            )

        logger.debug(
            f"[Summary] tree={tree_id} rows={len(raw_rows)} "
            f"buckets={len(response.buckets)} size={bucket_size.value}"
        )
        return response

    def _computed_for(self, session, tree_id: str, timestamps: list[str]) -> dict[str, dict]:
        found: dict[str, dict] = {}
        for start in range(0, len(timestamps), self.LOOKUP_CHUNK):
            chunk = timestamps[start:start + self.LOOKUP_CHUNK]
            rows = session.execute(
                select(
                    ComputedReading.timestamp,
                    ComputedReading.dendro_calibrated_mm,
                    ComputedReading.sapflow_cm_per_hr,
                )
                .where(ComputedReading.tree_node_id == tree_id)
                .where(ComputedReading.timestamp.in_(chunk))
            )
            for row in rows:
                found[row.timestamp] = dict(row._mapping)
        return found
