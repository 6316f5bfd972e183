"""
Readings Service
================

Raw and processed reading queries for one tree.

- get_readings()           -> raw rows in a time window
- get_latest_reading()     -> the newest raw row
- get_processed_readings() -> computed rows, or raw rows dressed up as
                              processed points when a tree has no computed
                              data in the window
"""

import logging
from typing import Optional

from sqlalchemy import func, select

from app.errors import TreeNotFoundError, ValidationError
from app.models import (
    ProcessedReadingPoint,
    ProcessedReadingsResponse,
    ReadingPoint,
    SortOrder,
    SourceFilter,
    TreeReadingsResponse,
)
from app.models.tables import ComputedReading, RawReading, TreeNode
from app.services.database import Database
from app.utils.validation import normalize_bound

logger = logging.getLogger(__name__)


def time_range(from_: Optional[str], to: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """
    Normalize ?from= / ?to= into stored-timestamp strings.

    Raises:
        ValidationError: If either bound isn't a timestamp
    """
    try:
        return normalize_bound(from_), normalize_bound(to)
    except ValueError as e:
        raise ValidationError(str(e)) from e


def apply_window(query, column, from_: Optional[str], to: Optional[str]):
    """from is inclusive, to is exclusive."""
    if from_:
        query = query.where(column >= from_)
    if to:
        query = query.where(column < to)
    return query


class ReadingsService:

    DEFAULT_LIMIT = 10000
    PROCESSED_LIMIT = 2000

    def __init__(self, database: Database):
        self.database = database

    def get_readings(
        self,
        tree_id: str,
        from_: Optional[str] = None,
        to: Optional[str] = None,
        source: SourceFilter = SourceFilter.ALL,
        limit: int = DEFAULT_LIMIT,
        order: SortOrder = SortOrder.ASC,
    ) -> TreeReadingsResponse:
        from_, to = time_range(from_, to)

        query = select(RawReading).where(RawReading.tree_node_id == tree_id)
        query = apply_window(query, RawReading.timestamp, from_, to)
        if source != SourceFilter.ALL:
            query = query.where(RawReading.data_source == source.value)

        with self.database.session() as session:
            count = session.scalar(select(func.count()).select_from(query.subquery())) or 0
            rows = session.scalars(
                query.order_by(_ordered(RawReading.timestamp, order)).limit(limit)
            ).all()
            items = [_reading_point(row) for row in rows]

        return TreeReadingsResponse(tree_id=tree_id, count=count, items=items)

    def get_latest_reading(self, tree_id: str) -> Optional[ReadingPoint]:
        with self.database.session() as session:
            row = session.scalars(
                select(RawReading)
                .where(RawReading.tree_node_id == tree_id)
                .order_by(RawReading.timestamp.desc())
                .limit(1)
            ).first()
            return _reading_point(row) if row else None

    def get_processed_readings(
        self,
        tree_id: str,
        from_: Optional[str] = None,
        to: Optional[str] = None,
        limit: int = PROCESSED_LIMIT,
        order: SortOrder = SortOrder.ASC,
        source: SourceFilter = SourceFilter.ALL,
    ) -> ProcessedReadingsResponse:
        """
        Computed readings for a tree, falling back to raw readings.

        The source filter only applies to the raw fallback: computed rows
        are tagged with their sheet name, not rawData/archive.

        Raises:
            TreeNotFoundError: If the tree doesn't exist
        """
        from_, to = time_range(from_, to)
        limit = min(limit, self.PROCESSED_LIMIT)

        with self.database.session() as session:
            tree = session.get(TreeNode, tree_id)
            if tree is None:
                raise TreeNotFoundError(tree_id)

            computed_query = select(ComputedReading).where(ComputedReading.tree_node_id == tree_id)
            computed_query = apply_window(computed_query, ComputedReading.timestamp, from_, to)

            computed_total = session.scalar(
                select(func.count()).select_from(computed_query.subquery())
            ) or 0

            if computed_total > 0:
                rows = session.scalars(
                    computed_query.order_by(_ordered(ComputedReading.timestamp, order)).limit(limit)
                ).all()
                return ProcessedReadingsResponse(
                    tree_id=tree.id,
                    node_id=tree.node_id,
                    name=tree.name,
                    source="computed",
                    readings=[_computed_point(row) for row in rows],
                    total=computed_total,
                )

            raw_query = select(RawReading).where(RawReading.tree_node_id == tree_id)
            raw_query = apply_window(raw_query, RawReading.timestamp, from_, to)
            if source != SourceFilter.ALL:
                raw_query = raw_query.where(RawReading.data_source == source.value)

            raw_total = session.scalar(select(func.count()).select_from(raw_query.subquery())) or 0
            rows = session.scalars(
                raw_query.order_by(_ordered(RawReading.timestamp, order)).limit(limit)
            ).all()

            return ProcessedReadingsResponse(
                tree_id=tree.id,
                node_id=tree.node_id,
                name=tree.name,
                source="raw-fallback",
                readings=[
                    ProcessedReadingPoint(
                        timestamp=row.timestamp,
                        temperature=row.temperature,
                        pressure=row.pressure,
                        humidity=row.humidity,
                        dendro_raw=row.dendrometer,
                    )
                    for row in rows
                ],
                total=raw_total,
            )


def _ordered(column, order: SortOrder):
    return column.desc() if order == SortOrder.DESC else column.asc()


def _reading_point(row: RawReading) -> ReadingPoint:
    return ReadingPoint(
        timestamp=row.timestamp,
        temperature=row.temperature,
        pressure=row.pressure,
        humidity=row.humidity,
        dendrometer=row.dendrometer,
        sapflow1=row.sapflow1,
        sapflow2=row.sapflow2,
        sapflow3=row.sapflow3,
        sapflow4=row.sapflow4,
        battery=row.battery,
        lipo_charge=row.lipo_charge,
        data_source=row.data_source,
    )


def _computed_point(row: ComputedReading) -> ProcessedReadingPoint:
    return ProcessedReadingPoint(
        timestamp=row.timestamp,
        temperature=row.temperature,
        pressure=row.pressure,
        humidity=row.humidity,
        dendro_raw=row.dendro_raw,
        dendro_mm=row.dendro_calibrated_mm,
        sapflow_cm_per_hr=row.sapflow_cm_per_hr,
        sf_max_d=row.sf_max_d,
        sf_signal=row.sf_signal,
        sf_noise=row.sf_noise,
    )
