"""
Import Orchestrator
===================

Takes an uploaded workbook all the way into the database.

THE FLOW:
--------
1. Create an import job (status PROCESSING) BEFORE parsing, so even a crash
   leaves something to look at in /api/imports
2. Parse the workbook
3. Upsert one tree node per node id seen in nodeInfo or rawData/archive
4. Upsert raw readings      (500 per batch, keyed on tree + timestamp)
5. Upsert computed readings (500 per batch, keyed on tree + timestamp)
6. Mark the job COMPLETED with totals, or FAILED and re-raise

BATCHES & RETRIES:
-----------------
Parsing and every database call run in a worker thread (asyncio.to_thread)
so the event loop keeps serving other requests during a long import.

Batches go out one after another with a short pause in between so a big
workbook doesn't hammer the database. Each batch gets RetryPolicy.max_attempts
tries with a fixed delay. If a batch still fails, the whole import is FAILED;
batches that already landed stay in the database.

Rows are deduplicated here before anything is sent: if the same
(tree, timestamp) shows up twice, the LAST one wins and the earlier copy is
counted as skipped.

Author: Urban Tree Server Team
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Optional, Sequence
from uuid import uuid4

from sqlalchemy import select

from app.models import (
    ComputedReadingRow,
    ImportJobResponse,
    ImportStatus,
    NodeInfoRow,
    RawReadingRow,
)
from app.models.tables import ComputedReading, RawReading, TreeNode
from app.services.database import Database
from app.services.import_jobs import ImportJobService
from app.services.workbook_parser import parse_workbook
from app.utils.validation import to_iso_instant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed-delay retry: try, wait `delay` seconds, try again, up to
    `max_attempts` tries in total. No backoff, no jitter.
    """
    max_attempts: int = 3
    delay: float = 2.0

    async def run(self, operation: Callable[[], int], label: str = "operation") -> int:
        """Run a blocking operation in a worker thread, retrying on failure."""
        attempt = 1
        while True:
            try:
                return await asyncio.to_thread(operation)
            except Exception as e:
                if attempt >= self.max_attempts:
                    logger.error(f"[Importer] {label} failed after {attempt} attempts: {e}")
                    raise
                logger.warning(f"[Importer] {label} failed ({e}). Retry {attempt}/{self.max_attempts - 1} in {self.delay}s...")
                attempt += 1
                if self.delay > 0:
                    await asyncio.sleep(self.delay)


# Handy for tests: same behaviour, no waiting
NO_DELAY_RETRY = RetryPolicy(max_attempts=3, delay=0.0)


@dataclass
class WriteResult:
    imported: int = 0
    skipped: int = 0


class ImportService:
    """
    Drives a workbook import and keeps its job record up to date.

    Args:
        database: Where rows get written
        job_service: Where the import job record lives
        retry_policy: How hard to try each batch before giving up
        batch_size: Rows per upsert statement
        batch_pause: Seconds to wait between batches
    """

    BATCH_SIZE = 500
    BATCH_PAUSE = 0.5
    PROGRESS_EVERY = 10  # batches

    def __init__(
        self,
        database: Database,
        job_service: ImportJobService,
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: int = BATCH_SIZE,
        batch_pause: float = BATCH_PAUSE,
    ):
        self.database = database
        self.job_service = job_service
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_size = batch_size
        self.batch_pause = batch_pause

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    async def import_workbook(
        self,
        file_name: str,
        file_size: int,
        buffer: bytes,
        now: Optional[datetime] = None,
    ) -> ImportJobResponse:
        """
        Import one uploaded workbook.

        Args:
            file_name: Original file name (stored on the job)
            file_size: Size in bytes (stored on the job)
            buffer: The file contents
            now: The instant stamped on the rows this import writes and on
                 the job's started_at. Captured once; defaults to the
                 current UTC time. completed_at is taken when the import
                 finishes.

        Returns:
            The COMPLETED import job

        Raises:
            Whatever stopped the import. The job is marked FAILED first.
        """
        now = now or datetime.now(timezone.utc)

        job = await asyncio.to_thread(
            self.job_service.create_job,
            file_name=file_name,
            file_size=file_size,
            started_at=now,
            status=ImportStatus.PROCESSING,
        )

        try:
            parsed = await asyncio.to_thread(parse_workbook, buffer)

            id_by_node = await self.upsert_tree_nodes(parsed.node_info, parsed.readings, now)
            raw = await self.upsert_raw_readings(parsed.readings, id_by_node)
            computed = await self.upsert_computed_readings(parsed.computed_readings, id_by_node, now)

            completed = await asyncio.to_thread(
                self.job_service.update_job,
                job.id,
                status=ImportStatus.COMPLETED,
                sheets_processed=parsed.sheets_processed,
                records_imported=raw.imported + computed.imported,
                records_skipped=raw.skipped + computed.skipped,
                records_failed=0,
                completed_at=datetime.now(timezone.utc),
            )
            logger.info(
                f"[Importer] Job {job.id} completed: {completed.records_imported} imported, "
                f"{completed.records_skipped} skipped"
            )
            return completed

        except Exception as e:
            logger.error(f"[Importer] Job {job.id} failed: {e}", exc_info=True)
            await asyncio.to_thread(
                self.job_service.update_job,
                job.id,
                status=ImportStatus.FAILED,
                records_failed=1,
                completed_at=datetime.now(timezone.utc),
                errors=[{"message": str(e) or "Unknown import error"}],
            )
            raise

    # =========================================================================
    # TREE NODES
    # =========================================================================

    async def upsert_tree_nodes(
        self,
        node_info: Sequence[NodeInfoRow],
        readings: Sequence[RawReadingRow],
        now: datetime,
    ) -> dict[str, str]:
        """
        Make sure a tree node exists for every node id we've seen.

        Metadata comes from nodeInfo when there is a row for the node; nodes
        that only appear in readings get a bare record. Every node is marked
        active.

        Returns:
            node id -> internal tree id
        """
        info_by_node = {row.node: row for row in node_info}
        node_ids = list(dict.fromkeys([*info_by_node.keys(), *(r.node for r in readings)]))
        if not node_ids:
            return {}

        payload = []
        for node in node_ids:
            info = info_by_node.get(node)
            payload.append({
                "id": str(uuid4()),
                "node_id": node,
                "board_id": info.board_id if info else None,
                "name": info.name if info else None,
                "location": info.location if info else None,
                "sensor_depths": info.sensor_depths if info else None,
                "site_pi": info.site_pi if info else None,
                "lat": info.lat if info else None,
                "lon": info.lon if info else None,
                "species": info.species if info else None,
                "dbh": info.dbh if info else None,
                "active": True,
                "updated_at": now,
            })

        await self._write_batches(
            TreeNode.__table__,
            payload,
            conflict_columns=("node_id",),
            update_exclude=("id",),
            label="tree nodes",
        )

        id_by_node = await asyncio.to_thread(self._tree_ids, node_ids)

        logger.info(f"[Importer] Upserted {len(id_by_node)} tree nodes")
        return id_by_node

    def _tree_ids(self, node_ids: Sequence[str]) -> dict[str, str]:
        id_by_node: dict[str, str] = {}
        with self.database.session() as session:
            for chunk in _chunks(node_ids, self.batch_size):
                rows = session.execute(
                    select(TreeNode.id, TreeNode.node_id).where(TreeNode.node_id.in_(chunk))
                ).all()
                id_by_node.update({node_id: tree_id for tree_id, node_id in rows})
        return id_by_node

    # =========================================================================
    # READINGS
    # =========================================================================

    async def upsert_raw_readings(
        self,
        readings: Sequence[RawReadingRow],
        id_by_node: dict[str, str],
    ) -> WriteResult:
        if not readings:
            return WriteResult()

        rows_by_key: dict[tuple[str, str], dict] = {}
        skipped = 0

        for reading in readings:
            tree_id = id_by_node.get(reading.node)
            if not tree_id:
                skipped += 1
                continue

            timestamp = to_iso_instant(reading.timestamp)
            key = (tree_id, timestamp)
            if key in rows_by_key:
                skipped += 1

            rows_by_key[key] = {
                "tree_node_id": tree_id,
                "timestamp": timestamp,
                "temperature": reading.temperature,
                "pressure": reading.pressure,
                "humidity": reading.humidity,
                "dendrometer": reading.dendrometer,
                "sapflow1": reading.sapflow1,
                "sapflow2": reading.sapflow2,
                "sapflow3": reading.sapflow3,
                "sapflow4": reading.sapflow4,
                "battery": reading.battery,
                "lipo_charge": reading.lipo_charge,
                "notes": reading.notes,
                "data_source": reading.source.value,
            }

        imported = await self._write_batches(
            RawReading.__table__,
            list(rows_by_key.values()),
            conflict_columns=("tree_node_id", "timestamp"),
            label="raw readings",
        )
        return WriteResult(imported=imported, skipped=skipped)

    async def upsert_computed_readings(
        self,
        computed: Sequence[ComputedReadingRow],
        id_by_node: dict[str, str],
        now: datetime,
    ) -> WriteResult:
        if not computed:
            return WriteResult()

        rows_by_key: dict[tuple[str, str], dict] = {}
        skipped = 0

        for reading in computed:
            tree_id = id_by_node.get(reading.node)
            if not tree_id:
                skipped += 1
                continue

            key = (tree_id, reading.timestamp)
            if key in rows_by_key:
                skipped += 1

            rows_by_key[key] = {
                "tree_node_id": tree_id,
                "timestamp": reading.timestamp,
                "temperature": reading.temperature,
                "pressure": reading.pressure,
                "humidity": reading.humidity,
                "dendro_raw": reading.dendro_raw,
                "dendro_calibrated_mm": reading.dendro_calibrated_mm,
                "sapflow_cm_per_hr": reading.sapflow_cm_per_hr,
                "sf_max_d": reading.sf_max_d,
                "sf_signal": reading.sf_signal,
                "sf_noise": reading.sf_noise,
                "data_source": reading.data_source,
                "imported_at": now,
            }

        imported = await self._write_batches(
            ComputedReading.__table__,
            list(rows_by_key.values()),
            conflict_columns=("tree_node_id", "timestamp"),
            label="computed readings",
        )
        return WriteResult(imported=imported, skipped=skipped)

    # =========================================================================
    # BATCHED WRITES
    # =========================================================================

    async def _write_batches(
        self,
        table,
        rows: list[dict],
        conflict_columns: Sequence[str],
        label: str,
        update_exclude: Sequence[str] = (),
    ) -> int:
        """Upsert rows in fixed-size batches, one at a time, each with retries."""
        batches = list(_chunks(rows, self.batch_size))
        written = 0

        for index, batch in enumerate(batches):
            write = partial(
                self.database.upsert,
                table,
                batch,
                conflict_columns,
                update_exclude,
            )
            written += await self.retry_policy.run(
                write,
                label=f"{label} batch {index + 1}/{len(batches)}",
            )

            if index < len(batches) - 1 and self.batch_pause > 0:
                await asyncio.sleep(self.batch_pause)

            if (index + 1) % self.PROGRESS_EVERY == 0:
                logger.info(f"[Importer] {label}: {index + 1}/{len(batches)} batches ({written} rows)")

        return written


def _chunks(items: Sequence, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]
