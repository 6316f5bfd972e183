import asyncio
import time
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from app.errors import WorkbookError
from app.models import ImportStatus, SortOrder
from app.models.tables import ComputedReading, RawReading, TreeNode
from app.services import NO_DELAY_RETRY, ImportService, RetryPolicy
from conftest import NODE_INFO_HEADER, READING_HEADER, build_workbook, processed_sheet, reading


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def run_import(services, workbook, name="trees.xlsx", now=NOW):
    return asyncio.run(services.importer.import_workbook(name, len(workbook), workbook, now=now))


def all_rows(database, model):
    with database.session() as session:
        return session.scalars(select(model)).all()


def test_import_round_trip(services, sample_workbook):
    job = run_import(services, sample_workbook)

    assert job.status == ImportStatus.COMPLETED
    assert job.file_name == "trees.xlsx"
    assert job.file_size == len(sample_workbook)
    assert job.sheets_processed == ["nodeInfo", "rawData", "archive", "T-001 processed"]
    assert job.records_imported == 6
    assert job.records_skipped == 0
    assert job.records_failed == 0
    assert job.started_at == NOW
    assert job.completed_at >= job.started_at

    trees = {t.node_id: t for t in all_rows(services.database, TreeNode)}
    assert set(trees) == {"T-001", "T-002"}
    assert trees["T-001"].name == "Old Oak"
    assert trees["T-001"].lat == 42.1
    assert trees["T-002"].lat == 42.3
    assert all(t.active for t in trees.values())

    readings = services.readings.get_readings(trees["T-001"].id)
    assert readings.count == 3
    assert [r.timestamp for r in readings.items] == [
        "2024-04-30T23:00:00.000Z",
        "2024-05-01T10:15:00.000Z",
        "2024-05-01T10:45:00.000Z",
    ]
    assert [r.data_source for r in readings.items] == ["archive", "rawData", "rawData"]
    assert [r.lipo_charge for r in readings.items] == [None, 88.0, 87.0]

    computed = all_rows(services.database, ComputedReading)
    assert {c.data_source for c in computed} == {"T-001 processed"}
    assert all(c.tree_node_id == trees["T-001"].id for c in computed)


def test_reimport_is_idempotent(services, sample_workbook):
    run_import(services, sample_workbook)
    first_ids = {t.node_id: t.id for t in all_rows(services.database, TreeNode)}

    second = run_import(services, sample_workbook)

    assert second.status == ImportStatus.COMPLETED
    assert {t.node_id: t.id for t in all_rows(services.database, TreeNode)} == first_ids
    assert len(all_rows(services.database, RawReading)) == 4
    assert len(all_rows(services.database, ComputedReading)) == 2
    assert len(services.import_jobs.list_jobs()) == 2


def test_reimport_updates_metadata(services):
    run_import(services, build_workbook({
        "nodeInfo": [NODE_INFO_HEADER, ["T-001", None, "Old Name"]],
    }))
    run_import(services, build_workbook({
        "nodeInfo": [NODE_INFO_HEADER, ["T-001", None, "New Name"]],
    }))

    [tree] = all_rows(services.database, TreeNode)
    assert tree.name == "New Name"


def test_duplicate_readings_last_one_wins(services):
    job = run_import(services, build_workbook({
        "rawData": [
            READING_HEADER,
            reading("T-001", "2024-05-01T10:00:00Z", 1.0),
            reading("T-001", "2024-05-01T10:00:00.000Z", 2.0),
            reading("T-001", "2024-05-01T11:00:00Z", 3.0),
        ],
        "T-001": processed_sheet("T-001", [
            ["2024-05-01 10:00", None, None, None, None, 1.0],
            ["2024-05-01 10:00", None, None, None, None, 5.0],
        ]),
    }))

    assert job.records_imported == 3
    assert job.records_skipped == 2

    temperatures = {r.timestamp: r.temperature for r in all_rows(services.database, RawReading)}
    assert temperatures == {"2024-05-01T10:00:00.000Z": 2.0, "2024-05-01T11:00:00.000Z": 3.0}

    [computed] = all_rows(services.database, ComputedReading)
    assert computed.sapflow_cm_per_hr == 5.0


def test_nodes_only_seen_in_readings_get_a_bare_tree(services):
    run_import(services, build_workbook({
        "archive": [READING_HEADER, reading("T-404", "2024-05-01T10:00:00Z", 1.0)],
    }))

    [tree] = all_rows(services.database, TreeNode)
    assert tree.node_id == "T-404"
    assert tree.name is None
    assert tree.active is True


def test_computed_rows_for_unknown_nodes_are_skipped(services):
    job = run_import(services, build_workbook({
        "nodeInfo": [NODE_INFO_HEADER, ["T-001", None, "Oak"]],
        "Ghost": processed_sheet("T-999", [["2024-05-01 10:00", 1.0]]),
    }))

    assert job.status == ImportStatus.COMPLETED
    assert job.records_imported == 0
    assert job.records_skipped == 1
    assert all_rows(services.database, ComputedReading) == []


def test_small_batches_write_everything(services):
    importer = ImportService(
        services.database,
        services.import_jobs,
        retry_policy=NO_DELAY_RETRY,
        batch_size=2,
        batch_pause=0,
    )
    workbook = build_workbook({
        "rawData": [
            READING_HEADER,
            *[reading(f"T-{i % 3}", f"2024-05-01T{i:02d}:00:00Z", float(i)) for i in range(11)],
        ],
    })

    job = asyncio.run(importer.import_workbook("batches.xlsx", len(workbook), workbook, now=NOW))

    assert job.records_imported == 11
    assert len(all_rows(services.database, RawReading)) == 11
    assert len(all_rows(services.database, TreeNode)) == 3


def test_transient_write_failures_are_retried(services, sample_workbook, monkeypatch):
    real_upsert = services.database.upsert
    calls = {"count": 0}

    def flaky_upsert(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise ConnectionError("connection reset")
        return real_upsert(*args, **kwargs)

    monkeypatch.setattr(services.database, "upsert", flaky_upsert)

    job = run_import(services, sample_workbook)

    assert job.status == ImportStatus.COMPLETED
    assert job.records_imported == 6


def test_persistent_failure_marks_job_failed(services, sample_workbook, monkeypatch):
    calls = {"count": 0}

    def broken_upsert(*args, **kwargs):
        calls["count"] += 1
        raise ConnectionError("database is gone")

    monkeypatch.setattr(services.database, "upsert", broken_upsert)

    with pytest.raises(ConnectionError):
        run_import(services, sample_workbook)

    assert calls["count"] == 3

    [job] = services.import_jobs.list_jobs()
    assert job.status == ImportStatus.FAILED
    assert job.records_failed == 1
    assert job.errors == [{"message": "database is gone"}]
    assert job.started_at == NOW
    assert job.completed_at >= job.started_at


def test_unreadable_workbook_marks_job_failed(services):
    with pytest.raises(WorkbookError):
        run_import(services, b"not a workbook", name="broken.xlsx")

    [job] = services.import_jobs.list_jobs()
    assert job.status == ImportStatus.FAILED
    assert job.file_name == "broken.xlsx"
    assert "Could not read workbook" in job.errors[0]["message"]


def test_retry_policy_gives_up_after_max_attempts():
    attempts = []

    def always_fails():
        attempts.append(1)
        raise RuntimeError("nope")

    with pytest.raises(RuntimeError):
        asyncio.run(RetryPolicy(max_attempts=2, delay=0).run(always_fails))

    assert len(attempts) == 2


def test_latest_reading_is_newest(services, sample_workbook):
    run_import(services, sample_workbook)
    tree_id = next(t.id for t in all_rows(services.database, TreeNode) if t.node_id == "T-001")

    latest = services.readings.get_latest_reading(tree_id)
    newest_first = services.readings.get_readings(tree_id, order=SortOrder.DESC, limit=1)

    assert latest.timestamp == "2024-05-01T10:45:00.000Z"
    assert newest_first.items[0] == latest
    assert newest_first.count == 3


def test_single_reading_reads_back_through_the_api_shape(services):
    run_import(services, build_workbook({
        "rawData": [["Node", "Timestamp", "Temperature"], ["N1", "2024-01-01T00:00:00Z", 20]],
    }))
    [tree] = all_rows(services.database, TreeNode)

    [point] = services.readings.get_readings(tree.id).items

    assert point.timestamp == "2024-01-01T00:00:00.000Z"
    assert point.temperature == 20
    assert point.humidity is None


def test_completion_time_is_taken_when_the_import_finishes(services, sample_workbook):
    job = run_import(services, sample_workbook)

    assert job.started_at == NOW
    assert job.completed_at > NOW

    fresh = run_import(services, sample_workbook, now=None)
    assert fresh.completed_at >= fresh.started_at > NOW


def test_event_loop_keeps_running_during_an_import(services, monkeypatch):
    real_upsert = services.database.upsert

    def slow_upsert(*args, **kwargs):
        time.sleep(0.05)
        return real_upsert(*args, **kwargs)

    monkeypatch.setattr(services.database, "upsert", slow_upsert)
    importer = ImportService(
        services.database,
        services.import_jobs,
        retry_policy=NO_DELAY_RETRY,
        batch_size=2,
        batch_pause=0,
    )
    workbook = build_workbook({
        "rawData": [
            READING_HEADER,
            *[reading("T-001", f"2024-05-01T{i:02d}:00:00Z", float(i)) for i in range(10)],
        ],
    })

    async def import_while_ticking():
        ticks = 0
        task = asyncio.create_task(importer.import_workbook("slow.xlsx", len(workbook), workbook, now=NOW))
        while not task.done():
            await asyncio.sleep(0.005)
            ticks += 1
        return await task, ticks

    job, ticks = asyncio.run(import_while_ticking())

    assert job.status == ImportStatus.COMPLETED
    assert job.records_imported == 10
    # six slow upserts (one node batch, five reading batches) leave plenty of room
    assert ticks >= 10
