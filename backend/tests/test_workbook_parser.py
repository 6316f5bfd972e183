from datetime import datetime, timezone

import pytest

from app.errors import WorkbookError
from app.models import ReadingSource
from app.services import parse_workbook
from app.services.workbook_parser import parse_processed_sheet
from conftest import NODE_INFO_HEADER, READING_HEADER, build_workbook, processed_sheet, reading


def test_parses_every_sheet_kind(sample_workbook):
    parsed = parse_workbook(sample_workbook)

    assert parsed.sheets_processed == ["nodeInfo", "rawData", "archive", "T-001 processed"]
    assert [row.node for row in parsed.node_info] == ["T-001", "T-002"]
    assert len(parsed.readings) == 4
    assert len(parsed.computed_readings) == 2


def test_node_info_coerces_numbers():
    parsed = parse_workbook(build_workbook({
        "nodeInfo": [
            NODE_INFO_HEADER,
            [17, None, "Maple", None, None, None, "42.5", " -71.0 ", "Acer", "n/a"],
        ],
    }))

    [node] = parsed.node_info
    assert node.node == "17"
    assert node.lat == 42.5
    assert node.lon == -71.0
    assert node.dbh is None
    assert node.species == "Acer"


def test_readings_without_node_or_timestamp_are_dropped():
    parsed = parse_workbook(build_workbook({
        "rawData": [
            READING_HEADER,
            reading("T-001", "2024-05-01T10:00:00Z", 10.0),
            reading("T-001", "garbage", 11.0),
            reading("", "2024-05-01T11:00:00Z", 12.0),
            reading("T-001", None, 13.0),
        ],
    }))

    assert [r.temperature for r in parsed.readings] == [10.0]


def test_reading_values_are_coerced():
    parsed = parse_workbook(build_workbook({
        "rawData": [
            READING_HEADER,
            reading("T-001", datetime(2024, 5, 1, 10, 0), "18.5", "", "abc", 100, lipo="91", notes="moved sensor"),
        ],
    }))

    [row] = parsed.readings
    assert row.timestamp == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert row.temperature == 18.5
    assert row.pressure is None
    assert row.humidity is None
    assert row.dendrometer == 100.0
    assert row.lipo_charge == 91.0
    assert row.notes == "moved sensor"
    assert row.source == ReadingSource.RAW_DATA


def test_archive_rows_never_carry_lipo_charge():
    parsed = parse_workbook(build_workbook({
        "archive": [
            READING_HEADER,
            reading("T-001", "2024-05-01T10:00:00Z", 10.0, lipo=75.0),
        ],
    }))

    [row] = parsed.readings
    assert row.source == ReadingSource.ARCHIVE
    assert row.lipo_charge is None


def test_processed_sheet_keeps_timestamp_text_and_sheet_name():
    parsed = parse_workbook(build_workbook({
        "Oak calibrated": processed_sheet("T-001", [
            ["2024-05-01 10:15", 18.0, 1010.0, 60.0, 100.0, 1.5, 0.2, 0.9, 0.1, 0.11],
            [None, 1, 2, 3, 4, 5, 6, 7, 8, 9],
        ]),
    }))

    [row] = parsed.computed_readings
    assert row.node == "T-001"
    assert row.timestamp == "2024-05-01 10:15"
    assert row.data_source == "Oak calibrated"
    assert row.dendro_raw == 100.0
    assert row.dendro_calibrated_mm == 0.11
    assert row.sapflow_cm_per_hr == 1.5
    assert row.sf_noise == 0.1


def test_processed_date_cells_use_iso_instant_text():
    rows = processed_sheet("T-009", [[datetime(2024, 5, 1, 10, 15), 18.0]])
    computed = parse_processed_sheet("dates", [tuple(row) for row in rows])

    assert [row.timestamp for row in computed] == ["2024-05-01T10:15:00.000Z"]


@pytest.mark.parametrize("rows", [
    [["Timestamp (Raw)", "Temperature (C)"], ["2024-05-01", 1.0]],
    [["NODE ID:", "T-001"], ["Time", "Temperature (C)"], ["2024-05-01", 1.0]],
    [["NODE ID:", None], ["Timestamp (Raw)"], ["2024-05-01"]],
])
def test_sheets_without_node_id_or_header_are_skipped(rows):
    assert parse_processed_sheet("other", [tuple(row) for row in rows]) is None


def test_node_id_must_be_near_the_top():
    rows = [("filler",)] * 10 + [("NODE ID:", "T-001"), ("Timestamp (Raw)",), ("2024-05-01",)]
    assert parse_processed_sheet("late", rows) is None


def test_unknown_sheets_are_not_listed():
    parsed = parse_workbook(build_workbook({"Summary": [["hello"]]}))

    assert parsed.sheets_processed == []
    assert parsed.readings == []


def test_unreadable_bytes_raise_workbook_error():
    with pytest.raises(WorkbookError):
        parse_workbook(b"definitely not a zip file")


def test_node_info_rows_without_a_node_are_dropped():
    parsed = parse_workbook(build_workbook({
        "nodeInfo": [
            NODE_INFO_HEADER,
            ["T-001", None, "Oak"],
            [None, None, "Nameless"],
            ["   ", None, "Blank id"],
        ],
    }))

    assert [row.name for row in parsed.node_info] == ["Oak"]


def test_node_info_sheet_without_node_column_yields_nothing():
    parsed = parse_workbook(build_workbook({
        "nodeInfo": [["Name", "Species"], ["Oak", "Quercus"]],
    }))

    assert parsed.node_info == []
    assert parsed.sheets_processed == ["nodeInfo"]
