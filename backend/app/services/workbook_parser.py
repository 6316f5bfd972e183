"""
Workbook Parser
===============

Turns an uploaded .xlsx into three lists of normalized rows.

HOW SHEETS ARE HANDLED:
----------------------
nodeInfo
    Tabular. First row is the header. One NodeInfoRow per row with a Node.

rawData / archive
    Tabular. One RawReadingRow per row with BOTH a Node and a Timestamp
    we can parse. Rows missing either are dropped on purpose; that's the
    data-quality filter, not an error.

everything else
    Maybe a per-node "processed" sheet. These look like:

        | NODE ID: | T-017 |          |           |
        | ...      |       |          |           |
        | Timestamp (Raw) | Temperature (C) | Dendro (mm) | ...
        | 2024-05-01 10:00 | 18.2           | 0.113       | ...

    We look for "NODE ID" in the first 10 rows (the node is the cell to its
    right), then for the header row with "Timestamp (Raw)". No node or no
    header -> the sheet is skipped, quietly.

All numbers go through app.utils.validation.to_number, so every row kind
coerces values the same way.

Author: Urban Tree Server Team
"""

import io
import logging
import zipfile
from datetime import datetime
from typing import Iterator, Optional, Sequence

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.errors import WorkbookError
from app.models.workbook import (
    ARCHIVE_SHEET,
    NODE_INFO_COLUMNS,
    NODE_INFO_NUMERIC,
    NODE_INFO_SHEET,
    PROCESSED_COLUMNS,
    PROCESSED_NODE_ID_PREFIX,
    PROCESSED_NODE_ID_SCAN_ROWS,
    PROCESSED_TIMESTAMP_LABEL,
    RAW_DATA_SHEET,
    READING_COLUMNS,
    READING_NUMERIC,
    ComputedReadingRow,
    NodeInfoRow,
    ParsedWorkbook,
    RawReadingRow,
    ReadingSource,
)
from app.utils.validation import parse_timestamp, to_iso_instant, to_number, to_text

logger = logging.getLogger(__name__)

RESERVED_SHEETS = (NODE_INFO_SHEET, RAW_DATA_SHEET, ARCHIVE_SHEET)


def parse_workbook(buffer: bytes) -> ParsedWorkbook:
    """
    Parse an .xlsx file held in memory.

    Args:
        buffer: Raw bytes of the uploaded file

    Returns:
        ParsedWorkbook with node_info, readings, computed_readings and the
        names of the sheets that produced rows (in processing order)

    Raises:
        WorkbookError: If the bytes aren't a readable workbook
    """
    try:
        workbook = load_workbook(io.BytesIO(buffer), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise WorkbookError(f"Could not read workbook: {e}") from e

    try:
        result = ParsedWorkbook()
        sheets = {ws.title: ws for ws in workbook.worksheets}

        if NODE_INFO_SHEET in sheets:
            result.sheets_processed.append(NODE_INFO_SHEET)
            result.node_info.extend(_parse_node_info(_rows(sheets[NODE_INFO_SHEET])))

        for sheet_name, source in (
            (RAW_DATA_SHEET, ReadingSource.RAW_DATA),
            (ARCHIVE_SHEET, ReadingSource.ARCHIVE),
        ):
            if sheet_name in sheets:
                result.sheets_processed.append(sheet_name)
                result.readings.extend(_parse_readings(_rows(sheets[sheet_name]), source))

        for sheet_name, sheet in sheets.items():
            if sheet_name in RESERVED_SHEETS:
                continue

            computed = parse_processed_sheet(sheet_name, _rows(sheet))
            if computed is None:
                logger.debug(f"[Parser] Sheet '{sheet_name}' is not a processed sheet, skipping")
                continue

            result.sheets_processed.append(sheet_name)
            result.computed_readings.extend(computed)
    finally:
        workbook.close()

    logger.info(
        f"[Parser] {len(result.node_info)} nodes, {len(result.readings)} raw readings, "
        f"{len(result.computed_readings)} computed readings from {result.sheets_processed}"
    )
    return result


# =============================================================================
# TABULAR SHEETS (nodeInfo, rawData, archive)
# =============================================================================

def _rows(sheet) -> list[tuple]:
    return list(sheet.iter_rows(values_only=True))


def _records(rows: Sequence[tuple], columns: dict[str, str]) -> Iterator[dict]:
    """
    Yield {field: cell value} for every non-blank row under the header.

    The first row is the header. Only labels present in columns are kept.
    """
    if not rows:
        return

    header = rows[0]
    positions = {}
    for index, label in enumerate(header):
        if label is None:
            continue
        field = columns.get(str(label).strip())
        if field is not None and field not in positions:
            positions[field] = index

    for row in rows[1:]:
        if all(_is_blank(cell) for cell in row):
            continue
        yield {field: _cell(row, index) for field, index in positions.items()}


def _parse_node_info(rows: Sequence[tuple]) -> list[NodeInfoRow]:
    parsed = []
    for record in _records(rows, NODE_INFO_COLUMNS):
        node = _node_id(record.get("node"))
        if not node:
            continue

        values = {}
        for field in NODE_INFO_COLUMNS.values():
            if field == "node":
                continue
            raw = record.get(field)
            values[field] = to_number(raw) if field in NODE_INFO_NUMERIC else to_text(raw)

        parsed.append(NodeInfoRow(node=node, **values))
    return parsed


def _parse_readings(rows: Sequence[tuple], source: ReadingSource) -> list[RawReadingRow]:
    parsed = []
    for record in _records(rows, READING_COLUMNS):
        node = _node_id(record.get("node"))
        timestamp = parse_timestamp(record.get("timestamp"))
        if not node or timestamp is None:
            continue

        values = {field: to_number(record.get(field)) for field in READING_NUMERIC}

        # LiPo Charge only exists on rawData
        if source != ReadingSource.RAW_DATA:
            values["lipo_charge"] = None

        parsed.append(RawReadingRow(
            node=node,
            timestamp=timestamp,
            notes=to_text(record.get("notes")),
            source=source,
            **values,
        ))
    return parsed


# =============================================================================
# PER-NODE PROCESSED SHEETS
# =============================================================================

def parse_processed_sheet(sheet_name: str, rows: Sequence[tuple]) -> Optional[list[ComputedReadingRow]]:
    """
    Parse one candidate processed sheet.

    Returns:
        The computed rows (possibly empty), or None if the sheet has no
        NODE ID cell or no "Timestamp (Raw)" header row.
    """
    node = _find_node_id(rows[:PROCESSED_NODE_ID_SCAN_ROWS])
    if node is None:
        return None

    header = _find_processed_header(rows)
    if header is None:
        logger.info(f"[Parser] Sheet '{sheet_name}' has NODE ID {node} but no '{PROCESSED_TIMESTAMP_LABEL}' header")
        return None

    header_index, positions = header
    timestamp_index = positions["timestamp"]

    parsed = []
    for row in rows[header_index + 1:]:
        timestamp = _timestamp_text(_cell(row, timestamp_index))
        if timestamp is None:
            continue

        values = {
            field: to_number(_cell(row, index))
            for field, index in positions.items()
            if field != "timestamp"
        }
        parsed.append(ComputedReadingRow(
            node=node,
            timestamp=timestamp,
            data_source=sheet_name,
            **values,
        ))
    return parsed


def _find_node_id(rows: Sequence[tuple]) -> Optional[str]:
    prefix = PROCESSED_NODE_ID_PREFIX.upper()
    for row in rows:
        for index, cell in enumerate(row):
            if not isinstance(cell, str):
                continue
            if not cell.strip().upper().startswith(prefix):
                continue
            node = _node_id(_cell(row, index + 1))
            if node:
                return node
    return None


def _find_processed_header(rows: Sequence[tuple]) -> Optional[tuple[int, dict[str, int]]]:
    for row_index, row in enumerate(rows):
        labels = [str(cell).strip() if cell is not None else "" for cell in row]
        if PROCESSED_TIMESTAMP_LABEL not in labels:
            continue

        positions = {}
        for index, label in enumerate(labels):
            field = PROCESSED_COLUMNS.get(label)
            if field is not None and field not in positions:
                positions[field] = index
        return row_index, positions
    return None


def _timestamp_text(value) -> Optional[str]:
    """
    Keep a processed-sheet timestamp as text.

    Date-typed cells have no text of their own in the file, so they are
    written in the same ISO instant format raw readings use.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_iso_instant(value)

    text = to_text(value)
    if text is None:
        return None
    text = text.strip()
    return text or None


# =============================================================================
# HELPERS
# =============================================================================

def _cell(row: tuple, index: int):
    return row[index] if 0 <= index < len(row) else None


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _node_id(value) -> Optional[str]:
    text = to_text(value)
    if text is None:
        return None
    return text.strip() or None
