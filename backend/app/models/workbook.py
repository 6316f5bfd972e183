"""
Workbook Row Models
===================
The normalized rows the workbook parser hands to the importer.

WORKBOOK LAYOUT:
    nodeInfo        - one row per sensor node (metadata)
    rawData         - raw readings straight off the loggers
    archive         - older raw readings, same columns as rawData
    <anything else> - a per-node "processed" sheet (calibrated values)

Each tabular sheet has a fixed header vocabulary. The label -> field maps
below are the whole schema: columns with other labels are ignored.

Author: Urban Tree Server Team
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum


# =============================================================================
# RESERVED SHEETS
# =============================================================================

NODE_INFO_SHEET = "nodeInfo"
RAW_DATA_SHEET = "rawData"
ARCHIVE_SHEET = "archive"


class ReadingSource(str, Enum):
    """Which reserved sheet a raw reading came from."""
    RAW_DATA = "rawData"
    ARCHIVE = "archive"


# =============================================================================
# HEADER SCHEMAS (sheet label -> model field)
# =============================================================================

NODE_INFO_COLUMNS = {
    "Node": "node",
    "Board_ID": "board_id",
    "Name": "name",
    "Location": "location",
    "Sensor Depths": "sensor_depths",
    "Site PI": "site_pi",
    "Lat": "lat",
    "Lon": "lon",
    "Species": "species",
    "DBH": "dbh",
}

NODE_INFO_NUMERIC = {"lat", "lon", "dbh"}

READING_COLUMNS = {
    "Node": "node",
    "Timestamp": "timestamp",
    "Temperature": "temperature",
    "Pressure": "pressure",
    "Humidity": "humidity",
    "Dendrometer": "dendrometer",
    "Sapflow1": "sapflow1",
    "Sapflow2": "sapflow2",
    "Sapflow3": "sapflow3",
    "Sapflow4": "sapflow4",
    "Battery": "battery",
    "LiPo Charge": "lipo_charge",
    "Notes": "notes",
}

READING_NUMERIC = {
    "temperature", "pressure", "humidity", "dendrometer",
    "sapflow1", "sapflow2", "sapflow3", "sapflow4",
    "battery", "lipo_charge",
}

# Label that marks the header row on a processed sheet
PROCESSED_TIMESTAMP_LABEL = "Timestamp (Raw)"

# Prefix of the cell whose right-hand neighbour holds the node id
PROCESSED_NODE_ID_PREFIX = "NODE ID"

# How many rows from the top to search for the NODE ID cell
PROCESSED_NODE_ID_SCAN_ROWS = 10

PROCESSED_COLUMNS = {
    PROCESSED_TIMESTAMP_LABEL: "timestamp",
    "Temperature (C)": "temperature",
    "Pressure (hPa)": "pressure",
    "Humidity (%)": "humidity",
    "Dendro (Raw)": "dendro_raw",
    "Sapflow (cm/hr)": "sapflow_cm_per_hr",
    "SF maxD": "sf_max_d",
    "SF Signal": "sf_signal",
    "SF Noise": "sf_noise",
    "Dendro (mm)": "dendro_calibrated_mm",
}


# =============================================================================
# PARSED ROWS
# =============================================================================

class NodeInfoRow(BaseModel):
    """Static metadata for one sensor node (from the nodeInfo sheet)."""
    node: str = Field(..., description="External node identifier")
    board_id: Optional[str] = None
    name: Optional[str] = None
    location: Optional[str] = None
    sensor_depths: Optional[str] = None
    site_pi: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    species: Optional[str] = None
    dbh: Optional[float] = Field(None, description="Trunk diameter at breast height")


class RawReadingRow(BaseModel):
    """One timestamped sample from the rawData or archive sheet."""
    node: str
    timestamp: datetime = Field(..., description="Normalized UTC instant")
    temperature: Optional[float] = None
    pressure: Optional[float] = None
    humidity: Optional[float] = None
    dendrometer: Optional[float] = None
    sapflow1: Optional[float] = None
    sapflow2: Optional[float] = None
    sapflow3: Optional[float] = None
    sapflow4: Optional[float] = None
    battery: Optional[float] = None
    lipo_charge: Optional[float] = Field(None, description="Only present on rawData")
    notes: Optional[str] = None
    source: ReadingSource


class ComputedReadingRow(BaseModel):
    """
    One row from a per-node processed sheet.

    The timestamp is the sheet's own text, NOT a parsed instant.
    """
    node: str
    timestamp: str = Field(..., description="Timestamp exactly as written in the sheet")
    temperature: Optional[float] = None
    pressure: Optional[float] = None
    humidity: Optional[float] = None
    dendro_raw: Optional[float] = None
    dendro_calibrated_mm: Optional[float] = None
    sapflow_cm_per_hr: Optional[float] = None
    sf_max_d: Optional[float] = None
    sf_signal: Optional[float] = None
    sf_noise: Optional[float] = None
    data_source: str = Field(..., description="Name of the sheet the row came from")


class ParsedWorkbook(BaseModel):
    """Everything the parser got out of one workbook."""
    node_info: list[NodeInfoRow] = Field(default_factory=list)
    readings: list[RawReadingRow] = Field(default_factory=list)
    computed_readings: list[ComputedReadingRow] = Field(default_factory=list)
    sheets_processed: list[str] = Field(default_factory=list)
