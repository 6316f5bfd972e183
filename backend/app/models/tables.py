"""
Database Tables
===============
SQLAlchemy table definitions for everything the server persists.

TABLES:
    tree_nodes         - one row per sensor node (keyed by node_id)
    raw_readings       - raw samples, unique per (tree_node_id, timestamp)
    computed_readings  - processed-sheet samples, unique per (tree_node_id, timestamp)
    import_jobs        - audit trail of workbook uploads
    users              - accounts allowed to sign in

Readings reference tree_nodes by id but nothing cascades: once written,
readings stay until someone removes them by hand.

Timestamps on raw_readings are ISO instant strings (see
app.utils.validation.to_iso_instant). Timestamps on computed_readings are
the text from the sheet.
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func


Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class TreeNode(Base):
    __tablename__ = "tree_nodes"

    id = Column(String(36), primary_key=True, default=_new_id)
    node_id = Column(String(255), unique=True, nullable=False, index=True)
    board_id = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True, index=True)
    location = Column(String(512), nullable=True)
    sensor_depths = Column(String(255), nullable=True)
    site_pi = Column(String(255), nullable=True)
    lat = Column(Float, nullable=True)
    lon = Column(Float, nullable=True)
    species = Column(String(255), nullable=True)
    dbh = Column(Float, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)


class RawReading(Base):
    __tablename__ = "raw_readings"
    __table_args__ = (
        UniqueConstraint("tree_node_id", "timestamp", name="uq_raw_readings_tree_timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tree_node_id = Column(String(36), ForeignKey("tree_nodes.id"), nullable=False, index=True)
    timestamp = Column(String(32), nullable=False, index=True)
    temperature = Column(Float, nullable=True)
    pressure = Column(Float, nullable=True)
    humidity = Column(Float, nullable=True)
    dendrometer = Column(Float, nullable=True)
    sapflow1 = Column(Float, nullable=True)
    sapflow2 = Column(Float, nullable=True)
    sapflow3 = Column(Float, nullable=True)
    sapflow4 = Column(Float, nullable=True)
    battery = Column(Float, nullable=True)
    lipo_charge = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    data_source = Column(String(32), nullable=False, index=True)


class ComputedReading(Base):
    __tablename__ = "computed_readings"
    __table_args__ = (
        UniqueConstraint("tree_node_id", "timestamp", name="uq_computed_readings_tree_timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tree_node_id = Column(String(36), ForeignKey("tree_nodes.id"), nullable=False, index=True)
    timestamp = Column(String(64), nullable=False, index=True)
    temperature = Column(Float, nullable=True)
    pressure = Column(Float, nullable=True)
    humidity = Column(Float, nullable=True)
    dendro_raw = Column(Float, nullable=True)
    dendro_calibrated_mm = Column(Float, nullable=True)
    sapflow_cm_per_hr = Column(Float, nullable=True)
    sf_max_d = Column(Float, nullable=True)
    sf_signal = Column(Float, nullable=True)
    sf_noise = Column(Float, nullable=True)
    data_source = Column(String(255), nullable=False)
    imported_at = Column(DateTime(timezone=True), nullable=True)


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=_new_id)
    file_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, index=True)
    sheets_processed = Column(JSON, nullable=False, default=list)
    records_imported = Column(Integer, nullable=False, default=0)
    records_skipped = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    warnings = Column(JSON, nullable=False, default=list)
    errors = Column(JSON, nullable=False, default=list)
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False, default="VIEWER")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
