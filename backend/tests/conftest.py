"""
Shared fixtures: an in-memory database, a fully wired Services, and
helpers that build .xlsx workbooks in memory.
"""

import asyncio
import io

import httpx
import pytest
from openpyxl import Workbook

from app.services import NO_DELAY_RETRY, Database, Services


NODE_INFO_HEADER = ["Node", "Board_ID", "Name", "Location", "Sensor Depths", "Site PI", "Lat", "Lon", "Species", "DBH"]
READING_HEADER = [
    "Node", "Timestamp", "Temperature", "Pressure", "Humidity", "Dendrometer",
    "Sapflow1", "Sapflow2", "Sapflow3", "Sapflow4", "Battery", "LiPo Charge", "Notes",
]
PROCESSED_HEADER = [
    "Timestamp (Raw)", "Temperature (C)", "Pressure (hPa)", "Humidity (%)",
    "Dendro (Raw)", "Sapflow (cm/hr)", "SF maxD", "SF Signal", "SF Noise", "Dendro (mm)",
]


def build_workbook(sheets: dict[str, list[list]]) -> bytes:
    """sheet name -> rows (first row is whatever header you want)."""
    workbook = Workbook()
    workbook.remove(workbook.active)
    for name, rows in sheets.items():
        sheet = workbook.create_sheet(title=name)
        for row in rows:
            sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def processed_sheet(node: str, rows: list[list]) -> list[list]:
    """A per-node processed sheet: banner rows, NODE ID, then the table."""
    return [
        ["Calibrated export"],
        ["NODE ID:", node],
        [],
        PROCESSED_HEADER,
        *rows,
    ]


def reading(node, timestamp, temperature=None, pressure=None, humidity=None, dendrometer=None, lipo=None, notes=None):
    return [node, timestamp, temperature, pressure, humidity, dendrometer, None, None, None, None, 3.9, lipo, notes]


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def services(database):
    return Services.build(
        database,
        jwt_secret="test-secret",
        retry_policy=NO_DELAY_RETRY,
        batch_pause=0,
        bcrypt_rounds=4,
    )


@pytest.fixture
def sample_workbook() -> bytes:
    return build_workbook({
        "nodeInfo": [
            NODE_INFO_HEADER,
            ["T-001", "B1", "Old Oak", "North Park", "10,20", "Dr. Reyes", 42.1, -71.2, "Quercus alba", 55.5],
            ["T-002", "B2", "Birch Row", "South Lawn", None, None, "42.3", "-71.1", "Betula", None],
        ],
        "rawData": [
            READING_HEADER,
            reading("T-001", "2024-05-01T10:15:00Z", 18.0, 1010.0, 60.0, 100.0, lipo=88.0),
            reading("T-001", "2024-05-01T10:45:00Z", 20.0, 1012.0, 64.0, 102.0, lipo=87.0),
            reading("T-002", "2024-05-02T08:00:00Z", 15.5, 1008.0, 70.0, 50.0),
            reading("T-001", None, 1.0),
            reading(None, "2024-05-01T11:00:00Z", 1.0),
        ],
        "archive": [
            READING_HEADER,
            reading("T-001", "2024-04-30T23:00:00Z", 12.0, 1005.0, 80.0, 99.0, lipo=50.0),
        ],
        "T-001 processed": processed_sheet("T-001", [
            ["2024-05-01T10:15:00.000Z", 18.0, 1010.0, 60.0, 100.0, 1.5, 0.2, 0.9, 0.1, 0.11],
            ["2024-05-01T10:45:00.000Z", 20.0, 1012.0, 64.0, 102.0, 2.5, 0.3, 0.8, 0.2, 0.13],
        ]),
        "Notes": [["just some notes"], ["nothing to see"]],
    })


def api_call(services: Services, method: str, url: str, **kwargs) -> httpx.Response:
    """Run one request against the ASGI app with the given services plugged in."""
    return api_session(services, [(method, url, kwargs)])[0]


def api_session(services: Services, calls: list[tuple]) -> list[httpx.Response]:
    """
    Run several requests on one client (cookies carry over between them).

    calls: [(method, url, kwargs), ...]
    """
    from app.main import app
    from app.routers import set_services

    async def run():
        set_services(services)
        try:
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                return [await client.request(method, url, **kwargs) for method, url, kwargs in calls]
        finally:
            set_services(None)

    return asyncio.run(run())
