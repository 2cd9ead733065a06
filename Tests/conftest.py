# Tests/conftest.py
# Shared fixtures: an in-memory local store, a scripted connectivity monitor and a mocked remote API.
#
# Imports
import itertools
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock
#
# Third-party Libraries
import pytest
#
# Local Imports
from incident_sync.DB.local_store import LocalRecordStore
from incident_sync.DB.Records_DB import RecordsDatabase
from incident_sync.reports_api.client import CitizenAPIClient
from incident_sync.reports_api.schemas import CreateRecordResponse, RecordListPage
from incident_sync.Sync.connectivity import ConnectivityMonitor
#
########################################################################################################################
#
# Fixtures

TEST_CLIENT_ID = "test_client"


def _sample_report(municipio: str = "Oaxaca", **overrides) -> Dict[str, Any]:
    payload = {
        "municipio": municipio,
        "comunidad": "San Juan",
        "location": {"lat": 17.06, "lng": -96.72},
        "needType": "Agua Potable",
        "description": "Sin agua desde el lunes",
        "status": "Pendiente",
        "customData": {},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def records_db():
    """Synchronous RecordsDatabase on an in-memory SQLite DB."""
    db = RecordsDatabase(":memory:", TEST_CLIENT_ID)
    yield db
    db.close_connection()


@pytest.fixture
async def store():
    """LocalRecordStore backed by an in-memory DB on its worker thread."""
    local_store = await LocalRecordStore.open(":memory:", TEST_CLIENT_ID)
    yield local_store
    await local_store.close()


@pytest.fixture
def online_monitor():
    return ConnectivityMonitor(initially_online=True)


@pytest.fixture
def offline_monitor():
    return ConnectivityMonitor(initially_online=False)


@pytest.fixture
def fake_api():
    """
    AsyncMock shaped like CitizenAPIClient. By default every create succeeds with ids
    'srv-1', 'srv-2', ... and listing returns an empty page.
    """
    api = AsyncMock(spec=CitizenAPIClient)
    counter = itertools.count(1)

    async def _create(kind: str, body: Dict[str, Any], idempotency_key: Optional[str] = None,
                      timeout: Optional[float] = None) -> CreateRecordResponse:
        return CreateRecordResponse(id=f"srv-{next(counter)}", message="created")

    api.create_record.side_effect = _create
    api.list_records.return_value = RecordListPage(items=[], total=0, pages=1, page=1)
    api.update_record.return_value = {}
    api.delete_record.return_value = None
    return api


@pytest.fixture
def make_report():
    """Factory for valid report payloads in wire form."""
    return _sample_report
