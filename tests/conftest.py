"""
Pytest fixtures for the inspection KPI backend tests.
"""
import os
import sys
import tempfile
import pytest
from datetime import datetime, timedelta, timezone

# Add the project root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set test environment variables before importing the app
os.environ['RECORD_SOURCE_TYPE'] = 'json'
os.environ['KPI_TIMEZONE'] = 'UTC'
os.environ['KPI_CONFIG_FILE'] = os.path.join(tempfile.gettempdir(), 'inspection-kpi-test-missing.json')
os.environ['FLASK_DEBUG'] = 'false'

from inspection_kpi.database import JsonRecordSource, RecordSource, RecordSourceError, set_record_source
from inspection_kpi.config_manager import KpiConfig

NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


def iso(value: datetime) -> str:
    return value.isoformat()


class FailingSource(RecordSource):
    """Wraps a source and fails the queries named in ``fail_on``."""

    def __init__(self, inner: RecordSource, fail_on=('equipment',), failing_types=()):
        self.inner = inner
        self.fail_on = set(fail_on)
        self.failing_types = set(failing_types)

    def fetch_equipment(self, business_unit, site=None):
        if 'equipment' in self.fail_on:
            raise RecordSourceError("equipment registry unavailable")
        return self.inner.fetch_equipment(business_unit, site)

    def fetch_transactions(self, business_unit, equipment_type=None, equipment_id=None, exclude_types=None,
                           since=None):
        if equipment_type is None and 'transactions' in self.fail_on:
            raise RecordSourceError("transaction store unavailable")
        if equipment_type in self.failing_types:
            raise RecordSourceError(f"{equipment_type} collection unavailable")
        return self.inner.fetch_transactions(business_unit, equipment_type, equipment_id, exclude_types, since)


@pytest.fixture
def kpi_config():
    return KpiConfig(
        period_map={'extinguisher': 'monthly', 'harness': 'quarterly'},
        mixer_types=('mixer', 'mixertsm', 'mixertrainer', 'mixerweek'),
        sites=['A', 'B', 'C'],
    )


@pytest.fixture
def equipment_docs():
    """Registry for BU 'th': 10 forklifts at A, 2 at B, extinguishers, a mixer, one unsited car."""
    docs = [{'bu': 'th', 'type': 'Forklift', 'id': f'FL-{i:02d}', 'site': 'A'} for i in range(10)]
    docs += [
        {'bu': 'th', 'type': 'forklift', 'id': 'FL-B1', 'site': 'B'},
        {'bu': 'th', 'type': 'forklift', 'id': 'FL-B2', 'site': 'B'},
        {'bu': 'th', 'type': 'extinguisher', 'id': 'EX-01', 'site': 'A'},
        {'bu': 'th', 'type': 'extinguisher', 'id': 'EX-02', 'site': 'B'},
        {'bu': 'th', 'type': 'mixer', 'id': 'MX-01', 'site': 'A', 'owner': 'Somchai'},
        {'bu': 'th', 'type': 'mixer', 'id': 'MX-02', 'site': 'A', 'owner': 'Somchai'},
        {'bu': 'th', 'type': 'mixer', 'id': 'MX-03', 'site': 'B', 'owner': 'Niran'},
        {'bu': 'th', 'type': 'car', 'id': 'CAR-01'},
        {'bu': 'vn', 'type': 'forklift', 'id': 'FL-00', 'site': 'A'},
    ]
    return docs


@pytest.fixture
def transaction_docs():
    today = NOW - timedelta(hours=2)
    return [
        # Four forklifts at A inspected today, FL-03 failed its brake check
        {'bu': 'th', 'type': 'forklift', 'id': 'FL-00', 'timestamp': iso(today), 'inspector': 'a', 'brake': 'pass'},
        {'bu': 'th', 'type': 'forklift', 'id': 'FL-01', 'timestamp': iso(today), 'inspector': 'a', 'brake': 'pass'},
        {'bu': 'th', 'type': 'forklift', 'id': 'FL-02', 'timestamp': iso(today), 'inspector': 'b', 'horn': 'OK'},
        {'bu': 'th', 'type': 'forklift', 'id': 'FL-03', 'timestamp': iso(today), 'inspector': 'b', 'brake': 'Fail'},
        # Repeat inspection of FL-00 earlier today still counts once
        {'bu': 'th', 'type': 'forklift', 'id': 'FL-00', 'timestamp': iso(today - timedelta(hours=1)), 'inspector': 'a', 'brake': 'fail'},
        # Yesterday, outside the daily window
        {'bu': 'th', 'type': 'forklift', 'id': 'FL-B1', 'timestamp': iso(NOW - timedelta(days=1)), 'inspector': 'c', 'brake': 'pass'},
        # Site written on the record is wrong; the registry says A
        {'bu': 'th', 'type': 'forklift', 'id': 'FL-04', 'site': 'B', 'timestamp': {'_seconds': int(today.timestamp()), '_nanoseconds': 0}, 'inspector': 'd'},
        # Unregistered asset
        {'bu': 'th', 'type': 'forklift', 'id': 'GHOST', 'site': 'A', 'timestamp': iso(today), 'inspector': 'e', 'brake': 'pass'},
        # Unparsable timestamp
        {'bu': 'th', 'type': 'forklift', 'id': 'FL-05', 'timestamp': 'not a date', 'inspector': 'f'},
        # Extinguisher monthly check ten days ago
        {'bu': 'th', 'type': 'extinguisher', 'id': 'EX-01', 'timestamp': iso(NOW - timedelta(days=10)), 'inspector': 'g', 'pressure': 'NG'},
        # Mixer family: one truck inspected through all four forms today
        {'bu': 'th', 'type': 'mixer', 'id': 'MX-01', 'timestamp': iso(NOW - timedelta(hours=4)), 'inspector': 'h', 'tyre': 'pass'},
        {'bu': 'th', 'type': 'mixertsm', 'id': 'MX-01', 'timestamp': iso(NOW - timedelta(hours=3)), 'inspector': 'i', 'tyre': 'pass'},
        {'bu': 'th', 'type': 'mixertrainer', 'id': 'MX-01', 'timestamp': iso(NOW - timedelta(hours=1)), 'inspector': 'j', 'tyre': 'no'},
        {'bu': 'th', 'type': 'mixerweek', 'id': 'MX-01', 'timestamp': iso(NOW - timedelta(hours=2)), 'inspector': 'k', 'tyre': 'pass'},
        # Car without a registered site
        {'bu': 'th', 'type': 'car', 'id': 'CAR-01', 'timestamp': iso(today), 'inspector': 'l', 'lights': 'pass'},
        # Another business unit
        {'bu': 'vn', 'type': 'forklift', 'id': 'FL-00', 'timestamp': iso(today), 'inspector': 'm'},
    ]


@pytest.fixture
def source(equipment_docs, transaction_docs):
    return JsonRecordSource(equipment_docs, transaction_docs)


@pytest.fixture
def app(source):
    """Create and configure a test application instance backed by the fixture source."""
    from inspection_kpi.main import app as flask_app

    flask_app.config.update({
        'TESTING': True,
    })
    set_record_source(source)

    yield flask_app

    set_record_source(None)


@pytest.fixture
def client(app):
    """Create a test client for the application."""
    return app.test_client()
