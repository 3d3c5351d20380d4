"""
Shared fixtures: every test gets its own SQLite file, blob directory, event
bus and heartbeat registry.
"""

import pytest
from datetime import datetime

from corpreg.core import heartbeat
from corpreg.core.events import event_bus
from corpreg.core.schema import Registration

NOW = datetime(2025, 1, 15, 12, 0, 0)

CONTACT_FIELDS = {
    "companyName": "Acme Holdings",
    "contactPersonName": "Jordan Perera",
    "contactPersonEmail": "jordan@example.com",
    "contactPersonPhone": "+94771234567",
    "selectedPackage": "standard",
    "paymentMethod": "bank-transfer",
}

COMPANY_FIELDS = {
    "companyNameEnglish": "Acme Holdings (Private) Limited",
    "directors": [{"name": "Jordan Perera"}],
}


@pytest.fixture(autouse=True)
def test_db(tmp_path, monkeypatch):
    """Point the record store and blob storage at a temporary directory."""
    db_path = tmp_path / "registrations.db"
    monkeypatch.setenv("DB_PATH", str(db_path))
    monkeypatch.setenv("BLOB_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("EXPIRY_SWEEP_ENABLED", "false")
    monkeypatch.setenv("REFRESH_POLLING_ENABLED", "false")

    from corpreg.core.dao import ensure_schema
    ensure_schema()

    yield db_path


@pytest.fixture(autouse=True)
def clean_runtime():
    """Fresh event bus subscriptions and heartbeat state per test."""
    event_bus.clear()
    heartbeat.tasks.clear()
    heartbeat.running = False
    heartbeat.shutdown_event = None
    yield
    event_bus.clear()
    heartbeat.tasks.clear()
    heartbeat.running = False


@pytest.fixture
def captured_events():
    """Collect every event published on the global bus."""
    received = []
    event_bus.subscribe("*", received.append)
    return received


@pytest.fixture
def registration():
    """A fresh in-memory registration at the company-details stage."""
    return Registration(
        id="reg-1",
        user_id="user-1",
        current_stage="company-details",
        payload=dict(CONTACT_FIELDS),
        created_at=NOW,
        updated_at=NOW,
    )
