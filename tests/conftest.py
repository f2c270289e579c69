import pytest
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from session_monitor.database.connection import init_database

T0 = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_payload(device_id, event, timestamp=None, **extra):
    """Build a raw JSON payload the way a device publishes it"""
    data = {"deviceId": device_id, "event": event}
    if timestamp is not None:
        data["timestamp"] = timestamp.isoformat() if isinstance(timestamp, datetime) else timestamp
    data.update(extra)
    return json.dumps(data).encode("utf-8")


@pytest.fixture
def snapshot_path(tmp_path):
    return tmp_path / "data" / "snapshot.json"


@pytest.fixture
def sqlite_session_factory():
    """In-memory SQLite shared across threads, with the tables created"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_database(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def mock_transport():
    """Transport double that records calls made by the supervisor"""
    return MagicMock()
