"""
Snapshot store selection
"""

import structlog

from session_monitor.core.config import Settings
from session_monitor.storage.file_store import FileSnapshotStore

logger = structlog.get_logger(__name__)


def build_snapshot_store(settings: Settings):
    """Return the snapshot store named by ``settings.storage_backend``"""
    backend = settings.storage_backend.lower()
    if backend == "file":
        return FileSnapshotStore(settings.snapshot_path)
    if backend == "database":
        from session_monitor.database.connection import SessionLocal, init_database
        from session_monitor.storage.database_store import DatabaseSnapshotStore

        init_database()
        return DatabaseSnapshotStore(SessionLocal)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
