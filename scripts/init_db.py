#!/usr/bin/env python3
"""
Initialize the database tables, optionally importing a JSON snapshot file

Usage:
    python scripts/init_db.py                      # create tables only
    python scripts/init_db.py data/snapshot.json   # create tables and import
"""

import sys
import os

# Add the repository root to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from session_monitor.core.config import settings
from session_monitor.core.exceptions import PersistenceError
from session_monitor.core.logging import configure_logging
from session_monitor.database.connection import SessionLocal, init_database
from session_monitor.engine.registry import DeviceRegistry
from session_monitor.storage.database_store import DatabaseSnapshotStore
from session_monitor.storage.file_store import FileSnapshotStore


def import_snapshot(path: str, session_factory=SessionLocal) -> int:
    """Copy a JSON snapshot into the relational tables, returning the device count"""

    snapshot = FileSnapshotStore(path).load()
    if snapshot is None:
        print(f"⚠️  No snapshot found at {path}, nothing imported")
        return 0

    # Same normalization a restart applies: totals recomputed, open sessions cleared
    registry = DeviceRegistry.from_snapshot(snapshot, event_limit=settings.trailing_event_limit)
    DatabaseSnapshotStore(session_factory).save(registry.to_snapshot(saved_at=snapshot.saved_at))

    sessions = sum(len(device.closed_sessions) for device in snapshot.devices)
    print(f"✅ Imported {len(snapshot.devices)} devices, {sessions} sessions, "
          f"{len(snapshot.trailing_events)} events")
    return len(snapshot.devices)


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    configure_logging(settings.log_level)

    try:
        init_database()
        print("✅ Database tables created")

        if argv:
            import_snapshot(argv[0])

        print("\n🎉 Database initialization complete!")
        print("Set STORAGE_BACKEND=database to use it")
    except PersistenceError as e:
        print(f"❌ Error importing snapshot: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
