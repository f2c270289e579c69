"""
Key-value snapshot store backed by a single JSON file
"""

import os
from pathlib import Path
from typing import Optional, Union

import structlog
from pydantic import ValidationError

from session_monitor.core.exceptions import PersistenceError
from session_monitor.schemas.session import Snapshot

logger = structlog.get_logger(__name__)


class FileSnapshotStore:
    """Stores the whole snapshot as one JSON document, replaced atomically"""

    backend = "file"

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[Snapshot]:
        """Return the stored snapshot, or None on first run.

        A corrupt document is deleted and reported as :class:`PersistenceError`.
        """
        if not self.path.exists():
            logger.info("No stored snapshot found", path=str(self.path))
            return None

        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"cannot read snapshot {self.path}: {e}") from e

        try:
            snapshot = Snapshot.model_validate_json(text)
        except (ValidationError, ValueError) as e:
            self._discard()
            raise PersistenceError(f"corrupt snapshot {self.path} discarded: {e}") from e

        logger.info(
            "Snapshot loaded",
            path=str(self.path),
            devices=len(snapshot.devices),
            events=len(snapshot.trailing_events),
        )
        return snapshot

    def save(self, snapshot: Snapshot):
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(snapshot.model_dump_json(), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"cannot write snapshot {self.path}: {e}") from e
        logger.debug("Snapshot saved", path=str(self.path), devices=len(snapshot.devices))

    def _discard(self):
        try:
            self.path.unlink()
            logger.warning("Corrupt snapshot removed", path=str(self.path))
        except OSError as e:
            logger.error("Failed to remove corrupt snapshot", path=str(self.path), error=str(e))
