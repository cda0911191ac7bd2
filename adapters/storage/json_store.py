"""
JSON snapshot storage for the ward.

The whole ward is one document: patients, medications and logs, each keyed
by id. It is loaded once at startup and rewritten in full after every
committed change; there are no partial writes.
"""

import asyncio
import os
import tempfile
from pathlib import Path

import structlog
from pydantic import ValidationError

from nurseflow.domain.models import WardSnapshot

logger = structlog.get_logger(__name__)


class JsonSnapshotRepository:
    """Reads and writes a WardSnapshot as a single JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.logger = logger.bind(component="json_snapshot_repository", path=str(self.path))

    def load(self) -> WardSnapshot:
        """
        Load the stored snapshot.

        A missing file is a fresh ward. An unreadable or invalid file is
        logged and also treated as a fresh ward, rather than loading a
        partial store.
        """
        if not self.path.exists():
            self.logger.info("snapshot_not_found")
            return WardSnapshot()

        try:
            snapshot = WardSnapshot.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            self.logger.error("snapshot_load_failed", error=str(e))
            return WardSnapshot()

        self.logger.info(
            "snapshot_loaded",
            patients=len(snapshot.patients),
            medications=len(snapshot.medications),
            logs=len(snapshot.logs),
        )
        return snapshot

    def save(self, snapshot: WardSnapshot) -> None:
        """Write the snapshot atomically (temp file, then replace)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(snapshot.model_dump_json(indent=2))
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self.logger.debug("snapshot_saved", logs=len(snapshot.logs))

    async def save_async(self, snapshot: WardSnapshot) -> None:
        await asyncio.to_thread(self.save, snapshot)


class SnapshotPersister:
    """
    Commit listener that writes each new snapshot.

    Inside a running event loop the write is scheduled on a worker thread so
    the state transition that triggered it never waits on disk I/O. Writes
    are serialized and always store the newest snapshot, so a burst of
    commits ends with the latest state on disk. Without a loop it writes
    synchronously.
    """

    def __init__(self, repository: JsonSnapshotRepository) -> None:
        self.repository = repository
        self._latest: WardSnapshot | None = None
        self._written: WardSnapshot | None = None
        self._lock: asyncio.Lock | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self.logger = logger.bind(component="snapshot_persister")

    def __call__(self, snapshot: WardSnapshot) -> None:
        self._latest = snapshot
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._save(snapshot)
            return

        task = loop.create_task(self._save_latest())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _save(self, snapshot: WardSnapshot) -> None:
        try:
            self.repository.save(snapshot)
            self._written = snapshot
        except OSError as e:
            self.logger.error("snapshot_save_failed", error=str(e))

    async def _save_latest(self) -> None:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            snapshot = self._latest
            if snapshot is None or snapshot is self._written:
                return
            try:
                await self.repository.save_async(snapshot)
                self._written = snapshot
            except OSError as e:
                self.logger.error("snapshot_save_failed", error=str(e))

    async def flush(self) -> None:
        """Wait for scheduled writes to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
