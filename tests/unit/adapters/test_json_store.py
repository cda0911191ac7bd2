"""
Tests for JSON snapshot storage and the commit persister.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from adapters.storage.json_store import JsonSnapshotRepository, SnapshotPersister
from nurseflow.domain.models import (
    DoseLogEntry,
    DoseStatus,
    Frequency,
    Medication,
    Patient,
    WardSnapshot,
)

NOW = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)


@pytest.fixture
def snapshot() -> WardSnapshot:
    patient = Patient(id="p1", name="Jane Doe", room_number="12B")
    medication = Medication(
        id="m1", patient_id="p1", name="Paracetamol", dose="1g", route="PO",
        frequency=Frequency.QID, interval_hours=6, last_served_at=NOW, next_due_at=NOW,
    )
    entry = DoseLogEntry(id="l1", medication_id="m1", event_at=NOW, status=DoseStatus.SERVED)
    return WardSnapshot(patients={"p1": patient}, medications={"m1": medication}, logs={"l1": entry})


def test_missing_file_is_empty_ward(tmp_path: Path) -> None:
    repository = JsonSnapshotRepository(tmp_path / "ward.json")

    assert repository.load() == WardSnapshot()


def test_save_then_load(tmp_path: Path, snapshot: WardSnapshot) -> None:
    repository = JsonSnapshotRepository(tmp_path / "nested" / "ward.json")

    repository.save(snapshot)
    loaded = repository.load()

    assert loaded == snapshot
    assert loaded.medications["m1"].next_due_at == NOW
    assert list(tmp_path.joinpath("nested").iterdir()) == [tmp_path / "nested" / "ward.json"]


@pytest.mark.parametrize("content", ["{not json", '{"patients": {"p1": {"name": ""}}}'])
def test_corrupt_file_is_empty_ward(tmp_path: Path, content: str) -> None:
    path = tmp_path / "ward.json"
    path.write_text(content, encoding="utf-8")

    assert JsonSnapshotRepository(path).load() == WardSnapshot()


def test_persister_writes_synchronously_without_loop(tmp_path: Path, snapshot: WardSnapshot) -> None:
    repository = JsonSnapshotRepository(tmp_path / "ward.json")

    SnapshotPersister(repository)(snapshot)

    assert repository.load() == snapshot


def test_persister_logs_write_failure(tmp_path: Path, snapshot: WardSnapshot) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("", encoding="utf-8")
    repository = JsonSnapshotRepository(blocker / "ward.json")

    # parent is a regular file, so the write fails; the listener must not raise
    SnapshotPersister(repository)(snapshot)


@pytest.mark.asyncio
async def test_persister_keeps_latest_snapshot(tmp_path: Path, snapshot: WardSnapshot) -> None:
    repository = JsonSnapshotRepository(tmp_path / "ward.json")
    persister = SnapshotPersister(repository)

    persister(WardSnapshot())
    persister(snapshot.model_copy(update={"logs": {}}))
    persister(snapshot)
    await persister.flush()

    assert repository.load() == snapshot
