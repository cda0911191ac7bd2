"""
Append-only dose history.

Entries are only ever added. Corrections are modelled as new entries, so
nothing in this module edits or removes an existing one.
"""

from collections import Counter
from collections.abc import Callable, Iterable, Iterator

import structlog

from nurseflow.domain.models import DoseLogEntry, DoseStatus, WardSnapshot

logger = structlog.get_logger(__name__)


def append(snapshot: WardSnapshot, entry: DoseLogEntry) -> WardSnapshot:
    """Return a snapshot that additionally contains ``entry``."""
    if entry.id in snapshot.logs:
        # ids are random; a clash means the same entry was appended twice
        logger.warning("dose_log_duplicate_id", entry_id=entry.id)
        return snapshot
    return snapshot.model_copy(update={"logs": {**snapshot.logs, entry.id: entry}})


def entries_for(snapshot: WardSnapshot, medication_id: str) -> list[DoseLogEntry]:
    """Entries of one medication, newest event first."""
    entries = [e for e in snapshot.logs.values() if e.medication_id == medication_id]
    entries.sort(key=lambda e: e.event_at, reverse=True)
    return entries


class DoseHistory(Iterable[DoseLogEntry]):
    """
    Lazy, restartable view over one medication's history.

    Each iteration reads the store afresh, so a view obtained before new
    doses were logged still shows them the next time it is iterated.
    """

    def __init__(self, source: Callable[[], WardSnapshot], medication_id: str) -> None:
        self._source = source
        self.medication_id = medication_id

    def __iter__(self) -> Iterator[DoseLogEntry]:
        yield from entries_for(self._source(), self.medication_id)

    def __len__(self) -> int:
        return sum(1 for e in self._source().logs.values() if e.medication_id == self.medication_id)

    def __repr__(self) -> str:
        return f"DoseHistory(medication_id={self.medication_id!r})"


def query(source: Callable[[], WardSnapshot], medication_id: str) -> DoseHistory:
    return DoseHistory(source, medication_id)


def history_for_patient(snapshot: WardSnapshot, patient_id: str) -> list[DoseLogEntry]:
    """
    Entries for the patient's current medications.

    Logs left behind by a deleted patient or medication are never reachable
    from here.
    """
    medication_ids = {m.id for m in snapshot.medications_for(patient_id)}
    entries = [e for e in snapshot.logs.values() if e.medication_id in medication_ids]
    entries.sort(key=lambda e: e.event_at, reverse=True)
    return entries


def count_by_status(entries: Iterable[DoseLogEntry]) -> dict[DoseStatus, int]:
    counts = Counter(e.status for e in entries)
    return {status: counts.get(status, 0) for status in DoseStatus}
