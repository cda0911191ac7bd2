"""
Ward service: the explicit store for patients, medications and dose logs.

Every user action is a method here. Each one computes a complete new
``WardSnapshot`` (using the schedule engine for anything schedule related)
and swaps it in with a single assignment, so no reader ever observes a
medication update without its log entry. Commit listeners (persistence,
for example) run only after the swap.
"""

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from nurseflow.domain.models import (
    DoseStatus,
    Medication,
    MedicationDraft,
    Patient,
    WardSnapshot,
    utc_now,
)
from nurseflow.services import dose_log, schedule_engine
from nurseflow.services.dose_log import DoseHistory
from nurseflow.services.schedule_engine import (
    DoseTransition,
    DueStatus,
    UpcomingDose,
    UpcomingSort,
)

logger = structlog.get_logger(__name__)

CommitListener = Callable[[WardSnapshot], None]

BATCH_SERVED_NOTE = "Batch served"


class PatientValidationError(ValueError):
    """Patient form input that cannot be saved."""


def _clean_room(room_number: str | None) -> str | None:
    return room_number.strip() if room_number and room_number.strip() else None


def _require_name(name: str) -> str:
    if not name or not name.strip():
        raise PatientValidationError("patient name is required")
    return name.strip()


class WardService:
    """
    Owns the current ward snapshot and the bulk-serve selection.

    Operations on ids that no longer exist are silent no-ops: they return
    ``None``/``False`` and leave the snapshot untouched.
    """

    def __init__(
        self,
        snapshot: WardSnapshot | None = None,
        clock: Callable[[], datetime] = utc_now,
        soon_threshold: timedelta = timedelta(minutes=60),
    ) -> None:
        self._snapshot = snapshot or WardSnapshot()
        self._clock = clock
        self._soon_threshold = soon_threshold
        self._listeners: list[CommitListener] = []
        self._selected: set[str] = set()
        self._selected_patient_id: str | None = None
        self.logger = logger.bind(component="ward_service")

    # --- store ---

    @property
    def snapshot(self) -> WardSnapshot:
        return self._snapshot

    def add_commit_listener(self, listener: CommitListener) -> None:
        self._listeners.append(listener)

    def _commit(self, snapshot: WardSnapshot, action: str, **context: object) -> None:
        self._snapshot = snapshot
        self.logger.info(action, **context)

        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception as e:
                self.logger.exception("commit_listener_failed", action=action, error=str(e))

    def _with_medication(self, medication: Medication) -> WardSnapshot:
        return self._snapshot.model_copy(
            update={"medications": {**self._snapshot.medications, medication.id: medication}}
        )

    # --- patients ---

    def add_patient(self, name: str, room_number: str | None = None) -> Patient:
        patient = Patient(name=_require_name(name), room_number=_clean_room(room_number))
        self._commit(
            self._snapshot.model_copy(
                update={"patients": {**self._snapshot.patients, patient.id: patient}}
            ),
            "patient_added",
            patient_id=patient.id,
        )
        return patient

    def update_patient(
        self, patient_id: str, name: str, room_number: str | None = None
    ) -> Patient | None:
        current = self._snapshot.patients.get(patient_id)
        if current is None:
            self.logger.debug("patient_missing", patient_id=patient_id, action="update")
            return None

        patient = current.model_copy(
            update={"name": _require_name(name), "room_number": _clean_room(room_number)}
        )
        self._commit(
            self._snapshot.model_copy(
                update={"patients": {**self._snapshot.patients, patient_id: patient}}
            ),
            "patient_updated",
            patient_id=patient_id,
        )
        return patient

    def delete_patient(self, patient_id: str) -> bool:
        """Remove a patient and all of their medications. Their logs stay, unreachable."""
        if patient_id not in self._snapshot.patients:
            self.logger.debug("patient_missing", patient_id=patient_id, action="delete")
            return False

        patients = {k: p for k, p in self._snapshot.patients.items() if k != patient_id}
        removed = {m.id for m in self._snapshot.medications_for(patient_id)}
        medications = {k: m for k, m in self._snapshot.medications.items() if k not in removed}
        self._selected -= removed
        if self._selected_patient_id == patient_id:
            self._selected_patient_id = None

        self._commit(
            self._snapshot.model_copy(update={"patients": patients, "medications": medications}),
            "patient_deleted",
            patient_id=patient_id,
            medications_removed=len(removed),
        )
        return True

    # --- medications ---

    def add_medication(self, patient_id: str, draft: MedicationDraft) -> Medication | None:
        """
        Raises:
            MedicationValidationError: if the draft is incomplete.
        """
        if patient_id not in self._snapshot.patients:
            self.logger.debug("patient_missing", patient_id=patient_id, action="add_medication")
            return None

        medication = schedule_engine.create_medication(patient_id, draft, self._clock())
        self._commit(
            self._with_medication(medication),
            "medication_added",
            medication_id=medication.id,
            patient_id=patient_id,
            frequency=medication.frequency.value,
        )
        return medication

    def update_medication(self, medication_id: str, draft: MedicationDraft) -> Medication | None:
        """
        Raises:
            MedicationValidationError: if the draft is incomplete.
        """
        current = self._snapshot.medications.get(medication_id)
        if current is None:
            self.logger.debug("medication_missing", medication_id=medication_id, action="update")
            return None

        medication = schedule_engine.apply_edit(current, draft, self._clock())
        self._commit(
            self._with_medication(medication),
            "medication_updated",
            medication_id=medication_id,
            frequency=medication.frequency.value,
        )
        return medication

    def delete_medication(self, medication_id: str) -> bool:
        if medication_id not in self._snapshot.medications:
            self.logger.debug("medication_missing", medication_id=medication_id, action="delete")
            return False

        medications = {
            k: m for k, m in self._snapshot.medications.items() if k != medication_id
        }
        self._selected.discard(medication_id)
        self._commit(
            self._snapshot.model_copy(update={"medications": medications}),
            "medication_deleted",
            medication_id=medication_id,
        )
        return True

    def toggle_completion(self, medication_id: str) -> Medication | None:
        current = self._snapshot.medications.get(medication_id)
        if current is None:
            self.logger.debug("medication_missing", medication_id=medication_id, action="toggle")
            return None

        medication = schedule_engine.toggle_completion(current, self._clock())
        self._selected.discard(medication_id)
        self._commit(
            self._with_medication(medication),
            "medication_completed" if medication.is_completed else "medication_resumed",
            medication_id=medication_id,
        )
        return medication

    # --- dose events ---

    def log_dose(
        self,
        medication_id: str,
        status: DoseStatus,
        event_at: datetime | None = None,
        notes: str | None = None,
    ) -> DoseTransition | None:
        """Record a served or missed dose; the schedule and the log change together."""
        current = self._snapshot.medications.get(medication_id)
        if current is None:
            self.logger.debug("medication_missing", medication_id=medication_id, action="log")
            return None

        transition = schedule_engine.record_dose(
            current, status, event_at or self._clock(), notes=notes
        )
        snapshot = dose_log.append(self._with_medication(transition.medication), transition.entry)
        if transition.medication.is_completed:
            self._selected.discard(medication_id)
        self._commit(
            snapshot,
            "dose_logged",
            medication_id=medication_id,
            status=status.value,
            event_at=transition.entry.event_at.isoformat(),
        )
        return transition

    def quick_serve(self, medication_id: str) -> DoseTransition | None:
        return self.log_dose(medication_id, DoseStatus.SERVED)

    # --- bulk selection ---

    @property
    def selected_ids(self) -> frozenset[str]:
        return frozenset(self._selected)

    def select_patient(self, patient_id: str | None) -> None:
        """Switch the patient in focus. The bulk selection never carries over."""
        if patient_id != self._selected_patient_id:
            self._selected.clear()
        self._selected_patient_id = patient_id

    def toggle_selection(self, medication_id: str) -> bool:
        """Returns True when the medication is selected afterwards. Completed ones never are."""
        if medication_id in self._selected:
            self._selected.discard(medication_id)
            return False
        medication = self._snapshot.medications.get(medication_id)
        if medication is None or medication.is_completed:
            return False
        self._selected.add(medication_id)
        return True

    def bulk_serve(self) -> list[DoseTransition]:
        """
        Serve every selected medication at one shared time.

        Each medication is handled on its own; one failing does not stop or
        roll back the rest. The selection is cleared afterwards.
        """
        if not self._selected:
            return []

        now = self._clock()
        requested = sorted(self._selected)
        transitions = []
        for medication_id in requested:
            current = self._snapshot.medications.get(medication_id)
            if current is None or current.is_completed:
                self.logger.debug("bulk_serve_item_skipped", medication_id=medication_id)
                continue
            try:
                transition = self.log_dose(
                    medication_id, DoseStatus.SERVED, now, notes=BATCH_SERVED_NOTE
                )
            except Exception as e:
                self.logger.exception(
                    "bulk_serve_item_failed", medication_id=medication_id, error=str(e)
                )
                continue
            if transition is not None:
                transitions.append(transition)

        self.logger.info(
            "bulk_serve_completed", requested=len(requested), served=len(transitions)
        )
        self._selected.clear()
        return transitions

    # --- queries ---

    def patient_medications(self, patient_id: str) -> tuple[list[Medication], list[Medication]]:
        """(active, completed) medications of one patient."""
        medications = self._snapshot.medications_for(patient_id)
        return (
            [m for m in medications if not m.is_completed],
            [m for m in medications if m.is_completed],
        )

    def history(self, medication_id: str) -> DoseHistory:
        return dose_log.query(lambda: self._snapshot, medication_id)

    def upcoming(self, sort_by: UpcomingSort = UpcomingSort.TIME) -> list[UpcomingDose]:
        return schedule_engine.upcoming_doses(self._snapshot, sort_by)

    def due_badge(self, medication_id: str) -> DueStatus | None:
        medication = self._snapshot.medications.get(medication_id)
        if medication is None:
            return None
        return schedule_engine.due_status(medication, self._clock(), self._soon_threshold)
