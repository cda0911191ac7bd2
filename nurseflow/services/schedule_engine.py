"""
Medication schedule engine.

Pure functions from (current medication state, event) to new state. Nothing
here reads the clock or touches storage: callers pass ``now`` explicitly and
decide what to do with the returned values.

Policy summary:
- STAT: due at creation, completed by the first logged event.
- PRN: never scheduled, logging only records history.
- Fixed tiers and CUSTOM: unscheduled until the first dose; a served dose
  re-anchors on the serve time, a missed dose skips exactly one slot.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Literal

import structlog
from pydantic import BaseModel, ConfigDict

from nurseflow.domain.models import (
    DoseLogEntry,
    DoseStatus,
    Frequency,
    Medication,
    MedicationDraft,
    WardSnapshot,
)
from nurseflow.services.result import Result

logger = structlog.get_logger(__name__)

DueStatus = Literal["stat", "overdue", "soon", "future"]

UNKNOWN_PATIENT_LABEL = "Unknown"


class ScheduleError(ValueError):
    """Raised when a recurring schedule is asked to advance without a positive interval."""


class MedicationValidationError(ValueError):
    """Form input that cannot become a medication. Never partially applied."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = problems
        super().__init__("; ".join(problems))


class ResolvedDraft(BaseModel):
    """Validated form input with the interval resolved from the policy."""

    model_config = ConfigDict(frozen=True)

    name: str
    dose: str
    form: str | None
    route: str
    frequency: Frequency
    interval_hours: int
    notes: str | None


@dataclass(frozen=True)
class DoseTransition:
    """The new medication state and the log entry that must be stored with it."""

    medication: Medication
    entry: DoseLogEntry


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def validate_draft(draft: MedicationDraft) -> Result[ResolvedDraft, MedicationValidationError]:
    """Check required fields and resolve the interval for the chosen policy."""
    problems: list[str] = []
    if _blank(draft.name):
        problems.append("medication name is required")
    if _blank(draft.dose):
        problems.append("dose is required")
    if _blank(draft.route):
        problems.append("route is required")

    interval_hours = 0
    try:
        interval_hours = draft.frequency.resolve_interval(draft.custom_interval_hours)
    except ValueError as e:
        problems.append(str(e))

    if problems:
        return Result.err(MedicationValidationError(problems))

    return Result.ok(
        ResolvedDraft(
            name=draft.name.strip(),
            dose=draft.dose.strip(),
            form=draft.form.strip() if draft.form and draft.form.strip() else None,
            route=draft.route.strip(),
            frequency=draft.frequency,
            interval_hours=interval_hours,
            notes=draft.notes.strip() if draft.notes and draft.notes.strip() else None,
        )
    )


def _require_interval(medication: Medication) -> timedelta:
    if medication.interval_hours <= 0:
        raise ScheduleError(
            f"{medication.frequency.value} medication {medication.id} has no positive interval"
        )
    return medication.interval


def create_medication(patient_id: str, draft: MedicationDraft, now: datetime) -> Medication:
    """
    Build a new medication for a patient.

    STAT doses are due immediately; every other policy waits for the first
    logged dose before a reminder exists.

    Raises:
        MedicationValidationError: if the draft is incomplete.
    """
    resolved = validate_draft(draft).unwrap()
    return Medication(
        patient_id=patient_id,
        name=resolved.name,
        dose=resolved.dose,
        form=resolved.form,
        route=resolved.route,
        frequency=resolved.frequency,
        interval_hours=resolved.interval_hours,
        notes=resolved.notes,
        next_due_at=now if resolved.frequency is Frequency.STAT else None,
    )


def record_dose(
    medication: Medication,
    status: DoseStatus,
    event_at: datetime,
    notes: str | None = None,
) -> DoseTransition:
    """
    Apply a served or missed dose at the asserted time ``event_at``.

    Always yields exactly one log entry with the same status and timestamp.
    A missed dose with a pending reminder advances from that reminder, not
    from ``event_at``, and only by one interval even if several slots have
    already elapsed.
    """
    next_due = medication.next_due_at
    completed = medication.is_completed

    if medication.frequency is Frequency.STAT:
        next_due = None
        completed = True
    elif medication.frequency is Frequency.PRN or medication.is_completed:
        # history only
        pass
    else:
        interval = _require_interval(medication)
        if status is DoseStatus.SERVED or next_due is None:
            next_due = event_at + interval
        else:
            next_due = next_due + interval

    updated = medication.model_copy(
        update={
            "last_served_at": event_at if status is DoseStatus.SERVED else medication.last_served_at,
            "next_due_at": next_due,
            "is_completed": completed,
        }
    )
    entry = DoseLogEntry(medication_id=medication.id, event_at=event_at, status=status, notes=notes)

    logger.debug(
        "dose_recorded",
        medication_id=medication.id,
        frequency=medication.frequency.value,
        status=status.value,
        next_due_at=next_due.isoformat() if next_due else None,
    )
    return DoseTransition(medication=updated, entry=entry)


def apply_edit(medication: Medication, draft: MedicationDraft, now: datetime) -> Medication:
    """
    Apply edited form fields to an existing medication.

    - Switching to STAT makes the medication due right now.
    - Changing the interval of a recurring medication that has been served
      re-anchors the reminder on the last serve time.
    - PRN never keeps a reminder.

    Raises:
        MedicationValidationError: if the draft is incomplete.
    """
    resolved = validate_draft(draft).unwrap()

    next_due = medication.next_due_at
    completed = medication.is_completed

    if resolved.frequency is Frequency.STAT and medication.frequency is not Frequency.STAT:
        next_due = now
        completed = False
    elif resolved.frequency is Frequency.PRN:
        next_due = None
    elif resolved.interval_hours != medication.interval_hours:
        if (
            resolved.frequency.is_recurring
            and medication.last_served_at is not None
            and not completed
        ):
            next_due = medication.last_served_at + timedelta(hours=resolved.interval_hours)

    return medication.model_copy(
        update={
            **resolved.model_dump(),
            "next_due_at": next_due,
            "is_completed": completed,
        }
    )


def toggle_completion(medication: Medication, now: datetime) -> Medication:
    """Complete an active medication, or resume a completed one as due now."""
    if not medication.is_completed:
        return medication.model_copy(update={"is_completed": True, "next_due_at": None})

    resumed_due = None if medication.frequency is Frequency.PRN else now
    return medication.model_copy(update={"is_completed": False, "next_due_at": resumed_due})


def due_status(
    medication: Medication,
    now: datetime,
    soon_threshold: timedelta = timedelta(minutes=60),
) -> DueStatus | None:
    """Badge shown next to a pending dose, or None when nothing is pending."""
    if medication.next_due_at is None or not medication.is_active:
        return None
    if medication.frequency is Frequency.STAT:
        return "stat"

    remaining = medication.next_due_at - now
    if remaining < timedelta(0):
        return "overdue"
    if remaining < soon_threshold:
        return "soon"
    return "future"


class UpcomingSort(str, Enum):
    TIME = "TIME"
    PATIENT = "PATIENT"
    MEDICATION = "MEDICATION"


class UpcomingDose(BaseModel):
    """A pending dose joined with its patient's display details."""

    model_config = ConfigDict(frozen=True)

    medication: Medication
    patient_name: str
    patient_room: str | None = None


def upcoming_doses(
    snapshot: WardSnapshot, sort_by: UpcomingSort = UpcomingSort.TIME
) -> list[UpcomingDose]:
    """Active, scheduled medications for the dashboard."""
    doses = []
    for medication in snapshot.medications.values():
        if medication.next_due_at is None or not medication.is_active:
            continue
        patient = snapshot.patients.get(medication.patient_id)
        doses.append(
            UpcomingDose(
                medication=medication,
                patient_name=patient.name if patient else UNKNOWN_PATIENT_LABEL,
                patient_room=patient.room_number if patient else None,
            )
        )

    if sort_by is UpcomingSort.PATIENT:
        doses.sort(key=lambda d: d.patient_name.casefold())
    elif sort_by is UpcomingSort.MEDICATION:
        doses.sort(key=lambda d: d.medication.name.casefold())
    else:
        doses.sort(key=lambda d: d.medication.next_due_at)  # type: ignore[arg-type, return-value]
    return doses
