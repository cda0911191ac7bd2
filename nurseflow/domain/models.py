"""
Domain models for ward medication scheduling.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation; all of them are immutable, so every state
change produces a new value instead of mutating a shared one.
"""

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator


def generate_id() -> str:
    """Short opaque identifier for patients, medications and log entries."""
    return uuid.uuid4().hex[:12]


def utc_now() -> datetime:
    return datetime.now(UTC)


class Frequency(str, Enum):
    """Dosing frequency policies used on the ward."""

    STAT = "STAT"  # one-time, due immediately
    BD = "BD"  # twice a day
    TID = "TID"  # three times a day
    QID = "QID"  # four times a day
    DAILY = "DAILY"
    PRN = "PRN"  # as needed, never scheduled
    CUSTOM = "CUSTOM"  # user supplied hour interval

    @property
    def fixed_hours(self) -> int:
        """Interval from the fixed tier table (0 for STAT, PRN and CUSTOM)."""
        return _FIXED_INTERVAL_HOURS.get(self, 0)

    @property
    def is_recurring(self) -> bool:
        return self not in (Frequency.STAT, Frequency.PRN)

    def resolve_interval(self, custom_hours: int | None = None) -> int:
        """
        Resolve the authoritative interval in hours for this policy.

        CUSTOM is the only variant that carries its own payload; every other
        variant ignores ``custom_hours``.
        """
        if self is Frequency.CUSTOM:
            if custom_hours is None or custom_hours <= 0:
                raise ValueError("CUSTOM frequency requires a positive hour interval")
            return custom_hours
        return self.fixed_hours


_FIXED_INTERVAL_HOURS: dict[Frequency, int] = {
    Frequency.BD: 12,
    Frequency.TID: 8,
    Frequency.QID: 6,
    Frequency.DAILY: 24,
}


class DoseStatus(str, Enum):
    """Outcome recorded for a dose event."""

    SERVED = "SERVED"
    MISSED = "MISSED"


class Patient(BaseModel):
    """A patient on the ward. Owns its medications exclusively."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    name: str = Field(min_length=1)
    room_number: str | None = None


class Medication(BaseModel):
    """
    A prescribed medication and its current schedule state.

    The schedule state is the (frequency, next_due_at, is_completed,
    last_served_at) tuple; ``nurseflow.services.schedule_engine`` is the only
    place that computes new values for it.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    patient_id: str
    name: str = Field(min_length=1)
    dose: str = Field(min_length=1, description="Dose strength, e.g. 500mg")
    form: str | None = Field(default=None, description="Tablet, capsule, syrup...")
    route: str = Field(min_length=1, description="PO, IV, IM...")
    frequency: Frequency
    interval_hours: int = Field(default=0, ge=0)
    last_served_at: AwareDatetime | None = None
    next_due_at: AwareDatetime | None = None
    is_completed: bool = False
    notes: str | None = None

    @model_validator(mode="after")
    def no_reminder_when_inactive(self) -> "Medication":
        """PRN and completed medications never carry a pending reminder."""
        if self.next_due_at is not None and (
            self.frequency is Frequency.PRN or self.is_completed
        ):
            raise ValueError("next_due_at must be empty for PRN or completed medications")
        return self

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.interval_hours)

    @property
    def is_active(self) -> bool:
        """True when the medication can produce reminders."""
        return not self.is_completed and self.frequency is not Frequency.PRN


class MedicationDraft(BaseModel):
    """Form input used to create or edit a medication."""

    name: str
    dose: str
    route: str
    frequency: Frequency
    form: str | None = None
    custom_interval_hours: int | None = None
    notes: str | None = None


class DoseLogEntry(BaseModel):
    """Immutable record of a dose that was given or missed."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    medication_id: str
    event_at: AwareDatetime = Field(
        description="Clinically asserted time of the event, may be backdated"
    )
    status: DoseStatus
    notes: str | None = None


@dataclass(frozen=True)
class DueInstant:
    """One schedule slot of one medication: the alert deduplication key."""

    medication_id: str
    due_at: datetime

    @property
    def tag(self) -> str:
        """Tag handed to the notification platform to collapse duplicates."""
        return f"{self.medication_id}@{self.due_at.isoformat()}"


class WardSnapshot(BaseModel):
    """
    Everything the ward knows at one point in time.

    This is both the unit of every mutation and the persisted layout: three
    collections keyed by id, written and loaded wholesale.
    """

    model_config = ConfigDict(frozen=True)

    patients: dict[str, Patient] = Field(default_factory=dict)
    medications: dict[str, Medication] = Field(default_factory=dict)
    logs: dict[str, DoseLogEntry] = Field(default_factory=dict)

    def medications_for(self, patient_id: str) -> list[Medication]:
        return [m for m in self.medications.values() if m.patient_id == patient_id]
