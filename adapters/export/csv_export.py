"""CSV export of the ward: one row per (patient, medication)."""

import csv
import io
from datetime import date, datetime, tzinfo

from nurseflow.domain.models import Medication, Patient, WardSnapshot

CSV_HEADERS = [
    "Patient Name",
    "Room Number",
    "Medication Name",
    "Dose",
    "Form",
    "Route",
    "Frequency",
    "Status",
    "Last Served",
    "Next Due",
    "Notes",
]


def _format_timestamp(value: datetime | None, tz: tzinfo | None) -> str:
    if value is None:
        return ""
    return value.astimezone(tz).strftime("%Y-%m-%d %H:%M")


def _medication_row(
    patient: Patient, medication: Medication, tz: tzinfo | None
) -> list[str]:
    return [
        patient.name,
        patient.room_number or "",
        medication.name,
        medication.dose,
        medication.form or "",
        medication.route,
        medication.frequency.value,
        "COMPLETED" if medication.is_completed else "ACTIVE",
        _format_timestamp(medication.last_served_at, tz),
        _format_timestamp(medication.next_due_at, tz),
        medication.notes or "",
    ]


def export_csv(snapshot: WardSnapshot, tz: tzinfo | None = None) -> str:
    """
    Render the ward as CSV text.

    A patient without medications still gets one row, with the medication
    columns left empty. Timestamps are shown in ``tz`` (local time if None).
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)

    for patient in snapshot.patients.values():
        medications = snapshot.medications_for(patient.id)
        if not medications:
            writer.writerow([patient.name, patient.room_number or ""] + [""] * 9)
            continue
        for medication in medications:
            writer.writerow(_medication_row(patient, medication, tz))

    return buffer.getvalue()


def export_filename(today: date) -> str:
    return f"nurseflow_export_{today.isoformat()}.csv"
