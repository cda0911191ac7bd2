"""
Tests for the schedule engine.

Covers:
- Draft validation and interval resolution per frequency
- Serve/miss transitions for STAT, PRN, fixed tiers and CUSTOM
- Edits (switch to STAT, interval change, switch to PRN)
- Completion toggle, due badges and the upcoming-doses listing
"""

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from nurseflow.domain.models import (
    DoseStatus,
    Frequency,
    Medication,
    MedicationDraft,
    Patient,
    WardSnapshot,
)
from nurseflow.services.schedule_engine import (
    MedicationValidationError,
    ScheduleError,
    UpcomingSort,
    apply_edit,
    create_medication,
    due_status,
    record_dose,
    toggle_completion,
    upcoming_doses,
    validate_draft,
)

NOW = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)

RECURRING = [Frequency.BD, Frequency.TID, Frequency.QID, Frequency.DAILY]


def _draft(frequency: Frequency, custom: int | None = None, **overrides: str) -> MedicationDraft:
    fields = {"name": "Paracetamol", "dose": "1g", "route": "PO"}
    fields.update(overrides)
    return MedicationDraft(frequency=frequency, custom_interval_hours=custom, **fields)


def _medication(frequency: Frequency, interval_hours: int | None = None, **fields) -> Medication:
    values = {"patient_id": "p1", "name": "Paracetamol", "dose": "1g", "route": "PO"}
    values.update(fields)
    return Medication(
        frequency=frequency,
        interval_hours=frequency.fixed_hours if interval_hours is None else interval_hours,
        **values,
    )


class TestValidateDraft:
    @pytest.mark.parametrize(
        "frequency,hours",
        [
            (Frequency.BD, 12),
            (Frequency.TID, 8),
            (Frequency.QID, 6),
            (Frequency.DAILY, 24),
            (Frequency.STAT, 0),
            (Frequency.PRN, 0),
        ],
    )
    def test_fixed_policies_resolve_their_interval(self, frequency: Frequency, hours: int) -> None:
        resolved = validate_draft(_draft(frequency, custom=99)).unwrap()
        assert resolved.interval_hours == hours

    def test_custom_uses_supplied_hours(self) -> None:
        resolved = validate_draft(_draft(Frequency.CUSTOM, custom=10)).unwrap()
        assert resolved.interval_hours == 10

    @pytest.mark.parametrize("custom", [None, 0, -4])
    def test_custom_requires_positive_hours(self, custom: int | None) -> None:
        result = validate_draft(_draft(Frequency.CUSTOM, custom=custom))

        assert result.is_err()
        assert "positive" in str(result.unwrap_err())

    def test_missing_required_fields_are_all_reported(self) -> None:
        result = validate_draft(_draft(Frequency.QID, name="  ", dose="", route=" "))

        assert result.is_err()
        problems = result.unwrap_err().problems
        assert len(problems) == 3

    def test_optional_text_is_trimmed_to_none(self) -> None:
        draft = MedicationDraft(
            name=" Amoxicillin ", dose="500mg", route="PO", frequency=Frequency.TID, form="  ",
            notes=" with food ",
        )
        resolved = validate_draft(draft).unwrap()

        assert resolved.name == "Amoxicillin"
        assert resolved.form is None
        assert resolved.notes == "with food"


class TestCreateMedication:
    def test_stat_is_due_immediately(self) -> None:
        medication = create_medication("p1", _draft(Frequency.STAT), NOW)

        assert medication.next_due_at == NOW
        assert medication.is_completed is False
        assert medication.last_served_at is None

    @pytest.mark.parametrize("frequency", RECURRING + [Frequency.PRN])
    def test_other_policies_wait_for_first_dose(self, frequency: Frequency) -> None:
        medication = create_medication("p1", _draft(frequency), NOW)
        assert medication.next_due_at is None

    def test_invalid_draft_raises(self) -> None:
        with pytest.raises(MedicationValidationError):
            create_medication("p1", _draft(Frequency.CUSTOM, custom=0), NOW)


class TestRecordDose:
    @given(
        frequency=st.sampled_from(RECURRING),
        offset_minutes=st.integers(min_value=-7 * 24 * 60, max_value=7 * 24 * 60),
        had_due=st.booleans(),
    )
    def test_serving_anchors_on_serve_time(
        self, frequency: Frequency, offset_minutes: int, had_due: bool
    ) -> None:
        medication = _medication(frequency, next_due_at=NOW if had_due else None)
        served_at = NOW + timedelta(minutes=offset_minutes)

        transition = record_dose(medication, DoseStatus.SERVED, served_at)

        assert transition.medication.last_served_at == served_at
        assert transition.medication.next_due_at == served_at + timedelta(
            hours=frequency.fixed_hours
        )

    @given(
        interval_hours=st.integers(min_value=1, max_value=72),
        miss_offset_minutes=st.integers(min_value=-3 * 24 * 60, max_value=3 * 24 * 60),
    )
    def test_missing_skips_one_slot_from_schedule(
        self, interval_hours: int, miss_offset_minutes: int
    ) -> None:
        due = NOW - timedelta(hours=2)
        medication = _medication(
            Frequency.CUSTOM, interval_hours, next_due_at=due, last_served_at=NOW - timedelta(days=1)
        )

        transition = record_dose(
            medication, DoseStatus.MISSED, NOW + timedelta(minutes=miss_offset_minutes)
        )

        assert transition.medication.next_due_at == due + timedelta(hours=interval_hours)
        assert transition.medication.last_served_at == medication.last_served_at

    def test_missing_without_schedule_anchors_on_asserted_time(self) -> None:
        medication = _medication(Frequency.TID)
        missed_at = NOW - timedelta(minutes=30)

        transition = record_dose(medication, DoseStatus.MISSED, missed_at)

        assert transition.medication.next_due_at == missed_at + timedelta(hours=8)
        assert transition.medication.last_served_at is None

    def test_missing_after_several_elapsed_slots_skips_only_one(self) -> None:
        due = NOW - timedelta(hours=20)
        medication = _medication(Frequency.QID, next_due_at=due)

        transition = record_dose(medication, DoseStatus.MISSED, NOW)

        # still in the past: single-slot skip, no catch-up
        assert transition.medication.next_due_at == due + timedelta(hours=6)
        assert transition.medication.next_due_at < NOW

    @pytest.mark.parametrize("status", list(DoseStatus))
    def test_stat_completes_on_any_event(self, status: DoseStatus) -> None:
        medication = create_medication("p1", _draft(Frequency.STAT), NOW)

        transition = record_dose(medication, status, NOW + timedelta(minutes=5))

        assert transition.medication.is_completed is True
        assert transition.medication.next_due_at is None
        expected_last = NOW + timedelta(minutes=5) if status is DoseStatus.SERVED else None
        assert transition.medication.last_served_at == expected_last

    @given(statuses=st.lists(st.sampled_from(list(DoseStatus)), min_size=1, max_size=10))
    def test_prn_never_schedules(self, statuses: list[DoseStatus]) -> None:
        medication = _medication(Frequency.PRN)
        entries = []

        for i, status in enumerate(statuses):
            transition = record_dose(medication, status, NOW + timedelta(hours=i))
            medication = transition.medication
            entries.append(transition.entry)
            assert medication.next_due_at is None

        assert len(entries) == len(statuses)

    @pytest.mark.parametrize("status", list(DoseStatus))
    def test_every_event_yields_matching_entry(self, status: DoseStatus) -> None:
        medication = _medication(Frequency.BD)
        event_at = NOW - timedelta(hours=1)

        transition = record_dose(medication, status, event_at, notes="late round")

        assert transition.entry.medication_id == medication.id
        assert transition.entry.status is status
        assert transition.entry.event_at == event_at
        assert transition.entry.notes == "late round"

    def test_completed_course_only_records_history(self) -> None:
        medication = _medication(Frequency.DAILY, is_completed=True)

        transition = record_dose(medication, DoseStatus.SERVED, NOW)

        assert transition.medication.next_due_at is None
        assert transition.medication.is_completed is True
        assert transition.entry.status is DoseStatus.SERVED

    def test_recurring_without_interval_is_rejected(self) -> None:
        medication = _medication(Frequency.CUSTOM, interval_hours=0)

        with pytest.raises(ScheduleError):
            record_dose(medication, DoseStatus.SERVED, NOW)

    def test_qid_ward_round_scenario(self) -> None:
        medication = create_medication("p1", _draft(Frequency.QID), NOW)
        assert medication.next_due_at is None

        served = record_dose(medication, DoseStatus.SERVED, NOW)
        assert served.medication.next_due_at == NOW + timedelta(hours=6)
        assert served.medication.last_served_at == NOW
        assert (served.entry.status, served.entry.event_at) == (DoseStatus.SERVED, NOW)

        missed_at = NOW + timedelta(hours=7, minutes=15)
        missed = record_dose(served.medication, DoseStatus.MISSED, missed_at)
        assert missed.medication.next_due_at == NOW + timedelta(hours=12)
        assert missed.medication.last_served_at == NOW
        assert (missed.entry.status, missed.entry.event_at) == (DoseStatus.MISSED, missed_at)


class TestApplyEdit:
    def test_switching_to_stat_makes_it_due_now(self) -> None:
        medication = _medication(
            Frequency.BD, next_due_at=NOW + timedelta(hours=10), last_served_at=NOW
        )
        later = NOW + timedelta(hours=1)

        edited = apply_edit(medication, _draft(Frequency.STAT), later)

        assert edited.frequency is Frequency.STAT
        assert edited.next_due_at == later
        assert edited.interval_hours == 0

    def test_switching_completed_course_to_stat_reactivates_it(self) -> None:
        medication = _medication(Frequency.DAILY, is_completed=True)

        edited = apply_edit(medication, _draft(Frequency.STAT), NOW)

        assert edited.is_completed is False
        assert edited.next_due_at == NOW

    def test_interval_change_reanchors_on_last_serve(self) -> None:
        served_at = NOW - timedelta(hours=2)
        medication = _medication(
            Frequency.QID, last_served_at=served_at, next_due_at=served_at + timedelta(hours=6)
        )

        edited = apply_edit(medication, _draft(Frequency.BD), NOW)

        assert edited.interval_hours == 12
        assert edited.next_due_at == served_at + timedelta(hours=12)

    def test_interval_change_without_prior_dose_keeps_schedule(self) -> None:
        medication = _medication(Frequency.QID)

        edited = apply_edit(medication, _draft(Frequency.CUSTOM, custom=3), NOW)

        assert edited.interval_hours == 3
        assert edited.next_due_at is None

    def test_switching_to_prn_clears_reminder(self) -> None:
        medication = _medication(Frequency.TID, last_served_at=NOW, next_due_at=NOW)

        edited = apply_edit(medication, _draft(Frequency.PRN), NOW)

        assert edited.next_due_at is None

    def test_stat_to_prn_clears_reminder(self) -> None:
        medication = create_medication("p1", _draft(Frequency.STAT), NOW)

        edited = apply_edit(medication, _draft(Frequency.PRN), NOW)

        assert edited.next_due_at is None

    def test_text_only_edit_keeps_schedule(self) -> None:
        due = NOW + timedelta(hours=3)
        medication = _medication(Frequency.TID, last_served_at=NOW, next_due_at=due)

        edited = apply_edit(medication, _draft(Frequency.TID, name="Paracetamol IV", route="IV"), NOW)

        assert edited.next_due_at == due
        assert edited.route == "IV"
        assert edited.id == medication.id

    def test_missed_dose_uses_current_interval(self) -> None:
        served = record_dose(create_medication("p1", _draft(Frequency.QID), NOW), DoseStatus.SERVED, NOW)
        edited = apply_edit(served.medication, _draft(Frequency.BD), NOW + timedelta(hours=1))
        assert edited.next_due_at == NOW + timedelta(hours=12)

        missed = record_dose(edited, DoseStatus.MISSED, NOW + timedelta(hours=13))

        assert missed.medication.next_due_at == NOW + timedelta(hours=24)

    def test_invalid_edit_raises(self) -> None:
        medication = _medication(Frequency.TID)

        with pytest.raises(MedicationValidationError):
            apply_edit(medication, _draft(Frequency.CUSTOM, custom=-1), NOW)


class TestToggleCompletion:
    def test_completing_clears_reminder(self) -> None:
        medication = _medication(Frequency.TID, next_due_at=NOW)

        completed = toggle_completion(medication, NOW)

        assert completed.is_completed is True
        assert completed.next_due_at is None

    def test_resuming_makes_it_due_now(self) -> None:
        medication = _medication(Frequency.TID, is_completed=True)
        later = NOW + timedelta(days=2)

        resumed = toggle_completion(medication, later)

        assert resumed.is_completed is False
        assert resumed.next_due_at == later

    def test_resuming_prn_keeps_it_unscheduled(self) -> None:
        medication = _medication(Frequency.PRN, is_completed=True)

        resumed = toggle_completion(medication, NOW)

        assert resumed.is_completed is False
        assert resumed.next_due_at is None


class TestDueStatus:
    @pytest.mark.parametrize(
        "delta,expected",
        [
            (timedelta(minutes=-1), "overdue"),
            (timedelta(0), "soon"),
            (timedelta(minutes=59), "soon"),
            (timedelta(minutes=60), "future"),
            (timedelta(hours=5), "future"),
        ],
    )
    def test_badge_from_remaining_time(self, delta: timedelta, expected: str) -> None:
        medication = _medication(Frequency.QID, next_due_at=NOW + delta)
        assert due_status(medication, NOW) == expected

    def test_stat_badge(self) -> None:
        medication = create_medication("p1", _draft(Frequency.STAT), NOW)
        assert due_status(medication, NOW + timedelta(hours=3)) == "stat"

    def test_nothing_pending(self) -> None:
        assert due_status(_medication(Frequency.PRN), NOW) is None
        assert due_status(_medication(Frequency.QID, is_completed=True), NOW) is None
        assert due_status(_medication(Frequency.QID), NOW) is None


class TestUpcomingDoses:
    @pytest.fixture
    def snapshot(self) -> WardSnapshot:
        zoe = Patient(id="p1", name="Zoe Adams", room_number="4")
        adam = Patient(id="p2", name="adam Brown")
        medications = [
            _medication(Frequency.QID, id="m1", name="Morphine", patient_id="p1",
                        next_due_at=NOW + timedelta(hours=2)),
            _medication(Frequency.BD, id="m2", name="Aspirin", patient_id="p2",
                        next_due_at=NOW + timedelta(hours=1)),
            _medication(Frequency.DAILY, id="m3", name="Heparin", patient_id="gone",
                        next_due_at=NOW + timedelta(hours=3)),
            _medication(Frequency.PRN, id="m4", name="Ibuprofen", patient_id="p1"),
            _medication(Frequency.TID, id="m5", name="Cefazolin", patient_id="p1",
                        is_completed=True),
        ]
        return WardSnapshot(
            patients={p.id: p for p in (zoe, adam)},
            medications={m.id: m for m in medications},
        )

    def test_sorted_by_time_and_filtered(self, snapshot: WardSnapshot) -> None:
        doses = upcoming_doses(snapshot)
        assert [d.medication.id for d in doses] == ["m2", "m1", "m3"]

    def test_unknown_patient_label(self, snapshot: WardSnapshot) -> None:
        orphan = next(d for d in upcoming_doses(snapshot) if d.medication.id == "m3")
        assert orphan.patient_name == "Unknown"
        assert orphan.patient_room is None

    def test_sorted_by_patient(self, snapshot: WardSnapshot) -> None:
        doses = upcoming_doses(snapshot, UpcomingSort.PATIENT)
        assert [d.patient_name for d in doses] == ["adam Brown", "Unknown", "Zoe Adams"]

    def test_sorted_by_medication(self, snapshot: WardSnapshot) -> None:
        doses = upcoming_doses(snapshot, UpcomingSort.MEDICATION)
        assert [d.medication.name for d in doses] == ["Aspirin", "Heparin", "Morphine"]
