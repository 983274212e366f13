"""Test appointment scheduling: conflicts, visibility and role-scoped updates."""
import threading
import pytest
from datetime import date

from conftest import at
from clinic_api.access_guard import CallerContext
from clinic_api.api.models import AppointmentCreate, AppointmentUpdate, PatientCreate
from clinic_api.auth import CredentialStore
from clinic_api.database import Database
from clinic_api.enums import AppointmentStatus, Role
from clinic_api.errors import ConflictError, DomainValidationError, ForbiddenError, NotFoundError
from clinic_api.patients import PatientRegistry
from clinic_api.scheduler import AppointmentScheduler


@pytest.fixture
def book(scheduler, contexts, users, patient):
    """Factory booking an appointment as reception (default clinician: dr_lina)."""
    def _book(start, end, clinician="clinician", note=None, caller="reception"):
        return scheduler.create(
            contexts[caller],
            AppointmentCreate(
                patient_id=patient.id,
                clinician_id=users[clinician].id,
                start_time=start,
                end_time=end,
                note=note,
            )
        )
    return _book


class TestCreate:
    """Booking appointments."""

    def test_create_returns_pending_appointment_with_summaries(self, book, users, patient):
        """New appointments start PENDING and carry patient and clinician summaries."""
        appointment = book(at(10), at(11), note="First visit")

        assert appointment.status == AppointmentStatus.PENDING
        assert appointment.note == "First visit"
        assert appointment.created_by_id == users["reception"].id
        assert appointment.patient.id == patient.id
        assert appointment.patient.record_number == patient.record_number
        assert appointment.patient.first_name == "Somchai"
        assert appointment.clinician.id == users["clinician"].id
        assert appointment.clinician.username == "dr_lina"

    def test_create_assigns_record_number_from_id(self, book):
        """Record number should be APT- plus the zero-padded id."""
        first = book(at(9), at(10))
        second = book(at(10), at(11))

        assert first.record_number == f"APT-{first.id:03d}"
        assert second.record_number == f"APT-{second.id:03d}"
        assert first.record_number != second.record_number

    def test_overlapping_create_fails_with_conflict(self, book):
        """Partially overlapping range for the same clinician should raise ConflictError."""
        book(at(10), at(11))

        with pytest.raises(ConflictError):
            book(at(10, 30), at(11, 30))

    def test_contained_and_containing_ranges_conflict(self, book):
        """Ranges inside or around an existing booking should conflict."""
        book(at(10), at(12))

        with pytest.raises(ConflictError):
            book(at(10, 30), at(11))
        with pytest.raises(ConflictError):
            book(at(9), at(13))

    def test_back_to_back_appointments_do_not_conflict(self, book):
        """An appointment starting exactly when another ends is allowed."""
        book(at(10), at(11))

        after = book(at(11), at(12))
        before = book(at(9), at(10))

        assert after.start_time == at(11)
        assert before.end_time == at(10)

    def test_same_range_for_different_clinicians_is_allowed(self, book):
        """Different clinicians may be booked at the same time."""
        book(at(10), at(11), clinician="clinician")

        other = book(at(10), at(11), clinician="clinician2")

        assert other.clinician.username == "dr_omar"

    def test_deleted_appointment_no_longer_blocks_the_slot(self, book, scheduler, contexts):
        """Soft-deleted appointments should not block new bookings."""
        first = book(at(10), at(11))
        scheduler.soft_delete(first.id, contexts["reception"])

        replacement = book(at(10), at(11))

        assert replacement.id != first.id

    @pytest.mark.parametrize("start,end", [(at(11), at(10)), (at(10), at(10))])
    def test_inverted_or_empty_range_fails_validation(self, book, start, end):
        """start >= end should raise DomainValidationError."""
        with pytest.raises(DomainValidationError):
            book(start, end)

    def test_clinician_cannot_create(self, book):
        """Clinicians may not book appointments."""
        with pytest.raises(ForbiddenError):
            book(at(10), at(11), caller="clinician")

    def test_admin_can_create(self, book, users):
        """Admins book like reception and are recorded as creator."""
        appointment = book(at(10), at(11), caller="admin")
        assert appointment.created_by_id == users["admin"].id

    def test_unknown_patient_fails_validation(self, scheduler, contexts, users):
        """Booking a missing patient should raise DomainValidationError."""
        with pytest.raises(DomainValidationError):
            scheduler.create(
                contexts["reception"],
                AppointmentCreate(patient_id=999, clinician_id=users["clinician"].id,
                                  start_time=at(10), end_time=at(11))
            )

    def test_non_clinician_user_cannot_be_booked(self, scheduler, contexts, users, patient):
        """Only users with the CLINICIAN role can be booked."""
        with pytest.raises(DomainValidationError):
            scheduler.create(
                contexts["reception"],
                AppointmentCreate(patient_id=patient.id, clinician_id=users["reception"].id,
                                  start_time=at(10), end_time=at(11))
            )


class TestVisibility:
    """Listing and fetching."""

    def test_reception_lists_all_in_start_order(self, book, scheduler, contexts):
        """Reception sees every appointment, earliest first."""
        late = book(at(15), at(16), clinician="clinician")
        early = book(at(8), at(9), clinician="clinician2")
        middle = book(at(12), at(13), clinician="clinician")

        listed = scheduler.list(contexts["reception"])

        assert [a.id for a in listed] == [early.id, middle.id, late.id]

    def test_clinician_lists_only_own_appointments(self, book, scheduler, contexts, users):
        """Clinicians see only their own appointments, earliest first."""
        own_late = book(at(15), at(16), clinician="clinician")
        book(at(8), at(9), clinician="clinician2")
        own_early = book(at(9), at(10), clinician="clinician")

        listed = scheduler.list(contexts["clinician"])

        assert [a.id for a in listed] == [own_early.id, own_late.id]
        assert all(a.clinician_id == users["clinician"].id for a in listed)

    def test_clinician_cannot_get_other_clinicians_appointment(self, book, scheduler, contexts):
        """Another clinician's appointment should look absent."""
        foreign = book(at(10), at(11), clinician="clinician2")

        with pytest.raises(NotFoundError):
            scheduler.get(foreign.id, contexts["clinician"])

    def test_get_returns_joined_shape(self, book, scheduler, contexts, patient):
        """Fetched appointment includes patient and clinician summaries."""
        created = book(at(10), at(11))

        fetched = scheduler.get(created.id, contexts["clinician"])

        assert fetched.record_number == created.record_number
        assert fetched.patient.last_name == patient.last_name
        assert fetched.clinician.username == "dr_lina"

    def test_soft_deleted_appointment_is_invisible_to_every_role(self, book, scheduler, contexts):
        """Deleted appointments disappear for admin, reception and clinicians."""
        appointment = book(at(10), at(11))
        scheduler.soft_delete(appointment.id, contexts["admin"])

        for role in ("admin", "reception", "clinician"):
            assert scheduler.list(contexts[role]) == []
            with pytest.raises(NotFoundError):
                scheduler.get(appointment.id, contexts[role])

    def test_get_missing_appointment_is_not_found(self, scheduler, contexts):
        """Unknown id should raise NotFoundError."""
        with pytest.raises(NotFoundError):
            scheduler.get(12345, contexts["admin"])


class TestClinicianUpdate:
    """Clinicians write status and clinical notes of their own appointments."""

    def test_clinician_completes_own_appointment(self, book, scheduler, contexts):
        """Clinician can mark their own appointment COMPLETED."""
        appointment = book(at(10), at(11))

        updated = scheduler.update(
            appointment.id, contexts["clinician"], AppointmentUpdate(status="COMPLETED")
        )

        assert updated.status == AppointmentStatus.COMPLETED
        assert scheduler.get(appointment.id, contexts["reception"]).status == AppointmentStatus.COMPLETED

    def test_clinician_fields_outside_scope_are_ignored(self, book, scheduler, contexts):
        """Scheduling fields sent by a clinician should be ignored."""
        appointment = book(at(10), at(11), note="Bring lab results")

        updated = scheduler.update(
            appointment.id,
            contexts["clinician"],
            AppointmentUpdate(note="x", start_time=at(14), end_time=at(15), clinician_note="BP normal")
        )

        assert updated.note == "Bring lab results"
        assert updated.start_time == at(10)
        assert updated.end_time == at(11)
        assert updated.clinician_note == "BP normal"

    def test_clinician_updating_other_clinicians_appointment_is_not_found(self, book, scheduler, contexts):
        """Updating another clinician's appointment should raise NotFoundError."""
        foreign = book(at(10), at(11), clinician="clinician2")

        with pytest.raises(NotFoundError):
            scheduler.update(foreign.id, contexts["clinician"], AppointmentUpdate(status="COMPLETED"))

        assert scheduler.get(foreign.id, contexts["admin"]).status == AppointmentStatus.PENDING

    def test_invalid_status_is_rejected(self):
        """Status outside PENDING/COMPLETED should fail validation."""
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            AppointmentUpdate(status="CANCELLED")


class TestStaffUpdate:
    """Reception and admins reschedule and annotate appointments."""

    def test_reception_reschedules_and_keeps_record_number(self, book, scheduler, contexts):
        """Rescheduling should keep the record number."""
        appointment = book(at(10), at(11))

        updated = scheduler.update(
            appointment.id,
            contexts["reception"],
            AppointmentUpdate(start_time=at(14), end_time=at(15), note="Moved to afternoon")
        )

        assert updated.start_time == at(14)
        assert updated.end_time == at(15)
        assert updated.note == "Moved to afternoon"
        assert updated.record_number == appointment.record_number

    def test_reception_cannot_write_clinical_fields(self, book, scheduler, contexts):
        """Status and clinician note sent by reception should be ignored."""
        appointment = book(at(10), at(11))

        updated = scheduler.update(
            appointment.id,
            contexts["reception"],
            AppointmentUpdate(status="COMPLETED", clinician_note="forged")
        )

        assert updated.status == AppointmentStatus.PENDING
        assert updated.clinician_note is None

    def test_reschedule_into_occupied_slot_conflicts(self, book, scheduler, contexts):
        """Moving into a booked range should raise ConflictError and leave the row unchanged."""
        book(at(10), at(11))
        movable = book(at(12), at(13))

        with pytest.raises(ConflictError):
            scheduler.update(
                movable.id, contexts["reception"], AppointmentUpdate(start_time=at(10, 30), end_time=at(11, 30))
            )

        assert scheduler.get(movable.id, contexts["reception"]).start_time == at(12)

    def test_reschedule_overlapping_itself_is_allowed(self, book, scheduler, contexts):
        """An appointment never conflicts with its own previous range."""
        appointment = book(at(10), at(11))

        updated = scheduler.update(
            appointment.id, contexts["reception"], AppointmentUpdate(end_time=at(11, 30))
        )

        assert updated.end_time == at(11, 30)

    def test_reassigning_to_busy_clinician_conflicts(self, book, scheduler, contexts, users):
        """Reassigning to a clinician booked at that time should conflict."""
        book(at(10), at(11), clinician="clinician2")
        appointment = book(at(10), at(11), clinician="clinician")

        with pytest.raises(ConflictError):
            scheduler.update(
                appointment.id, contexts["admin"], AppointmentUpdate(clinician_id=users["clinician2"].id)
            )

    def test_reassigning_clinician_moves_visibility(self, book, scheduler, contexts, users):
        """After reassignment only the new clinician sees the appointment."""
        appointment = book(at(10), at(11), clinician="clinician")

        updated = scheduler.update(
            appointment.id, contexts["admin"], AppointmentUpdate(clinician_id=users["clinician2"].id)
        )

        assert updated.clinician.username == "dr_omar"
        assert scheduler.list(contexts["clinician"]) == []
        assert [a.id for a in scheduler.list(contexts["clinician2"])] == [appointment.id]

    def test_changing_only_end_before_start_fails_validation(self, book, scheduler, contexts):
        """The merged range is validated when only one end changes."""
        appointment = book(at(10), at(11))

        with pytest.raises(DomainValidationError):
            scheduler.update(appointment.id, contexts["reception"], AppointmentUpdate(end_time=at(9)))

    def test_changing_patient(self, book, scheduler, contexts, patient_registry):
        """Staff can move an appointment to another patient."""
        appointment = book(at(10), at(11))
        other = patient_registry.create(
            contexts["reception"],
            PatientCreate(first_name="Malee", last_name="Suksan", date_of_birth=date(1990, 1, 1))
        )

        updated = scheduler.update(appointment.id, contexts["reception"], AppointmentUpdate(patient_id=other.id))

        assert updated.patient.id == other.id
        assert updated.patient.record_number == other.record_number

    def test_update_of_deleted_appointment_is_not_found(self, book, scheduler, contexts):
        """Deleted appointments cannot be updated."""
        appointment = book(at(10), at(11))
        scheduler.soft_delete(appointment.id, contexts["reception"])

        with pytest.raises(NotFoundError):
            scheduler.update(appointment.id, contexts["reception"], AppointmentUpdate(note="late"))


class TestSoftDelete:

    def test_clinician_cannot_delete(self, book, scheduler, contexts):
        """Clinicians may not delete appointments."""
        appointment = book(at(10), at(11))

        with pytest.raises(ForbiddenError):
            scheduler.soft_delete(appointment.id, contexts["clinician"])

    def test_deleting_twice_reports_not_found(self, book, scheduler, contexts):
        """Second delete should raise NotFoundError."""
        appointment = book(at(10), at(11))
        scheduler.soft_delete(appointment.id, contexts["reception"])

        with pytest.raises(NotFoundError):
            scheduler.soft_delete(appointment.id, contexts["reception"])

    def test_deleting_missing_appointment_reports_not_found(self, scheduler, contexts):
        """Deleting an unknown id should raise NotFoundError."""
        with pytest.raises(NotFoundError):
            scheduler.soft_delete(999, contexts["admin"])


class TestConcurrentBooking:
    """Simultaneous bookings against a file-backed database."""

    THREADS = 8

    @pytest.fixture
    def file_database(self, tmp_path):
        db = Database(database_url=f"sqlite:///{tmp_path / 'clinic.db'}")
        yield db
        db.dispose()

    def test_only_one_of_simultaneous_overlapping_bookings_succeeds(self, file_database):
        """Threads released together for the same slot: one books, the rest conflict."""
        credentials = CredentialStore(file_database, bcrypt_rounds=4)
        reception = credentials.register("reception", "reception-pass", Role.RECEPTION)
        clinician = credentials.register("dr_lina", "clinician-pass", Role.CLINICIAN)
        context = CallerContext(subject_id=reception.id, role=reception.role)
        patient = PatientRegistry(file_database).create(
            context,
            PatientCreate(first_name="Somchai", last_name="Jaidee", date_of_birth=date(1985, 4, 12))
        )
        scheduler = AppointmentScheduler(file_database)
        barrier = threading.Barrier(self.THREADS)
        booked, conflicts, failures = [], [], []

        def book(offset):
            # Every range overlaps 10:00-10:30
            payload = AppointmentCreate(
                patient_id=patient.id,
                clinician_id=clinician.id,
                start_time=at(10, offset),
                end_time=at(10, 30 + offset),
            )
            barrier.wait()
            try:
                booked.append(scheduler.create(context, payload))
            except ConflictError:
                conflicts.append(offset)
            except Exception as exc:
                failures.append(exc)

        threads = [threading.Thread(target=book, args=(i,)) for i in range(self.THREADS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert failures == []
        assert len(booked) == 1
        assert len(conflicts) == self.THREADS - 1
        assert [a.id for a in scheduler.list(context)] == [booked[0].id]
