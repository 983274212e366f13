"""Appointment scheduling.

Rules enforced here:
- A clinician never has two live appointments whose ``[start, end)``
  ranges intersect. The check and the write share one transaction.
- Clinicians may change only ``status`` and ``clinician_note`` of their own
  appointments; reception and admins may change the scheduling fields and
  ``note`` of any appointment.
- Clinicians only see their own appointments. Anything they cannot see is
  reported as not found.
"""
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_api.access_guard import STAFF_ROLES, OPERATION_ROLES, CallerContext, authorize
from clinic_api.api.database_models import (
    OVERLAP_CONSTRAINT_NAME,
    PLACEHOLDER_RECORD_NUMBER,
    Appointment,
    as_utc,
    format_record_number,
    utc_now,
)
from clinic_api.api.models import AppointmentCreate, AppointmentRead, AppointmentUpdate
from clinic_api.appointment_store import AppointmentRepository
from clinic_api.database import Database
from clinic_api.enums import AppointmentStatus, Role
from clinic_api.errors import ConflictError, DomainValidationError, ForbiddenError, NotFoundError
from clinic_api.logging_config import get_logger

logger = get_logger(__name__)

CLINICIAN_FIELDS: Tuple[str, ...] = ("status", "clinician_note")
STAFF_FIELDS: Tuple[str, ...] = ("patient_id", "clinician_id", "start_time", "end_time", "note")
SCHEDULING_FIELDS = frozenset({"patient_id", "clinician_id", "start_time", "end_time"})

NOT_FOUND_MESSAGE = "Appointment not found or access denied."


def _validate_interval(start: datetime, end: datetime) -> None:
    if start >= end:
        raise DomainValidationError("startTime must be before endTime")


def _is_overlap_violation(exc: IntegrityError) -> bool:
    return OVERLAP_CONSTRAINT_NAME in str(exc.orig)


class AppointmentScheduler:
    """
    Creates, lists, fetches, updates and soft-deletes appointments.

    Pattern: Service over an injected Database; storage access goes through
    the repository built by ``repository_factory`` for each transaction.
    """

    def __init__(
        self,
        database: Database,
        repository_factory: Callable[[Session], AppointmentRepository] = AppointmentRepository
    ):
        self.SessionLocal = database.SessionLocal
        self.repository_factory = repository_factory

    @staticmethod
    def _visibility(context: CallerContext) -> Dict[str, int]:
        if context.role == Role.CLINICIAN:
            return {"clinician_id": context.subject_id}
        return {}

    def _check_references(self, store: AppointmentRepository, patient_id: int, clinician_id: int) -> None:
        if store.find_patient(patient_id) is None:
            raise DomainValidationError(f"Patient {patient_id} does not exist")
        if store.lock_clinician(clinician_id) is None:
            raise DomainValidationError(f"User {clinician_id} is not an active clinician")

    @staticmethod
    def _ensure_no_conflict(
        store: AppointmentRepository,
        clinician_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None
    ) -> None:
        conflicts = store.find_conflicting(clinician_id, start, end, exclude_id=exclude_id)
        if conflicts:
            logger.warning(
                "appointment_conflict",
                clinician_id=clinician_id,
                conflicting_ids=[a.id for a in conflicts],
            )
            raise ConflictError()

    def create(self, context: CallerContext, payload: AppointmentCreate) -> AppointmentRead:
        """
        Book an appointment.

        Args:
            context: Authenticated caller (reception or admin)
            payload: Patient, clinician, time range and administrative note

        Returns:
            The created appointment with patient and clinician summaries

        Raises:
            ForbiddenError: If the caller may not book
            DomainValidationError: If the range is empty/inverted or a reference is invalid
            ConflictError: If the clinician is already booked in that range
        """
        authorize(context, OPERATION_ROLES["appointments:create"])

        start, end = as_utc(payload.start_time), as_utc(payload.end_time)
        _validate_interval(start, end)

        try:
            with self.SessionLocal.begin() as db:
                store = self.repository_factory(db)
                self._check_references(store, payload.patient_id, payload.clinician_id)
                self._ensure_no_conflict(store, payload.clinician_id, start, end)

                appointment_id = store.insert(
                    patient_id=payload.patient_id,
                    clinician_id=payload.clinician_id,
                    start_time=start,
                    end_time=end,
                    note=payload.note,
                    status=AppointmentStatus.PENDING,
                    created_by_id=context.subject_id,
                    record_number=PLACEHOLDER_RECORD_NUMBER,
                )
                appointment = store.update_fields(
                    appointment_id,
                    {"record_number": format_record_number(Appointment.RECORD_PREFIX, appointment_id)},
                )
                result = AppointmentRead.model_validate(appointment)
        except IntegrityError as exc:
            if _is_overlap_violation(exc):
                raise ConflictError() from exc
            raise

        logger.info(
            "appointment_created",
            appointment_id=result.id,
            record_number=result.record_number,
            clinician_id=result.clinician_id,
            created_by_id=context.subject_id,
        )
        return result

    def list(self, context: CallerContext) -> List[AppointmentRead]:
        """
        Live appointments visible to the caller, earliest first.

        Clinicians get their own appointments only.
        """
        authorize(context, OPERATION_ROLES["appointments:list"])

        with self.SessionLocal() as db:
            rows = self.repository_factory(db).find_many(self._visibility(context))
            return [AppointmentRead.model_validate(a) for a in rows]

    def get(self, appointment_id: int, context: CallerContext) -> AppointmentRead:
        """
        Fetch one appointment visible to the caller.

        Raises:
            NotFoundError: If absent, deleted, or belonging to another clinician
        """
        authorize(context, OPERATION_ROLES["appointments:get"])

        with self.SessionLocal() as db:
            appointment = self.repository_factory(db).find_one(
                {"id": appointment_id, **self._visibility(context)}
            )
            if appointment is None:
                raise NotFoundError(NOT_FOUND_MESSAGE)
            return AppointmentRead.model_validate(appointment)

    def update(self, appointment_id: int, context: CallerContext, changes: AppointmentUpdate) -> AppointmentRead:
        """
        Apply the subset of ``changes`` the caller's role may write.

        Fields outside the role's set are ignored. Changing the patient,
        clinician or time range re-validates the references and re-runs the
        overlap check against every other live appointment.

        Raises:
            ForbiddenError: If the caller's role may not update appointments
            NotFoundError: If the appointment is absent, deleted or not the clinician's own
            DomainValidationError: If the resulting range or references are invalid
            ConflictError: If the new range overlaps another appointment
        """
        authorize(context, OPERATION_ROLES["appointments:update"])

        supplied = changes.model_dump(exclude_unset=True, exclude_none=True)

        if context.role == Role.CLINICIAN:
            allowed = CLINICIAN_FIELDS
            row_filter = {"clinician_id": context.subject_id}
        elif context.role in STAFF_ROLES:
            allowed = STAFF_FIELDS
            row_filter = {}
        else:
            raise ForbiddenError()

        patch = {field: supplied[field] for field in allowed if field in supplied}

        try:
            with self.SessionLocal.begin() as db:
                store = self.repository_factory(db)
                current = store.find_one({"id": appointment_id, **row_filter})
                if current is None:
                    raise NotFoundError(NOT_FOUND_MESSAGE)

                if SCHEDULING_FIELDS & patch.keys():
                    patient_id = patch.get("patient_id", current.patient_id)
                    clinician_id = patch.get("clinician_id", current.clinician_id)
                    start = as_utc(patch.get("start_time", current.start_time))
                    end = as_utc(patch.get("end_time", current.end_time))

                    _validate_interval(start, end)
                    self._check_references(store, patient_id, clinician_id)
                    self._ensure_no_conflict(store, clinician_id, start, end, exclude_id=appointment_id)

                appointment = store.update_fields(appointment_id, patch, row_filter)
                result = AppointmentRead.model_validate(appointment)
        except IntegrityError as exc:
            if _is_overlap_violation(exc):
                raise ConflictError() from exc
            raise

        logger.info(
            "appointment_updated",
            appointment_id=appointment_id,
            subject_id=context.subject_id,
            role=context.role.value,
            fields=sorted(patch),
        )
        return result

    def soft_delete(self, appointment_id: int, context: CallerContext) -> None:
        """
        Mark an appointment deleted.

        Raises:
            ForbiddenError: If the caller is not reception or admin
            NotFoundError: If the appointment is absent or already deleted
        """
        authorize(context, OPERATION_ROLES["appointments:delete"])

        with self.SessionLocal.begin() as db:
            deleted = self.repository_factory(db).update_fields(appointment_id, {"deleted_at": utc_now()})
            if deleted is None:
                raise NotFoundError(NOT_FOUND_MESSAGE)

        logger.info("appointment_deleted", appointment_id=appointment_id, subject_id=context.subject_id)
