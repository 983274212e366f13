"""Patient registry: CRUD over patient records with soft deletion."""
from typing import List

from sqlalchemy import select

from clinic_api.access_guard import OPERATION_ROLES, CallerContext, authorize
from clinic_api.api.database_models import (
    PLACEHOLDER_RECORD_NUMBER,
    Patient,
    format_record_number,
    utc_now,
)
from clinic_api.api.models import PatientCreate, PatientRead, PatientUpdate
from clinic_api.database import Database
from clinic_api.errors import NotFoundError
from clinic_api.logging_config import get_logger

logger = get_logger(__name__)

NOT_FOUND_MESSAGE = "Patient not found"


class PatientRegistry:
    """
    Manages patient records.

    Reads are open to every authenticated role; writes need reception or
    admin. Deleted patients are invisible to every read.
    """

    def __init__(self, database: Database):
        self.SessionLocal = database.SessionLocal

    @staticmethod
    def _live(db, patient_id: int):
        return db.execute(
            select(Patient).where(Patient.id == patient_id, Patient.deleted_at.is_(None))
        ).scalar_one_or_none()

    def create(self, context: CallerContext, payload: PatientCreate) -> PatientRead:
        """
        Register a patient and assign its record number (``PAT-001``...).

        The record number depends on the generated id, so it is written in a
        second step of the same transaction.
        """
        authorize(context, OPERATION_ROLES["patients:create"])

        with self.SessionLocal.begin() as db:
            patient = Patient(**payload.model_dump(), record_number=PLACEHOLDER_RECORD_NUMBER)
            db.add(patient)
            db.flush()

            patient.record_number = format_record_number(Patient.RECORD_PREFIX, patient.id)
            db.flush()
            result = PatientRead.model_validate(patient)

        logger.info(
            "patient_created",
            patient_id=result.id,
            record_number=result.record_number,
            created_by_id=context.subject_id,
        )
        return result

    def list(self, context: CallerContext) -> List[PatientRead]:
        """Live patients, most recently registered first."""
        authorize(context, OPERATION_ROLES["patients:list"])

        with self.SessionLocal() as db:
            rows = db.execute(
                select(Patient).where(Patient.deleted_at.is_(None)).order_by(Patient.id.desc())
            ).scalars().all()
            return [PatientRead.model_validate(p) for p in rows]

    def get(self, patient_id: int, context: CallerContext) -> PatientRead:
        authorize(context, OPERATION_ROLES["patients:get"])

        with self.SessionLocal() as db:
            patient = self._live(db, patient_id)
            if patient is None:
                raise NotFoundError(NOT_FOUND_MESSAGE)
            return PatientRead.model_validate(patient)

    def update(self, patient_id: int, context: CallerContext, changes: PatientUpdate) -> PatientRead:
        """
        Partially update a patient. Omitted fields keep their value.

        Raises:
            ForbiddenError: If the caller is not reception or admin
            NotFoundError: If the patient is absent or deleted
        """
        authorize(context, OPERATION_ROLES["patients:update"])

        patch = changes.model_dump(exclude_unset=True, exclude_none=True)

        with self.SessionLocal.begin() as db:
            patient = self._live(db, patient_id)
            if patient is None:
                raise NotFoundError(NOT_FOUND_MESSAGE)

            for field, value in patch.items():
                setattr(patient, field, value)
            db.flush()
            result = PatientRead.model_validate(patient)

        logger.info("patient_updated", patient_id=patient_id, fields=sorted(patch))
        return result

    def soft_delete(self, patient_id: int, context: CallerContext) -> None:
        """
        Mark a patient deleted.

        Raises:
            NotFoundError: If the patient is absent or already deleted
        """
        authorize(context, OPERATION_ROLES["patients:delete"])

        with self.SessionLocal.begin() as db:
            patient = self._live(db, patient_id)
            if patient is None:
                raise NotFoundError(NOT_FOUND_MESSAGE)
            patient.deleted_at = utc_now()

        logger.info("patient_deleted", patient_id=patient_id, subject_id=context.subject_id)
