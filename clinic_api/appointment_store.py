"""Storage contract used by the appointment scheduler.

One repository instance is bound to one session/transaction. All reads skip
soft-deleted appointments.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from clinic_api.api.database_models import Appointment, Patient, User
from clinic_api.enums import Role


class AppointmentRepository:
    """SQLAlchemy implementation of the appointment storage contract."""

    def __init__(self, db: Session):
        self.db = db

    def _live(self, filters: Optional[Dict[str, Any]] = None):
        return (
            select(Appointment)
            .options(joinedload(Appointment.patient), joinedload(Appointment.clinician))
            .filter_by(deleted_at=None, **(filters or {}))
        )

    def find_conflicting(
        self,
        clinician_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None
    ) -> List[Appointment]:
        """
        Live appointments of ``clinician_id`` intersecting ``[start, end)``.

        Two half-open ranges intersect iff each starts before the other ends,
        so back-to-back appointments do not conflict.
        """
        stmt = self._live({"clinician_id": clinician_id}).where(
            Appointment.start_time < end,
            Appointment.end_time > start,
        )
        if exclude_id is not None:
            stmt = stmt.where(Appointment.id != exclude_id)
        return list(self.db.execute(stmt).unique().scalars().all())

    def insert(self, **fields) -> int:
        """Insert an appointment and return its generated id."""
        appointment = Appointment(**fields)
        self.db.add(appointment)
        self.db.flush()
        return appointment.id

    def update_fields(
        self,
        appointment_id: int,
        patch: Dict[str, Any],
        row_filter: Optional[Dict[str, Any]] = None
    ) -> Optional[Appointment]:
        """
        Apply ``patch`` to the live appointment matching id and ``row_filter``.

        Returns:
            The updated row, or None when no visible row matched
        """
        appointment = self.find_one({"id": appointment_id, **(row_filter or {})})
        if appointment is None:
            return None

        for field, value in patch.items():
            setattr(appointment, field, value)
        self.db.flush()
        # Reload so relationships follow changed foreign keys
        self.db.refresh(appointment)
        return appointment

    def find_many(self, filters: Optional[Dict[str, Any]] = None, order_by=None) -> List[Appointment]:
        """Live appointments matching ``filters``, ordered by start time by default."""
        order = order_by if order_by is not None else (Appointment.start_time.asc(), Appointment.id.asc())
        if not isinstance(order, (list, tuple)):
            order = (order,)
        stmt = self._live(filters).order_by(*order)
        return list(self.db.execute(stmt).unique().scalars().all())

    def find_one(self, filters: Dict[str, Any]) -> Optional[Appointment]:
        """First live appointment matching ``filters``, or None."""
        return self.db.execute(self._live(filters)).unique().scalars().first()

    def find_patient(self, patient_id: int) -> Optional[Patient]:
        """Live patient by id."""
        return self.db.execute(
            select(Patient).where(Patient.id == patient_id, Patient.deleted_at.is_(None))
        ).scalar_one_or_none()

    def lock_clinician(self, clinician_id: int) -> Optional[User]:
        """
        Fetch the live clinician and lock their row for the transaction.

        Concurrent scheduling for the same clinician queues on this lock
        (FOR UPDATE is a no-op on SQLite, where BEGIN IMMEDIATE already
        serialises writers).
        """
        return self.db.execute(
            select(User)
            .where(
                User.id == clinician_id,
                User.role == Role.CLINICIAN,
                User.deleted_at.is_(None),
            )
            .with_for_update()
        ).scalar_one_or_none()
