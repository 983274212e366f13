"""SQLAlchemy database models for the clinic API."""
from datetime import datetime, UTC
from typing import Optional

from sqlalchemy import (
    DDL,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import declarative_base, relationship

from clinic_api.enums import AppointmentStatus, Role

Base = declarative_base()

# Written on insert, replaced once the row has an id.
PLACEHOLDER_RECORD_NUMBER = "TEMP"


def utc_now():
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_record_number(prefix: str, entity_id: int) -> str:
    """Human-facing record number: prefix plus the id zero-padded to 3 digits."""
    return f"{prefix}-{entity_id:03d}"


class User(Base):
    """Login account. Clinicians are users with the CLINICIAN role."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(150), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(Role, native_enum=False, length=20), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"


class Patient(Base):
    """Patient record, soft-deleted via ``deleted_at``."""
    __tablename__ = "patients"

    RECORD_PREFIX = "PAT"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_number = Column(String(20), nullable=False, index=True)
    first_name = Column(String(120), nullable=False)
    last_name = Column(String(120), nullable=False)
    gender = Column(String(30), nullable=True)
    date_of_birth = Column(Date, nullable=False)
    allergies = Column(Text, nullable=True)
    medical_history = Column(Text, nullable=True)
    current_medications = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    appointments = relationship("Appointment", back_populates="patient")

    def __repr__(self):
        return f"<Patient(id={self.id}, record_number={self.record_number})>"


class Appointment(Base):
    """Appointment between a patient and a clinician over ``[start_time, end_time)``."""
    __tablename__ = "appointments"

    RECORD_PREFIX = "APT"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_number = Column(String(20), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    clinician_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    note = Column(Text, nullable=True)
    clinician_note = Column(Text, nullable=True)
    status = Column(
        Enum(AppointmentStatus, native_enum=False, length=20),
        nullable=False,
        default=AppointmentStatus.PENDING
    )
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    patient = relationship("Patient", back_populates="appointments")
    clinician = relationship("User", foreign_keys=[clinician_id])
    created_by = relationship("User", foreign_keys=[created_by_id])

    __table_args__ = (
        Index("ix_appointments_clinician_window", "clinician_id", "start_time", "end_time"),
    )

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, clinician_id={self.clinician_id}, "
            f"start={self.start_time}, end={self.end_time})>"
        )


# PostgreSQL enforces the no-overlap invariant itself: no two live appointments
# of one clinician may share any instant of their half-open ranges.
OVERLAP_CONSTRAINT_NAME = "appointments_no_overlap"

event.listen(
    Appointment.__table__,
    "after_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Appointment.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE appointments ADD CONSTRAINT {OVERLAP_CONSTRAINT_NAME} "
        "EXCLUDE USING gist (clinician_id WITH =, tstzrange(start_time, end_time, '[)') WITH &&) "
        "WHERE (deleted_at IS NULL)"
    ).execute_if(dialect="postgresql"),
)
