"""Pydantic models for API request/response validation.

JSON field names are camelCase (``patientId``, ``startTime``); Python code
uses the snake_case attribute names.
"""
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from clinic_api.api.database_models import as_utc
from clinic_api.enums import AppointmentStatus, Role


class CamelModel(BaseModel):
    """Base model serialising to camelCase and reading ORM attributes."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class _UTCTimesModel(CamelModel):
    """Normalise timestamps to aware UTC datetimes (SQLite hands them back naive)."""

    @field_validator("start_time", "end_time", "created_at", "updated_at", check_fields=False)
    @classmethod
    def normalise_to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


# --- Auth ---

class RegisterRequest(CamelModel):
    """Request schema for /api/auth/register."""
    username: str = Field(..., min_length=1, max_length=150, description="Unique login name")
    password: str = Field(..., min_length=1, description="Plain text password (hashed on arrival)")
    role: Role = Field(..., description="ADMIN, RECEPTION or CLINICIAN")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"username": "reception1", "password": "s3cret", "role": "RECEPTION"}
        }
    )


class LoginRequest(CamelModel):
    """Request schema for /api/auth/login."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class LoginResponse(CamelModel):
    """Response schema for /api/auth/login."""
    message: str = "Login successful"
    token: str = Field(..., description="Bearer token")


class UserRead(CamelModel):
    id: int
    username: str
    role: Role


class ClinicianSummary(CamelModel):
    """Clinician as embedded in appointments and the clinician picker."""
    id: int
    username: str


class CallerRead(CamelModel):
    """Identity carried by the caller's token."""
    subject_id: int
    role: Role


# --- Patients ---

class PatientCreate(CamelModel):
    """Request schema for creating a patient."""
    first_name: str = Field(..., min_length=1, max_length=120)
    last_name: str = Field(..., min_length=1, max_length=120)
    gender: Optional[str] = Field(None, max_length=30)
    date_of_birth: date
    allergies: Optional[str] = None
    medical_history: Optional[str] = None
    current_medications: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "firstName": "Somchai",
                "lastName": "Jaidee",
                "gender": "Male",
                "dateOfBirth": "1985-04-12",
                "allergies": "Penicillin",
                "medicalHistory": "Hypertension",
                "currentMedications": "Amlodipine 5mg"
            }
        }
    )


class PatientUpdate(CamelModel):
    """Partial update of a patient; omitted fields are left unchanged."""
    first_name: Optional[str] = Field(None, min_length=1, max_length=120)
    last_name: Optional[str] = Field(None, min_length=1, max_length=120)
    gender: Optional[str] = Field(None, max_length=30)
    date_of_birth: Optional[date] = None
    allergies: Optional[str] = None
    medical_history: Optional[str] = None
    current_medications: Optional[str] = None


class PatientRead(_UTCTimesModel):
    id: int
    record_number: str
    first_name: str
    last_name: str
    gender: Optional[str] = None
    date_of_birth: date
    allergies: Optional[str] = None
    medical_history: Optional[str] = None
    current_medications: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PatientSummary(CamelModel):
    """Patient as embedded in appointments."""
    id: int
    first_name: str
    last_name: str
    record_number: str


# --- Appointments ---

class AppointmentCreate(_UTCTimesModel):
    """Request schema for booking an appointment."""
    patient_id: int = Field(..., gt=0)
    clinician_id: int = Field(..., gt=0)
    start_time: datetime
    end_time: datetime
    note: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "patientId": 1,
                "clinicianId": 3,
                "startTime": "2025-11-20T10:00:00Z",
                "endTime": "2025-11-20T11:00:00Z",
                "note": "First visit"
            }
        }
    )


class AppointmentUpdate(_UTCTimesModel):
    """
    Update payload. Which fields take effect depends on the caller's role:
    clinicians may set ``status`` and ``clinicianNote``; reception and admins
    may set the scheduling fields and ``note``. Other fields are ignored.
    """
    patient_id: Optional[int] = Field(None, gt=0)
    clinician_id: Optional[int] = Field(None, gt=0)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    note: Optional[str] = None
    status: Optional[AppointmentStatus] = None
    clinician_note: Optional[str] = None


class AppointmentRead(_UTCTimesModel):
    id: int
    record_number: str
    patient_id: int
    clinician_id: int
    start_time: datetime
    end_time: datetime
    note: Optional[str] = None
    clinician_note: Optional[str] = None
    status: AppointmentStatus
    created_by_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    patient: PatientSummary
    clinician: ClinicianSummary


# --- Errors ---

class ErrorResponse(BaseModel):
    """Error response schema."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Detailed error information")
    code: Optional[str] = Field(None, description="Error code")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Conflict",
                "detail": "Appointment time conflicts with an existing appointment.",
                "code": "CONFLICT"
            }
        }
    )
