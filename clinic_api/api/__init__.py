"""API package initialization."""
from clinic_api.api.models import AppointmentRead, ErrorResponse, PatientRead

__all__ = ["AppointmentRead", "ErrorResponse", "PatientRead"]
