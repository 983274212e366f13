"""Closed enumerations shared across the API."""
from enum import Enum


class Role(str, Enum):
    """Roles a user account can hold."""
    ADMIN = "ADMIN"
    RECEPTION = "RECEPTION"
    CLINICIAN = "CLINICIAN"


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle.

    Appointments are created PENDING; the assigned clinician marks them
    COMPLETED.
    """
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
