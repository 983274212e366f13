"""Shared test fixtures."""
from datetime import date, datetime, timedelta, UTC

import pytest

from clinic_api.access_guard import CallerContext
from clinic_api.api.models import PatientCreate
from clinic_api.auth import CredentialStore, TokenService
from clinic_api.database import Database
from clinic_api.enums import Role
from clinic_api.patients import PatientRegistry
from clinic_api.scheduler import AppointmentScheduler

TEST_SECRET = "test-secret"

# Fixed day all scheduling tests book on
BASE_DAY = datetime(2025, 11, 20, tzinfo=UTC)


def at(hour: int, minute: int = 0, day_offset: int = 0) -> datetime:
    """Timestamp on the test day, e.g. at(10, 30) -> 10:30 UTC."""
    return BASE_DAY + timedelta(days=day_offset, hours=hour, minutes=minute)


@pytest.fixture
def database():
    """Fresh in-memory database per test."""
    db = Database(database_url="sqlite:///:memory:")
    yield db
    db.dispose()


@pytest.fixture
def credential_store(database):
    # Minimum bcrypt cost keeps the suite fast
    return CredentialStore(database, bcrypt_rounds=4)


@pytest.fixture
def token_service():
    return TokenService(secret=TEST_SECRET)


@pytest.fixture
def patient_registry(database):
    return PatientRegistry(database)


@pytest.fixture
def scheduler(database):
    return AppointmentScheduler(database)


@pytest.fixture
def users(credential_store):
    """One user per role plus a second clinician."""
    return {
        "admin": credential_store.register("admin", "admin-pass", Role.ADMIN),
        "reception": credential_store.register("reception", "reception-pass", Role.RECEPTION),
        "clinician": credential_store.register("dr_lina", "clinician-pass", Role.CLINICIAN),
        "clinician2": credential_store.register("dr_omar", "clinician-pass", Role.CLINICIAN),
    }


@pytest.fixture
def contexts(users):
    """CallerContext for each seeded user, keyed like ``users``."""
    return {key: CallerContext(subject_id=user.id, role=user.role) for key, user in users.items()}


@pytest.fixture
def patient(patient_registry, contexts):
    """A registered patient."""
    return patient_registry.create(
        contexts["reception"],
        PatientCreate(
            first_name="Somchai",
            last_name="Jaidee",
            gender="Male",
            date_of_birth=date(1985, 4, 12),
            allergies="Penicillin",
        )
    )
