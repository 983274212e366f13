"""FastAPI server for the clinic API.

Features:
- Bearer-token authentication on every route except register/login/health
- Role-scoped patient and appointment operations
- Global exception handling with stable error codes
- Structured logging with request ids
- CORS for the web frontend

Run with: python -m clinic_api
"""
from contextlib import asynccontextmanager
from datetime import timedelta
from http import HTTPStatus
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinic_api import __version__
from clinic_api.access_guard import CallerContext
from clinic_api.api.dependencies import (
    get_caller_context,
    get_credential_store,
    get_patient_registry,
    get_scheduler,
    get_token_service,
)
from clinic_api.api.models import (
    AppointmentCreate,
    AppointmentRead,
    AppointmentUpdate,
    CallerRead,
    ClinicianSummary,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    PatientCreate,
    PatientRead,
    PatientUpdate,
    RegisterRequest,
    UserRead,
)
from clinic_api.auth import CredentialStore, TokenService
from clinic_api.config import Settings, get_settings
from clinic_api.database import Database
from clinic_api.errors import AuthenticationError, ClinicError
from clinic_api.logging_config import RequestIDMiddleware, get_logger, setup_structured_logging
from clinic_api.patients import PatientRegistry
from clinic_api.scheduler import AppointmentScheduler

logger = get_logger(__name__)

router = APIRouter()

# Logged at WARNING; other domain failures are routine
REFUSAL_STATUSES = frozenset({401, 403, 409})


def _error_response(status_code: int, detail: str, code: str, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=HTTPStatus(status_code).phrase,
            detail=detail,
            code=code
        ).model_dump(),
        headers=headers,
    )


def _describe_validation_errors(exc: RequestValidationError) -> List[str]:
    """Location and message of each error. Rejected input values are left out."""
    return [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]


def _register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(ClinicError)
    async def clinic_error_handler(request: Request, exc: ClinicError):
        """Render domain failures with their own status and code."""
        headers = None
        if isinstance(exc, AuthenticationError):
            headers = {"WWW-Authenticate": "Bearer"}
        log = logger.warning if exc.status_code in REFUSAL_STATUSES else logger.info
        log("request_rejected", path=request.url.path, code=exc.code)
        return _error_response(exc.status_code, exc.message, exc.code, headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors consistently."""
        errors = _describe_validation_errors(exc)
        logger.warning("request_validation_failed", path=request.url.path, errors=errors)
        return _error_response(
            422,
            "; ".join(errors),
            "VALIDATION",
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all handler for unexpected exceptions."""
        logger.error("unexpected_error", path=request.url.path, exc_info=exc)
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred. Please try again later.",
            "INTERNAL",
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the database and services on startup, release them on shutdown."""
    settings: Settings = app.state.settings

    database = Database(settings.database_url)
    token_service = TokenService(
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        lifetime=timedelta(hours=settings.token_lifetime_hours),
    )
    app.state.database = database
    app.state.token_service = token_service
    app.state.credential_store = CredentialStore(database, bcrypt_rounds=settings.bcrypt_rounds)
    app.state.patient_registry = PatientRegistry(database)
    app.state.scheduler = AppointmentScheduler(database)
    logger.info("server_started", dialect=database.dialect, version=__version__)

    yield

    database.dispose()
    logger.info("server_stopped")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Explicit settings (tests); read from the environment when None

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = get_settings()
    setup_structured_logging(settings.log_level)

    app = FastAPI(
        title="Clinic API",
        description="Authentication, patient records and appointment scheduling",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestIDMiddleware)

    _register_exception_handlers(app)
    app.include_router(router)
    return app


@router.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "service": "clinic-api",
        "version": __version__
    }


# --- Auth ---

@router.post("/api/auth/register", tags=["Auth"], response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, store: CredentialStore = Depends(get_credential_store)):
    return store.register(body.username, body.password, body.role)


@router.post("/api/auth/login", tags=["Auth"], response_model=LoginResponse)
def login(
    body: LoginRequest,
    store: CredentialStore = Depends(get_credential_store),
    tokens: TokenService = Depends(get_token_service),
):
    """Exchange username and password for a bearer token."""
    user = store.verify_credentials(body.username, body.password)
    logger.info("user_logged_in", user_id=user.id, role=user.role.value)
    return LoginResponse(token=tokens.issue(user.id, user.role))


@router.get("/api/auth/me", tags=["Auth"], response_model=CallerRead)
def whoami(context: CallerContext = Depends(get_caller_context)):
    return CallerRead(subject_id=context.subject_id, role=context.role)


@router.get("/api/users/clinicians", tags=["Users"], response_model=List[ClinicianSummary])
def list_clinicians(
    context: CallerContext = Depends(get_caller_context),
    store: CredentialStore = Depends(get_credential_store),
):
    return store.list_clinicians(context)


# --- Patients ---

@router.post("/api/patients", tags=["Patients"], response_model=PatientRead, status_code=status.HTTP_201_CREATED)
def create_patient(
    body: PatientCreate,
    context: CallerContext = Depends(get_caller_context),
    registry: PatientRegistry = Depends(get_patient_registry),
):
    return registry.create(context, body)


@router.get("/api/patients", tags=["Patients"], response_model=List[PatientRead])
def list_patients(
    context: CallerContext = Depends(get_caller_context),
    registry: PatientRegistry = Depends(get_patient_registry),
):
    return registry.list(context)


@router.get("/api/patients/{patient_id}", tags=["Patients"], response_model=PatientRead)
def get_patient(
    patient_id: int,
    context: CallerContext = Depends(get_caller_context),
    registry: PatientRegistry = Depends(get_patient_registry),
):
    return registry.get(patient_id, context)


@router.put("/api/patients/{patient_id}", tags=["Patients"], response_model=PatientRead)
def update_patient(
    patient_id: int,
    body: PatientUpdate,
    context: CallerContext = Depends(get_caller_context),
    registry: PatientRegistry = Depends(get_patient_registry),
):
    return registry.update(patient_id, context, body)


@router.delete("/api/patients/{patient_id}", tags=["Patients"], status_code=status.HTTP_204_NO_CONTENT)
def delete_patient(
    patient_id: int,
    context: CallerContext = Depends(get_caller_context),
    registry: PatientRegistry = Depends(get_patient_registry),
):
    registry.soft_delete(patient_id, context)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Appointments ---

@router.post(
    "/api/appointments",
    tags=["Appointments"],
    response_model=AppointmentRead,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
def create_appointment(
    body: AppointmentCreate,
    context: CallerContext = Depends(get_caller_context),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
):
    """
    Book an appointment.

    Raises:
        400: Empty or inverted time range, unknown patient or clinician
        403: Caller is not reception or admin
        409: Clinician already booked in that range
    """
    return scheduler.create(context, body)


@router.get("/api/appointments", tags=["Appointments"], response_model=List[AppointmentRead])
def list_appointments(
    context: CallerContext = Depends(get_caller_context),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
):
    return scheduler.list(context)


@router.get("/api/appointments/{appointment_id}", tags=["Appointments"], response_model=AppointmentRead)
def get_appointment(
    appointment_id: int,
    context: CallerContext = Depends(get_caller_context),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
):
    return scheduler.get(appointment_id, context)


@router.put(
    "/api/appointments/{appointment_id}",
    tags=["Appointments"],
    response_model=AppointmentRead,
    responses={409: {"model": ErrorResponse}},
)
def update_appointment(
    appointment_id: int,
    body: AppointmentUpdate,
    context: CallerContext = Depends(get_caller_context),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
):
    return scheduler.update(appointment_id, context, body)


@router.delete("/api/appointments/{appointment_id}", tags=["Appointments"], status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: int,
    context: CallerContext = Depends(get_caller_context),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
):
    scheduler.soft_delete(appointment_id, context)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
