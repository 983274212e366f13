"""FastAPI dependency injection functions.

Services are built once at startup and kept on ``app.state``; these helpers
hand them to the route functions.
"""
from typing import Optional

from fastapi import Header, Request

from clinic_api.access_guard import CallerContext, authenticate
from clinic_api.auth import CredentialStore, TokenService
from clinic_api.patients import PatientRegistry
from clinic_api.scheduler import AppointmentScheduler


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_credential_store(request: Request) -> CredentialStore:
    return request.app.state.credential_store


def get_patient_registry(request: Request) -> PatientRegistry:
    return request.app.state.patient_registry


def get_scheduler(request: Request) -> AppointmentScheduler:
    return request.app.state.scheduler


def get_caller_context(
    request: Request,
    authorization: Optional[str] = Header(None, description="Bearer token"),
) -> CallerContext:
    """
    FastAPI dependency for bearer-token authentication.

    Returns:
        CallerContext for the request

    Raises:
        AuthenticationError: Rendered as 401 by the app's exception handler
    """
    return authenticate(authorization, get_token_service(request))
