"""Access guard: bearer-token authentication and role checks.

Every protected operation runs ``authenticate`` (token -> CallerContext) and
then ``authorize`` against the role set declared for it in OPERATION_ROLES.
"""
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, FrozenSet, Optional

from clinic_api.enums import Role
from clinic_api.errors import AuthMissingError, ForbiddenError
from clinic_api.logging_config import get_logger

if TYPE_CHECKING:
    from clinic_api.auth import TokenService

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "

STAFF_ROLES: FrozenSet[Role] = frozenset({Role.RECEPTION, Role.ADMIN})
ANY_ROLE: FrozenSet[Role] = frozenset(Role)

OPERATION_ROLES: Dict[str, FrozenSet[Role]] = {
    "users:list_clinicians": STAFF_ROLES,
    "patients:create": STAFF_ROLES,
    "patients:list": ANY_ROLE,
    "patients:get": ANY_ROLE,
    "patients:update": STAFF_ROLES,
    "patients:delete": STAFF_ROLES,
    "appointments:create": STAFF_ROLES,
    "appointments:list": ANY_ROLE,
    "appointments:get": ANY_ROLE,
    # Field masking per role happens inside the scheduler
    "appointments:update": ANY_ROLE,
    "appointments:delete": STAFF_ROLES,
}


@dataclass(frozen=True)
class CallerContext:
    """Identity of the caller, threaded explicitly through every operation."""
    subject_id: int
    role: Role

    def __post_init__(self):
        # Closed set: an unknown role string fails here, never reaches a check
        object.__setattr__(self, "role", Role(self.role))


def authenticate(authorization: Optional[str], token_service: "TokenService") -> CallerContext:
    """
    Verify the ``Authorization`` header and return the caller's identity.

    Args:
        authorization: Raw header value, expected as ``Bearer <token>``
        token_service: Verifier for the token

    Returns:
        CallerContext carried by the token

    Raises:
        AuthMissingError: If the header is absent or not a bearer header
        AuthInvalidError: If the token is invalid
        AuthExpiredError: If the token has expired
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise AuthMissingError()

    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise AuthMissingError()

    return token_service.verify(token)


def authorize(context: Optional[CallerContext], allowed_roles: FrozenSet[Role]) -> None:
    """
    Check that the authenticated caller holds one of ``allowed_roles``.

    Raises:
        AuthMissingError: If no caller has been authenticated
        ForbiddenError: If the caller's role is not allowed
    """
    if context is None:
        raise AuthMissingError()

    if context.role not in allowed_roles:
        logger.warning(
            "access_denied",
            subject_id=context.subject_id,
            role=context.role.value,
        )
        raise ForbiddenError()
