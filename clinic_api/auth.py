"""User accounts, password hashing and bearer tokens."""
from datetime import datetime, timedelta, UTC
from typing import List

import bcrypt
import jwt
from sqlalchemy import select

from clinic_api.access_guard import CallerContext, authorize, OPERATION_ROLES
from clinic_api.api.database_models import User
from clinic_api.api.models import ClinicianSummary, UserRead
from clinic_api.database import Database
from clinic_api.enums import Role
from clinic_api.errors import (
    AuthExpiredError,
    AuthInvalidError,
    DomainValidationError,
    InvalidCredentialsError,
)
from clinic_api.logging_config import get_logger

logger = get_logger(__name__)

# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


class CredentialStore:
    """
    Registers users and checks their passwords.

    Pattern: bcrypt hashing, one-way. Plain text passwords never reach the
    database or the logs.
    """

    def __init__(self, database: Database, bcrypt_rounds: int = 10):
        self.SessionLocal = database.SessionLocal
        self.bcrypt_rounds = bcrypt_rounds

    def hash_password(self, password: str) -> str:
        """Hash password using bcrypt."""
        return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode()

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        """Verify password against hash."""
        # bcrypt refuses longer input; such a password can never have been registered
        if len(password.encode()) > MAX_PASSWORD_BYTES:
            return False
        return bcrypt.checkpw(password.encode(), password_hash.encode())

    def register(self, username: str, password: str, role: Role) -> UserRead:
        """
        Create a user account.

        Args:
            username: Unique login name
            password: Plain text password
            role: Role granted to the account

        Returns:
            The created user (without the hash)

        Raises:
            DomainValidationError: If a field is missing or the username is taken
        """
        username = (username or "").strip()
        if not username or not password or not role:
            raise DomainValidationError("Please provide username, password, and role")
        if len(password.encode()) > MAX_PASSWORD_BYTES:
            raise DomainValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

        with self.SessionLocal.begin() as db:
            existing = db.execute(
                select(User.id).where(User.username == username)
            ).scalar_one_or_none()
            if existing is not None:
                raise DomainValidationError("Username already exists")

            user = User(
                username=username,
                password_hash=self.hash_password(password),
                role=Role(role),
            )
            db.add(user)
            db.flush()
            result = UserRead.model_validate(user)

        logger.info("user_registered", user_id=result.id, role=result.role.value)
        return result

    def verify_credentials(self, username: str, password: str) -> UserRead:
        """
        Check a username/password pair.

        Unknown users and wrong passwords fail the same way.

        Raises:
            InvalidCredentialsError: If the pair does not match an active user
        """
        with self.SessionLocal() as db:
            user = db.execute(
                select(User).where(User.username == username, User.deleted_at.is_(None))
            ).scalar_one_or_none()

            if user is None or not self.verify_password(password, user.password_hash):
                logger.warning("login_rejected", username=username)
                raise InvalidCredentialsError()

            return UserRead.model_validate(user)

    def list_clinicians(self, context: CallerContext) -> List[ClinicianSummary]:
        """
        List active clinicians for the appointment form.

        Raises:
            ForbiddenError: If the caller is not reception or admin
        """
        authorize(context, OPERATION_ROLES["users:list_clinicians"])

        with self.SessionLocal() as db:
            rows = db.execute(
                select(User)
                .where(User.role == Role.CLINICIAN, User.deleted_at.is_(None))
                .order_by(User.username)
            ).scalars().all()
            return [ClinicianSummary.model_validate(u) for u in rows]


class TokenService:
    """
    Issues and verifies signed, time-limited identity assertions (JWT).

    Claims: ``sub`` (user id as string), ``role``, ``iat``, ``exp``.
    """

    def __init__(self, secret: str, algorithm: str = "HS256", lifetime: timedelta = timedelta(days=1)):
        if not secret:
            raise ValueError("Token secret must not be empty")
        self.secret = secret
        self.algorithm = algorithm
        self.lifetime = lifetime

    def issue(self, subject_id: int, role: Role) -> str:
        """Create a bearer token for ``subject_id`` acting as ``role``."""
        now = datetime.now(UTC)
        payload = {
            "sub": str(subject_id),
            "role": Role(role).value,
            "iat": now,
            "exp": now + self.lifetime,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> CallerContext:
        """
        Verify a bearer token and return the identity it carries.

        Raises:
            AuthExpiredError: If the token is past its expiry
            AuthInvalidError: If the signature, structure or claims are invalid
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthExpiredError()
        except jwt.InvalidTokenError:
            raise AuthInvalidError()

        try:
            return CallerContext(subject_id=int(payload["sub"]), role=Role(payload.get("role")))
        except (TypeError, ValueError):
            raise AuthInvalidError()
