"""Runtime configuration for the clinic API.

Values come from the environment (a local ``.env`` file is honoured).
"""
import os
from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


DEFAULT_DATABASE_URL = "sqlite:///clinic.db"
DEFAULT_CORS_ORIGINS = "http://localhost:3000"


class Settings(BaseModel):
    """Application settings."""
    database_url: str = Field(DEFAULT_DATABASE_URL, description="SQLAlchemy connection string")
    jwt_secret: str = Field(..., min_length=1, description="HMAC secret for signing tokens")
    jwt_algorithm: str = Field("HS256", description="JWT signing algorithm")
    token_lifetime_hours: int = Field(24, gt=0, description="Token lifetime in hours")
    bcrypt_rounds: int = Field(10, ge=4, le=31, description="bcrypt cost factor")
    log_level: str = Field("INFO", description="Logging level")
    cors_origins: List[str] = Field(
        default_factory=lambda: [DEFAULT_CORS_ORIGINS],
        description="Origins allowed by the CORS middleware"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from environment variables.

        Raises:
            ValueError: If JWT_SECRET is not set
        """
        load_dotenv()

        secret = os.getenv("JWT_SECRET")
        if not secret:
            raise ValueError(
                "JWT_SECRET environment variable required. "
                "Set it to a long random string before starting the server."
            )

        origins = os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)

        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            jwt_secret=secret,
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            token_lifetime_hours=int(os.getenv("TOKEN_LIFETIME_HOURS", "24")),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "10")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read from the environment once."""
    return Settings.from_env()
