import json
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

import structlog
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

DEV_JWT_SECRET = "amc-portal-development-secret-do-not-use-in-production"
MIN_BCRYPT_ROUNDS = 10

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhdw]?)\s*$")
_DURATION_UNITS = {
    "": "seconds",
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}


def parse_duration(value) -> timedelta:
    """Parse a lifetime such as ``"1h"``, ``"7d"`` or ``"3600"`` into a timedelta.

    Bare integers are seconds. Supported suffixes: s, m, h, d, w.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, int):
        return timedelta(seconds=value)

    match = _DURATION_RE.match(str(value).lower())
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")

    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


@dataclass(frozen=True)
class TokenConfig:
    """Everything the token codec needs, resolved once at startup."""

    secret: str
    algorithm: str = "HS256"
    access_expires_in: str = "1h"
    refresh_expires_in: str = "7d"
    issuer: str = "amc-portal"
    audience: str = "amc-portal-users"

    @property
    def access_ttl(self) -> timedelta:
        return parse_duration(self.access_expires_in)

    @property
    def refresh_ttl(self) -> timedelta:
        return parse_duration(self.refresh_expires_in)


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "AMC Portal API"
    API_PREFIX: str = "/api"

    # Database
    DATABASE_URL: str = "sqlite:///./amc_portal.db"

    # Security
    JWT_SECRET: Optional[str] = Field(default=None)
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_IN: str = "1h"
    JWT_REFRESH_EXPIRES_IN: str = "7d"
    JWT_ISSUER: str = "amc-portal"
    JWT_AUDIENCE: str = "amc-portal-users"
    BCRYPT_ROUNDS: int = MIN_BCRYPT_ROUNDS

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Celery & Redis (maintenance sweeps)
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper().strip()

    @field_validator("JWT_EXPIRES_IN", "JWT_REFRESH_EXPIRES_IN")
    @classmethod
    def validate_lifetime(cls, value: str) -> str:
        if parse_duration(value) <= timedelta(0):
            raise ValueError(f"Token lifetime must be positive: {value!r}")
        return value.strip()

    @field_validator("BCRYPT_ROUNDS")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        if value < MIN_BCRYPT_ROUNDS:
            raise ValueError(f"BCRYPT_ROUNDS must be at least {MIN_BCRYPT_ROUNDS}")
        return value

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, value):
        if isinstance(value, str):
            raw = value.strip()
            if raw.startswith("["):
                return json.loads(raw)
            return [origin.strip() for origin in raw.split(",") if origin.strip()]
        return value

    @model_validator(mode="after")
    def validate_jwt_secret(self):
        secret = (self.JWT_SECRET or "").strip()
        if self.ENVIRONMENT == "production":
            if len(secret) < 32 or "change" in secret.lower() or "secret-key-here" in secret.lower():
                raise ValueError("JWT_SECRET must be at least 32 chars and not use placeholders in production")
        elif not secret:
            logger.warning("jwt_secret_not_configured", environment=self.ENVIRONMENT)
            self.JWT_SECRET = DEV_JWT_SECRET
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    def token_config(self) -> TokenConfig:
        return TokenConfig(
            secret=self.JWT_SECRET,
            algorithm=self.JWT_ALGORITHM,
            access_expires_in=self.JWT_EXPIRES_IN,
            refresh_expires_in=self.JWT_REFRESH_EXPIRES_IN,
            issuer=self.JWT_ISSUER,
            audience=self.JWT_AUDIENCE,
        )

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
