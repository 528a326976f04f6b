"""
Application configuration

SECURITY: Defaults are fail-safe for production.
- Carrier default credentials have no defaults (full auto-login is disabled
  until they are set)
- Runtime validation catches insecure configurations
"""
import logging
import os
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "http://localhost:5000/api/v1"


class Settings(BaseSettings):
    # App - defaults are PRODUCTION safe
    APP_NAME: str = "FreightOps Console"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"
    LOG_LEVEL: str = "INFO"

    # Order processing backend that fronts the carrier APIs
    LOGISTICS_API_BASE_URL: str = DEFAULT_API_BASE_URL
    LOGISTICS_HTTP_TIMEOUT_SECONDS: float = 30.0

    # Token lifecycle
    # Carrier tokens are treated as short-lived regardless of server TTL
    TOKEN_MAX_AGE_MINUTES: int = 10
    TOKEN_REFRESH_INTERVAL_MINUTES: int = 10
    TOKEN_STORE_PATH: Optional[str] = None  # None = memory only

    # Credential vault
    CREDENTIAL_VAULT_ENCRYPTION: bool = False
    SECRET_KEY: str = ""  # Used to derive the vault encryption key

    # Rate limit retry policy
    RETRY_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_MAX_DELAY_SECONDS: float = 30.0

    # Full auto-login credentials, one pair per carrier
    XPO_USERNAME: str = ""
    XPO_PASSWORD: str = ""
    ESTES_USERNAME: str = ""
    ESTES_PASSWORD: str = ""

    @field_validator("LOGISTICS_API_BASE_URL", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return DEFAULT_API_BASE_URL
            return v.rstrip("/")
        return v

    @field_validator("TOKEN_STORE_PATH", mode="before")
    @classmethod
    def empty_path_is_memory_only(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_production_config(self):
        """Runtime validation to catch insecure production configurations."""
        if self.ENVIRONMENT == "production":
            errors = []

            if self.DEBUG:
                errors.append(
                    "DEBUG=True is forbidden in production. "
                    "Set DEBUG=false or ENVIRONMENT=development"
                )

            if self.CREDENTIAL_VAULT_ENCRYPTION and not self.SECRET_KEY:
                errors.append(
                    "CREDENTIAL_VAULT_ENCRYPTION requires SECRET_KEY in production. "
                    "Generate one: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
                )

            if "localhost" in self.LOGISTICS_API_BASE_URL or "127.0.0.1" in self.LOGISTICS_API_BASE_URL:
                logger.warning(
                    f"Localhost LOGISTICS_API_BASE_URL in production: {self.LOGISTICS_API_BASE_URL}"
                )

            if errors:
                raise ValueError(
                    "PRODUCTION SECURITY VIOLATIONS:\n" + "\n".join(f"  - {e}" for e in errors)
                )

        if self.TOKEN_MAX_AGE_MINUTES < 0:
            raise ValueError("TOKEN_MAX_AGE_MINUTES must be >= 0")
        if self.RETRY_MAX_RETRIES < 0:
            raise ValueError("RETRY_MAX_RETRIES must be >= 0")

        return self

    def default_credentials(self, carrier: str) -> Optional[tuple]:
        """
        Environment-scoped auto-login credentials for a carrier identity.

        Returns:
            (username, password) or None if either half is missing
        """
        pairs = {
            "xpo": (self.XPO_USERNAME, self.XPO_PASSWORD),
            "estes": (self.ESTES_USERNAME, self.ESTES_PASSWORD),
        }
        username, password = pairs.get(carrier, ("", ""))
        if not username or not password:
            return None
        return username, password

    class Config:
        env_file = ".env"
        case_sensitive = True


# Try to load settings, provide helpful error on failure
try:
    settings = Settings()
except Exception:
    # In development, allow fallback defaults
    if os.getenv("ENVIRONMENT", "development") == "development":
        logger.warning(
            "Settings validation failed, using development defaults. "
            "Check the .env file."
        )
        os.environ.setdefault("ENVIRONMENT", "development")
        settings = Settings()
    else:
        raise
