from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator

from riscura_vault.shared.core.exceptions import ConfigurationError

# Environment Constants
ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"
ENV_LOCAL = "local"

SECURE_DB_SSL_MODES = {"require", "verify-ca", "verify-full"}
DB_SSL_MODES = SECURE_DB_SSL_MODES | {"disable"}


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


class Settings(BaseSettings):
    """
    Configuration for the credential vault.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    DEBUG: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT
    TESTING: bool = False

    # Passphrase for integration API keys. NEXTAUTH_SECRET is the historical
    # fallback and is only consulted when the primary is unset.
    PROBO_ENCRYPTION_KEY: Optional[str] = None
    NEXTAUTH_SECRET: Optional[str] = None

    DATABASE_URL: Optional[str] = None
    DB_SSL_MODE: str = "require"  # Options: disable, require, verify-ca, verify-full
    DB_SSL_CA_CERT_PATH: Optional[str] = None
    DB_ECHO: bool = False

    # Decrypt records the format heuristic reports as current before counting
    # them as migrated. Off by default: ambiguous records are skipped.
    CREDENTIAL_MIGRATION_VERIFY_CURRENT: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        if self.TESTING and self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            raise ValueError(
                "TESTING must be false in staging/production runtime environments."
            )

        ssl_mode = self.DB_SSL_MODE.lower()
        if ssl_mode not in DB_SSL_MODES:
            raise ValueError(
                f"Invalid DB_SSL_MODE: {self.DB_SSL_MODE}. Use: disable, require, verify-ca, verify-full"
            )
        if self.is_production and ssl_mode not in SECURE_DB_SSL_MODES:
            raise ValueError(
                f"SECURITY ERROR: DB_SSL_MODE must be secure in production (current: {self.DB_SSL_MODE})."
            )
        if ssl_mode in {"verify-ca", "verify-full"} and not self.DB_SSL_CA_CERT_PATH:
            raise ValueError(
                "DB_SSL_CA_CERT_PATH is mandatory when DB_SSL_MODE is verify-ca or verify-full."
            )
        return self

    @property
    def is_production(self) -> bool:
        """True for production and staging, where insecure fallbacks are refused."""
        return self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}

    @property
    def encryption_passphrase(self) -> str:
        """
        The passphrase the credential key is derived from.

        PROBO_ENCRYPTION_KEY wins; NEXTAUTH_SECRET is the fallback. Absence of
        both is fatal.
        """
        passphrase = self.PROBO_ENCRYPTION_KEY or self.NEXTAUTH_SECRET
        if not passphrase:
            raise ConfigurationError(
                "Encryption key not configured. Set PROBO_ENCRYPTION_KEY or NEXTAUTH_SECRET.",
                code="missing_encryption_passphrase",
            )
        return passphrase

    @property
    def async_database_url(self) -> str:
        """DATABASE_URL rewritten for the async driver (Prisma-style URLs accepted)."""
        if not self.DATABASE_URL:
            raise ConfigurationError(
                "DATABASE_URL is not set. The credential store cannot be opened.",
                code="missing_database_url",
            )
        url = self.DATABASE_URL
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url
