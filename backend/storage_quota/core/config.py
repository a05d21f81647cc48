"""Application configuration loaded from environment variables.

Settings for database, API, authentication, the storage accounting engine
and rate limiting. Uses pydantic-settings for validation and .env file support.
"""

import uuid

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "storage_quota_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32

# Minimum length for SERVICE_API_TOKEN when it is configured
_MIN_SERVICE_TOKEN_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "storage_quota"
    database_user: str = "storage_quota_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000

    # CORS (Security)
    # Production: Set ALLOWED_ORIGINS to the web client domain(s)
    allowed_origins: list[str] = ["http://localhost:8081"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Authentication
    # Local-first mode: DEFAULT_USER_ID provides user context without JWT
    # Hosted mode: auth_enabled=True, JWT cookie required on every request
    default_user_id: uuid.UUID | None = None
    auth_enabled: bool = False
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "storage-quota"
    auth_audience: str = "storage-quota"
    auth_cookie_name: str = "storage-quota.session-token"

    # Service credential for scheduled jobs (cleanup sweep).
    # Empty means the internal endpoints reject every caller.
    service_api_token: SecretStr = SecretStr("")

    # Storage accounting
    upload_stale_after_minutes: int = 120
    upload_cleanup_batch_size: int = 500

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_uploads: str = "30/minute"  # POST /storage/uploads
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate configuration invariants and production security.

        Checks:
        - Stale-upload threshold and cleanup batch size must be positive
        - CORS must not use wildcard origin (incompatible with credentials)
        - SERVICE_API_TOKEN, when set, must be >= 32 chars
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars when auth is enabled in production
        """
        if self.upload_stale_after_minutes <= 0:
            msg = (
                "UPLOAD_STALE_AFTER_MINUTES must be positive. "
                f"Got: {self.upload_stale_after_minutes}"
            )
            raise ValueError(msg)
        if self.upload_cleanup_batch_size <= 0:
            msg = (
                "UPLOAD_CLEANUP_BATCH_SIZE must be positive. "
                f"Got: {self.upload_cleanup_batch_size}"
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials (cookies) which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        service_token = self.service_api_token.get_secret_value()
        if service_token and len(service_token) < _MIN_SERVICE_TOKEN_LENGTH:
            msg = (
                f"SERVICE_API_TOKEN must be at least {_MIN_SERVICE_TOKEN_LENGTH} "
                "characters when set."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            if self.auth_enabled:
                secret_value = self.auth_secret.get_secret_value()
                if not secret_value:
                    msg = (
                        "AUTH_SECRET must be set when AUTH_ENABLED=true in production. "
                        'Generate with: python -c "import secrets; '
                        'print(secrets.token_hex(32))"'
                    )
                    raise ValueError(msg)
                if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                    msg = (
                        f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                        "characters for adequate security."
                    )
                    raise ValueError(msg)

        return self


settings = Settings()
