"""Tests for application configuration.

Settings for database, authentication, the service credential and the
cleanup sweep. Tests cover defaults, env var loading, and validation.
"""

import pytest
from pydantic import SecretStr, ValidationError

from storage_quota.core.config import _INSECURE_DEFAULT_PASSWORD, Settings

# Reusable test constants
_SECURE_DB_PASSWORD = "my-secure-production-password-123!"
_TEST_AUTH_SECRET = "a" * 64
_PRODUCTION = "production"


class TestProductionSecurityValidation:
    """Tests for production security requirements."""

    def test_allows_default_password_in_development(self):
        """Default password is allowed in development environment."""
        s = Settings(
            environment="development",
            database_password=_INSECURE_DEFAULT_PASSWORD,
        )
        assert s.database_password == _INSECURE_DEFAULT_PASSWORD

    def test_rejects_default_password_in_production(self):
        """Default password is rejected in production environment."""
        with pytest.raises(ValidationError) as exc_info:
            Settings(
                environment=_PRODUCTION,
                database_password=_INSECURE_DEFAULT_PASSWORD,
            )

        assert "Cannot use default database password in production" in str(
            exc_info.value
        )

    def test_allows_custom_password_in_production(self):
        """Custom password is allowed in production environment."""
        s = Settings(
            environment=_PRODUCTION,
            database_password=_SECURE_DB_PASSWORD,
        )
        assert s.database_password == _SECURE_DB_PASSWORD


class TestAuthConfigDefaults:
    """Auth settings have correct defaults."""

    def test_auth_enabled_defaults_to_false(self):
        """Auth is disabled by default for local development."""
        s = Settings()
        assert s.auth_enabled is False

    def test_auth_issuer_and_audience(self):
        s = Settings()
        assert s.auth_issuer == "storage-quota"
        assert s.auth_audience == "storage-quota"

    def test_auth_cookie_name(self):
        s = Settings()
        assert s.auth_cookie_name == "storage-quota.session-token"

    def test_default_user_id_defaults_to_none(self):
        s = Settings()
        assert s.default_user_id is None


class TestAuthProductionValidation:
    """AUTH_SECRET is required and long enough in hosted production."""

    def test_rejects_empty_auth_secret_in_production_when_auth_enabled(self):
        with pytest.raises(ValidationError, match="AUTH_SECRET must be set"):
            Settings(
                environment=_PRODUCTION,
                database_password=_SECURE_DB_PASSWORD,
                auth_enabled=True,
                auth_secret=SecretStr(""),
            )

    def test_rejects_auth_secret_at_boundary_minus_one(self):
        with pytest.raises(ValidationError, match="at least 32"):
            Settings(
                environment=_PRODUCTION,
                database_password=_SECURE_DB_PASSWORD,
                auth_enabled=True,
                auth_secret=SecretStr("a" * 31),
            )

    def test_allows_auth_secret_at_exact_boundary(self):
        s = Settings(
            environment=_PRODUCTION,
            database_password=_SECURE_DB_PASSWORD,
            auth_enabled=True,
            auth_secret=SecretStr("a" * 32),
        )
        assert s.auth_enabled is True

    def test_allows_empty_auth_secret_when_auth_disabled(self):
        s = Settings(
            environment=_PRODUCTION,
            database_password=_SECURE_DB_PASSWORD,
            auth_enabled=False,
        )
        assert s.auth_secret.get_secret_value() == ""


class TestServiceTokenValidation:
    """SERVICE_API_TOKEN is optional but must be long when set."""

    def test_defaults_to_empty(self):
        s = Settings()
        assert s.service_api_token.get_secret_value() == ""

    def test_rejects_short_token(self):
        with pytest.raises(ValidationError, match="SERVICE_API_TOKEN"):
            Settings(service_api_token=SecretStr("short"))

    def test_allows_long_token(self):
        s = Settings(service_api_token=SecretStr(_TEST_AUTH_SECRET))
        assert s.service_api_token.get_secret_value() == _TEST_AUTH_SECRET


class TestCleanupSettings:
    """Cleanup sweep settings."""

    def test_defaults(self):
        s = Settings()
        assert s.upload_stale_after_minutes == 120
        assert s.upload_cleanup_batch_size == 500

    @pytest.mark.parametrize("minutes", [0, -5])
    def test_rejects_non_positive_staleness(self, minutes: int):
        with pytest.raises(ValidationError, match="UPLOAD_STALE_AFTER_MINUTES"):
            Settings(upload_stale_after_minutes=minutes)

    def test_rejects_zero_batch_size(self):
        with pytest.raises(ValidationError, match="UPLOAD_CLEANUP_BATCH_SIZE"):
            Settings(upload_cleanup_batch_size=0)

    def test_staleness_loaded_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("UPLOAD_STALE_AFTER_MINUTES", "30")
        s = Settings()
        assert s.upload_stale_after_minutes == 30


class TestCorsWildcardValidation:
    """CORS wildcard is incompatible with cookie credentials."""

    def test_rejects_wildcard_origin(self):
        with pytest.raises(ValidationError, match="wildcard"):
            Settings(allowed_origins=["*"])

    def test_allows_specific_origins(self):
        s = Settings(allowed_origins=["https://app.example.com"])
        assert s.allowed_origins == ["https://app.example.com"]


class TestDatabaseUrl:
    def test_async_url_uses_asyncpg(self):
        s = Settings(
            database_host="db",
            database_port=5433,
            database_name="quota",
            database_user="u",
            database_password="p",
        )
        assert s.database_url == "postgresql+asyncpg://u:p@db:5433/quota"
        assert s.database_url_sync == "postgresql://u:p@db:5433/quota"
