import socket
import uuid
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storage_quota.core.config import settings
from storage_quota.models.base import Base

# Use separate test database
TEST_DATABASE_URL = settings.database_url.replace(
    settings.database_name, f"{settings.database_name}_test"
)

# Test user ID (consistent across tests for predictable auth)
TEST_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")

# Admin user for grant/reconciliation endpoints
ADMIN_USER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000ad")

# Security: test-only secrets. Production uses real secrets from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow
TEST_SERVICE_TOKEN = "test-service-token-that-is-at-least-32-chars"  # nosec B105  # gitleaks:allow


def create_test_jwt(
    user_id: uuid.UUID = TEST_USER_ID,
    *,
    secret: str = TEST_AUTH_SECRET,
    expires_delta: timedelta | None = None,
    iat: datetime | None = None,
) -> str:
    """Create a signed JWT for test authentication.

    Args:
        user_id: User UUID to encode in the sub claim.
        secret: Signing secret (must match settings.auth_secret in tests).
        expires_delta: Time until expiration. Defaults to 1 hour.
        iat: Issued-at time. Defaults to now.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "aud": settings.auth_audience,
        "iss": settings.auth_issuer,
        "exp": now + (expires_delta or timedelta(hours=1)),
        "iat": iat or now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on the configured port, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex((settings.database_host, settings.database_port))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available.

    Called by fixtures that require database connection.
    Provides clear skip message to help diagnose CI/local issues.
    """
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            f"PostgreSQL not available on port {settings.database_port}. "
            "Start database with: docker compose up -d"
        )


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database.

    Used where a test needs several independent transactions (concurrent
    begins, cleanup sweep).
    """
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# =============================================================================
# Users
# =============================================================================


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession):
    """Create the test user in the database.

    Args:
        db_session: Database session from db_session fixture.

    Yields:
        User model instance.
    """
    from storage_quota.models import User

    user = User(id=TEST_USER_ID, email="test@example.com")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    yield user


# User B constants (cross-tenant testing counterpart to TEST_USER_ID)
USER_B_ID = uuid.UUID("00000000-0000-0000-0000-000000000099")


@pytest_asyncio.fixture
async def user_b(db_session: AsyncSession):
    """Create User B for cross-tenant isolation tests.

    Args:
        db_session: Database session from db_session fixture.

    Yields:
        User model instance for User B.
    """
    from storage_quota.models import User

    user = User(id=USER_B_ID, email="userb@example.com")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    yield user


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession):
    """Create an admin user.

    Yields:
        User model instance with is_admin=True.
    """
    from storage_quota.models import User

    user = User(id=ADMIN_USER_ID, email="admin@example.com", is_admin=True)
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    yield user


# =============================================================================
# API Test Fixtures
# =============================================================================


@pytest.fixture
def override_db(session_factory: async_sessionmaker[AsyncSession]) -> Iterator[None]:
    """Point get_db and get_session_factory at the test database.

    The get_db override keeps the production contract: one transaction
    per request, committed on success and rolled back on error.
    """
    from storage_quota.core.database import get_db, get_session_factory
    from storage_quota.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    yield

    app.dependency_overrides.clear()


@pytest.fixture
def hosted_auth() -> Iterator[None]:
    """Enable JWT auth with the test secret and set the service token."""
    original_auth_enabled = settings.auth_enabled
    original_auth_secret = settings.auth_secret
    original_service_token = settings.service_api_token
    settings.auth_enabled = True
    settings.auth_secret = SecretStr(TEST_AUTH_SECRET)
    settings.service_api_token = SecretStr(TEST_SERVICE_TOKEN)

    yield

    settings.auth_enabled = original_auth_enabled
    settings.auth_secret = original_auth_secret
    settings.service_api_token = original_service_token


def _client_for(user_id: uuid.UUID | None) -> AsyncClient:
    from storage_quota.main import app

    cookies = {settings.auth_cookie_name: create_test_jwt(user_id)} if user_id else {}
    return AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies=cookies,
    )


@pytest_asyncio.fixture
async def client(
    override_db,  # noqa: ARG001 - routes requests to the test database
    hosted_auth,  # noqa: ARG001 - enables JWT auth
    test_user,  # noqa: ARG001 - ensures user exists
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client authenticated as TEST_USER_ID (JWT cookie).

    Yields:
        Configured AsyncClient for making authenticated API requests.
    """
    async with _client_for(TEST_USER_ID) as ac:
        yield ac


@pytest_asyncio.fixture
async def client_user_b(
    override_db,  # noqa: ARG001
    hosted_auth,  # noqa: ARG001
    user_b,  # noqa: ARG001 - ensures user_b exists in DB
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client authenticated as User B for cross-tenant tests."""
    async with _client_for(USER_B_ID) as ac:
        yield ac


@pytest_asyncio.fixture
async def admin_client(
    override_db,  # noqa: ARG001
    hosted_auth,  # noqa: ARG001
    admin_user,  # noqa: ARG001 - ensures admin exists in DB
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client authenticated as an admin."""
    async with _client_for(ADMIN_USER_ID) as ac:
        yield ac


@pytest_asyncio.fixture
async def unauthenticated_client(
    override_db,  # noqa: ARG001
    hosted_auth,  # noqa: ARG001
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client without authentication.

    Auth is enabled but no JWT cookie is provided.
    """
    async with _client_for(None) as ac:
        yield ac


# =============================================================================
# Autouse Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable rate limiting during tests.

    Security: Rate limiting is tested separately; disable for other tests
    to avoid flaky failures from rate limit triggers.

    Yields:
        None (autouse fixture).
    """
    from storage_quota.core.rate_limiting import limiter

    # Store original state and disable
    original_enabled = limiter.enabled
    limiter.enabled = False

    yield

    # Restore original state
    limiter.enabled = original_enabled
