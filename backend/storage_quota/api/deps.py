"""Shared dependencies for API endpoints.

Authentication dependencies. Local-first mode uses DEFAULT_USER_ID; hosted
mode validates the session JWT from the httpOnly cookie. The user id is
always taken from the verified identity, never from the request body.

WHY DEPENDENCY INJECTION:
- Consistent auth across all endpoints
- Easy to swap implementations (local → hosted)
- Testable with mocked dependencies
"""

import secrets
import uuid
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storage_quota.core.config import settings
from storage_quota.core.database import get_db, get_session_factory
from storage_quota.core.errors import AdminRequiredError
from storage_quota.models import User
from storage_quota.services.upload_lifecycle import UploadLifecycleService

# Generic 401 detail. Never says which check failed.
# Security: Never include specifics about WHY auth failed (expired, bad sig, etc.).
_UNAUTHORIZED_DETAIL = {
    "code": "UNAUTHORIZED",
    "message": "Authentication required",
}

_BEARER_PREFIX = "Bearer "


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=_UNAUTHORIZED_DETAIL,
    )


async def get_current_user_id(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> uuid.UUID:
    """Get current user ID from auth context.

    Validates JWT from httpOnly cookie when auth is enabled. Falls back to
    DEFAULT_USER_ID when auth is disabled.

    Validation steps (hosted mode):
    1. Read JWT from cookie
    2. Decode + verify signature (HS256)
    3. Verify exp, aud, iss claims
    4. Extract sub as UUID
    5. Check token_invalidated_before (revocation)

    Args:
        request: HTTP request (injected by FastAPI).
        db: Database session for revocation check (injected).

    Returns:
        UUID of the current authenticated user.

    Raises:
        HTTPException: 401 for any auth failure.
    """
    if not settings.auth_enabled:
        # Local-first mode: use DEFAULT_USER_ID from environment
        if settings.default_user_id is None:
            raise _unauthorized()
        return settings.default_user_id

    # Hosted mode: validate JWT from cookie
    token = request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise _unauthorized()

    try:
        payload = jwt.decode(
            token,
            settings.auth_secret.get_secret_value(),
            algorithms=["HS256"],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
        )
        user_id = uuid.UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError) as exc:
        raise _unauthorized() from exc

    # Security: iat is required for revocation check. A JWT without iat
    # would bypass token_invalidated_before entirely.
    iat = payload.get("iat")
    if iat is None:
        raise _unauthorized()

    # Revocation check: reject JWTs issued before token_invalidated_before
    result = await db.execute(
        select(User.token_invalidated_before).where(User.id == user_id)
    )
    invalidated_before = result.scalar_one_or_none()
    if invalidated_before is not None and iat < invalidated_before.timestamp():
        raise _unauthorized()

    return user_id


async def get_current_user(
    user_id: Annotated[uuid.UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Get full User object for current user.

    Args:
        user_id: Current user ID (injected by get_current_user_id).
        db: Database session (injected).

    Returns:
        User object for the current user.

    Raises:
        HTTPException: 401 if user not found (deleted account, invalid ID).
    """
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise _unauthorized()

    return user


async def require_admin(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Require the current user to be an admin.

    Raises:
        AdminRequiredError: 403 when the user lacks the admin flag.
    """
    if not user.is_admin:
        raise AdminRequiredError()
    return user


def require_service_credential(request: Request) -> None:
    """Require the service bearer token used by scheduled jobs.

    Compares in constant time. An unset SERVICE_API_TOKEN rejects every
    caller.

    Raises:
        HTTPException: 401 when the token is missing, wrong or unset.
    """
    expected = settings.service_api_token.get_secret_value()
    header = request.headers.get("Authorization", "")
    if not expected or not header.startswith(_BEARER_PREFIX):
        raise _unauthorized()
    provided = header[len(_BEARER_PREFIX) :]
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        raise _unauthorized()


def get_upload_lifecycle(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> UploadLifecycleService:
    """Upload lifecycle service bound to the request transaction."""
    return UploadLifecycleService(db)


# Reusable type aliases for dependency injection (SonarCloud S8410)
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
AdminUser = Annotated[User, Depends(require_admin)]
ServiceCredential = Annotated[None, Depends(require_service_credential)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
SessionFactory = Annotated[
    async_sessionmaker[AsyncSession], Depends(get_session_factory)
]
UploadLifecycle = Annotated[UploadLifecycleService, Depends(get_upload_lifecycle)]
