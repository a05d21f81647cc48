"""Shared fixtures for repository and service tests that need users.

Names chosen to avoid shadowing top-level conftest fixtures
(test_user, user_b, admin_user).
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from storage_quota.models.user import User


@pytest.fixture
async def user_a(db_session: AsyncSession) -> User:
    """Create User A for repository tests."""
    user = User(email="usera@test.com")
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    """Create a second user for cross-tenant repository tests.

    Named 'other_user' to avoid shadowing top-level conftest 'user_b'
    which uses a fixed UUID (USER_B_ID) for API-level tests.
    """
    user = User(email="other@test.com")
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user
