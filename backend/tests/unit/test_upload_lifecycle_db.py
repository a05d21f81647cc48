"""Database-backed tests for the upload lifecycle.

End-to-end scenarios against PostgreSQL: account opening, begin/finalize,
begin/fail, concurrent begins racing for the same credits, idempotent
replays and the cleanup sweep. Each call runs in its own transaction, the
same way a request does.
"""

import asyncio
import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storage_quota.core.errors import (
    StorageLimitReachedError,
    UploadAlreadyCompleteError,
    UploadAlreadyFailedError,
    UploadNotFoundError,
)
from storage_quota.models.storage import LedgerEntry, StorageAccount, Upload
from storage_quota.models.user import User
from storage_quota.services.ledger_reconciliation import reconcile_account
from storage_quota.services.storage_units import BYTES_PER_MB, FREE_PLAN_CREDITS
from storage_quota.services.upload_cleanup import sweep_stale_uploads
from storage_quota.services.upload_lifecycle import (
    BeginResult,
    UploadLifecycleService,
)

# Bytes that cost exactly 200,000 credits.
_BYTES_FOR_200K_CREDITS = 200_000 * BYTES_PER_MB // 100
_CID = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"

Factory = async_sessionmaker[AsyncSession]


# =============================================================================
# Helpers
# =============================================================================


async def _begin(
    factory: Factory,
    user_id: uuid.UUID,
    size: int = BYTES_PER_MB,
    *,
    key: str | None = None,
) -> BeginResult:
    async with factory() as session, session.begin():
        return await UploadLifecycleService(session).begin(
            user_id,
            file_size_bytes=size,
            media_type="image/jpeg",
            idempotency_key=key,
        )


async def _finalize(factory: Factory, user_id: uuid.UUID, upload_id: uuid.UUID):
    async with factory() as session, session.begin():
        return await UploadLifecycleService(session).finalize(
            user_id, upload_id, ipfs_cid=_CID
        )


async def _fail(factory: Factory, user_id: uuid.UUID, upload_id: uuid.UUID):
    async with factory() as session, session.begin():
        return await UploadLifecycleService(session).fail(
            user_id, upload_id, reason="network error"
        )


async def _account(factory: Factory, user_id: uuid.UUID) -> StorageAccount:
    async with factory() as session:
        account = await session.get(StorageAccount, user_id)
        assert account is not None
        return account


async def _upload(factory: Factory, upload_id: uuid.UUID) -> Upload:
    async with factory() as session:
        upload = await session.get(Upload, upload_id)
        assert upload is not None
        return upload


async def _ledger_types(factory: Factory, user_id: uuid.UUID) -> list[str]:
    async with factory() as session:
        result = await session.execute(
            select(LedgerEntry.entry_type)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.created_at, LedgerEntry.id)
        )
        return list(result.scalars().all())


async def _assert_consistent(factory: Factory, user_id: uuid.UUID) -> None:
    async with factory() as session:
        report = await reconcile_account(session, user_id)
    assert report.consistent, report


# =============================================================================
# Scenarios
# =============================================================================


class TestAccountOpening:
    async def test_first_begin_opens_free_account(
        self, session_factory: Factory, test_user: User
    ):
        await _begin(session_factory, test_user.id)

        account = await _account(session_factory, test_user.id)
        assert account.credits_total == FREE_PLAN_CREDITS
        assert account.credits_spent == 0
        assert await _ledger_types(session_factory, test_user.id) == ["grant"]

    async def test_quota_check_does_not_open_account(
        self, session_factory: Factory, test_user: User
    ):
        async with session_factory() as session:
            result = await UploadLifecycleService(session).check_quota(
                test_user.id, BYTES_PER_MB
            )
            assert result.available_units == FREE_PLAN_CREDITS
            assert await session.get(StorageAccount, test_user.id) is None


class TestBeginFinalize:
    async def test_one_mb_upload(self, session_factory: Factory, test_user: User):
        begun = await _begin(session_factory, test_user.id, BYTES_PER_MB)
        assert begun.credits_required == 100

        account = await _account(session_factory, test_user.id)
        assert account.credits_reserved == 100
        assert account.credits_balance == FREE_PLAN_CREDITS

        upload = await _finalize(session_factory, test_user.id, begun.upload_id)
        assert upload.status == "complete"
        assert upload.credits_charged == 100

        account = await _account(session_factory, test_user.id)
        assert account.credits_reserved == 0
        assert account.credits_balance == FREE_PLAN_CREDITS - 100
        assert account.credits_spent == 100
        assert await _ledger_types(session_factory, test_user.id) == [
            "grant",
            "charge",
        ]
        await _assert_consistent(session_factory, test_user.id)

    async def test_double_finalize_charges_once(
        self, session_factory: Factory, test_user: User
    ):
        begun = await _begin(session_factory, test_user.id)
        await _finalize(session_factory, test_user.id, begun.upload_id)
        await _finalize(session_factory, test_user.id, begun.upload_id)

        account = await _account(session_factory, test_user.id)
        assert account.credits_spent == 100
        assert (await _ledger_types(session_factory, test_user.id)).count(
            "charge"
        ) == 1

    async def test_concurrent_finalize_charges_once(
        self, session_factory: Factory, test_user: User
    ):
        begun = await _begin(session_factory, test_user.id)

        await asyncio.gather(
            _finalize(session_factory, test_user.id, begun.upload_id),
            _finalize(session_factory, test_user.id, begun.upload_id),
        )

        account = await _account(session_factory, test_user.id)
        assert account.credits_spent == 100
        await _assert_consistent(session_factory, test_user.id)


class TestBeginFail:
    async def test_fail_restores_availability(
        self, session_factory: Factory, test_user: User
    ):
        begun = await _begin(session_factory, test_user.id)
        upload, released = await _fail(session_factory, test_user.id, begun.upload_id)

        assert released is True
        assert upload.status == "failed"
        account = await _account(session_factory, test_user.id)
        assert account.credits_reserved == 0
        assert account.credits_balance == FREE_PLAN_CREDITS
        assert account.credits_spent == 0
        assert await _ledger_types(session_factory, test_user.id) == [
            "grant",
            "release",
        ]
        await _assert_consistent(session_factory, test_user.id)

    async def test_fail_twice_is_noop(self, session_factory: Factory, test_user: User):
        begun = await _begin(session_factory, test_user.id)
        await _fail(session_factory, test_user.id, begun.upload_id)
        _upload_row, released = await _fail(
            session_factory, test_user.id, begun.upload_id
        )

        assert released is False
        assert (await _ledger_types(session_factory, test_user.id)).count(
            "release"
        ) == 1

    async def test_finalize_after_fail_conflicts(
        self, session_factory: Factory, test_user: User
    ):
        begun = await _begin(session_factory, test_user.id)
        await _fail(session_factory, test_user.id, begun.upload_id)

        with pytest.raises(UploadAlreadyFailedError):
            await _finalize(session_factory, test_user.id, begun.upload_id)

        account = await _account(session_factory, test_user.id)
        assert account.credits_spent == 0

    async def test_fail_after_finalize_conflicts(
        self, session_factory: Factory, test_user: User
    ):
        begun = await _begin(session_factory, test_user.id)
        await _finalize(session_factory, test_user.id, begun.upload_id)

        with pytest.raises(UploadAlreadyCompleteError):
            await _fail(session_factory, test_user.id, begun.upload_id)

    async def test_finalize_racing_fail_has_one_winner(
        self, session_factory: Factory, test_user: User
    ):
        begun = await _begin(session_factory, test_user.id)

        results = await asyncio.gather(
            _finalize(session_factory, test_user.id, begun.upload_id),
            _fail(session_factory, test_user.id, begun.upload_id),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(
            errors[0], UploadAlreadyFailedError | UploadAlreadyCompleteError
        )
        account = await _account(session_factory, test_user.id)
        assert account.credits_reserved == 0
        await _assert_consistent(session_factory, test_user.id)


class TestConcurrentBegin:
    async def test_only_one_of_two_large_uploads_fits(
        self, session_factory: Factory, test_user: User
    ):
        """Two 200,000-credit uploads against 307,200 available: one wins."""
        results = await asyncio.gather(
            _begin(session_factory, test_user.id, _BYTES_FOR_200K_CREDITS),
            _begin(session_factory, test_user.id, _BYTES_FOR_200K_CREDITS),
            return_exceptions=True,
        )

        succeeded = [r for r in results if isinstance(r, BeginResult)]
        rejected = [r for r in results if isinstance(r, StorageLimitReachedError)]
        assert len(succeeded) == 1
        assert len(rejected) == 1
        assert succeeded[0].credits_required == 200_000

        account = await _account(session_factory, test_user.id)
        assert account.credits_reserved == 200_000
        async with session_factory() as session:
            count = await session.scalar(
                select(func.count()).select_from(Upload).where(
                    Upload.user_id == test_user.id
                )
            )
        assert count == 1

    async def test_many_small_uploads_never_overbook(
        self, session_factory: Factory, test_user: User
    ):
        # 10 uploads of 40,000 credits; only 7 fit in 307,200
        size = 40_000 * BYTES_PER_MB // 100
        results = await asyncio.gather(
            *(_begin(session_factory, test_user.id, size) for _ in range(10)),
            return_exceptions=True,
        )

        succeeded = [r for r in results if isinstance(r, BeginResult)]
        assert len(succeeded) == 7
        account = await _account(session_factory, test_user.id)
        assert account.credits_reserved == 280_000
        assert account.credits_balance >= account.credits_reserved

    async def test_exact_fit_then_one_more_byte(
        self, session_factory: Factory, test_user: User
    ):
        whole_plan = FREE_PLAN_CREDITS * BYTES_PER_MB // 100
        begun = await _begin(session_factory, test_user.id, whole_plan)
        assert begun.credits_required == FREE_PLAN_CREDITS

        with pytest.raises(StorageLimitReachedError):
            await _begin(session_factory, test_user.id, 1)


class TestIdempotentBegin:
    async def test_replay_returns_original(
        self, session_factory: Factory, test_user: User
    ):
        first = await _begin(session_factory, test_user.id, BYTES_PER_MB, key="k1")
        second = await _begin(
            session_factory, test_user.id, 5 * BYTES_PER_MB, key="k1"
        )

        assert second.idempotent is True
        assert second.upload_id == first.upload_id
        assert second.credits_required == 100
        account = await _account(session_factory, test_user.id)
        assert account.credits_reserved == 100

    async def test_concurrent_replays_create_one_upload(
        self, session_factory: Factory, test_user: User
    ):
        results = await asyncio.gather(
            *(_begin(session_factory, test_user.id, key="same") for _ in range(3))
        )

        assert len({r.upload_id for r in results}) == 1
        account = await _account(session_factory, test_user.id)
        assert account.credits_reserved == 100

    async def test_keys_are_scoped_per_user(
        self, session_factory: Factory, test_user: User, user_b: User
    ):
        a = await _begin(session_factory, test_user.id, key="shared")
        b = await _begin(session_factory, user_b.id, key="shared")
        assert a.upload_id != b.upload_id
        assert b.idempotent is False


class TestOwnership:
    async def test_other_user_cannot_finalize(
        self, session_factory: Factory, test_user: User, user_b: User
    ):
        begun = await _begin(session_factory, test_user.id)

        with pytest.raises(UploadNotFoundError):
            await _finalize(session_factory, user_b.id, begun.upload_id)

        upload = await _upload(session_factory, begun.upload_id)
        assert upload.status == "pending"

    async def test_users_do_not_share_credits(
        self, session_factory: Factory, test_user: User, user_b: User
    ):
        await _begin(session_factory, test_user.id, _BYTES_FOR_200K_CREDITS)
        begun = await _begin(session_factory, user_b.id, _BYTES_FOR_200K_CREDITS)
        assert begun.idempotent is False


# =============================================================================
# Cleanup sweep
# =============================================================================


class TestCleanupSweep:
    async def _backdate(
        self, factory: Factory, upload_id: uuid.UUID, age: timedelta
    ) -> None:
        async with factory() as session, session.begin():
            await session.execute(
                update(Upload)
                .where(Upload.id == upload_id)
                .values(created_at=datetime.now(UTC) - age)
            )

    async def test_stale_upload_failed_fresh_untouched(
        self, session_factory: Factory, test_user: User
    ):
        stale = await _begin(session_factory, test_user.id, BYTES_PER_MB)
        fresh = await _begin(session_factory, test_user.id, 2 * BYTES_PER_MB)
        await self._backdate(session_factory, stale.upload_id, timedelta(hours=3))
        await self._backdate(session_factory, fresh.upload_id, timedelta(minutes=10))

        result = await sweep_stale_uploads(
            session_factory, stale_after=timedelta(hours=2)
        )

        assert result.stuck_uploads_fixed == 1
        assert result.reservations_released == 100
        stale_row = await _upload(session_factory, stale.upload_id)
        assert stale_row.status == "failed"
        assert stale_row.failure_reason == "timeout"
        assert (await _upload(session_factory, fresh.upload_id)).status == "pending"
        account = await _account(session_factory, test_user.id)
        assert account.credits_reserved == 200
        await _assert_consistent(session_factory, test_user.id)

    async def test_sweep_is_repeatable(
        self, session_factory: Factory, test_user: User
    ):
        begun = await _begin(session_factory, test_user.id)
        await self._backdate(session_factory, begun.upload_id, timedelta(hours=3))

        first = await sweep_stale_uploads(session_factory)
        second = await sweep_stale_uploads(session_factory)

        assert first.stuck_uploads_fixed == 1
        assert second.stuck_uploads_fixed == 0
        assert (await _ledger_types(session_factory, test_user.id)).count(
            "release"
        ) == 1

    async def test_finalized_upload_never_swept(
        self, session_factory: Factory, test_user: User
    ):
        begun = await _begin(session_factory, test_user.id)
        await _finalize(session_factory, test_user.id, begun.upload_id)
        await self._backdate(session_factory, begun.upload_id, timedelta(days=1))

        result = await sweep_stale_uploads(session_factory)

        assert result.stuck_uploads_fixed == 0
        assert (await _upload(session_factory, begun.upload_id)).status == "complete"
