"""Fail abandoned uploads and release their reserved storage.

Standalone script for cron (e.g. hourly). Runs one sweep with the
configured staleness threshold and batch size; the HTTP endpoint
POST /api/v1/internal/storage/cleanup does the same for schedulers that
can only make requests.

Usage:
    cd backend && python -m scripts.sweep_stale_uploads
    cd backend && python -m scripts.sweep_stale_uploads --stale-after-minutes 180

Exit status is 1 when any upload could not be processed.
"""

import argparse
import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from storage_quota.services.upload_cleanup import sweep_stale_uploads

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    from storage_quota.core.config import settings

    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--stale-after-minutes",
        type=int,
        default=settings.upload_stale_after_minutes,
        help="Pending uploads older than this are failed (default: %(default)s)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.upload_cleanup_batch_size,
        help="Maximum uploads per run (default: %(default)s)",
    )
    args = parser.parse_args(argv)
    if args.stale_after_minutes <= 0:
        parser.error("--stale-after-minutes must be positive")
    if args.batch_size <= 0:
        parser.error("--batch-size must be positive")
    return args


async def main(argv: list[str] | None = None) -> None:
    """CLI entry point: run one sweep against the configured database."""
    import sys

    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from storage_quota.core.config import settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = _parse_args(argv)

    engine = create_async_engine(settings.database_url, echo=False)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        result = await sweep_stale_uploads(
            factory,
            stale_after=timedelta(minutes=args.stale_after_minutes),
            batch_size=args.batch_size,
        )
    finally:
        await engine.dispose()

    logger.info("Final stats: %s", result)
    sys.exit(1 if result.errors else 0)


if __name__ == "__main__":
    import asyncio

    asyncio.run(main())
