import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sealshare.core.config import settings
from sealshare.monitoring.setup import report_sweep
from sealshare.services.blob_store import BlobStore
from sealshare.services.shares import ShareRepository
from sealshare.utils.clock import utcnow

logger = logging.getLogger(__name__)

INTERVAL_SECS = settings.ORPHAN_SWEEP_INTERVAL_SECONDS
GRACE_SECS = settings.ORPHAN_GRACE_SECONDS

SWEPT_BLOBS = 0


async def sweep_orphan_blobs(
    session_factory: async_sessionmaker[AsyncSession],
    blobs: BlobStore,
    grace: timedelta = timedelta(seconds=GRACE_SECS),
    now: Optional[datetime] = None,
) -> int:
    """Delete blobs that no share references and that are older than ``grace``.

    Staging files of writes that never finished are never referenced, so they
    are collected too. The grace period keeps blobs of in-flight uploads
    (still being written, or written but not yet persisted) out of reach.
    """
    cutoff = (now or utcnow()) - grace
    candidates = [loc for loc, modified in await blobs.list_blobs() if modified < cutoff]
    if not candidates:
        return 0

    async with session_factory() as db:
        referenced = await ShareRepository(db).all_blob_locations()

    deleted = 0
    for location in candidates:
        if location in referenced:
            continue
        await blobs.delete(location)
        deleted += 1
        logger.warning("Deleted orphaned blob %s", location)
    return deleted


async def sweep_orphans_forever(
    session_factory: async_sessionmaker[AsyncSession],
    blobs: BlobStore,
    interval: int = INTERVAL_SECS,
):
    global SWEPT_BLOBS
    logger.info("Orphan sweeper started: interval=%s grace=%s", interval, GRACE_SECS)

    while True:
        started = time.monotonic()
        try:
            deleted = await sweep_orphan_blobs(session_factory, blobs)
            SWEPT_BLOBS += deleted

            duration = time.monotonic() - started
            report_sweep(deleted, duration)
            logger.info("sweep_summary blobs_deleted=%s duration=%.3fs total_deleted=%s",
                        deleted, duration, SWEPT_BLOBS)

            await asyncio.sleep(interval)

        except asyncio.CancelledError:
            logger.info("Orphan sweeper cancelled by shutdown")
            raise
        except Exception as e:
            logger.exception("Orphan sweep loop error: %s", e)
            await asyncio.sleep(min(60, interval))


async def start_cleanup_task(session_factory: async_sessionmaker[AsyncSession], blobs: BlobStore):
    return await sweep_orphans_forever(session_factory, blobs)
