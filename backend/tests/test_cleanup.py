"""Tests for the orphan blob sweeper."""
from datetime import timedelta

import pytest

from sealshare.models.share import ShareRecord
from sealshare.services.cipher import iter_bytes
from sealshare.tasks.cleanup import sweep_orphan_blobs
from sealshare.utils.clock import utcnow

GRACE = timedelta(hours=1)


@pytest.mark.asyncio
async def test_old_orphans_are_deleted_and_referenced_blobs_kept(session, session_factory, blob_store,
                                                                   share_factory):
    result = await share_factory()
    kept = (await session.get(ShareRecord, result.share_id)).blob_location
    orphan = await blob_store.write(iter_bytes(b'left behind by a crashed upload'))

    deleted = await sweep_orphan_blobs(session_factory, blob_store, GRACE, now=utcnow() + 2 * GRACE)

    assert deleted == 1
    assert await blob_store.exists(kept)
    assert not await blob_store.exists(orphan)


@pytest.mark.asyncio
async def test_recent_orphans_are_left_alone(session_factory, blob_store):
    orphan = await blob_store.write(iter_bytes(b'upload still in flight'))

    deleted = await sweep_orphan_blobs(session_factory, blob_store, GRACE)

    assert deleted == 0
    assert await blob_store.exists(orphan)


@pytest.mark.asyncio
async def test_expired_shares_are_not_collected(session, session_factory, blob_store, share_factory):
    result = await share_factory()
    record = await session.get(ShareRecord, result.share_id)
    record.token_expires_at = utcnow() - timedelta(days=30)
    await session.commit()

    deleted = await sweep_orphan_blobs(session_factory, blob_store, GRACE, now=utcnow() + 2 * GRACE)

    assert deleted == 0
    assert await blob_store.exists(record.blob_location)


@pytest.mark.asyncio
async def test_stale_partial_writes_are_deleted(session_factory, blob_store, blob_root):
    await blob_store.ensure_ready()
    partial = blob_root / f"{'ab' * 16}.enc.part"
    partial.write_bytes(b'half of a blob from a crashed writer')

    assert await sweep_orphan_blobs(session_factory, blob_store, GRACE) == 0
    assert partial.exists()

    deleted = await sweep_orphan_blobs(session_factory, blob_store, GRACE, now=utcnow() + 2 * GRACE)

    assert deleted == 1
    assert not partial.exists()
