from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sealshare.core.errors import NotFound
from sealshare.models.share import ShareRecord
from sealshare.models.user import User
from sealshare.services.blob_store import BlobStore
from sealshare.services.tokens import normalize_email

logger = logging.getLogger("sealshare")


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    res = await session.execute(
        select(User).where(func.lower(User.email) == normalize_email(email))
    )
    return res.scalars().first()


async def is_registered_user(session: AsyncSession, email: str) -> bool:
    user = await get_user_by_email(session, email)
    return user is not None and bool(user.is_active)


async def delete_account(session: AsyncSession, blobs: BlobStore, user_id: str) -> int:
    """Delete a user together with every share they uploaded.

    Records and the user row go in one transaction; blobs are reclaimed
    afterwards, best-effort. Returns the number of shares removed.
    """
    user = (await session.execute(select(User).where(User.id == user_id))).scalars().first()
    if user is None:
        raise NotFound("User not found.")

    shares = (
        await session.execute(select(ShareRecord).where(ShareRecord.uploader_id == user_id))
    ).scalars().all()
    locations = [s.blob_location for s in shares]

    for share in shares:
        await session.delete(share)
    await session.delete(user)
    await session.commit()

    for location in locations:
        await blobs.delete(location)

    logger.info("Deleted user %s and %d share(s)", user_id, len(locations))
    return len(locations)
