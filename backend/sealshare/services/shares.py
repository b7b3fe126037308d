from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError as DBIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sealshare.core.errors import Forbidden, NotFound
from sealshare.models.share import ShareRecord
from sealshare.models.user import User
from sealshare.services.blob_store import BlobStore
from sealshare.services.tokens import IssuedToken, normalize_email

logger = logging.getLogger("sealshare")


class DuplicateToken(Exception):
    """The generated token collided with an existing one; issue another."""


@dataclass
class NewShare:
    file_name: str
    blob_location: str
    mime_type: str
    size_bytes: int
    recipient_email: str
    uploader_id: str
    iv: bytes
    auth_tag: bytes


class ShareRepository:
    """Transactional access to ``ShareRecord`` rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, new: NewShare, issued: IssuedToken) -> ShareRecord:
        record = ShareRecord(
            file_name=new.file_name,
            blob_location=new.blob_location,
            mime_type=new.mime_type,
            size_bytes=new.size_bytes,
            recipient_email=normalize_email(new.recipient_email),
            uploader_id=new.uploader_id,
            iv=new.iv.hex(),
            auth_tag=new.auth_tag.hex(),
            download_token=issued.token,
            token_digest=issued.digest,
            token_expires_at=issued.expires_at,
        )
        self.session.add(record)
        try:
            await self.session.commit()
        except DBIntegrityError as exc:
            await self.session.rollback()
            if "token" in str(exc.orig).lower():
                raise DuplicateToken() from exc
            raise
        except BaseException:
            await self.session.rollback()
            raise
        return record

    async def get(self, share_id: str) -> ShareRecord | None:
        res = await self.session.execute(select(ShareRecord).where(ShareRecord.id == share_id))
        return res.scalars().first()

    async def list_sent(self, uploader_id: str) -> list[ShareRecord]:
        res = await self.session.execute(
            select(ShareRecord)
            .where(ShareRecord.uploader_id == uploader_id)
            .order_by(ShareRecord.created_at.desc())
        )
        return list(res.scalars().all())

    async def list_received(self, recipient_email: str) -> list[tuple[ShareRecord, User | None]]:
        res = await self.session.execute(
            select(ShareRecord, User)
            .outerjoin(User, User.id == ShareRecord.uploader_id)
            .where(ShareRecord.recipient_email == normalize_email(recipient_email))
            .order_by(ShareRecord.created_at.desc())
        )
        return [(record, uploader) for record, uploader in res.all()]

    async def revoke(self, record: ShareRecord) -> bool:
        """Null the token. Returns False if it was already revoked."""
        if record.download_token is None:
            return False
        record.download_token = None
        record.token_expires_at = None
        await self.session.commit()
        return True

    async def delete(self, record: ShareRecord) -> None:
        await self.session.delete(record)
        await self.session.commit()

    async def all_blob_locations(self) -> set[str]:
        res = await self.session.execute(select(ShareRecord.blob_location))
        return set(res.scalars().all())


async def _owned_share(session: AsyncSession, share_id: str, caller) -> ShareRecord:
    record = await ShareRepository(session).get(share_id)
    if record is None:
        logger.info("Share not found: %s", share_id)
        raise NotFound("File record not found.")
    if str(record.uploader_id) != str(caller.id):
        logger.warning(
            "Authorization failed: user %s attempted to modify share %s owned by %s",
            caller.id, share_id, record.uploader_id,
        )
        raise Forbidden("You are not authorized to modify this file share.")
    return record


async def revoke_share(session: AsyncSession, share_id: str, caller) -> ShareRecord:
    """Revoke a share's link. Only the uploader may; repeated calls succeed."""
    record = await _owned_share(session, share_id, caller)
    changed = await ShareRepository(session).revoke(record)
    if changed:
        logger.info("Revoked share %s", share_id)
    else:
        logger.info("Share %s was already revoked", share_id)
    return record


async def delete_share(session: AsyncSession, blobs: BlobStore, share_id: str, caller) -> None:
    """Delete a share record and reclaim its blob.

    The record goes first; if the blob delete then fails, the orphan sweeper
    reclaims it later.
    """
    record = await _owned_share(session, share_id, caller)
    location = record.blob_location
    await ShareRepository(session).delete(record)
    await blobs.delete(location)
    logger.info("Deleted share %s", share_id)
