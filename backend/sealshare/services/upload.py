"""Upload pipeline: validate, encrypt, store, persist, notify.

Every step consumes the previous step's output, so they run strictly in
order. A failure after the blob is written deletes the blob again; a failure
to notify leaves the share in place.
"""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable

import anyio
from sqlalchemy.ext.asyncio import AsyncSession

from sealshare.core.config import settings
from sealshare.core.errors import TransientIO, ValidationError
from sealshare.models.share import ShareRecord
from sealshare.monitoring.setup import report_upload
from sealshare.services.blob_store import BlobStore
from sealshare.services.cipher import CipherStream
from sealshare.services.shares import DuplicateToken, NewShare, ShareRepository
from sealshare.services.tokens import IssuedToken, TokenIssuer, normalize_email, token_prefix
from sealshare.services.users import is_registered_user
from sealshare.utils.email import ShareNotifier
from sealshare.utils.urls import share_download_url

logger = logging.getLogger("sealshare")

MAX_TOKEN_ATTEMPTS = 3


class UploadState(str, enum.Enum):
    VALIDATING = "validating"
    ENCRYPTING = "encrypting"
    STORING = "storing"
    PERSISTING_METADATA = "persisting_metadata"
    NOTIFYING = "notifying"
    DONE = "done"
    FAILED_ROLLBACK = "failed_rollback"


@dataclass
class UploadRequest:
    chunks: AsyncIterable[bytes] | None
    file_name: str | None
    mime_type: str | None
    size_bytes: int | None
    recipient_email: str | None
    uploader_id: str
    uploader_email: str


@dataclass
class UploadResult:
    share_id: str
    download_url: str
    expires_at: datetime
    size_bytes: int


def _format_limit(limit: int) -> str:
    return f"{limit / 1024 / 1024:g}MB"


class SizeLimitedStream:
    """Counts bytes flowing through and stops at ``limit``."""

    def __init__(self, source: AsyncIterable[bytes], limit: int):
        self._source = source
        self.limit = limit
        self.count = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self._source:
            self.count += len(chunk)
            if self.count > self.limit:
                raise ValidationError(
                    f"File size exceeds the {_format_limit(self.limit)} limit.", status_code=413
                )
            yield chunk


class UploadPipeline:
    def __init__(
        self,
        cipher: CipherStream,
        blobs: BlobStore,
        issuer: TokenIssuer,
        notifier: ShareNotifier,
        max_file_size: int = settings.MAX_FILE_SIZE,
        recipient_check: Callable[[AsyncSession, str], Awaitable[bool]] = is_registered_user,
    ):
        self.cipher = cipher
        self.blobs = blobs
        self.issuer = issuer
        self.notifier = notifier
        self.max_file_size = max_file_size
        self.recipient_check = recipient_check

    async def run(self, session: AsyncSession, req: UploadRequest, base_url: str) -> UploadResult:
        started = time.monotonic()
        state = UploadState.VALIDATING
        try:
            await self._validate(session, req)
        except ValidationError as exc:
            logger.info("Upload by %s rejected: %s", req.uploader_email, exc.detail)
            report_upload("rejected")
            raise

        recipient = normalize_email(req.recipient_email)
        file_name = req.file_name or f"file_{int(time.time() * 1000)}"
        mime_type = req.mime_type or "application/octet-stream"
        blob_location = None

        try:
            state = UploadState.ENCRYPTING
            limited = SizeLimitedStream(req.chunks, self.max_file_size)
            encrypted = self.cipher.encrypt(limited)

            state = UploadState.STORING
            blob_location = await self.blobs.write(encrypted)
            logger.debug("Upload stored ciphertext for %s", file_name)

            state = UploadState.PERSISTING_METADATA
            new = NewShare(
                file_name=file_name,
                blob_location=blob_location,
                mime_type=mime_type,
                size_bytes=limited.count,
                recipient_email=recipient,
                uploader_id=req.uploader_id,
                iv=encrypted.iv,
                auth_tag=encrypted.tag,
            )
            record, issued = await self._persist(session, new)
        except BaseException as exc:
            logger.error(
                "Upload by %s failed while %s: %r", req.uploader_email, state.value, exc
            )
            if blob_location is not None:
                with anyio.CancelScope(shield=True):
                    await self._compensate(blob_location)
            logger.info("Upload state -> %s", UploadState.FAILED_ROLLBACK.value)
            report_upload("rejected" if isinstance(exc, ValidationError) else "failed")
            raise

        logger.info("File metadata saved, share %s (token %s)", record.id, token_prefix(issued.token))

        state = UploadState.NOTIFYING
        download_url = share_download_url(base_url, issued.token)
        await self._notify(recipient, download_url, req.uploader_email)

        state = UploadState.DONE
        report_upload("success")
        logger.info(
            "Upload state -> %s, share %s, %d bytes in %.3fs",
            state.value, record.id, record.size_bytes, time.monotonic() - started,
        )
        return UploadResult(
            share_id=record.id,
            download_url=download_url,
            expires_at=issued.expires_at,
            size_bytes=record.size_bytes,
        )

    async def _validate(self, session: AsyncSession, req: UploadRequest) -> None:
        if req.chunks is None:
            raise ValidationError("No file uploaded.")
        recipient = normalize_email(req.recipient_email)
        if not recipient:
            raise ValidationError("Recipient email is required.")
        if req.size_bytes is not None and req.size_bytes > self.max_file_size:
            raise ValidationError(
                f"File size exceeds the {_format_limit(self.max_file_size)} limit.", status_code=413
            )
        if not await self.recipient_check(session, recipient):
            raise ValidationError(
                "Recipient email does not belong to a registered user.", status_code=404
            )

    async def _persist(
        self, session: AsyncSession, new: NewShare
    ) -> tuple[ShareRecord, IssuedToken]:
        repo = ShareRepository(session)
        for attempt in range(1, MAX_TOKEN_ATTEMPTS + 1):
            issued = self.issuer.issue()
            try:
                return await repo.create(new, issued), issued
            except DuplicateToken:
                logger.warning("Token collision on attempt %d/%d, reissuing", attempt, MAX_TOKEN_ATTEMPTS)
        raise TransientIO("Could not allocate a download token. Please retry.")

    async def _compensate(self, blob_location: str) -> None:
        try:
            await self.blobs.delete(blob_location)
            logger.info("Removed orphaned blob after failed upload")
        except Exception:
            logger.exception("Compensating delete failed; blob left for the orphan sweeper")

    async def _notify(self, recipient: str, download_url: str, sender_email: str) -> None:
        try:
            sent = await self.notifier.notify(
                recipient, download_url, self.issuer.ttl_hours, sender_email
            )
        except Exception:
            logger.exception("Failed to send download email to %s", recipient)
            return
        if sent:
            logger.info("Download link email sent to %s", recipient)
        else:
            logger.warning("Download link email to %s was not sent", recipient)
