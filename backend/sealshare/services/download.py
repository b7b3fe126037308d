"""Download pipeline: token → record → access check → decrypted stream."""
from __future__ import annotations

import enum
import logging
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from sealshare.core.config import settings
from sealshare.core.errors import (
    AuthenticationRequired,
    BlobNotFound,
    IntegrityError,
    MalformedToken,
    ShareError,
    StorageInconsistency,
)
from sealshare.core.security import CallerIdentity
from sealshare.models.share import ShareRecord
from sealshare.monitoring.setup import report_download, report_integrity_failure
from sealshare.services.blob_store import BlobStore
from sealshare.services.cipher import CipherStream
from sealshare.services.tokens import TokenValidator, token_prefix, validate_format

logger = logging.getLogger("sealshare")


class DownloadState(str, enum.Enum):
    PARSING_TOKEN = "parsing_token"
    AUTHENTICATING = "authenticating"
    RESOLVING_RECORD = "resolving_record"
    CHECKING_ACCESS = "checking_access"
    STREAMING_DECRYPT = "streaming_decrypt"
    DONE = "done"


@dataclass
class DownloadResult:
    stream: AsyncIterator[bytes]
    share_id: str
    file_name: str
    mime_type: str
    size_bytes: int


@dataclass
class ShareMetadata:
    file_name: str
    size_bytes: int
    mime_type: str
    expires_at: datetime | None


class DownloadPipeline:
    def __init__(
        self,
        cipher: CipherStream,
        blobs: BlobStore,
        validator: TokenValidator | None = None,
        verify_before_stream: bool = settings.VERIFY_BEFORE_STREAM,
    ):
        self.cipher = cipher
        self.blobs = blobs
        self.validator = validator or TokenValidator()
        self.verify_before_stream = verify_before_stream

    async def authorize(
        self, session: AsyncSession, token: str, caller: CallerIdentity | None
    ) -> ShareRecord:
        """Steps shared by download and metadata preview."""
        if not validate_format(token):
            logger.info("Rejected malformed token (length %s)", len(token) if isinstance(token, str) else "?")
            raise MalformedToken()

        if caller is None:
            logger.warning("Authentication failed for token %s", token_prefix(token))
            raise AuthenticationRequired()

        record = await self.validator.resolve(session, token)

        self.validator.authorize(record, caller.email)
        logger.debug("Download state -> %s passed for share %s", DownloadState.CHECKING_ACCESS.value, record.id)
        return record

    async def metadata(
        self, session: AsyncSession, token: str, caller: CallerIdentity | None
    ) -> ShareMetadata:
        record = await self.authorize(session, token, caller)
        return ShareMetadata(
            file_name=record.file_name,
            size_bytes=record.size_bytes,
            mime_type=record.mime_type,
            expires_at=record.token_expires_at,
        )

    async def run(
        self,
        session: AsyncSession,
        token: str,
        caller: CallerIdentity | None,
        on_complete: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> DownloadResult:
        """Authorize and open the share; ``on_complete`` is awaited once the
        returned stream has been read to the end and authenticated."""
        try:
            record = await self.authorize(session, token, caller)
        except ShareError as exc:
            report_download(type(exc).__name__.lower())
            raise

        try:
            await self._check_blob(record)
            iv = bytes.fromhex(record.iv)
            tag = bytes.fromhex(record.auth_tag)
            if self.verify_before_stream:
                await self._verify(record, iv, tag)
            ciphertext = await self._open(record)
        except ShareError as exc:
            report_download(type(exc).__name__.lower())
            raise

        logger.info(
            "Download state -> %s for share %s (%d bytes) to %s",
            DownloadState.STREAMING_DECRYPT.value, record.id, record.size_bytes, caller.email,
        )
        stream = self._guarded(self.cipher.decrypt(ciphertext, iv, tag), ciphertext, record, on_complete)
        return DownloadResult(
            stream=stream,
            share_id=record.id,
            file_name=record.file_name,
            mime_type=record.mime_type,
            size_bytes=record.size_bytes,
        )

    async def _check_blob(self, record: ShareRecord) -> None:
        if not await self.blobs.exists(record.blob_location):
            logger.critical(
                "CRITICAL: encrypted blob missing from %s storage for active share %s",
                self.blobs.backend_name, record.id,
            )
            raise StorageInconsistency()

    async def _open(self, record: ShareRecord) -> AsyncIterator[bytes]:
        try:
            return await self.blobs.read(record.blob_location)
        except BlobNotFound:
            logger.critical("CRITICAL: blob for share %s vanished before it could be opened", record.id)
            raise StorageInconsistency() from None

    async def _verify(self, record: ShareRecord, iv: bytes, tag: bytes) -> None:
        ciphertext = await self._open(record)
        async with aclosing(ciphertext):
            try:
                await self.cipher.verify(ciphertext, iv, tag)
            except BlobNotFound:
                logger.critical("CRITICAL: blob for share %s vanished before it could be opened", record.id)
                raise StorageInconsistency() from None
            except IntegrityError:
                report_integrity_failure()
                logger.critical(
                    "SECURITY: authentication tag mismatch for share %s; stored object tampered or corrupt",
                    record.id,
                )
                raise

    async def _guarded(
        self,
        plaintext: AsyncIterator[bytes],
        ciphertext: AsyncIterator[bytes],
        record: ShareRecord,
        on_complete: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> AsyncIterator[bytes]:
        """Decrypted stream handed to the HTTP layer.

        Headers are already sent by the time this fails, so errors are logged
        and re-raised to abort the response.
        """
        try:
            async for chunk in plaintext:
                yield chunk
        except IntegrityError:
            report_integrity_failure()
            report_download("integrityerror")
            logger.critical(
                "SECURITY: authentication tag mismatch while streaming share %s; connection aborted",
                record.id,
            )
            raise
        except Exception:
            report_download("stream_error")
            logger.exception("Decryption stream error for share %s", record.id)
            raise
        else:
            report_download("success")
            logger.info("Download state -> %s for share %s", DownloadState.DONE.value, record.id)
            if on_complete is not None:
                await on_complete()
        finally:
            await plaintext.aclose()
            await ciphertext.aclose()
