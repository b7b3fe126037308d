"""Durable storage for encrypted objects.

Blobs are addressed by opaque generated names (``<uuid4 hex>.enc``). The
location is stored in the share record and never leaves the server.
"""
from __future__ import annotations

import abc
import logging
import os
import re
import tempfile
import uuid
from datetime import datetime
from typing import AsyncIterable, AsyncIterator

import anyio
from minio import Minio
from minio.error import S3Error
from starlette.concurrency import run_in_threadpool

from sealshare.core.errors import BlobNotFound, TransientIO
from sealshare.utils.clock import as_naive_utc, from_timestamp

logger = logging.getLogger("sealshare")

READ_CHUNK_SIZE = 1024 * 1024
BLOB_SUFFIX = ".enc"
PART_SUFFIX = ".part"
_LOCATION_RE = re.compile(r"^[0-9a-f]{32}\.enc$")
_PART_RE = re.compile(r"^[0-9a-f]{32}\.enc\.part$")
_MISSING_CODES = {"NoSuchKey", "NoSuchBucket", "NoSuchObject"}


def new_blob_name() -> str:
    return f"{uuid.uuid4().hex}{BLOB_SUFFIX}"


def is_blob_name(location: str) -> bool:
    return bool(location) and bool(_LOCATION_RE.match(location))


def is_partial_name(location: str) -> bool:
    """Staging file left by a local write that never completed."""
    return bool(location) and bool(_PART_RE.match(location))


class BlobStore(abc.ABC):
    backend_name = "abstract"

    @abc.abstractmethod
    async def ensure_ready(self) -> None:
        """Create the storage root/bucket if absent. Idempotent."""

    @abc.abstractmethod
    async def write(self, chunks: AsyncIterable[bytes]) -> str:
        """Store ``chunks`` under a fresh name and return it once durable."""

    @abc.abstractmethod
    async def read(self, location: str) -> AsyncIterator[bytes]:
        """Open ``location``; raises ``BlobNotFound`` before returning if absent."""

    @abc.abstractmethod
    async def exists(self, location: str) -> bool:
        ...

    @abc.abstractmethod
    async def delete(self, location: str) -> None:
        """Best-effort removal; never raises."""

    @abc.abstractmethod
    async def list_blobs(self) -> list[tuple[str, datetime]]:
        """Stored blobs, plus any stale partial writes, with modification times."""


class LocalBlobStore(BlobStore):
    backend_name = "LocalDisk"

    def __init__(self, root: str | os.PathLike):
        self.root = anyio.Path(root)

    def _path(self, location: str) -> anyio.Path:
        if not is_blob_name(location):
            raise BlobNotFound()
        return self.root / location

    async def ensure_ready(self) -> None:
        await self.root.mkdir(parents=True, exist_ok=True)

    async def write(self, chunks: AsyncIterable[bytes]) -> str:
        await self.ensure_ready()
        location = new_blob_name()
        final_path = self.root / location
        part_path = self.root / f"{location}{PART_SUFFIX}"

        try:
            async with await anyio.open_file(part_path, "wb") as f:
                async for chunk in chunks:
                    await f.write(chunk)
                await f.flush()
                await anyio.to_thread.run_sync(os.fsync, f.wrapped.fileno())
            await part_path.rename(final_path)
        except BaseException as exc:
            with anyio.CancelScope(shield=True):
                await self._discard(part_path)
            if isinstance(exc, OSError):
                logger.error("LocalDisk write failed for %s: %s", location, exc)
                raise TransientIO() from exc
            raise

        return location

    async def _discard(self, path: anyio.Path) -> None:
        try:
            await path.unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to remove partial blob %s: %s", path.name, e)

    async def read(self, location: str) -> AsyncIterator[bytes]:
        path = self._path(location)
        if not await path.is_file():
            raise BlobNotFound()
        # opened on first iteration so an unconsumed stream holds no descriptor
        return self._iter_file(path, location)

    async def _iter_file(self, path: anyio.Path, location: str) -> AsyncIterator[bytes]:
        try:
            f = await anyio.open_file(path, "rb")
        except (FileNotFoundError, IsADirectoryError, PermissionError):
            raise BlobNotFound() from None
        except OSError as exc:
            logger.error("LocalDisk open failed for %s: %s", location, exc)
            raise TransientIO() from exc
        try:
            while True:
                try:
                    chunk = await f.read(READ_CHUNK_SIZE)
                except OSError as exc:
                    logger.error("LocalDisk read failed for %s: %s", location, exc)
                    raise TransientIO() from exc
                if not chunk:
                    break
                yield chunk
        finally:
            with anyio.CancelScope(shield=True):
                await f.aclose()

    async def exists(self, location: str) -> bool:
        if not is_blob_name(location):
            return False
        return await (self.root / location).is_file()

    async def delete(self, location: str) -> None:
        if not (is_blob_name(location) or is_partial_name(location)):
            logger.warning("Refusing to delete malformed blob location %r", location)
            return
        try:
            await (self.root / location).unlink(missing_ok=True)
        except OSError as e:
            logger.error("LocalDisk DELETE failed for %s: %s", location, e)

    async def list_blobs(self) -> list[tuple[str, datetime]]:
        if not await self.root.exists():
            return []
        found = []
        async for path in self.root.iterdir():
            if not (is_blob_name(path.name) or is_partial_name(path.name)):
                continue
            try:
                st = await path.stat()
            except FileNotFoundError:
                continue
            found.append((path.name, from_timestamp(st.st_mtime)))
        return found


class MinioBlobStore(BlobStore):
    backend_name = "MinIO"

    def __init__(self, client: Minio, bucket: str):
        self.client = client
        self.bucket = bucket

    async def ensure_ready(self) -> None:
        from sealshare.core.minio_client import initialize_minio_bucket

        await run_in_threadpool(initialize_minio_bucket, self.client, self.bucket)

    async def write(self, chunks: AsyncIterable[bytes]) -> str:
        location = new_blob_name()
        fd, temp_path = tempfile.mkstemp(suffix=BLOB_SUFFIX)
        os.close(fd)
        try:
            async with await anyio.open_file(temp_path, "wb") as tmp:
                async for chunk in chunks:
                    await tmp.write(chunk)
            await run_in_threadpool(
                self.client.fput_object,
                self.bucket,
                location,
                temp_path,
                content_type="application/octet-stream",
                metadata={"encrypted": "AES-256-GCM"},
            )
        except S3Error as exc:
            logger.error("MinIO PUT failed for %s: %s", location, exc)
            raise TransientIO() from exc
        except OSError as exc:
            logger.error("Staging upload for %s failed: %s", location, exc)
            raise TransientIO() from exc
        finally:
            try:
                os.remove(temp_path)
            except OSError:
                logger.warning("Could not remove staging file %s", temp_path)
        return location

    async def read(self, location: str) -> AsyncIterator[bytes]:
        if not await self.exists(location):
            raise BlobNotFound()
        return self._aiter_minio(location)

    async def _aiter_minio(self, location: str) -> AsyncIterator[bytes]:
        try:
            obj = await run_in_threadpool(self.client.get_object, self.bucket, location)
        except S3Error as exc:
            if exc.code in _MISSING_CODES:
                raise BlobNotFound() from None
            logger.error("MinIO GET failed for %s: %s", location, exc)
            raise TransientIO() from exc
        try:
            # read in chunks via threadpool to avoid blocking loop
            while True:
                try:
                    chunk = await run_in_threadpool(obj.read, READ_CHUNK_SIZE)
                except Exception as exc:
                    logger.error("MinIO stream failed for %s: %s", location, exc)
                    raise TransientIO() from exc
                if not chunk:
                    break
                yield chunk
        finally:
            with anyio.CancelScope(shield=True):
                await run_in_threadpool(obj.close)
                await run_in_threadpool(obj.release_conn)

    async def exists(self, location: str) -> bool:
        if not is_blob_name(location):
            return False
        try:
            await run_in_threadpool(self.client.stat_object, self.bucket, location)
            return True
        except S3Error as exc:
            if exc.code in _MISSING_CODES:
                return False
            logger.error("MinIO STAT failed for %s: %s", location, exc)
            raise TransientIO() from exc

    async def delete(self, location: str) -> None:
        if not is_blob_name(location):
            logger.warning("Refusing to delete malformed blob location %r", location)
            return
        try:
            await run_in_threadpool(self.client.remove_object, self.bucket, location)
        except Exception as e:
            logger.error("MinIO DELETE failed for %s: %s", location, e)

    async def list_blobs(self) -> list[tuple[str, datetime]]:
        def _list():
            return [
                (o.object_name, as_naive_utc(o.last_modified))
                for o in self.client.list_objects(self.bucket)
                if is_blob_name(o.object_name) and o.last_modified is not None
            ]

        return await run_in_threadpool(_list)


def create_blob_store(settings) -> BlobStore:
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "minio":
        from sealshare.core.minio_client import create_minio_client

        return MinioBlobStore(create_minio_client(), settings.MINIO_BUCKET)
    if backend == "local":
        return LocalBlobStore(settings.UPLOAD_DIR)
    raise ValueError(f"Unknown STORAGE_BACKEND {settings.STORAGE_BACKEND!r}")
