from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from sealshare.core.database import get_db
from sealshare.core.security import CallerIdentity, require_identity
from sealshare.models.activity import ActionType
from sealshare.schemas.share import (
    DeleteResponse,
    ReceivedShare,
    RevokeResponse,
    ShareSummary,
    UploadResponse,
)
from sealshare.services.activity import log_activity
from sealshare.services.cipher import CHUNK_SIZE
from sealshare.services.container import ShareServices, get_services
from sealshare.services.shares import ShareRepository, delete_share, revoke_share
from sealshare.services.tokens import normalize_email
from sealshare.services.upload import UploadRequest
from sealshare.utils.request_ip import client_ip
from sealshare.utils.urls import external_base_url, share_download_url

router = APIRouter(tags=["Files"])


async def _upload_chunks(file: UploadFile) -> AsyncIterator[bytes]:
    while True:
        chunk = await file.read(CHUNK_SIZE)
        if not chunk:
            break
        yield chunk


@router.post("/upload", response_model=UploadResponse)
async def upload_file(
    request: Request,
    file: UploadFile | None = File(None),
    recipient_email: str | None = Form(None),
    db: AsyncSession = Depends(get_db),
    current_user: CallerIdentity = Depends(require_identity),
    services: ShareServices = Depends(get_services),
):
    upload = UploadRequest(
        chunks=_upload_chunks(file) if file is not None else None,
        file_name=file.filename if file is not None else None,
        mime_type=file.content_type if file is not None else None,
        size_bytes=file.size if file is not None else None,
        recipient_email=recipient_email,
        uploader_id=current_user.id,
        uploader_email=current_user.email,
    )
    try:
        result = await services.upload.run(db, upload, external_base_url(request))
    finally:
        if file is not None:
            await file.close()

    await log_activity(
        db,
        current_user.email,
        ActionType.FILE_UPLOAD,
        f"Uploaded share {result.share_id} for {normalize_email(recipient_email)}",
        client_ip(request),
    )
    return UploadResponse(
        share_id=result.share_id,
        download_url=result.download_url,
        expires_at=result.expires_at,
        size_bytes=result.size_bytes,
    )


@router.get("/files/shared", response_model=list[ShareSummary])
async def list_shared(
    db: AsyncSession = Depends(get_db),
    current_user: CallerIdentity = Depends(require_identity),
):
    records = await ShareRepository(db).list_sent(current_user.id)
    return [
        ShareSummary(
            id=r.id,
            file_name=r.file_name,
            mime_type=r.mime_type,
            size_bytes=r.size_bytes,
            recipient_email=r.recipient_email,
            created_at=r.created_at,
            token_expires_at=r.token_expires_at,
            status=r.status(),
        )
        for r in records
    ]


@router.get("/files/received", response_model=list[ReceivedShare])
async def list_received(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: CallerIdentity = Depends(require_identity),
):
    base_url = external_base_url(request)
    rows = await ShareRepository(db).list_received(current_user.email)
    return [
        ReceivedShare(
            id=r.id,
            file_name=r.file_name,
            mime_type=r.mime_type,
            size_bytes=r.size_bytes,
            uploader_email=uploader.email if uploader is not None else None,
            created_at=r.created_at,
            token_expires_at=r.token_expires_at,
            status=r.status(),
            download_url=share_download_url(base_url, r.download_token) if r.download_token else None,
        )
        for r, uploader in rows
    ]


@router.delete("/files/revoke/{share_id}", response_model=RevokeResponse)
async def revoke_file(
    share_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: CallerIdentity = Depends(require_identity),
):
    record = await revoke_share(db, share_id, current_user)
    await log_activity(
        db,
        current_user.email,
        ActionType.FILE_REVOKE,
        f"Revoked share {share_id} ({record.file_name})",
        client_ip(request),
    )
    return RevokeResponse(share_id=record.id, status=record.status())


@router.delete("/files/{share_id}", response_model=DeleteResponse)
async def delete_file(
    share_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: CallerIdentity = Depends(require_identity),
    services: ShareServices = Depends(get_services),
):
    await delete_share(db, services.blobs, share_id, current_user)
    await log_activity(
        db,
        current_user.email,
        ActionType.FILE_DELETE,
        f"Deleted share {share_id}",
        client_ip(request),
    )
    return DeleteResponse(id=share_id)
