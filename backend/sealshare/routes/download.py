from __future__ import annotations

import urllib.parse
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from sealshare.core.database import get_db
from sealshare.core.security import CallerIdentity, get_current_identity
from sealshare.models.activity import ActionType
from sealshare.schemas.share import ShareMetadataResponse
from sealshare.services.activity import log_activity
from sealshare.services.container import ShareServices, get_services
from sealshare.utils.request_ip import client_ip

router = APIRouter(tags=["Download"])


def _rfc5987_filename(value: str) -> str:
    # Build a robust Content-Disposition filename / filename* pair
    quoted = urllib.parse.quote(value, safe="")
    fallback = value.encode("latin-1", "ignore").decode("latin-1").replace('"', "").replace("\\", "")
    # control characters (CR/LF above all) must never reach the header
    fallback = "".join("_" if ord(c) < 0x20 or ord(c) == 0x7F else c for c in fallback)
    return f'filename="{fallback or "download.bin"}"; filename*=UTF-8\'\'{quoted}'


@router.get("/download/{token}")
async def download_by_token(
    token: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    caller: Optional[CallerIdentity] = Depends(get_current_identity),
    services: ShareServices = Depends(get_services),
):
    ip = client_ip(request)
    session_factory = request.app.state.session_factory

    async def record_completion():
        # the request session may already be gone once the body is sent
        async with session_factory() as log_db:
            await log_activity(
                log_db,
                caller.email,
                ActionType.FILE_DOWNLOAD,
                f"Downloaded share {result.share_id} ({result.file_name})",
                ip,
            )

    result = await services.download.run(db, token, caller, on_complete=record_completion)

    await log_activity(
        db,
        caller.email,
        ActionType.FILE_DOWNLOAD_STARTED,
        f"Started download of share {result.share_id} ({result.file_name})",
        ip,
    )

    headers = {
        "Content-Disposition": f"attachment; {_rfc5987_filename(result.file_name)}",
        "Content-Length": str(result.size_bytes),
        "Cache-Control": "no-store",
    }
    return StreamingResponse(result.stream, media_type=result.mime_type, headers=headers)


@router.get("/metadata/{token}", response_model=ShareMetadataResponse)
async def share_metadata(
    token: str,
    db: AsyncSession = Depends(get_db),
    caller: Optional[CallerIdentity] = Depends(get_current_identity),
    services: ShareServices = Depends(get_services),
):
    meta = await services.download.metadata(db, token, caller)
    return ShareMetadataResponse(
        file_name=meta.file_name,
        size_bytes=meta.size_bytes,
        mime_type=meta.mime_type,
        expires_at=meta.expires_at,
    )
