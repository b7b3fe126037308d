from datetime import datetime

from pydantic import BaseModel

from sealshare.models.share import ShareStatus


class UploadResponse(BaseModel):
    message: str = "File uploaded successfully."
    share_id: str
    download_url: str
    expires_at: datetime
    size_bytes: int


class ShareSummary(BaseModel):
    id: str
    file_name: str
    mime_type: str
    size_bytes: int
    recipient_email: str
    created_at: datetime
    token_expires_at: datetime | None
    status: ShareStatus

    class Config:
        from_attributes = True


class ReceivedShare(BaseModel):
    id: str
    file_name: str
    mime_type: str
    size_bytes: int
    uploader_email: str | None
    created_at: datetime
    token_expires_at: datetime | None
    status: ShareStatus
    download_url: str | None = None


class ShareMetadataResponse(BaseModel):
    file_name: str
    size_bytes: int
    mime_type: str
    expires_at: datetime | None


class RevokeResponse(BaseModel):
    message: str = "Download link revoked successfully."
    share_id: str
    status: ShareStatus


class DeleteResponse(BaseModel):
    status: str = "ok"
    id: str
