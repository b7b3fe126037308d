import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from sealshare.core.database import Base
from sealshare.utils.clock import utcnow


class ShareStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ShareRecord(Base):
    __tablename__ = "shares"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    file_name = Column(String, nullable=False)
    blob_location = Column(String, nullable=False, unique=True)
    mime_type = Column(String, nullable=False, default="application/octet-stream")
    size_bytes = Column(BigInteger, nullable=False)
    recipient_email = Column(String, nullable=False, index=True)
    uploader_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    iv = Column(String(24), nullable=False)
    auth_tag = Column(String(32), nullable=False)
    download_token = Column(String(64), nullable=True, unique=True)
    token_digest = Column(String(64), nullable=False, unique=True, index=True)
    token_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    uploader = relationship("User", back_populates="shares")

    def status(self, now: datetime | None = None) -> ShareStatus:
        if self.download_token is None:
            return ShareStatus.REVOKED
        now = now or utcnow()
        if self.token_expires_at is not None and self.token_expires_at < now:
            return ShareStatus.EXPIRED
        return ShareStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<ShareRecord id={self.id} file_name={self.file_name!r}>"
