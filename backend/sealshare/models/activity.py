import enum
import uuid

from sqlalchemy import Column, DateTime, String, Text

from sealshare.core.database import Base
from sealshare.utils.clock import utcnow


class ActionType(str, enum.Enum):
    FILE_UPLOAD = "FILE_UPLOAD"
    FILE_DOWNLOAD_STARTED = "FILE_DOWNLOAD_STARTED"
    FILE_DOWNLOAD = "FILE_DOWNLOAD"
    FILE_REVOKE = "FILE_REVOKE"
    FILE_DELETE = "FILE_DELETE"
    USER_DELETE = "USER_DELETE"


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    actor_email = Column(String, nullable=False, index=True)
    action = Column(String(32), nullable=False)
    details = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
