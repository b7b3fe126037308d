import uuid

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship

from sealshare.core.database import Base
from sealshare.utils.clock import utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False)

    shares = relationship(
        "ShareRecord",
        back_populates="uploader",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
