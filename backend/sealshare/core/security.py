import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Request
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from sealshare.core.config import settings
from sealshare.core.database import get_db
from sealshare.core.errors import AuthenticationRequired, Forbidden
from sealshare.services.users import get_user_by_email
from sealshare.utils.clock import utcnow

logger = logging.getLogger("sealshare")

ACCESS_TOKEN_EXPIRE_MINUTES = 30


@dataclass(frozen=True)
class CallerIdentity:
    id: str
    email: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization", "")
    scheme, _, value = auth.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.cookies.get("token")


async def get_current_identity(
    request: Request, db: AsyncSession = Depends(get_db)
) -> Optional[CallerIdentity]:
    """Caller identity from a Bearer JWT or the ``token`` cookie, or None."""
    token = _bearer_token(request)
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.info("Rejected session token: %s", e)
        return None

    email = payload.get("sub")
    if not email:
        return None
    user = await get_user_by_email(db, email)
    if user is None or not user.is_active:
        return None
    return CallerIdentity(
        id=str(user.id),
        email=user.email,
        role="admin" if user.is_admin else "user",
    )


async def require_identity(
    identity: Optional[CallerIdentity] = Depends(get_current_identity),
) -> CallerIdentity:
    if identity is None:
        raise AuthenticationRequired()
    return identity


async def require_admin(identity: CallerIdentity = Depends(require_identity)) -> CallerIdentity:
    if not identity.is_admin:
        logger.warning("Non-admin %s attempted an admin operation", identity.email)
        raise Forbidden()
    return identity
