"""Capability tokens for share links.

A token is 32 bytes from ``secrets`` rendered as 64 lowercase hex characters.
Records are looked up by the SHA-256 digest of the token, which survives
revocation, so a revoked link still resolves to its record.
"""
from __future__ import annotations

import enum
import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sealshare.core.config import settings
from sealshare.core.errors import Expired, Forbidden, NotFound, Revoked
from sealshare.models.share import ShareRecord
from sealshare.utils.clock import utcnow

logger = logging.getLogger("sealshare")

TOKEN_BYTES = 32
TOKEN_LENGTH = TOKEN_BYTES * 2
_TOKEN_RE = re.compile(r"^[0-9a-f]{64}$")


def validate_format(token) -> bool:
    return isinstance(token, str) and bool(_TOKEN_RE.match(token))


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("ascii")).hexdigest()


def token_prefix(token: str | None) -> str:
    """Loggable form of a token."""
    return f"{(token or '')[:8]}..."


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime

    @property
    def digest(self) -> str:
        return token_digest(self.token)


class TokenIssuer:
    def __init__(
        self,
        ttl: timedelta = timedelta(hours=settings.SHARE_TOKEN_TTL_HOURS),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ttl = ttl
        self._clock = clock

    @property
    def ttl_hours(self) -> int:
        return int(self.ttl.total_seconds() // 3600)

    def issue(self) -> IssuedToken:
        return IssuedToken(token=secrets.token_hex(TOKEN_BYTES), expires_at=self._clock() + self.ttl)


class AccessDecision(str, enum.Enum):
    AUTHORIZED = "authorized"
    EXPIRED = "expired"
    REVOKED = "revoked"
    FORBIDDEN = "forbidden"


_DENIALS = {
    AccessDecision.FORBIDDEN: Forbidden,
    AccessDecision.REVOKED: Revoked,
    AccessDecision.EXPIRED: Expired,
}


class TokenValidator:
    validate_format = staticmethod(validate_format)

    async def resolve(self, session: AsyncSession, token: str) -> ShareRecord:
        res = await session.execute(
            select(ShareRecord).where(ShareRecord.token_digest == token_digest(token))
        )
        record = res.scalars().first()
        if record is None:
            logger.info("Token not found: %s", token_prefix(token))
            raise NotFound()
        return record

    def check_access(
        self, record: ShareRecord, caller_email: str | None, now: datetime | None = None
    ) -> AccessDecision:
        # Non-recipients learn nothing about the share's state.
        if normalize_email(caller_email) != normalize_email(record.recipient_email):
            return AccessDecision.FORBIDDEN
        if record.download_token is None:
            return AccessDecision.REVOKED
        now = now or utcnow()
        if record.token_expires_at is not None and record.token_expires_at < now:
            return AccessDecision.EXPIRED
        return AccessDecision.AUTHORIZED

    def authorize(
        self, record: ShareRecord, caller_email: str | None, now: datetime | None = None
    ) -> None:
        decision = self.check_access(record, caller_email, now)
        if decision is AccessDecision.AUTHORIZED:
            return
        if decision is AccessDecision.FORBIDDEN:
            logger.warning("Authorization failed: %s attempted access to share %s", caller_email, record.id)
        else:
            logger.info("Share %s is %s", record.id, decision.value)
        raise _DENIALS[decision]()
