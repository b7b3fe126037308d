import logging

from sqlalchemy.ext.asyncio import AsyncSession

from sealshare.models.activity import ActionType, ActivityLog

logger = logging.getLogger("sealshare")


async def log_activity(
    session: AsyncSession,
    actor_email: str,
    action: ActionType,
    details: str | None = None,
    ip_address: str | None = None,
) -> None:
    """Append an activity entry. Never raises; failures are only logged."""
    try:
        session.add(
            ActivityLog(
                actor_email=actor_email,
                action=action.value,
                details=details,
                ip_address=ip_address,
            )
        )
        await session.commit()
    except Exception:
        logger.exception(
            "Failed to log activity: actor=%s action=%s ip=%s",
            actor_email, action.value, ip_address or "n/a",
        )
        try:
            await session.rollback()
        except Exception:
            logger.exception("Rollback after activity logging failure also failed")
