from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sealshare.core.database import get_db
from sealshare.core.security import CallerIdentity, require_admin
from sealshare.models.activity import ActionType
from sealshare.services.activity import log_activity
from sealshare.services.container import ShareServices, get_services
from sealshare.services.users import delete_account
from sealshare.utils.request_ip import client_ip

router = APIRouter(
    prefix="/admin",
    tags=["Admin"]
)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: CallerIdentity = Depends(require_admin),
    services: ShareServices = Depends(get_services),
):
    removed = await delete_account(db, services.blobs, user_id)
    await log_activity(
        db,
        current_user.email,
        ActionType.USER_DELETE,
        f"Deleted user {user_id} with {removed} share(s)",
        client_ip(request),
    )
    return {"status": "ok", "id": user_id, "shares_deleted": removed}
