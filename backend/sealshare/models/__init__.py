from .activity import ActionType, ActivityLog
from .share import ShareRecord, ShareStatus
from .user import User

__all__ = ["ActionType", "ActivityLog", "ShareRecord", "ShareStatus", "User"]
