from fastapi import Depends

from app.db import get_db
from app.services.auth_dependencies import require_user_auth


def get_current_user(auth=Depends(require_user_auth)):
    """Get current authenticated user info.

    Returns a dict with user_id and roles.
    """
    return auth


__all__ = [
    "get_db",
    "get_current_user",
    "require_user_auth",
]
