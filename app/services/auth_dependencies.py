from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from app.db import get_db as _get_db
from app.models.user import User
from app.services.auth import decode_access_token
from app.services.common import try_coerce_uuid


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None


def require_user_auth(
    authorization: str | None = Header(default=None),
    request: Request = None,
    db: Session = Depends(_get_db),
):
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    payload = decode_access_token(token)
    user_id = try_coerce_uuid(payload.get("sub"))
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Unauthorized")
    roles_value = payload.get("roles")
    roles = [str(role) for role in roles_value] if isinstance(roles_value, list) else []
    if request is not None:
        request.state.actor_id = str(user_id)
    return {"user_id": str(user_id), "roles": roles}
