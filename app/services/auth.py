"""Bearer access tokens for library users."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, cast

from fastapi import HTTPException
from jose import JWTError, jwt

from app.config import settings


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _jwt_secret() -> str:
    secret = _env_value("JWT_SECRET") or settings.jwt_secret
    if not secret:
        raise HTTPException(status_code=500, detail="JWT secret not configured")
    return secret


def _jwt_algorithm() -> str:
    return _env_value("JWT_ALGORITHM") or settings.jwt_algorithm or "HS256"


def issue_access_token(
    user_id: str,
    roles: list[str] | None = None,
    ttl_minutes: int | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    ttl = ttl_minutes if ttl_minutes is not None else settings.jwt_access_ttl_minutes
    payload = {
        "sub": str(user_id),
        "roles": roles or [],
        "typ": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=ttl)).timestamp()),
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=_jwt_algorithm())


def decode_access_token(token: str) -> dict:
    try:
        payload = cast(
            dict[Any, Any],
            jwt.decode(token, _jwt_secret(), algorithms=[_jwt_algorithm()]),
        )
    except JWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    if payload.get("typ") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")
    return payload
