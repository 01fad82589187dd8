# app/utils/jwt.py
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import jwt, JWTError

from app.core.config import settings
from app.core.rbac import ActorContext, actor_from_user
from app.models.department import Department


class TokenError(ValueError):
    pass


def create_access_token(user: Any, *, expires_delta: Optional[timedelta] = None) -> str:
    """
    Issue a bearer token for a User row. Department and admin flag are
    resolved here, once, and carried as claims.
    """
    actor = actor_from_user(user)
    now = datetime.utcnow()
    payload = {
        "sub": str(actor.user_id),
        "username": actor.username,
        "first_name": actor.first_name,
        "last_name": actor.last_name,
        "position": actor.position,
        "dept": actor.department.value,
        "adm": actor.is_admin,
        "iat": now,
        "exp": now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_actor_token(raw_token: str) -> ActorContext:
    try:
        payload: Dict[str, Any] = jwt.decode(raw_token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError as e:
        raise TokenError("Invalid token") from e

    try:
        return ActorContext(
            user_id=int(payload["sub"]),
            username=str(payload.get("username") or ""),
            department=Department(payload["dept"]),
            first_name=payload.get("first_name") or "",
            last_name=payload.get("last_name") or "",
            position=payload.get("position") or "",
            is_admin=bool(payload.get("adm", False)),
        )
    except (KeyError, ValueError, TypeError) as e:
        raise TokenError("Invalid token payload") from e
