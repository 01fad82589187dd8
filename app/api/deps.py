# app/api/deps.py
from __future__ import annotations

from typing import Optional, Generator

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from app.core.rbac import ActorContext
from app.db.session import SessionLocal
from app.utils.jwt import TokenError, decode_actor_token


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def current_actor(authorization: Optional[str] = Header(None)) -> ActorContext:
    raw = _extract_bearer(authorization)
    if not raw:
        raise HTTPException(status_code=401, detail="Missing token")
    try:
        return decode_actor_token(raw)
    except TokenError as e:
        raise HTTPException(status_code=401, detail=str(e))
