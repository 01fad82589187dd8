from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

from app.core.config import settings
from app.core.errors import ForbiddenError
from app.models.department import Department


@dataclass(frozen=True)
class ActorContext:
    """
    Who is acting. Department and admin flag are resolved once when the
    access token is issued; services never look at `position`.
    """
    user_id: int
    username: str
    department: Department
    first_name: str = ""
    last_name: str = ""
    position: str = ""
    is_admin: bool = False

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.username


def _norm(v: Optional[str]) -> str:
    return (v or "").strip().lower()


def _matches(position: Optional[str], keywords: Iterable[str]) -> bool:
    p = _norm(position)
    if not p:
        return False
    return any(_norm(k) and _norm(k) in p for k in keywords)


def derive_department(position: Optional[str]) -> Department:
    """
    Legacy mapping: a position mentioning the drug store belongs to PHARMACY,
    everybody else to OPD. Only used to backfill User.department.
    """
    if _matches(position, settings.PHARMACY_POSITION_KEYWORDS):
        return Department.PHARMACY
    return Department.OPD


def derive_is_admin(position: Optional[str]) -> bool:
    """Legacy mapping for managers / heads of department."""
    return _matches(position, settings.ADMIN_POSITION_KEYWORDS)


def actor_from_user(user: Any) -> ActorContext:
    """
    Build the actor context for a User row.
    Legacy rows without a stored department fall back to the position mapping.
    """
    department = getattr(user, "department", None)
    if department is None:
        department = derive_department(getattr(user, "position", None))
    else:
        department = Department(department)

    is_admin = bool(getattr(user, "is_admin", False))
    if not is_admin and getattr(user, "department", None) is None:
        is_admin = derive_is_admin(getattr(user, "position", None))

    return ActorContext(
        user_id=int(user.id),
        username=user.username,
        department=department,
        first_name=getattr(user, "first_name", "") or "",
        last_name=getattr(user, "last_name", "") or "",
        position=getattr(user, "position", "") or "",
        is_admin=is_admin,
    )


def require_department(actor: ActorContext, allowed: Iterable[Department], *, message: Optional[str] = None) -> None:
    """
    Raise Forbidden unless the actor works in one of `allowed`.
    Admins get no bypass here: write transitions are department scoped.
    """
    allowed_set = {Department(d) for d in allowed}
    if actor.department in allowed_set:
        return
    raise ForbiddenError(message or "Your department cannot perform this action.")


def can_view(actor: ActorContext, departments: Iterable[Department]) -> bool:
    if actor.is_admin:
        return True
    return actor.department in {Department(d) for d in departments}
