from datetime import timedelta
from types import SimpleNamespace

import pytest

from app.core.errors import ForbiddenError
from app.core.rbac import (
    ActorContext,
    actor_from_user,
    can_view,
    derive_department,
    derive_is_admin,
    require_department,
)
from app.models import Department, User
from app.scripts.backfill_user_departments import backfill
from app.utils.jwt import TokenError, create_access_token, decode_actor_token


def _user(**kw):
    base = dict(id=7, username="u7", first_name="A", last_name="B", position="", department=None, is_admin=False)
    base.update(kw)
    return SimpleNamespace(**base)


@pytest.mark.parametrize(
    "position, expected",
    [
        ("เจ้าหน้าที่คลังยา", Department.PHARMACY),
        ("Pharmacy technician", Department.PHARMACY),
        ("พยาบาล OPD", Department.OPD),
        ("", Department.OPD),
        (None, Department.OPD),
    ],
)
def test_derive_department(position, expected):
    assert derive_department(position) is expected


def test_derive_is_admin():
    assert derive_is_admin("ผู้จัดการ") is True
    assert derive_is_admin("หัวหน้าแผนกเภสัชกรรม") is True
    assert derive_is_admin("พยาบาล") is False


def test_stored_department_wins_over_position():
    actor = actor_from_user(_user(position="คลังยา", department=Department.OPD))
    assert actor.department is Department.OPD
    assert actor.is_admin is False


def test_legacy_user_falls_back_to_position():
    actor = actor_from_user(_user(position="ผู้จัดการคลัง"))
    assert actor.department is Department.PHARMACY
    assert actor.is_admin is True


def test_require_department_has_no_admin_bypass():
    admin = ActorContext(user_id=1, username="boss", department=Department.PHARMACY, is_admin=True)
    require_department(admin, [Department.PHARMACY])
    with pytest.raises(ForbiddenError):
        require_department(admin, [Department.OPD])
    assert can_view(admin, [Department.OPD]) is True


def test_can_view_own_department_only():
    nurse = ActorContext(user_id=2, username="nurse", department=Department.OPD)
    assert can_view(nurse, [Department.OPD, Department.PHARMACY]) is True
    assert can_view(nurse, [Department.PHARMACY]) is False


def test_token_round_trip():
    token = create_access_token(_user(first_name="Suda", department=Department.OPD, is_admin=True))
    actor = decode_actor_token(token)
    assert actor.user_id == 7
    assert actor.department is Department.OPD
    assert actor.is_admin is True
    assert actor.display_name == "Suda B"


def test_expired_or_forged_tokens_fail():
    expired = create_access_token(_user(department=Department.OPD), expires_delta=timedelta(minutes=-1))
    with pytest.raises(TokenError):
        decode_actor_token(expired)
    with pytest.raises(TokenError):
        decode_actor_token("abc.def.ghi")


def test_backfill_sets_department_once(db, seed):
    stats = backfill(db)
    assert stats["scanned"] == 1
    assert stats["updated"] == 1

    legacy = db.query(User).filter(User.username == "legacy").one()
    assert legacy.department == Department.PHARMACY
    assert legacy.is_admin is False

    # already migrated rows are left alone
    assert backfill(db)["scanned"] == 0
