# FILE: app/scripts/backfill_user_departments.py
"""
One-shot migration: store department / is_admin for accounts that only
have a free-text position. After this runs, nothing reads `position`
for authorization.

    python -m app.scripts.backfill_user_departments --dry-run
"""
from __future__ import annotations

import argparse
from typing import Dict

from sqlalchemy.orm import Session

from app.core.rbac import derive_department, derive_is_admin
from app.db.session import SessionLocal
from app.models.user import User


def backfill(db: Session, *, overwrite: bool = False) -> Dict[str, int]:
    stats = {"scanned": 0, "updated": 0, "admins": 0}

    q = db.query(User)
    if not overwrite:
        q = q.filter(User.department.is_(None))

    for user in q.order_by(User.id.asc()).all():
        stats["scanned"] += 1
        user.department = derive_department(user.position)
        if derive_is_admin(user.position) and not user.is_admin:
            user.is_admin = True
            stats["admins"] += 1
        stats["updated"] += 1

    db.flush()
    return stats


def main() -> None:
    parser = argparse.ArgumentParser(description="Backfill users.department / is_admin from position.")
    parser.add_argument("--overwrite", action="store_true", help="Recompute users that already have a department.")
    parser.add_argument("--dry-run", action="store_true", help="Roll back instead of committing.")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        stats = backfill(db, overwrite=args.overwrite)
        if args.dry_run:
            db.rollback()
        else:
            db.commit()
        print(("DRY RUN " if args.dry_run else "") + "backfill:", stats)
    finally:
        db.close()


if __name__ == "__main__":
    main()
