# FILE: app/services/number_series.py
from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.transfer import NumberSeries
from app.utils.timezone import today_local


def _date_key(d: date) -> int:
    return int(d.strftime("%Y%m%d"))


def next_document_number(
    db: Session,
    key: str,          # e.g. "REQ"
    prefix: str,       # e.g. "RXREQ"
    doc_date: Optional[date] = None,
    pad: int = 4,
) -> str:
    """
    Concurrency-safe counter using NumberSeries with UNIQUE(key, date_key).
    Must run inside the caller's transaction.

    Example: RXREQ202610180001
    """
    doc_date = doc_date or today_local()
    dk = _date_key(doc_date)

    row = (
        db.query(NumberSeries)
        .filter(NumberSeries.key == key, NumberSeries.date_key == dk)
        .with_for_update()
        .first()
    )

    if not row:
        # Two first-of-day requests may both insert; the loser hits UNIQUE(key, date_key).
        try:
            with db.begin_nested():
                row = NumberSeries(key=key, date_key=dk, next_seq=1)
                db.add(row)
                db.flush()
        except IntegrityError:
            row = (
                db.query(NumberSeries)
                .filter(NumberSeries.key == key, NumberSeries.date_key == dk)
                .with_for_update()
                .first()
            )
            if not row:
                raise

    seq = int(row.next_seq or 1)
    row.next_seq = seq + 1
    db.flush()

    return f"{prefix}{doc_date.strftime('%Y%m%d')}{seq:0{pad}d}"


def next_requisition_number(db: Session, doc_date: Optional[date] = None) -> str:
    org = (settings.ORG_CODE or "RX").strip().upper()
    return next_document_number(db, key="REQ", prefix=f"{org}REQ", doc_date=doc_date)
