# FILE: app/services/stock_ledger.py
from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List, Dict, Any

from sqlalchemy import func, case
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.errors import (
    InsufficientStockError,
    InvalidPayloadError,
    NotFoundError,
)
from app.core.rbac import ActorContext
from app.db.session import atomic
from app.models.department import Department
from app.models.drug import Drug
from app.models.stock import Stock, StockTransaction, TransactionType
from app.utils.timezone import now_local

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

INCREASE_TYPES = {
    TransactionType.RECEIVE_EXTERNAL,
    TransactionType.TRANSFER_IN,
    TransactionType.ADJUST_INCREASE,
}
DECREASE_TYPES = {
    TransactionType.DISPENSE_EXTERNAL,
    TransactionType.TRANSFER_OUT,
    TransactionType.ADJUST_DECREASE,
}
# kinds a user may post directly (transfers go through the workflow)
DIRECT_ADJUST_TYPES = {
    TransactionType.RECEIVE_EXTERNAL,
    TransactionType.DISPENSE_EXTERNAL,
    TransactionType.ADJUST_INCREASE,
    TransactionType.ADJUST_DECREASE,
}


def D(v, default="0") -> Decimal:
    try:
        if v is None:
            return Decimal(default)
        if isinstance(v, Decimal):
            return v
        return Decimal(str(v))
    except Exception:
        return Decimal(default)


def money(v) -> Decimal:
    return D(v).quantize(CENT, rounding=ROUND_HALF_UP)


def lock_stock(db: Session, drug_id: int, department: Department) -> Optional[Stock]:
    return (
        db.query(Stock)
        .filter(Stock.drug_id == drug_id, Stock.department == department)
        .with_for_update()
        .first()
    )


def lock_or_create_stock(
    db: Session,
    drug_id: int,
    department: Department,
    *,
    minimum_stock: Optional[int] = None,
) -> Stock:
    st = lock_stock(db, drug_id, department)
    if st:
        return st

    st = Stock(
        drug_id=drug_id,
        department=department,
        total_quantity=0,
        reserved_qty=0,
        minimum_stock=settings.DEFAULT_MINIMUM_STOCK if minimum_stock is None else int(minimum_stock),
        total_value=Decimal("0"),
        last_updated=now_local(),
    )
    db.add(st)
    db.flush()
    logger.info("Created stock record drug_id=%s department=%s", drug_id, department.value)

    return (
        db.query(Stock)
        .filter(Stock.id == st.id)
        .with_for_update()
        .one()
    )


def average_cost(st: Stock) -> Decimal:
    qty = int(st.total_quantity or 0)
    if qty <= 0:
        return Decimal("0")
    return D(st.total_value) / Decimal(qty)


def post_movement(
    db: Session,
    st: Stock,
    *,
    txn_type: TransactionType,
    quantity: int,
    unit_cost,
    user_id: Optional[int],
    reference: str = "",
    note: str = "",
    transfer_id: Optional[int] = None,
    clear_value_when_empty: bool = False,
) -> StockTransaction:
    """
    The single write path for stock: moves quantity/value on a locked Stock row
    and appends the matching StockTransaction. Caller owns the transaction.

    total_cost is always quantity x unit_cost, so both legs of a transfer carry
    the same value. With clear_value_when_empty (direct adjustments only) a
    movement that empties the row, or would drive its value negative, posts
    whatever value is left instead.
    """
    qty = int(quantity)
    if qty == 0:
        raise InvalidPayloadError("Stock movement quantity cannot be zero.")
    if txn_type in INCREASE_TYPES and qty < 0:
        raise InvalidPayloadError(f"{txn_type.value} requires a positive quantity.")
    if txn_type in DECREASE_TYPES and qty > 0:
        raise InvalidPayloadError(f"{txn_type.value} requires a negative quantity.")

    before_qty = int(st.total_quantity or 0)
    after_qty = before_qty + qty
    if after_qty < 0:
        raise InsufficientStockError(
            f"Insufficient stock for drug_id={st.drug_id} in {st.department.value}. "
            f"Available {before_qty}, need {-qty}."
        )
    if after_qty < int(st.reserved_qty or 0):
        raise InsufficientStockError(
            f"Movement would leave drug_id={st.drug_id} below its reserved quantity {st.reserved_qty}."
        )

    cost = D(unit_cost)
    total_cost = money(cost * qty)
    new_value = money(D(st.total_value) + total_cost)
    if clear_value_when_empty and (after_qty == 0 or new_value < 0):
        total_cost = money(-D(st.total_value))
        new_value = Decimal("0.00")

    st.total_quantity = after_qty
    st.total_value = new_value
    st.last_updated = now_local()

    txn = StockTransaction(
        stock_id=st.id,
        user_id=user_id,
        transfer_id=transfer_id,
        type=txn_type,
        quantity=qty,
        before_qty=before_qty,
        after_qty=after_qty,
        unit_cost=cost,
        total_cost=total_cost,
        reference=reference or "",
        note=note or "",
        created_at=now_local(),
    )
    db.add(txn)
    db.flush()
    return txn


# ============================================================
# DIRECT ADJUSTMENT
# ============================================================
def _adjust_type(payload) -> TransactionType:
    qty = int(payload.quantity)
    if payload.type is None:
        return TransactionType.ADJUST_INCREASE if qty > 0 else TransactionType.ADJUST_DECREASE
    t = TransactionType(payload.type)
    if t not in DIRECT_ADJUST_TYPES:
        raise InvalidPayloadError(f"{t.value} cannot be posted as a direct adjustment.")
    return t


def adjust_stock(db: Session, payload, actor: Optional[ActorContext]) -> Stock:
    """
    Post one signed movement against (drug, department), creating the stock
    row on first use. Fails with InsufficientStock before anything is written
    when the result would go negative.
    """
    if int(payload.quantity) == 0:
        raise InvalidPayloadError("quantity must not be zero.")

    department = Department(payload.department)
    txn_type = _adjust_type(payload)

    with atomic(db):
        drug = db.query(Drug).filter(Drug.id == payload.drug_id).first()
        if not drug:
            raise NotFoundError(f"Drug {payload.drug_id} not found.")

        existing = lock_stock(db, drug.id, department)
        if existing is None and int(payload.quantity) < 0:
            raise InsufficientStockError(
                f"No stock of drug_id={drug.id} in {department.value}. Need {-int(payload.quantity)}."
            )
        st = existing or lock_or_create_stock(db, drug.id, department)

        unit_cost = payload.unit_cost if payload.unit_cost is not None else average_cost(st)
        post_movement(
            db,
            st,
            txn_type=txn_type,
            quantity=int(payload.quantity),
            unit_cost=unit_cost,
            user_id=actor.user_id if actor else None,
            reference=payload.reference or "",
            note=payload.reason or "",
            clear_value_when_empty=True,
        )

    logger.info(
        "Stock adjusted drug_id=%s department=%s qty=%s type=%s by=%s",
        payload.drug_id, department.value, payload.quantity, txn_type.value,
        actor.username if actor else None,
    )
    return st


# ============================================================
# QUERIES
# ============================================================
def list_stock(db: Session, department: Department, *, search: Optional[str] = None,
               low_only: bool = False) -> List[Stock]:
    q = (
        db.query(Stock)
        .join(Drug, Drug.id == Stock.drug_id)
        .options(selectinload(Stock.drug))
        .filter(Stock.department == department, Drug.is_active.is_(True))
    )
    if search:
        like = f"%{search.strip()}%"
        q = q.filter((Drug.name.like(like)) | (Drug.hospital_drug_code.like(like)))
    if low_only:
        q = q.filter(Stock.total_quantity <= Stock.minimum_stock)
    # low stock first
    return q.order_by(Stock.total_quantity.asc(), Drug.name.asc()).all()


def stock_summary(db: Session, department: Department) -> Dict[str, Any]:
    row = (
        db.query(
            func.count(Stock.id),
            func.coalesce(func.sum(case((Stock.total_quantity <= Stock.minimum_stock, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Stock.total_quantity == 0, 1), else_=0)), 0),
            func.coalesce(func.sum(Stock.total_value), 0),
        )
        .join(Drug, Drug.id == Stock.drug_id)
        .filter(Stock.department == department, Drug.is_active.is_(True))
        .one()
    )
    return {
        "department": department.value,
        "total": int(row[0] or 0),
        "low_stock": int(row[1] or 0),
        "out_of_stock": int(row[2] or 0),
        "total_value": money(row[3]),
    }


def list_transactions(
    db: Session,
    department: Department,
    *,
    drug_id: Optional[int] = None,
    transfer_id: Optional[int] = None,
    limit: int = 200,
) -> List[StockTransaction]:
    q = (
        db.query(StockTransaction)
        .join(Stock, Stock.id == StockTransaction.stock_id)
        .options(selectinload(StockTransaction.stock).selectinload(Stock.drug))
        .filter(Stock.department == department)
    )
    if drug_id:
        q = q.filter(Stock.drug_id == drug_id)
    if transfer_id:
        q = q.filter(StockTransaction.transfer_id == transfer_id)
    return q.order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc()).limit(limit).all()
