# FILE: app/models/stock.py
from __future__ import annotations

import enum
import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, ForeignKey, Enum,
    CheckConstraint, Index, UniqueConstraint, event,
)
from sqlalchemy.orm import relationship

from app.core.errors import ImmutableRecordError
from app.db.base import Base, MYSQL_ARGS
from app.models.department import Department

logger = logging.getLogger(__name__)

Money = Numeric(14, 2)
Price = Numeric(14, 4)


class TransactionType(str, enum.Enum):
    RECEIVE_EXTERNAL = "RECEIVE_EXTERNAL"
    DISPENSE_EXTERNAL = "DISPENSE_EXTERNAL"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"
    ADJUST_INCREASE = "ADJUST_INCREASE"
    ADJUST_DECREASE = "ADJUST_DECREASE"
    RESERVE = "RESERVE"
    UNRESERVE = "UNRESERVE"


class Stock(Base):
    """
    Current quantity / value of one drug in one department.
    Only StockTransaction writes move total_quantity / total_value.
    """
    __tablename__ = "stocks"
    __table_args__ = (
        UniqueConstraint("drug_id", "department", name="uq_stocks_drug_department"),
        CheckConstraint("total_quantity >= 0", name="ck_stocks_qty_non_negative"),
        CheckConstraint("reserved_qty >= 0", name="ck_stocks_reserved_non_negative"),
        CheckConstraint("reserved_qty <= total_quantity", name="ck_stocks_reserved_le_total"),
        Index("ix_stocks_department", "department"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)
    drug_id = Column(Integer, ForeignKey("drugs.id"), nullable=False, index=True)
    department = Column(Enum(Department, name="department"), nullable=False)

    total_quantity = Column(Integer, nullable=False, default=0)
    reserved_qty = Column(Integer, nullable=False, default=0)
    minimum_stock = Column(Integer, nullable=False, default=10)
    total_value = Column(Money, nullable=False, default=Decimal("0"))

    last_updated = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    drug = relationship("Drug", back_populates="stocks")
    transactions = relationship("StockTransaction", back_populates="stock")

    @property
    def available_qty(self) -> int:
        return int(self.total_quantity or 0) - int(self.reserved_qty or 0)

    @property
    def is_low_stock(self) -> bool:
        return int(self.total_quantity or 0) <= int(self.minimum_stock or 0)


class StockTransaction(Base):
    """Append-only audit row, one per stock mutation."""
    __tablename__ = "stock_transactions"
    __table_args__ = (
        CheckConstraint("after_qty - before_qty = quantity", name="ck_stock_txn_qty_delta"),
        Index("ix_stock_txn_stock_time", "stock_id", "created_at"),
        Index("ix_stock_txn_transfer", "transfer_id"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)
    stock_id = Column(Integer, ForeignKey("stocks.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    transfer_id = Column(Integer, ForeignKey("transfers.id"), nullable=True)

    type = Column(Enum(TransactionType, name="stock_txn_type"), nullable=False)
    quantity = Column(Integer, nullable=False)  # +IN / -OUT
    before_qty = Column(Integer, nullable=False)
    after_qty = Column(Integer, nullable=False)

    unit_cost = Column(Price, nullable=False, default=Decimal("0"))
    total_cost = Column(Money, nullable=False, default=Decimal("0"))

    reference = Column(String(100), default="")
    note = Column(String(1000), default="")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    stock = relationship("Stock", back_populates="transactions")
    user = relationship("User")
    transfer = relationship("Transfer", back_populates="transactions")


@event.listens_for(StockTransaction, "before_update")
def _block_transaction_update(mapper, connection, target):
    logger.error("Blocked update of stock transaction id=%s", target.id)
    raise ImmutableRecordError(f"Stock transaction {target.id} is immutable.")


@event.listens_for(StockTransaction, "before_delete")
def _block_transaction_delete(mapper, connection, target):
    logger.error("Blocked delete of stock transaction id=%s", target.id)
    raise ImmutableRecordError(f"Stock transaction {target.id} cannot be deleted.")
