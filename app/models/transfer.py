from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Date, Numeric,
    ForeignKey, Enum, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db.base import Base, MYSQL_ARGS
from app.models.department import Department

Money = Numeric(14, 2)
Price = Numeric(14, 4)


class TransferStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PREPARED = "PREPARED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = (TransferStatus.DELIVERED, TransferStatus.CANCELLED)


class Transfer(Base):
    """
    Requisition: from_dept (e.g. OPD) asks to_dept (e.g. PHARMACY) for drugs.
    to_dept approves and prepares, from_dept receives and gets the stock.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        UniqueConstraint("requisition_number", name="uq_transfers_requisition_number"),
        Index("ix_transfers_status_requested", "status", "requested_at"),
        Index("ix_transfers_from_to", "from_dept", "to_dept"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)
    requisition_number = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False, default="")
    purpose = Column(String(255), nullable=False, default="")

    from_dept = Column(Enum(Department, name="department"), nullable=False)
    to_dept = Column(Enum(Department, name="department"), nullable=False)

    status = Column(Enum(TransferStatus, name="transfer_status"), nullable=False, default=TransferStatus.PENDING)

    request_note = Column(Text, nullable=False, default="")
    approval_note = Column(Text, nullable=False, default="")

    total_items = Column(Integer, nullable=False, default=0)
    total_value = Column(Money, nullable=False, default=Decimal("0"))

    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    approver_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    dispenser_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    requested_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    approved_at = Column(DateTime, nullable=True)
    dispensed_at = Column(DateTime, nullable=True)
    received_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    requester = relationship("User", foreign_keys=[requester_id])
    approver = relationship("User", foreign_keys=[approver_id])
    dispenser = relationship("User", foreign_keys=[dispenser_id])
    receiver = relationship("User", foreign_keys=[receiver_id])

    items = relationship(
        "TransferItem",
        back_populates="transfer",
        cascade="all, delete-orphan",
        order_by="TransferItem.id",
    )
    transactions = relationship("StockTransaction", back_populates="transfer")


class TransferItem(Base):
    __tablename__ = "transfer_items"
    __table_args__ = (
        Index("ix_transfer_items_transfer", "transfer_id"),
        Index("ix_transfer_items_drug", "drug_id"),
        CheckConstraint("requested_qty >= 0", name="ck_transfer_items_requested"),
        CheckConstraint("approved_qty IS NULL OR approved_qty >= 0", name="ck_transfer_items_approved"),
        CheckConstraint("dispensed_qty IS NULL OR dispensed_qty >= 0", name="ck_transfer_items_dispensed"),
        CheckConstraint("received_qty IS NULL OR received_qty >= 0", name="ck_transfer_items_received"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)
    transfer_id = Column(Integer, ForeignKey("transfers.id", ondelete="CASCADE"), nullable=False)
    drug_id = Column(Integer, ForeignKey("drugs.id"), nullable=False)

    requested_qty = Column(Integer, nullable=False, default=0)
    approved_qty = Column(Integer, nullable=True)
    dispensed_qty = Column(Integer, nullable=True)
    received_qty = Column(Integer, nullable=True)

    # lot info, captured at prepare
    lot_number = Column(String(100), nullable=True)
    expiry_date = Column(Date, nullable=True)
    manufacturer = Column(String(255), nullable=True)

    unit_price = Column(Price, nullable=False, default=Decimal("0"))
    total_value = Column(Money, nullable=False, default=Decimal("0"))

    item_note = Column(String(500), nullable=False, default="")

    transfer = relationship("Transfer", back_populates="items")
    drug = relationship("Drug")


class NumberSeries(Base):
    """Per-day counters for generated document numbers (UNIQUE key+date)."""
    __tablename__ = "number_series"
    __table_args__ = (
        UniqueConstraint("key", "date_key", name="uq_number_series_key_date"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True)
    key = Column(String(30), nullable=False)         # REQ
    date_key = Column(Integer, nullable=False)      # YYYYMMDD
    next_seq = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
