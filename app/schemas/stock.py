# FILE: app/schemas/stock.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict

from app.models.department import Department
from app.models.stock import TransactionType
from app.schemas.transfer import DrugBriefOut


class StockAdjustIn(BaseModel):
    drug_id: int
    department: Department
    quantity: int  # signed: +increase / -decrease
    reason: str = Field(..., min_length=1, max_length=1000)
    type: Optional[TransactionType] = None
    reference: Optional[str] = Field(None, max_length=100)
    unit_cost: Optional[Decimal] = Field(None, ge=0)


class StockOut(BaseModel):
    id: int
    drug_id: int
    department: Department
    total_quantity: int
    reserved_qty: int
    minimum_stock: int
    total_value: Decimal
    last_updated: datetime
    is_low_stock: bool

    drug: Optional[DrugBriefOut] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class StockTransactionOut(BaseModel):
    id: int
    stock_id: int
    user_id: Optional[int]
    transfer_id: Optional[int]
    type: TransactionType
    quantity: int
    before_qty: int
    after_qty: int
    unit_cost: Decimal
    total_cost: Decimal
    reference: Optional[str]
    note: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class StockSummaryOut(BaseModel):
    department: Department
    total: int
    low_stock: int
    out_of_stock: int
    total_value: Decimal

    model_config = ConfigDict(use_enum_values=True)
