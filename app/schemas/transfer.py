# FILE: app/schemas/transfer.py
from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal
from typing import Annotated, List, Optional, Literal, Union

from pydantic import BaseModel, Field, ConfigDict

from app.models.department import Department
from app.models.transfer import TransferStatus


# -------------------------
# CREATE
# -------------------------
class TransferItemIn(BaseModel):
    drug_id: int
    requested_qty: int = Field(..., gt=0)
    unit_price: Optional[Decimal] = Field(None, ge=0)
    item_note: str = ""


class TransferCreateIn(BaseModel):
    requisition_number: Optional[str] = Field(None, max_length=64)
    title: str = Field(..., min_length=1, max_length=255)
    purpose: str = Field("", max_length=255)
    from_dept: Department
    to_dept: Department
    request_note: str = ""
    items: List[TransferItemIn] = Field(..., min_length=1)


# -------------------------
# ACTIONS (one model per action, discriminated by "action")
# -------------------------
class ApproveItemIn(BaseModel):
    item_id: int
    approved_qty: Optional[int] = Field(None, ge=0)


class PrepareItemIn(BaseModel):
    item_id: int
    dispensed_qty: Optional[int] = Field(None, ge=0)
    lot_number: Optional[str] = Field(None, max_length=100)
    expiry_date: Optional[date] = None
    manufacturer: Optional[str] = Field(None, max_length=255)
    unit_price: Optional[Decimal] = Field(None, ge=0)
    item_note: Optional[str] = Field(None, max_length=500)


class ReceiveItemIn(BaseModel):
    item_id: int
    received_qty: Optional[int] = Field(None, ge=0)


class ApproveAction(BaseModel):
    action: Literal["approve"]
    note: Optional[str] = None
    items: List[ApproveItemIn] = []


class PrepareAction(BaseModel):
    action: Literal["prepare"]
    note: Optional[str] = None
    items: List[PrepareItemIn] = []


class ReceiveAction(BaseModel):
    action: Literal["receive"]
    note: Optional[str] = None
    items: List[ReceiveItemIn] = []


class CancelAction(BaseModel):
    action: Literal["cancel", "reject"]
    note: Optional[str] = None


TransferAction = Annotated[
    Union[ApproveAction, PrepareAction, ReceiveAction, CancelAction],
    Field(discriminator="action"),
]

ACTION_NAMES = ("approve", "prepare", "receive", "cancel", "reject")


# -------------------------
# OUTPUT
# -------------------------
class ActorOut(BaseModel):
    id: int
    username: str
    first_name: str
    last_name: str
    position: str

    model_config = ConfigDict(from_attributes=True)


class DrugBriefOut(BaseModel):
    id: int
    hospital_drug_code: str
    name: str
    generic_name: Optional[str] = None
    unit: Optional[str] = None
    dosage_form: Optional[str] = None
    strength: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TransferItemOut(BaseModel):
    id: int
    transfer_id: int
    drug_id: int
    requested_qty: int
    approved_qty: Optional[int]
    dispensed_qty: Optional[int]
    received_qty: Optional[int]
    lot_number: Optional[str]
    expiry_date: Optional[date]
    manufacturer: Optional[str]
    unit_price: Decimal
    total_value: Decimal
    item_note: str

    drug: Optional[DrugBriefOut] = None

    model_config = ConfigDict(from_attributes=True)


class TransferOut(BaseModel):
    id: int
    requisition_number: str
    title: str
    purpose: str
    from_dept: Department
    to_dept: Department
    status: TransferStatus

    request_note: str
    approval_note: str
    total_items: int
    total_value: Decimal

    requester_id: int
    approver_id: Optional[int]
    dispenser_id: Optional[int]
    receiver_id: Optional[int]

    requested_at: datetime
    approved_at: Optional[datetime]
    dispensed_at: Optional[datetime]
    received_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    requester: Optional[ActorOut] = None
    approver: Optional[ActorOut] = None
    dispenser: Optional[ActorOut] = None
    receiver: Optional[ActorOut] = None

    items: List[TransferItemOut] = []

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
