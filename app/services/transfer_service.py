# FILE: app/services/transfer_service.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional, List, Dict, Any, Iterable, Tuple

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.errors import (
    NotFoundError,
    ForbiddenError,
    InvalidTransitionError,
    InvalidActionError,
    InsufficientStockError,
    InvalidPayloadError,
)
from app.core.rbac import ActorContext, require_department, can_view
from app.db.session import atomic
from app.models.department import Department
from app.models.drug import Drug
from app.models.stock import StockTransaction, TransactionType
from app.models.transfer import Transfer, TransferItem, TransferStatus
from app.schemas.transfer import (
    ACTION_NAMES,
    TransferAction,
    ApproveAction,
    PrepareAction,
    ReceiveAction,
    CancelAction,
)
from app.services.number_series import next_requisition_number
from app.services.stock_ledger import (
    D,
    money,
    lock_stock,
    lock_or_create_stock,
    post_movement,
)
from app.utils.timezone import now_local

logger = logging.getLogger(__name__)

SHORTAGE_REJECT = "reject"
SHORTAGE_SKIP = "skip"
SHORTAGE_POLICIES = (SHORTAGE_REJECT, SHORTAGE_SKIP)

_action_adapter = TypeAdapter(TransferAction)


def _append_note(current: Optional[str], note: Optional[str]) -> str:
    note = (note or "").strip()
    if not note:
        return current or ""
    return (current or "") + ("\n" if current else "") + note


def _require_status(tr: Transfer, expected: TransferStatus, action: str) -> None:
    if tr.status != expected:
        raise InvalidTransitionError(
            f"Cannot {action} transfer {tr.requisition_number}: status is {tr.status.value}, "
            f"expected {expected.value}."
        )


def _item_map(tr: Transfer, rows: Iterable[Any]) -> Dict[int, Any]:
    """Index payload rows by item_id; every id must belong to this transfer."""
    own = {it.id for it in tr.items}
    out: Dict[int, Any] = {}
    for row in rows or []:
        item_id = int(row.item_id)
        if item_id not in own:
            raise InvalidPayloadError(f"Item {item_id} does not belong to transfer {tr.requisition_number}.")
        if item_id in out:
            raise InvalidPayloadError(f"Item {item_id} listed more than once.")
        out[item_id] = row
    return out


# ============================================================
# PARSING
# ============================================================
def parse_transfer_action(raw: Any) -> TransferAction:
    """
    Turn a raw request body into one of the action commands.
    Unknown action -> InvalidAction, bad payload -> ValidationError.
    """
    if not isinstance(raw, dict):
        raise InvalidPayloadError("Action payload must be an object.")

    action = raw.get("action")
    name = action.strip().lower() if isinstance(action, str) else None
    if name not in ACTION_NAMES:
        raise InvalidActionError(f"Invalid action: {action!r}")

    try:
        return _action_adapter.validate_python({**raw, "action": name})
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(x) for x in first.get("loc", ()))
        raise InvalidPayloadError(f"Invalid {name} payload: {loc} {first.get('msg', '')}".strip())


# ============================================================
# CREATE / READ
# ============================================================
def create_transfer(db: Session, payload, actor: ActorContext) -> Transfer:
    from_dept = Department(payload.from_dept)
    to_dept = Department(payload.to_dept)

    if from_dept == to_dept:
        raise InvalidPayloadError("from_dept and to_dept cannot be same.")
    if not payload.items:
        raise InvalidPayloadError("Transfer must have at least 1 item.")
    require_department(actor, [from_dept], message="You can only request transfers for your own department.")

    with atomic(db):
        drug_ids = {int(it.drug_id) for it in payload.items}
        found = {
            d.id for d in db.query(Drug).filter(Drug.id.in_(drug_ids), Drug.is_active.is_(True)).all()
        }
        missing = sorted(drug_ids - found)
        if missing:
            raise InvalidPayloadError(f"Invalid drug_id={missing[0]}")

        req_no = (payload.requisition_number or "").strip()
        if req_no:
            dup = db.query(Transfer.id).filter(Transfer.requisition_number == req_no).first()
            if dup:
                raise InvalidPayloadError(f"Requisition number {req_no} already exists.")
        else:
            req_no = next_requisition_number(db)

        total_value = Decimal("0")
        tr = Transfer(
            requisition_number=req_no,
            title=payload.title,
            purpose=payload.purpose or "",
            from_dept=from_dept,
            to_dept=to_dept,
            status=TransferStatus.PENDING,
            request_note=payload.request_note or "",
            approval_note="",
            requester_id=actor.user_id,
            total_items=len(payload.items),
            requested_at=now_local(),
        )
        for it in payload.items:
            price = D(it.unit_price)
            line = money(price * int(it.requested_qty))
            total_value += line
            tr.items.append(
                TransferItem(
                    drug_id=it.drug_id,
                    requested_qty=int(it.requested_qty),
                    unit_price=price,
                    total_value=line,
                    item_note=it.item_note or "",
                )
            )
        tr.total_value = money(total_value)
        db.add(tr)
        db.flush()

    logger.info(
        "Transfer %s created %s -> %s by %s (%s items)",
        req_no, from_dept.value, to_dept.value, actor.username, len(payload.items),
    )
    return tr


def get_transfer(db: Session, transfer_id: int, *, lock: bool = False) -> Transfer:
    q = (
        db.query(Transfer)
        .options(selectinload(Transfer.items))
        .filter(Transfer.id == transfer_id)
    )
    if lock:
        q = q.with_for_update()
    tr = q.first()
    if not tr:
        raise NotFoundError(f"Transfer {transfer_id} not found.")
    return tr


def get_transfer_for_actor(db: Session, transfer_id: int, actor: ActorContext) -> Transfer:
    tr = (
        db.query(Transfer)
        .options(
            selectinload(Transfer.items).selectinload(TransferItem.drug),
            selectinload(Transfer.requester),
            selectinload(Transfer.approver),
            selectinload(Transfer.dispenser),
            selectinload(Transfer.receiver),
        )
        .filter(Transfer.id == transfer_id)
        .first()
    )
    if not tr:
        raise NotFoundError(f"Transfer {transfer_id} not found.")
    if not can_view(actor, [tr.from_dept, tr.to_dept]):
        logger.info("Access denied for %s to transfer %s", actor.username, tr.id)
        raise ForbiddenError("Access denied.")
    return tr


def list_transfers(
    db: Session,
    actor: ActorContext,
    *,
    department: Optional[Department] = None,
    status: Optional[TransferStatus] = None,
    limit: int = 200,
) -> List[Transfer]:
    if department is None and not actor.is_admin:
        department = actor.department
    if department is not None and not can_view(actor, [department]):
        raise ForbiddenError("Access denied.")

    q = (
        db.query(Transfer)
        .options(
            selectinload(Transfer.items).selectinload(TransferItem.drug),
            selectinload(Transfer.requester),
        )
    )
    if department is not None:
        q = q.filter((Transfer.from_dept == department) | (Transfer.to_dept == department))
    if status is not None:
        q = q.filter(Transfer.status == status)
    return q.order_by(Transfer.requested_at.desc(), Transfer.id.desc()).limit(limit).all()


def available_actions(tr: Transfer, department: Department) -> List[str]:
    """Actions the given department may take on the transfer right now."""
    actions: List[str] = []
    if department == tr.to_dept:
        if tr.status == TransferStatus.PENDING:
            actions += ["approve", "reject"]
        elif tr.status == TransferStatus.APPROVED:
            actions.append("prepare")
    if department == tr.from_dept:
        if tr.status == TransferStatus.PENDING:
            actions.append("cancel")
        elif tr.status == TransferStatus.PREPARED:
            actions.append("receive")
    return actions


# ============================================================
# TRANSITIONS
# ============================================================
def approve_transfer(db: Session, tr: Transfer, actor: ActorContext, cmd: ApproveAction) -> Transfer:
    require_department(actor, [tr.to_dept], message="You can only approve transfers to your department.")
    _require_status(tr, TransferStatus.PENDING, "approve")

    rows = _item_map(tr, cmd.items)
    approved: Dict[int, int] = {}
    for it in tr.items:
        row = rows.get(it.id)
        qty = it.requested_qty if row is None or row.approved_qty is None else int(row.approved_qty)
        if qty > int(it.requested_qty):
            raise InvalidPayloadError(f"approved_qty cannot exceed requested_qty for item {it.id}.")
        approved[it.id] = qty

    for it in tr.items:
        it.approved_qty = approved[it.id]

    tr.status = TransferStatus.APPROVED
    tr.approver_id = actor.user_id
    tr.approved_at = now_local()
    tr.approval_note = (cmd.note or "").strip()
    db.flush()
    return tr


def prepare_transfer(db: Session, tr: Transfer, actor: ActorContext, cmd: PrepareAction) -> Transfer:
    require_department(actor, [tr.to_dept], message="You can only prepare transfers for your department.")
    _require_status(tr, TransferStatus.APPROVED, "prepare")

    rows = _item_map(tr, cmd.items)
    plan: List[Tuple[TransferItem, Any, int, Decimal]] = []
    for it in tr.items:
        row = rows.get(it.id)
        qty = it.approved_qty if row is None or row.dispensed_qty is None else row.dispensed_qty
        price = it.unit_price if row is None or row.unit_price is None else row.unit_price
        plan.append((it, row, int(qty or 0), D(price)))

    total_value = Decimal("0")
    for it, row, qty, price in plan:
        line = money(price * qty)
        it.dispensed_qty = qty
        it.unit_price = price
        it.total_value = line
        if row is not None:
            if row.lot_number is not None:
                it.lot_number = row.lot_number
            if row.expiry_date is not None:
                it.expiry_date = row.expiry_date
            if row.manufacturer is not None:
                it.manufacturer = row.manufacturer
            if row.item_note is not None:
                it.item_note = row.item_note
        total_value += line

    tr.status = TransferStatus.PREPARED
    tr.dispenser_id = actor.user_id
    tr.dispensed_at = now_local()
    tr.total_value = money(total_value)
    tr.approval_note = _append_note(tr.approval_note, cmd.note)
    db.flush()
    return tr


def debit_source_stock(
    db: Session,
    tr: Transfer,
    it: TransferItem,
    qty: int,
    actor: ActorContext,
    shortage_policy: str,
) -> Optional[StockTransaction]:
    """TRANSFER_OUT from to_dept (the supplying inventory)."""
    st = lock_stock(db, it.drug_id, tr.to_dept)
    if st is None or st.available_qty < qty:
        available = st.available_qty if st is not None else 0
        if shortage_policy == SHORTAGE_SKIP:
            logger.warning(
                "Skipped debit on transfer %s drug_id=%s %s: available %s, need %s",
                tr.requisition_number, it.drug_id, tr.to_dept.value, available, qty,
            )
            return None
        raise InsufficientStockError(
            f"Insufficient {tr.to_dept.value} stock for drug_id={it.drug_id}. "
            f"Available {available}, need {qty}."
        )

    return post_movement(
        db,
        st,
        txn_type=TransactionType.TRANSFER_OUT,
        quantity=-qty,
        unit_cost=it.unit_price,
        user_id=actor.user_id,
        reference=tr.requisition_number,
        note=f"Issued to {tr.from_dept.value}",
        transfer_id=tr.id,
    )


def credit_destination_stock(
    db: Session,
    tr: Transfer,
    it: TransferItem,
    qty: int,
    actor: ActorContext,
) -> StockTransaction:
    """TRANSFER_IN to from_dept (the requesting inventory)."""
    st = lock_or_create_stock(db, it.drug_id, tr.from_dept)
    return post_movement(
        db,
        st,
        txn_type=TransactionType.TRANSFER_IN,
        quantity=qty,
        unit_cost=it.unit_price,
        user_id=actor.user_id,
        reference=tr.requisition_number,
        note=f"Received from {tr.to_dept.value}",
        transfer_id=tr.id,
    )


def receive_transfer(
    db: Session,
    tr: Transfer,
    actor: ActorContext,
    cmd: ReceiveAction,
    *,
    shortage_policy: str = SHORTAGE_REJECT,
) -> Transfer:
    require_department(actor, [tr.from_dept], message="You can only receive transfers for your department.")
    _require_status(tr, TransferStatus.PREPARED, "receive")

    rows = _item_map(tr, cmd.items)
    received: Dict[int, int] = {}
    for it in tr.items:
        row = rows.get(it.id)
        dispensed = int(it.dispensed_qty or 0)
        qty = dispensed if row is None or row.received_qty is None else int(row.received_qty)
        if qty > dispensed:
            raise InvalidPayloadError(f"received_qty cannot exceed dispensed_qty for item {it.id}.")
        received[it.id] = qty

    moves = [(it, received[it.id]) for it in tr.items if received[it.id] > 0]

    # lock every existing stock row up front, in a fixed order
    for drug_id, dept in sorted(
        {(it.drug_id, d) for it, _ in moves for d in (tr.to_dept, tr.from_dept)},
        key=lambda k: (k[0], k[1].value),
    ):
        lock_stock(db, drug_id, dept)

    for it in tr.items:
        it.received_qty = received[it.id]

    tr.status = TransferStatus.DELIVERED
    tr.receiver_id = actor.user_id
    tr.received_at = now_local()
    tr.approval_note = _append_note(tr.approval_note, cmd.note)
    db.flush()

    for it, qty in moves:
        debit_source_stock(db, tr, it, qty, actor, shortage_policy)
        credit_destination_stock(db, tr, it, qty, actor)

    logger.info("Stock moved for transfer %s (%s items)", tr.requisition_number, len(moves))
    return tr


def cancel_transfer(db: Session, tr: Transfer, actor: ActorContext, cmd: CancelAction) -> Transfer:
    require_department(
        actor,
        [tr.from_dept, tr.to_dept],
        message="You cannot cancel this transfer.",
    )
    _require_status(tr, TransferStatus.PENDING, cmd.action)

    tr.status = TransferStatus.CANCELLED
    tr.cancelled_at = now_local()
    tr.approval_note = (cmd.note or "").strip()
    db.flush()
    return tr


# ============================================================
# DISPATCH
# ============================================================
def perform_transfer_action(
    db: Session,
    transfer_id: int,
    command,
    actor: ActorContext,
    *,
    shortage_policy: Optional[str] = None,
) -> Transfer:
    """
    Run one workflow action as a single atomic unit: the transfer, its items,
    stock rows and stock transactions commit together or not at all.
    `command` is a parsed action model or a raw dict.
    """
    policy = (shortage_policy or settings.TRANSFER_SHORTAGE_POLICY or SHORTAGE_REJECT).lower()
    if policy not in SHORTAGE_POLICIES:
        raise ValueError(f"Unknown shortage policy {policy!r}")

    if isinstance(command, dict):
        command = parse_transfer_action(command)

    with atomic(db):
        tr = get_transfer(db, transfer_id, lock=True)

        if isinstance(command, ApproveAction):
            approve_transfer(db, tr, actor, command)
        elif isinstance(command, PrepareAction):
            prepare_transfer(db, tr, actor, command)
        elif isinstance(command, ReceiveAction):
            receive_transfer(db, tr, actor, command, shortage_policy=policy)
        elif isinstance(command, CancelAction):
            cancel_transfer(db, tr, actor, command)
        else:
            raise InvalidActionError(f"Invalid action: {getattr(command, 'action', command)!r}")

    logger.info(
        "Transfer %s %s by %s (%s) -> %s",
        tr.requisition_number, command.action, actor.username, actor.department.value, tr.status.value,
    )
    return tr
