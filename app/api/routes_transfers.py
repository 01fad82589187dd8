# FILE: app/api/routes_transfers.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.deps import get_db, current_actor
from app.core.errors import StockWorkflowError
from app.core.rbac import ActorContext
from app.models.department import Department
from app.models.transfer import TransferStatus
from app.schemas.transfer import TransferCreateIn, TransferOut
from app.services.transfer_service import (
    available_actions,
    create_transfer,
    get_transfer_for_actor,
    list_transfers,
    perform_transfer_action,
)
from app.utils.resp import ok, err, err_from

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/transfers", tags=["transfers"])


def _safe_err(e: Exception):
    # Make SQL errors readable instead of full trace
    if isinstance(e, IntegrityError):
        return err("Database constraint error (duplicate/invalid reference).", 400)
    return err("Internal server error", 500)


def _detail(db: Session, transfer_id: int, actor: ActorContext) -> Dict[str, Any]:
    tr = get_transfer_for_actor(db, transfer_id, actor)
    data = TransferOut.model_validate(tr).model_dump()
    data["available_actions"] = available_actions(tr, actor.department)
    return data


@router.get("")
def list_transfers_api(
    department: Optional[Department] = Query(None),
    status: Optional[TransferStatus] = Query(None),
    limit: int = Query(200, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(current_actor),
):
    try:
        rows = list_transfers(db, actor, department=department, status=status, limit=limit)
        return ok([TransferOut.model_validate(x).model_dump() for x in rows])
    except StockWorkflowError as e:
        return err_from(e)
    except Exception as e:
        logger.exception("Unhandled error in list_transfers_api")
        return _safe_err(e)


@router.post("")
def create_transfer_api(
    payload: TransferCreateIn,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(current_actor),
):
    try:
        tr = create_transfer(db, payload, actor)
        return ok(_detail(db, tr.id, actor), status=201)
    except StockWorkflowError as e:
        return err_from(e)
    except Exception as e:
        logger.exception("Unexpected error in create_transfer_api by %s", actor.username)
        return _safe_err(e)


@router.get("/{transfer_id}")
def get_transfer_api(
    transfer_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(current_actor),
):
    try:
        return ok(_detail(db, transfer_id, actor))
    except StockWorkflowError as e:
        return err_from(e)
    except Exception as e:
        logger.exception("Unhandled error in get_transfer_api transfer_id=%s", transfer_id)
        return _safe_err(e)


@router.post("/{transfer_id}/actions")
def transfer_action_api(
    transfer_id: int,
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(current_actor),
):
    logger.info("Transfer action %s by %s on transfer %s", payload.get("action"), actor.username, transfer_id)
    try:
        perform_transfer_action(db, transfer_id, payload, actor)
        return ok(_detail(db, transfer_id, actor))
    except StockWorkflowError as e:
        logger.info("Transfer action rejected transfer_id=%s code=%s msg=%s", transfer_id, e.code, e.message)
        return err_from(e)
    except Exception as e:
        logger.exception("Transfer action failed transfer_id=%s", transfer_id)
        return _safe_err(e)
