# FILE: app/api/routes_stock.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.api.deps import get_db, current_actor
from app.core.errors import ForbiddenError, StockWorkflowError
from app.core.rbac import ActorContext, can_view, require_department
from app.models.department import Department
from app.models.stock import Stock
from app.schemas.stock import StockAdjustIn, StockOut, StockSummaryOut, StockTransactionOut
from app.services.stock_ledger import adjust_stock, list_stock, list_transactions, stock_summary
from app.utils.resp import ok, err, err_from

logger = logging.getLogger(__name__)
router = APIRouter(tags=["stock"])


def _safe_err(e: Exception):
    if isinstance(e, IntegrityError):
        return err("Database constraint error (duplicate/invalid reference).", 400)
    return err("Internal server error", 500)


def _require_view(actor: ActorContext, department: Department) -> None:
    if not can_view(actor, [department]):
        raise ForbiddenError("Access denied.")


@router.get("/stock")
def list_stock_api(
    department: Department = Query(...),
    search: Optional[str] = Query(None),
    low_only: bool = Query(False),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(current_actor),
):
    try:
        _require_view(actor, department)
        rows = list_stock(db, department, search=search, low_only=low_only)
        return ok([StockOut.model_validate(x).model_dump() for x in rows])
    except StockWorkflowError as e:
        return err_from(e)
    except Exception as e:
        logger.exception("Unhandled error in list_stock_api")
        return _safe_err(e)


@router.get("/stock/summary")
def stock_summary_api(
    department: Department = Query(...),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(current_actor),
):
    try:
        _require_view(actor, department)
        return ok(StockSummaryOut(**stock_summary(db, department)).model_dump())
    except StockWorkflowError as e:
        return err_from(e)
    except Exception as e:
        logger.exception("Unhandled error in stock_summary_api")
        return _safe_err(e)


@router.post("/stock/adjust")
def adjust_stock_api(
    payload: StockAdjustIn,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(current_actor),
):
    try:
        require_department(actor, [payload.department], message="You can only adjust your department's stock.")
        st = adjust_stock(db, payload, actor)
        st = (
            db.query(Stock)
            .options(selectinload(Stock.drug))
            .filter(Stock.id == st.id)
            .first()
        )
        return ok(StockOut.model_validate(st).model_dump())
    except StockWorkflowError as e:
        return err_from(e)
    except Exception as e:
        logger.exception("Stock adjustment failed drug_id=%s", payload.drug_id)
        return _safe_err(e)


@router.get("/transactions")
def list_transactions_api(
    department: Department = Query(...),
    drug_id: Optional[int] = Query(None),
    transfer_id: Optional[int] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(current_actor),
):
    try:
        _require_view(actor, department)
        rows = list_transactions(db, department, drug_id=drug_id, transfer_id=transfer_id, limit=limit)
        return ok([StockTransactionOut.model_validate(x).model_dump() for x in rows])
    except StockWorkflowError as e:
        return err_from(e)
    except Exception as e:
        logger.exception("Unhandled error in list_transactions_api")
        return _safe_err(e)
