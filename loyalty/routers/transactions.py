# loyalty/routers/transactions.py
# -----------------------------------------------------------------------------
# ROUTER: staff side of the points ledger
# -----------------------------------------------------------------------------
# POST creates purchases / adjustments / redemptions on behalf of a user;
# reads and moderation are manager-only, processing a redemption is cashier+.
# -----------------------------------------------------------------------------
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from starlette import status

from loyalty.db import get_db
from loyalty.errors import ForbiddenError, ValidationError
from loyalty.models.user import Role
from loyalty.schemas.transaction import (
    ProcessedUpdate,
    SuspiciousUpdate,
    TransactionCreate,
    TransactionList,
    TransactionOut,
)
from loyalty.services import transactions as tx_service
from loyalty.utils.auth import Identity
from loyalty.utils.auth_dep import require_role

router = APIRouter()


@router.post("", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
def create_transaction(
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.CASHIER)),
):
    if payload.type == "purchase":
        if not payload.utorid or payload.spent is None:
            raise ValidationError("utorid and spent are required for a purchase")
        tx = tx_service.create_purchase(
            db, me,
            utorid=payload.utorid,
            spent=payload.spent,
            promotion_ids=payload.promotion_ids,
            remark=payload.remark,
        )
    elif payload.type == "adjustment":
        if not me.has_role(Role.MANAGER):
            raise ForbiddenError("only managers can create adjustments")
        if not payload.utorid or payload.amount is None or payload.related_id is None:
            raise ValidationError("utorid, amount and relatedId are required for an adjustment")
        tx = tx_service.create_adjustment(
            db, me,
            utorid=payload.utorid,
            amount=payload.amount,
            related_id=payload.related_id,
            promotion_ids=payload.promotion_ids,
            remark=payload.remark,
        )
    else:
        if not payload.utorid or payload.amount is None:
            raise ValidationError("utorid and amount are required for a redemption")
        tx = tx_service.create_redemption(
            db, me,
            utorid=payload.utorid,
            amount=payload.amount,
            remark=payload.remark,
        )
    return TransactionOut.from_tx(tx)


@router.get("", response_model=TransactionList)
def list_transactions(
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.MANAGER)),
    name: Optional[str] = Query(None, description="utorid or name of the owner contains"),
    created_by: Optional[str] = Query(None, alias="createdBy"),
    suspicious: Optional[bool] = Query(None),
    promotion_id: Optional[int] = Query(None, alias="promotionId"),
    type: Optional[str] = Query(None),
    related_id: Optional[int] = Query(None, alias="relatedId"),
    amount: Optional[int] = Query(None),
    operator: Optional[str] = Query(None, description="gte | lte, required with amount"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
):
    count, items = tx_service.list_transactions(
        db,
        name=name,
        created_by=created_by,
        suspicious=suspicious,
        promotion_id=promotion_id,
        type=type,
        related_id=related_id,
        amount=amount,
        operator=operator,
        page=page,
        limit=limit,
    )
    return TransactionList(count=count, results=[TransactionOut.from_tx(t) for t in items])


@router.get("/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.MANAGER)),
):
    return TransactionOut.from_tx(tx_service.get_transaction(db, transaction_id))


@router.patch("/{transaction_id}/suspicious", response_model=TransactionOut)
def set_suspicious(
    transaction_id: int,
    payload: SuspiciousUpdate,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.MANAGER)),
):
    tx = tx_service.set_suspicious(db, transaction_id, payload.suspicious)
    return TransactionOut.from_tx(tx)


@router.patch("/{transaction_id}/processed", response_model=TransactionOut)
def process_redemption(
    transaction_id: int,
    payload: ProcessedUpdate,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.CASHIER)),
):
    tx = tx_service.process_redemption(db, me, transaction_id)
    return TransactionOut.from_tx(tx)
