# loyalty/schemas/transaction.py
# -----------------------------------------------------------------------------
# Pydantic schemas: ledger requests and responses
# -----------------------------------------------------------------------------
# One response shape for every type; fields that do not apply are null.
# Users are exposed by utorid, types in lower case ("purchase", ...).
# -----------------------------------------------------------------------------

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import Field

from loyalty.models.transaction import Transaction
from loyalty.schemas.base import CamelModel


class TransactionCreate(CamelModel):
    """Staff-entered transaction: purchase, adjustment or redemption on behalf of a user."""
    type: Literal["purchase", "adjustment", "redemption"]
    utorid: Optional[str] = None
    spent: Optional[Decimal] = None
    amount: Optional[int] = None
    related_id: Optional[int] = None
    promotion_ids: Optional[List[int]] = None
    remark: Optional[str] = None


class RedemptionCreate(CamelModel):
    type: Literal["redemption"]
    amount: int
    remark: Optional[str] = None


class TransferCreate(CamelModel):
    type: Literal["transfer"]
    amount: int
    remark: Optional[str] = None


class EventAwardCreate(CamelModel):
    type: Literal["event"]
    utorid: Optional[str] = None
    amount: int
    remark: Optional[str] = None


class SuspiciousUpdate(CamelModel):
    suspicious: bool


class ProcessedUpdate(CamelModel):
    processed: Literal[True]


class TransactionOut(CamelModel):
    id: int
    utorid: str
    type: str
    amount: int
    spent: Optional[float] = None
    earned: Optional[int] = None
    remark: str = ""
    promotion_ids: List[int] = Field(default_factory=list)
    related_id: Optional[int] = None
    suspicious: bool = False
    created_by: str
    processed_by: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_tx(cls, tx: Transaction) -> "TransactionOut":
        earned = None
        if tx.type.value == "PURCHASE":
            # a suspicious purchase is recorded but credits nothing
            earned = 0 if tx.suspicious else tx.amount
        return cls(
            id=tx.id,
            utorid=tx.user.utorid,
            type=tx.type.value.lower(),
            amount=tx.amount,
            spent=float(tx.spent) if tx.spent is not None else None,
            earned=earned,
            remark=tx.remark or "",
            promotion_ids=tx.promotion_ids,
            related_id=tx.related_id,
            suspicious=bool(tx.suspicious),
            created_by=tx.created_by.utorid,
            processed_by=tx.processed_by.utorid if tx.processed_by else None,
            sender=tx.sender.utorid if tx.sender else None,
            recipient=tx.recipient.utorid if tx.recipient else None,
            created_at=tx.created_at,
        )


class TransactionList(CamelModel):
    count: int
    results: List[TransactionOut]
