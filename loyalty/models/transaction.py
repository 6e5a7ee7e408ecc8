# loyalty/models/transaction.py
# -----------------------------------------------------------------------------
# MODEL: Transaction (points ledger) + TransactionPromotion
# -----------------------------------------------------------------------------

from __future__ import annotations

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    ForeignKey,
    Numeric,
    DateTime,
    Boolean,
    Enum,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from loyalty.db import Base
from loyalty.utils.dates import utc_now


class TransactionType(enum.Enum):
    PURCHASE = "PURCHASE"
    ADJUSTMENT = "ADJUSTMENT"
    REDEMPTION = "REDEMPTION"
    TRANSFER = "TRANSFER"
    EVENT = "EVENT"


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)

    type = Column(
        Enum(TransactionType, name="transaction_type"),
        nullable=False,
    )

    amount = Column(
        Integer,
        nullable=False,
        comment="Points. PURCHASE/EVENT/TRANSFER/REDEMPTION: positive; ADJUSTMENT: signed",
    )

    spent = Column(
        Numeric(10, 2),
        nullable=True,
        comment="Dollars spent (PURCHASE only)",
    )

    remark = Column(String, nullable=False, default="")

    user_id = Column(
        Integer,
        ForeignKey("users.id"),
        nullable=False,
        comment="Owner of the ledger row (customer, redeemer, transfer recipient, guest)",
    )

    created_by_id = Column(
        Integer,
        ForeignKey("users.id"),
        nullable=False,
    )

    processed_by_id = Column(
        Integer,
        ForeignKey("users.id"),
        nullable=True,
        comment="Cashier that fulfilled a REDEMPTION; NULL while pending",
    )

    sender_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    related_id = Column(
        Integer,
        nullable=True,
        comment="ADJUSTMENT: corrected transaction id; EVENT: event id",
    )

    suspicious = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_tx_user_created", "user_id", "created_at"),
        Index("ix_tx_type_related", "type", "related_id"),
    )

    user = relationship("User", foreign_keys=[user_id], lazy="joined")
    created_by = relationship("User", foreign_keys=[created_by_id], lazy="joined")
    processed_by = relationship("User", foreign_keys=[processed_by_id], lazy="joined")
    sender = relationship("User", foreign_keys=[sender_id])
    recipient = relationship("User", foreign_keys=[recipient_id])

    promotion_links = relationship(
        "TransactionPromotion",
        back_populates="transaction",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def promotion_ids(self):
        return sorted(link.promotion_id for link in self.promotion_links)

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} type={self.type} amount={self.amount} user={self.user_id}>"


class TransactionPromotion(Base):
    __tablename__ = "transaction_promotions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True)
    promotion_id = Column(Integer, ForeignKey("promotions.id"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("transaction_id", "promotion_id", name="uq_tx_promotions_tx_promotion"),
    )

    transaction = relationship("Transaction", back_populates="promotion_links")
    promotion = relationship("Promotion")
