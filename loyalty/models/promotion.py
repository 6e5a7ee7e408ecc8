# loyalty/models/promotion.py
# -----------------------------------------------------------------------------
# MODELS: Promotion + UserPromotion (one-time usage marks)
# -----------------------------------------------------------------------------

from __future__ import annotations

import enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Numeric,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from loyalty.db import Base


class PromotionType(enum.Enum):
    AUTOMATIC = "AUTOMATIC"
    ONE_TIME = "ONE_TIME"


class Promotion(Base):
    __tablename__ = "promotions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    description = Column(String, nullable=False, default="")

    type = Column(
        Enum(PromotionType, name="promotion_type"),
        nullable=False,
        comment="AUTOMATIC applies to every eligible purchase, ONE_TIME once per user",
    )

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)

    min_spending = Column(
        Numeric(10, 2),
        nullable=True,
        comment="Minimum spend (dollars) for the promotion to apply",
    )
    rate = Column(
        Float,
        nullable=True,
        comment="Extra points per cent spent",
    )
    points = Column(Integer, nullable=False, default=0, comment="Flat bonus points")

    def is_active(self, now) -> bool:
        return self.start_time <= now <= self.end_time

    def __repr__(self) -> str:
        return f"<Promotion id={self.id} type={self.type} name={self.name!r}>"


class UserPromotion(Base):
    __tablename__ = "user_promotions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    promotion_id = Column(Integer, ForeignKey("promotions.id", ondelete="CASCADE"), nullable=False, index=True)

    # one-way flag: False -> True, never back
    used = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("user_id", "promotion_id", name="uq_user_promotions_user_promotion"),
    )

    user = relationship("User")
    promotion = relationship("Promotion")
