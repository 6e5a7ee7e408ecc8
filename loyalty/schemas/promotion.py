# loyalty/schemas/promotion.py

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import Field, field_validator

from loyalty.models.promotion import PromotionType
from loyalty.schemas.base import CamelModel

_WIRE_TYPE = {
    PromotionType.AUTOMATIC: "automatic",
    PromotionType.ONE_TIME: "one-time",
}


class PromotionCreate(CamelModel):
    name: str = Field(..., min_length=1)
    description: str
    type: Literal["automatic", "one-time"]
    start_time: datetime
    end_time: datetime
    min_spending: Optional[Decimal] = Field(None, gt=0)
    rate: Optional[float] = Field(None, gt=0)
    points: Optional[int] = Field(None, ge=0)


class PromotionUpdate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[Literal["automatic", "one-time"]] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    min_spending: Optional[Decimal] = Field(None, gt=0)
    rate: Optional[float] = Field(None, gt=0)
    points: Optional[int] = Field(None, ge=0)


class PromotionBrief(CamelModel):
    id: int
    name: str
    min_spending: Optional[float] = None
    rate: Optional[float] = None
    points: int = 0

    @field_validator("min_spending", mode="before")
    @classmethod
    def spending_as_float(cls, v):
        return float(v) if isinstance(v, Decimal) else v


class PromotionOut(CamelModel):
    id: int
    name: str
    description: str
    type: str
    start_time: datetime
    end_time: datetime
    min_spending: Optional[float] = None
    rate: Optional[float] = None
    points: int = 0

    @field_validator("min_spending", mode="before")
    @classmethod
    def spending_as_float(cls, v):
        return float(v) if isinstance(v, Decimal) else v

    @field_validator("type", mode="before")
    @classmethod
    def wire_type(cls, v):
        if isinstance(v, PromotionType):
            return _WIRE_TYPE[v]
        return v


class PromotionList(CamelModel):
    count: int
    results: List[PromotionOut]
