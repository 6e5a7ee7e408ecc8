# loyalty/schemas/user.py

from datetime import date, datetime
from typing import List, Optional

from pydantic import Field

from loyalty.models.user import Role
from loyalty.schemas.base import CamelModel
from loyalty.schemas.promotion import PromotionBrief


class UserRegister(CamelModel):
    utorid: str
    name: str = Field(..., min_length=1, max_length=50)
    email: str


class UserRegistered(CamelModel):
    id: int
    utorid: str
    name: str
    email: str
    verified: bool
    expires_at: datetime
    reset_token: str


class UserOut(CamelModel):
    """Full profile: managers and the user themselves."""
    id: int
    utorid: str
    name: str
    email: str
    birthday: Optional[date] = None
    avatar_url: Optional[str] = None
    role: Role
    points: int
    created_at: datetime
    last_login: Optional[datetime] = None
    verified: bool
    suspicious: bool = False


class MeOut(UserOut):
    promotions: List[PromotionBrief] = []


class CashierUserOut(CamelModel):
    """What a cashier sees when ringing up a customer."""
    id: int
    utorid: str
    name: str
    points: int
    verified: bool
    promotions: List[PromotionBrief] = []


class UserList(CamelModel):
    count: int
    results: List[UserOut]


class UserUpdate(CamelModel):
    email: Optional[str] = None
    verified: Optional[bool] = None
    suspicious: Optional[bool] = None
    role: Optional[str] = None


class MeUpdate(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    birthday: Optional[date] = None


class PasswordChange(CamelModel):
    old: str
    new: str
