# loyalty/models/user.py

from __future__ import annotations

import enum

from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, Enum, CheckConstraint
from loyalty.db import Base
from loyalty.utils.dates import utc_now


class Role(enum.Enum):
    """
    Staff hierarchy. Members compare by privilege:
    REGULAR < CASHIER < MANAGER < SUPERUSER.
    """
    REGULAR = "REGULAR"
    CASHIER = "CASHIER"
    MANAGER = "MANAGER"
    SUPERUSER = "SUPERUSER"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank >= other.rank


_ROLE_RANK = {
    Role.REGULAR: 1,
    Role.CASHIER: 2,
    Role.MANAGER: 3,
    Role.SUPERUSER: 4,
}


class User(Base):
    """
    Account of a student or staff member. `points` is the live balance;
    every change to it goes together with a row in `transactions`.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    utorid = Column(String(8), unique=True, nullable=False, index=True)
    name = Column(String(50), nullable=False)
    email = Column(String, unique=True, nullable=False)
    password_hash = Column(String, nullable=True)  # NULL until activated via reset token
    role = Column(
        Enum(Role, name="user_role"),
        nullable=False,
        default=Role.REGULAR,
    )
    points = Column(Integer, nullable=False, default=0)
    verified = Column(Boolean, nullable=False, default=False)
    suspicious = Column(Boolean, nullable=False, default=False)
    birthday = Column(Date, nullable=True)
    avatar_url = Column(String, nullable=True, comment="Public path of the uploaded avatar")

    created_at = Column(DateTime, nullable=False, default=utc_now)
    last_login = Column(DateTime, nullable=True)

    # --- activation / password reset ---
    reset_token = Column(String(36), unique=True, nullable=True, index=True)
    reset_expires_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
    )

    def __repr__(self):
        return f"<User(id={self.id}, utorid={self.utorid}, role={self.role}, points={self.points})>"
