# loyalty/schemas/auth.py

from datetime import datetime

from loyalty.schemas.base import CamelModel


class LoginIn(CamelModel):
    utorid: str
    password: str


class TokenOut(CamelModel):
    token: str
    expires_at: datetime


class ResetRequestIn(CamelModel):
    utorid: str


class ResetRequestOut(CamelModel):
    expires_at: datetime
    reset_token: str


class ResetConfirmIn(CamelModel):
    utorid: str
    password: str
