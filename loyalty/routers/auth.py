# loyalty/routers/auth.py
"""
Login and password reset.
Tokens are bearer JWTs; see loyalty/utils/auth.py for claims and lifetime.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from starlette import status

from loyalty.db import get_db
from loyalty.schemas.auth import LoginIn, ResetConfirmIn, ResetRequestIn, ResetRequestOut, TokenOut
from loyalty.services import users as user_service

router = APIRouter()


@router.post("/tokens", response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    token, expires_at = user_service.login(db, utorid=payload.utorid, password=payload.password)
    return TokenOut(token=token, expires_at=expires_at)


@router.post("/resets", response_model=ResetRequestOut, status_code=status.HTTP_202_ACCEPTED)
def request_reset(payload: ResetRequestIn, db: Session = Depends(get_db)):
    # no mail delivery: the token goes back in the response
    user = user_service.request_reset(db, utorid=payload.utorid)
    return ResetRequestOut(expires_at=user.reset_expires_at, reset_token=user.reset_token)


@router.post("/resets/{reset_token}")
def reset_password(reset_token: str, payload: ResetConfirmIn, db: Session = Depends(get_db)):
    user_service.reset_password(db, reset_token, utorid=payload.utorid, password=payload.password)
    return {"message": "password reset"}
