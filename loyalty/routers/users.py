# loyalty/routers/users.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session
from starlette import status

from loyalty.db import get_db
from loyalty.models.user import Role
from loyalty.schemas.promotion import PromotionBrief
from loyalty.schemas.transaction import (
    RedemptionCreate,
    TransactionList,
    TransactionOut,
    TransferCreate,
)
from loyalty.schemas.user import (
    CashierUserOut,
    MeOut,
    MeUpdate,
    PasswordChange,
    UserList,
    UserOut,
    UserRegister,
    UserRegistered,
    UserUpdate,
)
from loyalty.services import promotions as promotion_service
from loyalty.services import transactions as tx_service
from loyalty.services import users as user_service
from loyalty.utils.auth import Identity
from loyalty.utils.auth_dep import get_current_identity, require_role
from loyalty.utils.media import delete_if_local, save_image

router = APIRouter()


def _unused_promotions(db: Session, user_id: int):
    return [PromotionBrief.model_validate(p) for p in promotion_service.unused_one_time_for(db, user_id)]


@router.post("", response_model=UserRegistered, status_code=status.HTTP_201_CREATED)
def register_user(
    payload: UserRegister,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.CASHIER)),
):
    """
    Creates an account and returns its activation token.
    The user sets a password through POST /auth/resets/{resetToken}.
    """
    user = user_service.register_user(db, utorid=payload.utorid, name=payload.name, email=payload.email)
    return UserRegistered(
        id=user.id,
        utorid=user.utorid,
        name=user.name,
        email=user.email,
        verified=user.verified,
        expires_at=user.reset_expires_at,
        reset_token=user.reset_token,
    )


@router.get("", response_model=UserList)
def list_users(
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.MANAGER)),
    name: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    verified: Optional[bool] = Query(None),
    activated: Optional[bool] = Query(None, description="has logged in at least once"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
):
    count, items = user_service.list_users(
        db, name=name, role=role, verified=verified, activated=activated, page=page, limit=limit,
    )
    return UserList(count=count, results=[UserOut.model_validate(u) for u in items])


# ===== /users/me ==============================================================

@router.get("/me", response_model=MeOut)
def get_me(db: Session = Depends(get_db), me: Identity = Depends(get_current_identity)):
    user = user_service.get_user_or_404(db, me.id)
    out = MeOut.model_validate(user)
    out.promotions = _unused_promotions(db, user.id)
    return out


@router.patch("/me", response_model=UserOut)
def update_me(
    payload: MeUpdate,
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    user = user_service.update_me(db, me, name=payload.name, email=payload.email, birthday=payload.birthday)
    return UserOut.model_validate(user)


@router.patch("/me/avatar", response_model=UserOut)
async def upload_my_avatar(
    avatar: UploadFile = File(...),
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    """Multipart upload (field `avatar`); the previous avatar file is removed."""
    url = await save_image(avatar, "avatars")
    user, previous = user_service.set_avatar(db, me, url)
    delete_if_local(previous)
    return UserOut.model_validate(user)


@router.patch("/me/password")
def change_password(
    payload: PasswordChange,
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    user_service.change_password(db, me, old=payload.old, new=payload.new)
    return {"message": "password updated"}


@router.post("/me/transactions", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
def create_my_redemption(
    payload: RedemptionCreate,
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    tx = tx_service.create_redemption(db, me, amount=payload.amount, remark=payload.remark)
    return TransactionOut.from_tx(tx)


@router.get("/me/transactions", response_model=TransactionList)
def list_my_transactions(
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
    type: Optional[str] = Query(None),
    related_id: Optional[int] = Query(None, alias="relatedId"),
    promotion_id: Optional[int] = Query(None, alias="promotionId"),
    amount: Optional[int] = Query(None),
    operator: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
):
    count, items = tx_service.list_transactions(
        db,
        owner_id=me.id,
        type=type,
        related_id=related_id,
        promotion_id=promotion_id,
        amount=amount,
        operator=operator,
        page=page,
        limit=limit,
    )
    return TransactionList(count=count, results=[TransactionOut.from_tx(t) for t in items])


# ===== /users/{id} ============================================================

@router.get("/{user_id}", response_model=None)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.CASHIER)),
):
    """Cashiers get the limited view, managers and up the full profile."""
    user = user_service.get_user_or_404(db, user_id)
    promotions = _unused_promotions(db, user.id)
    if me.has_role(Role.MANAGER):
        out = MeOut.model_validate(user)
    else:
        out = CashierUserOut.model_validate(user)
    out.promotions = promotions
    return out.model_dump(by_alias=True, mode="json")


@router.patch("/{user_id}")
def update_user(
    user_id: int,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.MANAGER)),
) -> Dict[str, Any]:
    """Returns id/utorid/name plus only the fields that changed."""
    user, changed = user_service.update_user(db, me, user_id, payload.model_dump())
    result: Dict[str, Any] = {"id": user.id, "utorid": user.utorid, "name": user.name}
    for field in changed:
        value = getattr(user, field)
        result[field] = value.value if isinstance(value, Role) else value
    return result


@router.post("/{user_id}/transactions", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
def transfer_points(
    user_id: int,
    payload: TransferCreate,
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    tx = tx_service.create_transfer(db, me, recipient_id=user_id, amount=payload.amount, remark=payload.remark)
    return TransactionOut.from_tx(tx)
