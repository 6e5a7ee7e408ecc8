# loyalty/routers/promotions.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session
from starlette import status

from loyalty.db import get_db
from loyalty.models.user import Role
from loyalty.schemas.promotion import PromotionCreate, PromotionList, PromotionOut, PromotionUpdate
from loyalty.services import promotions as promotion_service
from loyalty.utils.auth import Identity
from loyalty.utils.auth_dep import get_current_identity, require_role

router = APIRouter()


@router.post("", response_model=PromotionOut, status_code=status.HTTP_201_CREATED)
def create_promotion(
    payload: PromotionCreate,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.MANAGER)),
):
    promo = promotion_service.create_promotion(
        db,
        name=payload.name,
        description=payload.description,
        type=payload.type,
        start_time=payload.start_time,
        end_time=payload.end_time,
        min_spending=payload.min_spending,
        rate=payload.rate,
        points=payload.points,
    )
    return PromotionOut.model_validate(promo)


@router.get("", response_model=PromotionList)
def list_promotions(
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
    name: Optional[str] = Query(None),
    type: Optional[str] = Query(None, description="automatic | one-time"),
    started: Optional[bool] = Query(None, description="managers only"),
    ended: Optional[bool] = Query(None, description="managers only"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
):
    count, items = promotion_service.list_promotions(
        db, me, name=name, type=type, started=started, ended=ended, page=page, limit=limit,
    )
    return PromotionList(count=count, results=[PromotionOut.model_validate(p) for p in items])


@router.get("/{promotion_id}", response_model=PromotionOut)
def get_promotion(
    promotion_id: int,
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    return PromotionOut.model_validate(promotion_service.get_promotion(db, me, promotion_id))


@router.patch("/{promotion_id}", response_model=PromotionOut)
def update_promotion(
    promotion_id: int,
    payload: PromotionUpdate,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.MANAGER)),
):
    promo, _ = promotion_service.update_promotion(db, promotion_id, payload.model_dump())
    return PromotionOut.model_validate(promo)


@router.delete("/{promotion_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_promotion(
    promotion_id: int,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.MANAGER)),
):
    promotion_service.delete_promotion(db, promotion_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
