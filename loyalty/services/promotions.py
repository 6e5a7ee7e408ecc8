# loyalty/services/promotions.py
# Promotions: staff CRUD, visibility rules and the purchase-time helpers
# (validation of requested promotions, AUTOMATIC lookup, one-time usage marks).

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, exists, or_, select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loyalty.db import atomic
from loyalty.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from loyalty.models.promotion import Promotion, PromotionType, UserPromotion
from loyalty.models.user import Role, User
from loyalty.utils.auth import Identity
from loyalty.utils.dates import utc_now, to_naive_utc

log = logging.getLogger(__name__)

# wire names <-> enum
PROMOTION_TYPES = {
    "automatic": PromotionType.AUTOMATIC,
    "one-time": PromotionType.ONE_TIME,
}


def parse_promotion_type(value: str) -> PromotionType:
    try:
        return PROMOTION_TYPES[value]
    except KeyError:
        raise ValidationError("invalid promotion type")


def round_points(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def bonus_points(promotions: Iterable[Promotion], spent: Decimal) -> int:
    """Flat bonus plus rate bonus (rate is extra points per cent spent)."""
    bonus = 0
    for promo in promotions:
        if promo.points:
            bonus += int(promo.points)
        if promo.rate:
            bonus += round_points(spent * 100 * Decimal(str(promo.rate)))
    return bonus


def get_promotion_or_404(db: Session, promotion_id: int) -> Promotion:
    promo = db.get(Promotion, promotion_id)
    if promo is None:
        raise NotFoundError("promotion not found")
    return promo


def _is_used(db: Session, user_id: int, promotion_id: int) -> bool:
    return bool(
        db.scalar(
            select(func.count())
            .select_from(UserPromotion)
            .where(
                UserPromotion.user_id == user_id,
                UserPromotion.promotion_id == promotion_id,
                UserPromotion.used.is_(True),
            )
        )
    )


def resolve_requested(db: Session, user: User, promotion_ids: Optional[List[int]]) -> List[Promotion]:
    """
    Checks promotions explicitly requested for a transaction:
    they must exist, be active right now and (ONE_TIME) not be used by `user` yet.
    """
    if not promotion_ids:
        return []
    now = utc_now()
    result: List[Promotion] = []
    seen = set()
    for pid in promotion_ids:
        if pid in seen:
            continue
        seen.add(pid)
        promo = db.get(Promotion, pid)
        if promo is None:
            raise ValidationError(f"promotion id {pid} does not exist")
        if not promo.is_active(now):
            raise ValidationError(f"promotion id {pid} is expired or not active")
        if promo.type == PromotionType.ONE_TIME and _is_used(db, user.id, pid):
            raise ConflictError(f"promotion id {pid} has already been used")
        result.append(promo)
    return result


def automatic_for_purchase(db: Session, spent: Decimal) -> List[Promotion]:
    now = utc_now()
    stmt = (
        select(Promotion)
        .where(
            Promotion.type == PromotionType.AUTOMATIC,
            Promotion.start_time <= now,
            Promotion.end_time >= now,
            or_(Promotion.min_spending.is_(None), Promotion.min_spending <= spent),
        )
        .order_by(Promotion.id)
    )
    return list(db.scalars(stmt).all())


def mark_used(db: Session, user_id: int, promotion_id: int) -> None:
    """
    One-way transition used=False -> True for (user, promotion). A second use,
    including a concurrent one, fails with ConflictError. Does not commit.
    """
    res = db.execute(
        update(UserPromotion)
        .where(
            UserPromotion.user_id == user_id,
            UserPromotion.promotion_id == promotion_id,
            UserPromotion.used.is_(False),
        )
        .values(used=True)
    )
    if res.rowcount == 1:
        return
    if db.scalar(
        select(UserPromotion).where(
            UserPromotion.user_id == user_id,
            UserPromotion.promotion_id == promotion_id,
        )
    ) is not None:
        raise ConflictError(f"promotion id {promotion_id} has already been used")
    try:
        db.add(UserPromotion(user_id=user_id, promotion_id=promotion_id, used=True))
        db.flush()
    except IntegrityError:
        raise ConflictError(f"promotion id {promotion_id} has already been used")


def unused_one_time_for(db: Session, user_id: int) -> List[Promotion]:
    """Currently active ONE_TIME promotions the user has not used yet."""
    now = utc_now()
    used_q = exists(
        select(1).where(
            UserPromotion.promotion_id == Promotion.id,
            UserPromotion.user_id == user_id,
            UserPromotion.used.is_(True),
        )
    )
    stmt = (
        select(Promotion)
        .where(
            Promotion.type == PromotionType.ONE_TIME,
            Promotion.start_time <= now,
            Promotion.end_time >= now,
            ~used_q,
        )
        .order_by(Promotion.id)
    )
    return list(db.scalars(stmt).all())


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def create_promotion(
    db: Session,
    *,
    name: str,
    description: str,
    type: str,
    start_time,
    end_time,
    min_spending: Optional[Decimal] = None,
    rate: Optional[float] = None,
    points: Optional[int] = None,
) -> Promotion:
    promo_type = parse_promotion_type(type)
    start = to_naive_utc(start_time)
    end = to_naive_utc(end_time)
    if end <= start:
        raise ValidationError("endTime must be after startTime")

    with atomic(db):
        promo = Promotion(
            name=name,
            description=description,
            type=promo_type,
            start_time=start,
            end_time=end,
            min_spending=min_spending,
            rate=rate,
            points=points if points is not None else 0,
        )
        db.add(promo)
    db.refresh(promo)
    log.info("promotion %s created (%s)", promo.id, promo_type.value)
    return promo


def list_promotions(
    db: Session,
    identity: Identity,
    *,
    name: Optional[str] = None,
    type: Optional[str] = None,
    started: Optional[bool] = None,
    ended: Optional[bool] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[int, List[Promotion]]:
    now = utc_now()
    clauses = []
    if name:
        clauses.append(Promotion.name.ilike(f"%{name}%"))
    if type:
        clauses.append(Promotion.type == parse_promotion_type(type))

    if identity.has_role(Role.MANAGER):
        if started is not None and ended is not None:
            raise ValidationError("cannot specify both started and ended")
        if started is not None:
            clauses.append(Promotion.start_time <= now if started else Promotion.start_time > now)
        if ended is not None:
            clauses.append(Promotion.end_time <= now if ended else Promotion.end_time > now)
    else:
        # regular view: not ended yet and, for ONE_TIME, not used by me
        used_by_me = exists(
            select(1).where(
                UserPromotion.promotion_id == Promotion.id,
                UserPromotion.user_id == identity.id,
                UserPromotion.used.is_(True),
            )
        )
        clauses.append(Promotion.end_time >= now)
        clauses.append(
            or_(
                Promotion.type == PromotionType.AUTOMATIC,
                and_(Promotion.type == PromotionType.ONE_TIME, ~used_by_me),
            )
        )

    base = select(Promotion).where(*clauses)
    count = db.scalar(select(func.count()).select_from(base.subquery()))
    items = db.scalars(
        base.order_by(Promotion.start_time.asc(), Promotion.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return int(count or 0), list(items)


def get_promotion(db: Session, identity: Identity, promotion_id: int) -> Promotion:
    promo = get_promotion_or_404(db, promotion_id)
    if not identity.has_role(Role.MANAGER) and not promo.is_active(utc_now()):
        raise NotFoundError("promotion not found")
    return promo


def update_promotion(db: Session, promotion_id: int, changes: Dict[str, Any]) -> Tuple[Promotion, Dict[str, Any]]:
    """
    Applies a partial update. Once a promotion has started only `end_time`
    may change; once it has ended nothing may.
    Returns the promotion and the dict of fields actually changed.
    """
    promo = get_promotion_or_404(db, promotion_id)
    changes = {k: v for k, v in changes.items() if v is not None}
    if not changes:
        return promo, {}

    now = utc_now()
    if now > promo.start_time and set(changes) - {"end_time"}:
        raise ValidationError("only endTime can be updated after promotion starts")
    if "end_time" in changes and now > promo.end_time:
        raise ValidationError("endTime cannot be updated after promotion ends")

    data: Dict[str, Any] = {}
    for field in ("name", "description", "min_spending", "rate", "points"):
        if field in changes:
            data[field] = changes[field]
    if "type" in changes:
        data["type"] = parse_promotion_type(changes["type"])

    new_start = to_naive_utc(changes.get("start_time"))
    new_end = to_naive_utc(changes.get("end_time"))
    if new_start is not None:
        if new_start < now:
            raise ValidationError("startTime must be in the future")
        data["start_time"] = new_start
    if new_end is not None:
        if new_end < now:
            raise ValidationError("endTime must be in the future")
        data["end_time"] = new_end
    effective_start = new_start or promo.start_time
    effective_end = new_end or promo.end_time
    if effective_end <= effective_start:
        raise ValidationError("endTime must be after startTime")

    with atomic(db):
        for field, value in data.items():
            setattr(promo, field, value)
    db.refresh(promo)
    return promo, data


def delete_promotion(db: Session, promotion_id: int) -> None:
    promo = get_promotion_or_404(db, promotion_id)
    if promo.start_time <= utc_now():
        raise ForbiddenError("cannot delete promotion that has already started")
    with atomic(db):
        db.query(UserPromotion).filter(UserPromotion.promotion_id == promo.id).delete()
        db.delete(promo)
    log.info("promotion %s deleted", promotion_id)
