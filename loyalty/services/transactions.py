# loyalty/services/transactions.py
# -----------------------------------------------------------------------------
# SERVICE: points ledger
# -----------------------------------------------------------------------------
# Every creator below runs as one unit of work (`atomic`): the ledger row and
# the balance / event-budget change it describes commit together or not at all.
#
# Debits, budget consumption and redemption processing are conditional UPDATEs
# ("... WHERE points >= :amount", "... WHERE processed_by_id IS NULL"); the row
# count decides success. Two concurrent callers therefore cannot overdraw a
# balance, overspend an event budget or process one redemption twice.
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import exists, func, or_, select, update
from sqlalchemy.orm import Session, aliased

from loyalty.db import atomic
from loyalty.errors import (
    BudgetExceededError,
    ConflictError,
    ForbiddenError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from loyalty.models.event import Event
from loyalty.models.promotion import Promotion, PromotionType
from loyalty.models.transaction import Transaction, TransactionPromotion, TransactionType
from loyalty.models.user import Role, User
from loyalty.services import promotions as promotion_service
from loyalty.utils.auth import Identity

log = logging.getLogger(__name__)

# 1 point per 25 cents
POINTS_PER_DOLLAR = 4


# ===== balance primitives (no commit) =========================================

def credit_points(db: Session, user_id: int, amount: int) -> None:
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(points=User.points + amount)
    )


def debit_points(db: Session, user_id: int, amount: int, *, message: str = "not enough points") -> None:
    """Check-then-decrement in a single statement."""
    res = db.execute(
        update(User)
        .where(User.id == user_id, User.points >= amount)
        .values(points=User.points - amount)
    )
    if res.rowcount != 1:
        raise InsufficientFundsError(message)


# ===== lookups ================================================================

def get_user_by_utorid(db: Session, utorid: str, *, message: str = "user not found") -> User:
    user = db.scalar(select(User).where(User.utorid == utorid))
    if user is None:
        raise NotFoundError(message)
    return user


def get_user_or_404(db: Session, user_id: int, *, message: str = "user not found") -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError(message)
    return user


def get_transaction(db: Session, transaction_id: int) -> Transaction:
    tx = db.get(Transaction, transaction_id)
    if tx is None:
        raise NotFoundError("transaction not found")
    return tx


def _attach_promotions(db: Session, tx: Transaction, promos: List[Promotion], user_id: int) -> None:
    for promo in promos:
        db.add(TransactionPromotion(transaction_id=tx.id, promotion_id=promo.id))
        if promo.type == PromotionType.ONE_TIME:
            promotion_service.mark_used(db, user_id, promo.id)


# ===== PURCHASE ===============================================================

def earned_for_purchase(spent: Decimal, promos: List[Promotion]) -> int:
    base = promotion_service.round_points(spent * POINTS_PER_DOLLAR)
    return base + promotion_service.bonus_points(promos, spent)


def create_purchase(
    db: Session,
    actor: Identity,
    *,
    utorid: str,
    spent: Decimal,
    promotion_ids: Optional[List[int]] = None,
    remark: Optional[str] = None,
) -> Transaction:
    """
    Cashier rings up a purchase. Earned points = round(spent * 4) plus the
    bonuses of the requested promotions and of every AUTOMATIC promotion active
    now. Purchases entered by a suspicious cashier are recorded as suspicious
    and credit nothing until a manager clears them.
    """
    if spent is None or spent <= 0:
        raise ValidationError("spent must be a positive number")

    with atomic(db):
        customer = get_user_by_utorid(db, utorid, message="customer not found")
        cashier = get_user_or_404(db, actor.id)

        requested = promotion_service.resolve_requested(db, customer, promotion_ids)
        automatic = promotion_service.automatic_for_purchase(db, spent)
        applied = automatic + [p for p in requested if p.id not in {a.id for a in automatic}]

        earned = earned_for_purchase(spent, applied)
        suspicious = bool(cashier.suspicious)

        tx = Transaction(
            type=TransactionType.PURCHASE,
            amount=earned,
            spent=spent,
            remark=remark or "",
            user_id=customer.id,
            created_by_id=cashier.id,
            suspicious=suspicious,
        )
        db.add(tx)
        db.flush()

        _attach_promotions(db, tx, applied, customer.id)
        if not suspicious:
            credit_points(db, customer.id, earned)

    log.info(
        "purchase tx=%s customer=%s spent=%s earned=%s suspicious=%s",
        tx.id, utorid, spent, earned, suspicious,
    )
    db.refresh(tx)
    return tx


# ===== ADJUSTMENT =============================================================

def create_adjustment(
    db: Session,
    actor: Identity,
    *,
    utorid: str,
    amount: int,
    related_id: int,
    promotion_ids: Optional[List[int]] = None,
    remark: Optional[str] = None,
) -> Transaction:
    """Manager correction of a user's balance, tied to an earlier transaction."""
    if not amount:
        raise ValidationError("amount must be a non-zero integer")

    with atomic(db):
        customer = get_user_by_utorid(db, utorid, message="customer not found")
        promos = promotion_service.resolve_requested(db, customer, promotion_ids)
        if db.get(Transaction, related_id) is None:
            raise NotFoundError("related transaction not found")

        if amount > 0:
            credit_points(db, customer.id, amount)
        else:
            debit_points(db, customer.id, -amount, message="adjustment exceeds user point balance")

        tx = Transaction(
            type=TransactionType.ADJUSTMENT,
            amount=amount,
            remark=remark or "",
            related_id=related_id,
            user_id=customer.id,
            created_by_id=actor.id,
        )
        db.add(tx)
        db.flush()
        _attach_promotions(db, tx, promos, customer.id)

    log.info("adjustment tx=%s user=%s amount=%s related=%s", tx.id, utorid, amount, related_id)
    db.refresh(tx)
    return tx


# ===== REDEMPTION =============================================================

def create_redemption(
    db: Session,
    actor: Identity,
    *,
    amount: int,
    remark: Optional[str] = None,
    utorid: Optional[str] = None,
) -> Transaction:
    """
    Files a redemption request. The balance is only checked here, it is not
    touched until a cashier processes the request.
    Users file for themselves; cashiers and up may file for another utorid.
    """
    if amount is None or amount <= 0:
        raise ValidationError("amount must be a positive integer")

    with atomic(db):
        if utorid is None or utorid == actor.utorid:
            owner = get_user_or_404(db, actor.id)
        else:
            if not actor.has_role(Role.CASHIER):
                raise ForbiddenError("cannot file a redemption for another user")
            owner = get_user_by_utorid(db, utorid)

        if not owner.verified:
            raise ForbiddenError("user is not verified")
        if owner.points < amount:
            raise InsufficientFundsError("redeem amount exceeds user point balance")

        tx = Transaction(
            type=TransactionType.REDEMPTION,
            amount=amount,
            remark=remark or "",
            user_id=owner.id,
            created_by_id=actor.id,
        )
        db.add(tx)

    log.info("redemption requested tx=%s user=%s amount=%s", tx.id, owner.utorid, amount)
    db.refresh(tx)
    return tx


def process_redemption(db: Session, actor: Identity, transaction_id: int) -> Transaction:
    """
    Fulfils a pending redemption: sets the processor and debits the owner.
    Redemptions flagged as suspicious are refused.
    At most once: of several concurrent calls exactly one succeeds, the
    others get ConflictError and the balance is debited a single time.
    """
    with atomic(db):
        tx = get_transaction(db, transaction_id)
        if tx.type != TransactionType.REDEMPTION:
            raise ValidationError("transaction is not a redemption transaction")
        if tx.processed_by_id is not None:
            raise ConflictError("transaction has already been processed")
        if tx.suspicious:
            raise ValidationError("transaction is flagged as suspicious")

        res = db.execute(
            update(Transaction)
            .where(
                Transaction.id == tx.id,
                Transaction.processed_by_id.is_(None),
                Transaction.suspicious.is_(False),
            )
            .values(processed_by_id=actor.id)
        )
        if res.rowcount != 1:
            raise ConflictError("transaction has already been processed")

        debit_points(db, tx.user_id, tx.amount, message="redeem amount exceeds user point balance")

    log.info("redemption processed tx=%s by=%s", transaction_id, actor.utorid)
    db.refresh(tx)
    return tx


# ===== TRANSFER ===============================================================

def create_transfer(
    db: Session,
    actor: Identity,
    *,
    recipient_id: int,
    amount: int,
    remark: Optional[str] = None,
) -> Transaction:
    """
    Moves points between two users. One TRANSFER row is written: owned by the
    recipient, with sender/recipient both recorded.
    """
    if amount is None or amount <= 0:
        raise ValidationError("amount must be a positive integer")
    if recipient_id == actor.id:
        raise ValidationError("cannot transfer points to yourself")

    with atomic(db):
        sender = get_user_or_404(db, actor.id, message="sender not found")
        if not sender.verified:
            raise ForbiddenError("sender not verified")
        recipient = get_user_or_404(db, recipient_id, message="recipient not found")

        debit_points(db, sender.id, amount)
        credit_points(db, recipient.id, amount)

        tx = Transaction(
            type=TransactionType.TRANSFER,
            amount=amount,
            remark=remark or "",
            user_id=recipient.id,
            created_by_id=sender.id,
            sender_id=sender.id,
            recipient_id=recipient.id,
        )
        db.add(tx)

    log.info("transfer tx=%s %s -> %s amount=%s", tx.id, sender.utorid, recipient.utorid, amount)
    db.refresh(tx)
    return tx


# ===== EVENT ==================================================================

def award_event_points(
    db: Session,
    actor: Identity,
    *,
    event_id: int,
    amount: int,
    utorid: Optional[str] = None,
    remark: Optional[str] = None,
) -> List[Transaction]:
    """
    Awards `amount` points to one guest (by utorid) or to every guest.
    The whole award is taken from the event budget in one conditional UPDATE;
    if the remaining points do not cover it nothing is awarded.
    """
    if amount is None or amount <= 0:
        raise ValidationError("amount must be a positive integer")

    with atomic(db):
        event = db.scalar(select(Event).where(Event.id == event_id).with_for_update())
        if event is None:
            raise NotFoundError("event not found")

        is_organizer = any(o.user_id == actor.id for o in event.organizers)
        if not (is_organizer or actor.has_role(Role.MANAGER)):
            raise ForbiddenError("only organizers or managers can award event points")

        guest_ids = [g.user_id for g in event.guests]
        if utorid is not None:
            if not utorid.strip():
                raise ValidationError("utorid must not be empty")
            guest = get_user_by_utorid(db, utorid, message="guest user not found")
            if guest.id not in guest_ids:
                raise ValidationError("user is not on guest list")
            recipients = [guest.id]
        else:
            if not guest_ids:
                raise ValidationError("no guests to award")
            recipients = sorted(guest_ids)

        total = amount * len(recipients)
        res = db.execute(
            update(Event)
            .where(
                Event.id == event.id,
                Event.total_points - Event.points_awarded >= total,
            )
            .values(points_awarded=Event.points_awarded + total)
        )
        if res.rowcount != 1:
            raise BudgetExceededError("not enough remaining points")

        created: List[Transaction] = []
        for user_id in recipients:
            tx = Transaction(
                type=TransactionType.EVENT,
                amount=amount,
                remark=remark or "",
                related_id=event.id,
                user_id=user_id,
                created_by_id=actor.id,
            )
            db.add(tx)
            credit_points(db, user_id, amount)
            created.append(tx)

    log.info("event %s awarded %s x %s points by %s", event_id, len(created), amount, actor.utorid)
    for tx in created:
        db.refresh(tx)
    return created


# ===== moderation =============================================================

def _balance_moves(tx: Transaction) -> List[Tuple[int, int]]:
    """(user_id, delta) pairs the transaction applies while it is not suspicious."""
    if tx.type == TransactionType.TRANSFER:
        return [(tx.sender_id, -tx.amount), (tx.recipient_id, tx.amount)]
    if tx.type == TransactionType.REDEMPTION:
        if tx.processed_by_id is None:
            return []
        return [(tx.user_id, -tx.amount)]
    return [(tx.user_id, tx.amount)]


def set_suspicious(db: Session, transaction_id: int, suspicious: bool) -> Transaction:
    """
    Flags / clears a transaction. Flagging reverses the balance moves the
    transaction made, clearing applies them again. A pending redemption has
    moved nothing yet, so toggling it touches no balance. Setting the current
    value is a no-op.
    """
    with atomic(db):
        tx = get_transaction(db, transaction_id)
        if bool(tx.suspicious) == suspicious:
            return tx

        guards = [Transaction.id == tx.id, Transaction.suspicious.is_(not suspicious)]
        if tx.processed_by_id is None:
            guards.append(Transaction.processed_by_id.is_(None))
        res = db.execute(
            update(Transaction)
            .where(*guards)
            .values(suspicious=suspicious)
        )
        if res.rowcount != 1:
            raise ConflictError("transaction was modified concurrently")

        sign = -1 if suspicious else 1
        moves = [(user_id, sign * delta) for user_id, delta in _balance_moves(tx)]
        # debits first so a failed one leaves nothing credited
        for user_id, delta in sorted(moves, key=lambda m: m[1]):
            if delta >= 0:
                credit_points(db, user_id, delta)
            else:
                debit_points(db, user_id, -delta, message="user no longer holds these points")

    log.info("transaction %s suspicious=%s", transaction_id, suspicious)
    db.refresh(tx)
    return tx


# ===== reads ==================================================================

def _parse_type(value: str) -> TransactionType:
    try:
        return TransactionType(value.upper())
    except ValueError:
        raise ValidationError("invalid transaction type")


def list_transactions(
    db: Session,
    *,
    owner_id: Optional[int] = None,
    name: Optional[str] = None,
    created_by: Optional[str] = None,
    suspicious: Optional[bool] = None,
    promotion_id: Optional[int] = None,
    type: Optional[str] = None,
    related_id: Optional[int] = None,
    amount: Optional[int] = None,
    operator: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[int, List[Transaction]]:
    """
    Filtered ledger page, newest first. With `owner_id` only that user's rows
    are returned (transfers show up for both sender and recipient).
    """
    if related_id is not None and not type:
        raise ValidationError("relatedId filter must be used with type filter")
    if amount is not None and operator not in ("gte", "lte"):
        raise ValidationError('operator must be provided as "gte" or "lte" when filtering by amount')

    owner = aliased(User)
    creator = aliased(User)
    stmt = (
        select(Transaction)
        .join(owner, Transaction.user_id == owner.id)
        .join(creator, Transaction.created_by_id == creator.id)
    )

    if owner_id is not None:
        stmt = stmt.where(or_(Transaction.user_id == owner_id, Transaction.sender_id == owner_id))
    if type:
        stmt = stmt.where(Transaction.type == _parse_type(type))
    if related_id is not None:
        stmt = stmt.where(Transaction.related_id == related_id)
    if suspicious is not None:
        stmt = stmt.where(Transaction.suspicious.is_(suspicious))
    if amount is not None:
        stmt = stmt.where(Transaction.amount >= amount if operator == "gte" else Transaction.amount <= amount)
    if name:
        stmt = stmt.where(or_(owner.utorid.contains(name), owner.name.contains(name)))
    if created_by:
        stmt = stmt.where(creator.utorid.contains(created_by))
    if promotion_id is not None:
        stmt = stmt.where(
            exists(
                select(1).where(
                    TransactionPromotion.transaction_id == Transaction.id,
                    TransactionPromotion.promotion_id == promotion_id,
                )
            )
        )

    count = db.scalar(select(func.count()).select_from(stmt.subquery()))
    items = (
        db.scalars(
            stmt.order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .unique()
        .all()
    )
    return int(count or 0), list(items)
