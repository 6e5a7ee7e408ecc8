# loyalty/services/users.py
# Accounts: registration/activation, staff views and edits, self-service
# profile, login and password reset.

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loyalty.db import atomic
from loyalty.errors import ConflictError, GoneError, NotFoundError, UnauthorizedError, ValidationError
from loyalty.models.user import Role, User
from loyalty.utils.auth import (
    Identity,
    create_access_token,
    hash_password,
    new_reset_token,
    password_problem,
    verify_password,
)
from loyalty.utils.dates import utc_now

log = logging.getLogger(__name__)

UTORID_RE = re.compile(r"^[A-Za-z0-9]{8}$")
EMAIL_RE = re.compile(r"^[\w\.-]+@mail\.utoronto\.ca$")

# roles a manager may hand out; superusers may set any role
_MANAGER_ASSIGNABLE = {Role.REGULAR, Role.CASHIER}


def _check_email(email: str) -> None:
    if not EMAIL_RE.match(email or ""):
        raise ValidationError("email must be a valid University of Toronto email")


def _check_password(password: str) -> None:
    problem = password_problem(password)
    if problem:
        raise ValidationError(problem)


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("user not found")
    return user


# ===== staff ==================================================================

def register_user(db: Session, *, utorid: str, name: str, email: str) -> User:
    """
    Creates an unverified account without a password. The returned user
    carries the activation token (reset_token) valid for 7 days.
    """
    if not UTORID_RE.match(utorid or ""):
        raise ValidationError("utorid must be exactly 8 alphanumeric characters")
    if not name or len(name) > 50:
        raise ValidationError("name must be 1-50 characters")
    _check_email(email)

    if db.scalar(select(User.id).where(User.utorid == utorid)) is not None:
        raise ConflictError("user with that utorid already exists")
    if db.scalar(select(User.id).where(User.email == email)) is not None:
        raise ConflictError("user with that email already exists")

    token, expires_at = new_reset_token()
    try:
        with atomic(db):
            user = User(
                utorid=utorid,
                name=name,
                email=email,
                role=Role.REGULAR,
                points=0,
                verified=False,
                reset_token=token,
                reset_expires_at=expires_at,
            )
            db.add(user)
    except IntegrityError:
        raise ConflictError("user with that utorid already exists")
    db.refresh(user)
    log.info("user %s registered", utorid)
    return user


def list_users(
    db: Session,
    *,
    name: Optional[str] = None,
    role: Optional[str] = None,
    verified: Optional[bool] = None,
    activated: Optional[bool] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[int, List[User]]:
    stmt = select(User)
    if name:
        stmt = stmt.where(or_(User.utorid.contains(name), User.name.contains(name)))
    if role:
        stmt = stmt.where(User.role == parse_role(role))
    if verified is not None:
        stmt = stmt.where(User.verified.is_(verified))
    if activated is not None:
        stmt = stmt.where(User.last_login.isnot(None) if activated else User.last_login.is_(None))

    count = db.scalar(select(func.count()).select_from(stmt.subquery()))
    items = db.scalars(stmt.order_by(User.id.asc()).offset((page - 1) * limit).limit(limit)).all()
    return int(count or 0), list(items)


def parse_role(value: str) -> Role:
    try:
        return Role(value.upper())
    except ValueError:
        raise ValidationError("invalid role")


def update_user(db: Session, identity: Identity, user_id: int, changes: Dict[str, Any]) -> Tuple[User, Dict[str, Any]]:
    """
    Manager edits: email, verified (true only), suspicious, role.
    Managers may only assign REGULAR or CASHIER.
    """
    changes = {k: v for k, v in changes.items() if v is not None}
    if not changes:
        raise ValidationError("no fields to update")

    data: Dict[str, Any] = {}
    if "email" in changes:
        _check_email(changes["email"])
        data["email"] = changes["email"]
    if "verified" in changes:
        if changes["verified"] is not True:
            raise ValidationError("verified can only be set to true")
        data["verified"] = True
    if "suspicious" in changes:
        data["suspicious"] = bool(changes["suspicious"])
    if "role" in changes:
        new_role = parse_role(changes["role"])
        if not identity.has_role(Role.SUPERUSER) and new_role not in _MANAGER_ASSIGNABLE:
            raise ValidationError("invalid role")
        data["role"] = new_role

    try:
        with atomic(db):
            user = get_user_or_404(db, user_id)
            for field, value in data.items():
                setattr(user, field, value)
    except IntegrityError:
        raise ConflictError("email already in use")

    db.refresh(user)
    log.info("user %s updated by %s: %s", user.utorid, identity.utorid, sorted(data))
    return user, data


# ===== self service ===========================================================

def update_me(
    db: Session,
    identity: Identity,
    *,
    name: Optional[str] = None,
    email: Optional[str] = None,
    birthday: Optional[date] = None,
) -> User:
    if name is None and email is None and birthday is None:
        raise ValidationError("no fields to update")
    if name is not None and not (1 <= len(name) <= 50):
        raise ValidationError("name must be 1-50 characters")
    if email is not None:
        _check_email(email)

    try:
        with atomic(db):
            user = get_user_or_404(db, identity.id)
            if name is not None:
                user.name = name
            if email is not None:
                user.email = email
            if birthday is not None:
                user.birthday = birthday
    except IntegrityError:
        raise ConflictError("email already in use")
    db.refresh(user)
    return user


def set_avatar(db: Session, identity: Identity, avatar_url: str) -> Tuple[User, Optional[str]]:
    """Stores the new avatar path; returns the user and the path it replaced."""
    with atomic(db):
        user = get_user_or_404(db, identity.id)
        previous = user.avatar_url
        user.avatar_url = avatar_url
    log.info("user %s avatar -> %s", identity.utorid, avatar_url)
    db.refresh(user)
    return user, previous


def change_password(db: Session, identity: Identity, *, old: str, new: str) -> None:
    user = get_user_or_404(db, identity.id)
    if not verify_password(old, user.password_hash):
        raise UnauthorizedError("current password is incorrect")
    _check_password(new)
    with atomic(db):
        user.password_hash = hash_password(new)
    log.info("password changed for %s", identity.utorid)


# ===== login / reset ==========================================================

def login(db: Session, *, utorid: str, password: str) -> Tuple[str, Any]:
    """Returns (token, expires_at). Same error for unknown utorid and bad password."""
    user = db.scalar(select(User).where(User.utorid == utorid))
    if user is None or not verify_password(password, user.password_hash):
        log.info("failed login for %s", utorid)
        raise UnauthorizedError("invalid credentials")
    with atomic(db):
        user.last_login = utc_now()
    return create_access_token(user.id, user.utorid, user.role)


def request_reset(db: Session, *, utorid: str) -> User:
    user = db.scalar(select(User).where(User.utorid == utorid))
    if user is None:
        raise NotFoundError("user not found")
    token, expires_at = new_reset_token()
    with atomic(db):
        user.reset_token = token
        user.reset_expires_at = expires_at
    db.refresh(user)
    log.info("reset token issued for %s", utorid)
    return user


def reset_password(db: Session, reset_token: str, *, utorid: str, password: str) -> None:
    """
    Sets a new password from a reset/activation token. The token is single use.
    Unknown token -> 404, utorid mismatch -> 401, expired -> 410.
    """
    user = db.scalar(select(User).where(User.reset_token == reset_token))
    if user is None:
        raise NotFoundError("reset token not found")
    if user.utorid != utorid:
        raise UnauthorizedError("utorid does not match reset token")
    if user.reset_expires_at is None or user.reset_expires_at < utc_now():
        raise GoneError("reset token expired")
    _check_password(password)

    with atomic(db):
        user.password_hash = hash_password(password)
        user.reset_token = None
        user.reset_expires_at = None
    log.info("password reset for %s", utorid)
