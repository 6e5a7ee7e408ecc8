"""
Creates a verified SUPERUSER. Run:
  $ python -m loyalty.scripts.createsu <utorid> <email> <password>
"""
from __future__ import annotations

import sys

from sqlalchemy import select
from sqlalchemy.orm import Session

from loyalty.db import SessionLocal, atomic
from loyalty.models.user import Role, User
from loyalty.utils.auth import hash_password


def create_superuser(db: Session, utorid: str, email: str, password: str) -> User:
    if db.scalar(select(User.id).where(User.utorid == utorid)) is not None:
        raise SystemExit(f"user {utorid} already exists")
    with atomic(db):
        user = User(
            utorid=utorid,
            name=utorid,
            email=email,
            password_hash=hash_password(password),
            role=Role.SUPERUSER,
            verified=True,
        )
        db.add(user)
    db.refresh(user)
    return user


def main(argv=None):
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 3:
        raise SystemExit("usage: python -m loyalty.scripts.createsu utorid email password")
    utorid, email, password = args
    db = SessionLocal()
    try:
        user = create_superuser(db, utorid, email, password)
    finally:
        db.close()
    print(f"superuser created: id={user.id} utorid={user.utorid}")


if __name__ == "__main__":
    main()
