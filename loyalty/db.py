# loyalty/db.py
# SQLAlchemy setup: engine, sessions, Base and explicit model imports.

from __future__ import annotations

import os
from contextlib import contextmanager

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./loyalty.db")

if DATABASE_URL.startswith("sqlite"):
    # SQLite: default pool, connections shared with the request threadpool
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=20,
        max_overflow=20,
        pool_timeout=60,
        pool_recycle=1800,
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

from loyalty.models import (
    user,
    promotion,
    transaction,
    event,
)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session):
    """
    One unit of work: commit on success, roll back on any error.
    Ledger rows and the balance/budget changes they describe live or die together.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
