"""
Shared fixtures: in-memory SQLite database, FastAPI TestClient with get_db
overridden, and a user factory with bearer-token helpers.
"""

import os
import tempfile

# must be set before loyalty modules read their config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["MEDIA_ROOT"] = tempfile.mkdtemp(prefix="loyalty-media-")

from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from loyalty.db import Base, get_db
from loyalty.main import app
from loyalty.models.event import Event, EventGuest, EventOrganizer
from loyalty.models.promotion import Promotion, PromotionType
from loyalty.models.user import Role, User
from loyalty.utils.auth import Identity, create_access_token, hash_password
from loyalty.utils.dates import utc_now

PASSWORD = "Passw0rd!"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(
        utorid,
        role=Role.REGULAR,
        points=0,
        verified=True,
        suspicious=False,
        password=PASSWORD,
    ):
        user = User(
            utorid=utorid,
            name=utorid.capitalize(),
            email=f"{utorid}@mail.utoronto.ca",
            password_hash=hash_password(password) if password else None,
            role=role,
            points=points,
            verified=verified,
            suspicious=suspicious,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_promotion(db):
    def _make(
        name="promo",
        type=PromotionType.AUTOMATIC,
        starts_in=timedelta(days=-1),
        lasts=timedelta(days=7),
        min_spending=None,
        rate=None,
        points=0,
    ):
        start = utc_now() + starts_in
        promo = Promotion(
            name=name,
            description=f"{name} description",
            type=type,
            start_time=start,
            end_time=start + lasts,
            min_spending=Decimal(str(min_spending)) if min_spending is not None else None,
            rate=rate,
            points=points,
        )
        db.add(promo)
        db.commit()
        db.refresh(promo)
        return promo

    return _make


@pytest.fixture
def make_event(db):
    def _make(
        name="event",
        starts_in=timedelta(days=1),
        lasts=timedelta(hours=3),
        capacity=None,
        points=100,
        published=True,
        organizers=(),
        guests=(),
    ):
        start = utc_now() + starts_in
        event = Event(
            name=name,
            description=f"{name} description",
            location="BA 1160",
            start_time=start,
            end_time=start + lasts,
            capacity=capacity,
            total_points=points,
            points_awarded=0,
            published=published,
        )
        db.add(event)
        db.flush()
        for user in organizers:
            db.add(EventOrganizer(event_id=event.id, user_id=user.id))
        for user in guests:
            db.add(EventGuest(event_id=event.id, user_id=user.id))
        db.commit()
        db.refresh(event)
        return event

    return _make


def identity_of(user: User) -> Identity:
    return Identity(id=user.id, utorid=user.utorid, role=user.role)


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(user.id, user.utorid, user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def identity():
    return identity_of


@pytest.fixture
def headers():
    return auth_headers
