# loyalty/services/events.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loyalty.db import atomic
from loyalty.errors import ConflictError, ForbiddenError, GoneError, NotFoundError, ValidationError
from loyalty.models.event import Event, EventGuest, EventOrganizer
from loyalty.models.user import Role, User
from loyalty.utils.auth import Identity
from loyalty.utils.dates import utc_now, to_naive_utc

log = logging.getLogger(__name__)

# fields frozen once the event has started
_PRE_START_FIELDS = ("name", "description", "location", "start_time", "capacity")


def get_event_or_404(db: Session, event_id: int, *, for_update: bool = False) -> Event:
    stmt = select(Event).where(Event.id == event_id)
    if for_update:
        # serializes capacity checks on PostgreSQL; no-op on SQLite
        stmt = stmt.with_for_update()
    event = db.scalar(stmt)
    if event is None:
        raise NotFoundError("event not found")
    return event


def is_organizer(event: Event, user_id: int) -> bool:
    return any(o.user_id == user_id for o in event.organizers)


def is_guest(event: Event, user_id: int) -> bool:
    return any(g.user_id == user_id for g in event.guests)


def can_manage(event: Event, identity: Identity) -> bool:
    return identity.has_role(Role.MANAGER) or is_organizer(event, identity.id)


def _user_by_utorid(db: Session, utorid: str) -> User:
    user = db.scalar(select(User).where(User.utorid == utorid))
    if user is None:
        raise NotFoundError("user not found")
    return user


def create_event(
    db: Session,
    *,
    name: str,
    description: str,
    location: str,
    start_time,
    end_time,
    capacity: Optional[int],
    points: int,
) -> Event:
    start = to_naive_utc(start_time)
    end = to_naive_utc(end_time)
    if end <= start:
        raise ValidationError("endTime must be after startTime")
    if capacity is not None and capacity <= 0:
        raise ValidationError("capacity must be a positive number or null")
    if points < 0:
        raise ValidationError("points must be a non-negative number")

    with atomic(db):
        event = Event(
            name=name,
            description=description,
            location=location,
            start_time=start,
            end_time=end,
            capacity=capacity,
            total_points=points,
            points_awarded=0,
            published=False,
        )
        db.add(event)
    db.refresh(event)
    log.info("event %s created (budget=%s)", event.id, points)
    return event


def list_events(
    db: Session,
    identity: Identity,
    *,
    name: Optional[str] = None,
    location: Optional[str] = None,
    started: Optional[bool] = None,
    ended: Optional[bool] = None,
    show_full: bool = False,
    published: Optional[bool] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[int, List[Event]]:
    if started is not None and ended is not None:
        raise ValidationError("cannot specify both started and ended")

    now = utc_now()
    stmt = select(Event)
    if name:
        stmt = stmt.where(Event.name.contains(name))
    if location:
        stmt = stmt.where(Event.location.contains(location))
    if started is not None:
        stmt = stmt.where(Event.start_time <= now if started else Event.start_time > now)
    if ended is not None:
        stmt = stmt.where(Event.end_time <= now if ended else Event.end_time > now)

    if not identity.has_role(Role.MANAGER):
        # regular users never see unpublished events
        stmt = stmt.where(Event.published.is_(True))
    elif published is not None:
        stmt = stmt.where(Event.published.is_(published))

    if not show_full:
        guest_count = (
            select(func.count(EventGuest.id))
            .where(EventGuest.event_id == Event.id)
            .scalar_subquery()
        )
        stmt = stmt.where(or_(Event.capacity.is_(None), guest_count < Event.capacity))

    count = db.scalar(select(func.count()).select_from(stmt.subquery()))
    items = db.scalars(
        stmt.order_by(Event.start_time.asc(), Event.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return int(count or 0), list(items)


def get_event(db: Session, identity: Identity, event_id: int) -> Tuple[Event, bool]:
    """
    Returns the event and whether the caller gets the full (staff) view.
    Unpublished events are invisible to regular non-organizers.
    """
    event = get_event_or_404(db, event_id)
    full_view = can_manage(event, identity)
    if not full_view and not event.published:
        raise NotFoundError("event not found")
    return event, full_view


def update_event(
    db: Session,
    identity: Identity,
    event_id: int,
    changes: Dict[str, Any],
) -> Tuple[Event, Dict[str, Any]]:
    """
    Organizers and managers may edit an event. Details are frozen once it
    has started, end_time once it has ended. Budget (`points`) and publishing
    are manager-only; published can only go False -> True.
    """
    changes = {k: v for k, v in changes.items() if v is not None}

    with atomic(db):
        event = get_event_or_404(db, event_id, for_update=True)
        if not can_manage(event, identity):
            raise ForbiddenError("forbidden")

        now = utc_now()
        started = event.start_time <= now
        ended = event.end_time <= now
        data: Dict[str, Any] = {}

        for field in _PRE_START_FIELDS:
            if field in changes and started:
                raise ValidationError(f"cannot update {field} after event has started")

        for field in ("name", "description", "location"):
            if field in changes:
                data[field] = changes[field]

        if "start_time" in changes:
            new_start = to_naive_utc(changes["start_time"])
            if new_start < now:
                raise ValidationError("invalid startTime; must be in future")
            data["start_time"] = new_start

        if "end_time" in changes:
            if ended:
                raise ValidationError("cannot update endTime after event has ended")
            new_end = to_naive_utc(changes["end_time"])
            if new_end <= data.get("start_time", event.start_time):
                raise ValidationError("endTime must be after startTime")
            data["end_time"] = new_end
        elif "start_time" in data and data["start_time"] >= event.end_time:
            raise ValidationError("endTime must be after startTime")

        if "capacity" in changes:
            new_cap = changes["capacity"]
            if new_cap <= 0:
                raise ValidationError("capacity must be positive number or null")
            if len(event.guests) > new_cap:
                raise ValidationError("new capacity is less than confirmed guests")
            data["capacity"] = new_cap

        if "points" in changes:
            if not identity.has_role(Role.MANAGER):
                raise ForbiddenError("forbidden to update points")
            new_points = changes["points"]
            if new_points < 0:
                raise ValidationError("points must be non-negative number")
            if new_points < event.points_awarded:
                raise ValidationError("new total points less than points already awarded")
            data["total_points"] = new_points

        if "published" in changes:
            if not identity.has_role(Role.MANAGER):
                raise ForbiddenError("forbidden to update published")
            if changes["published"] is not True:
                raise ValidationError("published can only be set to true")
            data["published"] = True

        for field, value in data.items():
            setattr(event, field, value)

    db.refresh(event)
    return event, data


def delete_event(db: Session, event_id: int) -> None:
    with atomic(db):
        event = get_event_or_404(db, event_id)
        if event.published:
            raise ValidationError("cannot delete published event")
        db.delete(event)
    log.info("event %s deleted", event_id)


# ===== organizers =============================================================

def add_organizer(db: Session, event_id: int, utorid: str) -> Event:
    with atomic(db):
        event = get_event_or_404(db, event_id, for_update=True)
        if utc_now() > event.end_time:
            raise GoneError("event has ended")
        user = _user_by_utorid(db, utorid)
        if is_guest(event, user.id):
            raise ValidationError("user is registered as guest; remove guest first")
        if not is_organizer(event, user.id):
            event.organizers.append(EventOrganizer(event_id=event.id, user_id=user.id))
    db.refresh(event)
    return event


def remove_organizer(db: Session, event_id: int, user_id: int) -> None:
    with atomic(db):
        link = db.scalar(
            select(EventOrganizer).where(
                EventOrganizer.event_id == event_id,
                EventOrganizer.user_id == user_id,
            )
        )
        if link is None:
            raise NotFoundError("organizer not found for event")
        db.delete(link)


# ===== guests =================================================================

def _add_guest(db: Session, event: Event, user: User) -> None:
    """Capacity and end-time checks; caller holds the event row lock."""
    if utc_now() > event.end_time:
        raise GoneError("event has ended")
    if event.is_full():
        raise GoneError("event is full")
    if is_organizer(event, user.id):
        raise ValidationError("user is registered as organizer; remove organizer first")
    if is_guest(event, user.id):
        raise ValidationError("user is already a guest")
    try:
        event.guests.append(EventGuest(event_id=event.id, user_id=user.id))
        db.flush()
    except IntegrityError:
        raise ConflictError("user is already a guest")


def add_guest(db: Session, identity: Identity, event_id: int, utorid: str) -> Tuple[Event, User]:
    with atomic(db):
        event = get_event_or_404(db, event_id, for_update=True)
        if not can_manage(event, identity):
            if not event.published:
                raise NotFoundError("event not found")
            raise ForbiddenError("only organizers or managers can add guests")
        user = _user_by_utorid(db, utorid)
        _add_guest(db, event, user)
    db.refresh(event)
    log.info("guest %s added to event %s by %s", utorid, event_id, identity.utorid)
    return event, user


def remove_guest(db: Session, event_id: int, user_id: int) -> None:
    with atomic(db):
        link = db.scalar(
            select(EventGuest).where(EventGuest.event_id == event_id, EventGuest.user_id == user_id)
        )
        if link is None:
            raise NotFoundError("guest not found in event")
        db.delete(link)


def rsvp(db: Session, identity: Identity, event_id: int) -> Tuple[Event, User]:
    with atomic(db):
        event = get_event_or_404(db, event_id, for_update=True)
        if not event.published and not can_manage(event, identity):
            raise NotFoundError("event not found")
        user = db.get(User, identity.id)
        if user is None:
            raise NotFoundError("user not found")
        _add_guest(db, event, user)
    db.refresh(event)
    log.info("%s RSVPed to event %s", identity.utorid, event_id)
    return event, user


def cancel_rsvp(db: Session, identity: Identity, event_id: int) -> None:
    """Frees the caller's slot right away; not allowed once the event has ended."""
    with atomic(db):
        event = get_event_or_404(db, event_id, for_update=True)
        if utc_now() > event.end_time:
            raise GoneError("event has ended")
        link = db.scalar(
            select(EventGuest).where(EventGuest.event_id == event.id, EventGuest.user_id == identity.id)
        )
        if link is None:
            raise NotFoundError("user did not RSVP to this event")
        event.guests.remove(link)
    log.info("%s cancelled RSVP for event %s", identity.utorid, event_id)
