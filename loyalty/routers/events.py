# loyalty/routers/events.py
# -----------------------------------------------------------------------------
# ROUTER: events, organizers, guests and event point awards
# -----------------------------------------------------------------------------
# Organizers and managers get the staff view (budget, guests); everyone else
# the public one. Unpublished events are invisible outside staff.
# -----------------------------------------------------------------------------
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session
from starlette import status

from loyalty.db import get_db
from loyalty.models.user import Role
from loyalty.schemas.base import UserBrief
from loyalty.schemas.event import (
    EventCreate,
    EventList,
    EventOut,
    EventStaffList,
    EventStaffOut,
    EventUpdate,
    GuestAdded,
    UtoridIn,
)
from loyalty.schemas.transaction import EventAwardCreate, TransactionOut
from loyalty.services import events as event_service
from loyalty.services import transactions as tx_service
from loyalty.utils.auth import Identity
from loyalty.utils.auth_dep import get_current_identity, require_role

router = APIRouter()


def _guest_added(event, user) -> GuestAdded:
    return GuestAdded(
        id=event.id,
        name=event.name,
        location=event.location,
        guest_added=UserBrief.model_validate(user),
        num_guests=event.num_guests,
    )


@router.post("", response_model=EventStaffOut, status_code=status.HTTP_201_CREATED)
def create_event(
    payload: EventCreate,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.MANAGER)),
):
    event = event_service.create_event(
        db,
        name=payload.name,
        description=payload.description,
        location=payload.location,
        start_time=payload.start_time,
        end_time=payload.end_time,
        capacity=payload.capacity,
        points=payload.points,
    )
    return EventStaffOut.from_event(event)


@router.get("", response_model=None)
def list_events(
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
    name: Optional[str] = Query(None),
    location: Optional[str] = Query(None),
    started: Optional[bool] = Query(None),
    ended: Optional[bool] = Query(None),
    show_full: bool = Query(False, alias="showFull"),
    published: Optional[bool] = Query(None, description="managers only"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
):
    count, items = event_service.list_events(
        db, me,
        name=name,
        location=location,
        started=started,
        ended=ended,
        show_full=show_full,
        published=published,
        page=page,
        limit=limit,
    )
    if me.has_role(Role.MANAGER):
        out = EventStaffList(count=count, results=[EventStaffOut.from_event(e) for e in items])
    else:
        out = EventList(count=count, results=[EventOut.from_event(e) for e in items])
    return out.model_dump(by_alias=True, mode="json")


@router.get("/{event_id}", response_model=None)
def get_event(
    event_id: int,
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    event, full_view = event_service.get_event(db, me, event_id)
    out = EventStaffOut.from_event(event) if full_view else EventOut.from_event(event)
    return out.model_dump(by_alias=True, mode="json")


@router.patch("/{event_id}", response_model=EventStaffOut)
def update_event(
    event_id: int,
    payload: EventUpdate,
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    event, _ = event_service.update_event(db, me, event_id, payload.model_dump())
    return EventStaffOut.from_event(event)


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_event(
    event_id: int,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.MANAGER)),
):
    event_service.delete_event(db, event_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ===== organizers =============================================================

@router.post("/{event_id}/organizers", response_model=EventStaffOut, status_code=status.HTTP_201_CREATED)
def add_organizer(
    event_id: int,
    payload: UtoridIn,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.MANAGER)),
):
    event = event_service.add_organizer(db, event_id, payload.utorid)
    return EventStaffOut.from_event(event)


@router.delete("/{event_id}/organizers/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_organizer(
    event_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.MANAGER)),
):
    event_service.remove_organizer(db, event_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ===== guests =================================================================
# /guests/me routes are declared before /guests/{user_id}

@router.post("/{event_id}/guests/me", response_model=GuestAdded, status_code=status.HTTP_201_CREATED)
def rsvp(
    event_id: int,
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    event, user = event_service.rsvp(db, me, event_id)
    return _guest_added(event, user)


@router.delete("/{event_id}/guests/me", status_code=status.HTTP_204_NO_CONTENT)
def cancel_rsvp(
    event_id: int,
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    event_service.cancel_rsvp(db, me, event_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{event_id}/guests", response_model=GuestAdded, status_code=status.HTTP_201_CREATED)
def add_guest(
    event_id: int,
    payload: UtoridIn,
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    event, user = event_service.add_guest(db, me, event_id, payload.utorid)
    return _guest_added(event, user)


@router.delete("/{event_id}/guests/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_guest(
    event_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    me: Identity = Depends(require_role(Role.MANAGER)),
):
    event_service.remove_guest(db, event_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ===== awards =================================================================

@router.post("/{event_id}/transactions", response_model=None, status_code=status.HTTP_201_CREATED)
def award_points(
    event_id: int,
    payload: EventAwardCreate,
    db: Session = Depends(get_db),
    me: Identity = Depends(get_current_identity),
):
    """Single guest (utorid given) returns one transaction, otherwise a list."""
    created = tx_service.award_event_points(
        db, me,
        event_id=event_id,
        amount=payload.amount,
        utorid=payload.utorid,
        remark=payload.remark,
    )
    results = [TransactionOut.from_tx(tx).model_dump(by_alias=True, mode="json") for tx in created]
    if payload.utorid is not None:
        return results[0]
    return results
