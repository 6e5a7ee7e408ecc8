# loyalty/schemas/event.py

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from loyalty.models.event import Event
from loyalty.schemas.base import CamelModel, UserBrief


class EventCreate(CamelModel):
    name: str = Field(..., min_length=1)
    description: str
    location: str
    start_time: datetime
    end_time: datetime
    capacity: Optional[int] = None
    points: int = Field(..., ge=0)


class EventUpdate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    capacity: Optional[int] = None
    points: Optional[int] = None
    published: Optional[bool] = None


class EventOut(CamelModel):
    """Public view of an event."""
    id: int
    name: str
    description: str
    location: str
    start_time: datetime
    end_time: datetime
    capacity: Optional[int] = None
    num_guests: int
    organizers: List[UserBrief] = []

    @classmethod
    def from_event(cls, event: Event) -> "EventOut":
        return cls(
            id=event.id,
            name=event.name,
            description=event.description,
            location=event.location,
            start_time=event.start_time,
            end_time=event.end_time,
            capacity=event.capacity,
            num_guests=event.num_guests,
            organizers=[UserBrief.model_validate(o.user) for o in event.organizers],
        )


class EventStaffOut(EventOut):
    """Organizer/manager view: budget, publishing state and the guest list."""
    points_remain: int
    points_awarded: int
    published: bool
    guests: List[UserBrief] = []

    @classmethod
    def from_event(cls, event: Event) -> "EventStaffOut":
        base = EventOut.from_event(event).model_dump()
        return cls(
            **base,
            points_remain=event.points_remain,
            points_awarded=event.points_awarded,
            published=bool(event.published),
            guests=[UserBrief.model_validate(g.user) for g in event.guests],
        )


class EventList(CamelModel):
    count: int
    results: List[EventOut]


class EventStaffList(CamelModel):
    count: int
    results: List[EventStaffOut]


class UtoridIn(CamelModel):
    utorid: str


class GuestAdded(CamelModel):
    id: int
    name: str
    location: str
    guest_added: UserBrief
    num_guests: int
