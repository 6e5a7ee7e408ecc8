# loyalty/models/event.py
# Point-earning event + organizer/guest membership (a user is never both).

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from loyalty.db import Base

class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    description = Column(String, nullable=False, default="")
    location = Column(String, nullable=False)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)

    # NULL = unlimited
    capacity = Column(Integer, nullable=True)

    # point budget; points_remain is derived
    total_points = Column(Integer, nullable=False, default=0)
    points_awarded = Column(Integer, nullable=False, default=0)

    published = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint("points_awarded <= total_points", name="ck_events_budget"),
    )

    organizers = relationship("EventOrganizer", cascade="all, delete-orphan", lazy="selectin")
    guests = relationship("EventGuest", cascade="all, delete-orphan", lazy="selectin")

    @property
    def points_remain(self) -> int:
        return (self.total_points or 0) - (self.points_awarded or 0)

    @property
    def num_guests(self) -> int:
        return len(self.guests)

    def is_full(self) -> bool:
        return self.capacity is not None and len(self.guests) >= self.capacity

    def __repr__(self) -> str:
        return f"<Event id={self.id} name={self.name!r} published={self.published}>"


class EventOrganizer(Base):
    __tablename__ = "event_organizers"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_organizers_event_user"),
    )

    user = relationship("User", lazy="joined")


class EventGuest(Base):
    __tablename__ = "event_guests"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_guests_event_user"),
    )

    user = relationship("User", lazy="joined")
