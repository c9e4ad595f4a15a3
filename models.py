from typing import Optional
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator

UNASSIGNED = "unassigned"
AUTO_GENERATED = "AUTO"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores naive UTC in the database and hands back aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


def _instant(index: bool = False, **kwargs):
    return Field(sa_column=Column(UTCDateTime(), nullable=False, index=index), **kwargs)


class Venue(SQLModel, table=True):
    __tablename__ = "venues"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    max_courts: int
    created_at: datetime = _instant(default_factory=utcnow)
    updated_at: datetime = _instant(default_factory=utcnow)


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        # Database-level protection against double booking the exact same interval
        UniqueConstraint(
            "venue_id", "court_number", "start_time", "end_time",
            name="unique_court_booking",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    venue_id: int = Field(foreign_key="venues.id", index=True)
    court_number: str = Field(index=True)
    start_time: datetime = _instant(index=True)
    end_time: datetime = _instant(index=True)
    booked_by: str
    booking_date: datetime = _instant(default_factory=utcnow)


class Slot(SQLModel, table=True):
    __tablename__ = "slots"
    __table_args__ = (
        # One slot per court and hour, whatever number of generation runs
        UniqueConstraint(
            "venue_id", "court_number", "start_time", "end_time",
            name="unique_court_slot",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    venue_id: int = Field(foreign_key="venues.id", index=True)
    court_number: str
    start_time: datetime = _instant(index=True)
    end_time: datetime = _instant()
    booked_by: str = UNASSIGNED
    is_slot_booked: bool = False
    booking_date: datetime = _instant(default_factory=utcnow)
