"""Booking engine: venues, bookings, the daily slot grid and availability.

Every service takes an ``AsyncSession`` and talks to storage only through
:class:`repository.Repository`. Validation happens here, before any write,
so the services can be driven directly as well as through the HTTP layer.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

from sqlmodel import col
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ConflictError, InternalFailureError, InvalidInputError, NotFoundError
from models import AUTO_GENERATED, Booking, Slot, Venue, ensure_utc, utcnow
from overlap import overlap_clause, overlaps
from repository import DuplicateKeyError, ForeignKeyError, Repository

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Grid of one-hour slots generated per court: 9 AM to 5 PM
SLOT_GRID_HOURS = range(9, 17)


def _require_text(value: Optional[str], field_name: str) -> str:
    if value is None or not value.strip():
        raise InvalidInputError(f"{field_name} is required.")
    return value.strip()


def _require_window(start_time: datetime, end_time: datetime) -> Tuple[datetime, datetime]:
    if start_time is None or end_time is None:
        raise InvalidInputError("start_time and end_time are required.")
    start, end = ensure_utc(start_time), ensure_utc(end_time)
    if end <= start:
        raise InvalidInputError("End time must be after start time.")
    return start, end


# --- Venue Registry ---

class VenueRegistry:
    def __init__(self, session: AsyncSession, clock: Clock = utcnow):
        self.venues = Repository(session, Venue)
        self.bookings = Repository(session, Booking)
        self.slots = Repository(session, Slot)
        self.clock = clock

    @staticmethod
    def _validate(name: Optional[str], max_courts: Optional[int]) -> Tuple[str, int]:
        if name is None or not name.strip() or max_courts is None or max_courts < 1:
            raise InvalidInputError("Venue name and a valid max_courts (minimum 1) are required.")
        return name.strip(), max_courts

    async def create_venue(self, name: str, max_courts: int) -> Venue:
        name, max_courts = self._validate(name, max_courts)
        now = self.clock()
        try:
            venue = await self.venues.create(
                Venue(name=name, max_courts=max_courts, created_at=now, updated_at=now)
            )
        except DuplicateKeyError:
            raise ConflictError("A venue with this name already exists.") from None
        logger.info("Created venue %s (%r, %d courts)", venue.id, venue.name, venue.max_courts)
        return venue

    async def list_venues(self) -> List[Venue]:
        return await self.venues.find(order_by=[col(Venue.id)])

    async def get_venue(self, venue_id: int) -> Venue:
        venue = await self.venues.find_by_id(venue_id)
        if venue is None:
            raise NotFoundError("Venue not found.")
        return venue

    async def update_venue(self, venue_id: int, name: str, max_courts: int) -> Venue:
        name, max_courts = self._validate(name, max_courts)
        patch = {"name": name, "max_courts": max_courts, "updated_at": self.clock()}
        try:
            venue = await self.venues.update_by_id(venue_id, patch)
        except DuplicateKeyError:
            raise ConflictError("A venue with this name already exists.") from None
        if venue is None:
            raise NotFoundError("Venue not found.")
        logger.info("Updated venue %s", venue_id)
        return venue

    async def delete_venue(self, venue_id: int) -> Venue:
        """Delete a venue and its generated slots. Refused while bookings reference it.

        The row lock, the booking check and both deletes share one transaction,
        so a booking committed concurrently makes the delete fail instead of
        being orphaned.
        """
        venue = await self.venues.lock_by_id(venue_id)
        if venue is None:
            raise NotFoundError("Venue not found.")
        name = venue.name
        booking_count = await self.bookings.count(Booking.venue_id == venue_id)
        if booking_count:
            raise ConflictError(
                f"Venue {name!r} still has {booking_count} booking(s); delete them first."
            )

        removed_slots = await self.slots.delete_where(Slot.venue_id == venue_id, commit=False)
        deleted = await self.venues.delete_by_id(venue_id, commit=False)
        try:
            await self.venues.commit("delete")
        except ForeignKeyError:
            logger.warning("Delete of venue %s refused: bookings were added meanwhile", venue_id)
            raise ConflictError(
                f"Venue {name!r} gained bookings while being deleted; delete them first."
            ) from None
        logger.info("Deleted venue %s and %d slot(s)", venue_id, removed_slots)
        return deleted


# --- Booking Allocator ---

class CourtLocks:
    """One asyncio lock per (venue, court), held across check-and-create.

    A lock is dropped once nobody holds or waits on it, so free-text court
    names do not accumulate.
    """

    def __init__(self):
        self._locks: Dict[Tuple[int, str], asyncio.Lock] = {}
        self._users: Dict[Tuple[int, str], int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, venue_id: int, court_number: str) -> AsyncIterator[None]:
        key = (venue_id, court_number)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class BookingPartition(str, enum.Enum):
    ALL = "all"
    EXPIRED = "expired"
    ACTIVE = "active"


class BookingAllocator:
    def __init__(self, session: AsyncSession, locks: CourtLocks, clock: Clock = utcnow):
        self.venues = Repository(session, Venue)
        self.bookings = Repository(session, Booking)
        self.locks = locks
        self.clock = clock

    async def create_booking(
        self,
        venue_id: int,
        court_number: str,
        start_time: datetime,
        end_time: datetime,
        booked_by: str,
    ) -> Booking:
        if venue_id is None:
            raise InvalidInputError("venue_id is required.")
        court_number = _require_text(court_number, "court_number")
        booked_by = _require_text(booked_by, "booked_by")
        start, end = _require_window(start_time, end_time)

        venue = await self.venues.find_by_id(venue_id)
        if venue is None:
            raise NotFoundError("Venue not found.")

        async with self.locks.hold(venue_id, court_number):
            candidates = await self.bookings.find(
                Booking.venue_id == venue_id,
                Booking.court_number == court_number,
                overlap_clause(Booking.start_time, Booking.end_time, start, end),
            )
            if any(overlaps(start, end, b.start_time, b.end_time) for b in candidates):
                logger.warning(
                    "Rejected booking of %s at venue %s for %s-%s: overlap",
                    court_number, venue_id, start.isoformat(), end.isoformat(),
                )
                raise ConflictError(
                    f"{court_number} is already booked for the specified time at this venue."
                )

            try:
                booking = await self.bookings.create(
                    Booking(
                        venue_id=venue_id,
                        court_number=court_number,
                        start_time=start,
                        end_time=end,
                        booked_by=booked_by,
                        booking_date=self.clock(),
                    )
                )
            except DuplicateKeyError:
                raise ConflictError(
                    f"{court_number} is already booked for the specified time at this venue."
                ) from None
            except ForeignKeyError:
                # The venue was deleted after it was looked up
                raise NotFoundError("Venue not found.") from None

        logger.info(
            "Booked %s at venue %s for %s-%s by %r (booking %s)",
            court_number, venue_id, start.isoformat(), end.isoformat(), booked_by, booking.id,
        )
        return booking

    async def delete_booking(self, booking_id: int) -> Booking:
        deleted = await self.bookings.delete_by_id(booking_id)
        if deleted is None:
            raise NotFoundError("Booking not found.")
        logger.info("Deleted booking %s", booking_id)
        return deleted

    async def list_bookings(
        self, partition: BookingPartition = BookingPartition.ALL
    ) -> List[Tuple[Booking, Optional[Venue]]]:
        now = self.clock()
        if partition is BookingPartition.EXPIRED:
            bookings = await self.bookings.find(
                Booking.end_time < now, order_by=[col(Booking.end_time), col(Booking.id)]
            )
        elif partition is BookingPartition.ACTIVE:
            bookings = await self.bookings.find(
                Booking.end_time >= now, order_by=[col(Booking.start_time), col(Booking.id)]
            )
        else:
            bookings = await self.bookings.find(order_by=[col(Booking.id)])

        # Resolve every referenced venue in one query: venue_id -> Venue
        venue_ids = sorted({b.venue_id for b in bookings})
        venues = await self.venues.find(col(Venue.id).in_(venue_ids)) if venue_ids else []
        venue_map = {v.id: v for v in venues}

        return [(b, venue_map.get(b.venue_id)) for b in bookings]


# --- Slot Grid Generator ---

@dataclass
class SlotGenerationResult:
    target_date: date
    created: List[Slot] = field(default_factory=list)
    skipped_count: int = 0
    failed_count: int = 0

    @property
    def created_count(self) -> int:
        return len(self.created)


def tomorrow_in(tz: tzinfo, now: datetime) -> date:
    return ensure_utc(now).astimezone(tz).date() + timedelta(days=1)


def slot_window(day: date, hour: int, tz: tzinfo) -> Tuple[datetime, datetime]:
    """UTC bounds of the one-hour slot starting at ``hour`` local time on ``day``."""
    start = datetime.combine(day, time(hour), tzinfo=tz)
    end = datetime.combine(day, time(hour + 1), tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


class SlotGridGenerator:
    def __init__(
        self,
        session: AsyncSession,
        tz: tzinfo = timezone.utc,
        clock: Clock = utcnow,
        run_lock: Optional[asyncio.Lock] = None,
    ):
        self.session = session
        self.venues = Repository(session, Venue)
        self.slots = Repository(session, Slot)
        self.tz = tz
        self.clock = clock
        self.run_lock = run_lock or asyncio.Lock()

    async def generate_daily_slots(self) -> SlotGenerationResult:
        """Create tomorrow's grid for every court of every venue.

        Existing slots are skipped, so running this any number of times for
        the same day never produces duplicates. A failed insert is counted
        and logged; the remaining slots are still attempted.
        """
        async with self.run_lock:
            target = tomorrow_in(self.tz, self.clock())

            venues = await self.venues.find(order_by=[col(Venue.id)])
            if not venues:
                raise NotFoundError("No venues found to generate slots for.")

            # Plain values, since a rollback would expire the loaded venues
            courts = [(v.id, v.max_courts) for v in venues]
            result = SlotGenerationResult(target_date=target)

            for venue_id, max_courts in courts:
                for court in range(1, max_courts + 1):
                    court_number = f"Court {court}"
                    for hour in SLOT_GRID_HOURS:
                        start, end = slot_window(target, hour, self.tz)
                        await self._generate_one(result, venue_id, court_number, start, end)

        logger.info(
            "Slot generation for %s: %d created, %d skipped, %d failed",
            target.isoformat(), result.created_count, result.skipped_count, result.failed_count,
        )
        return result

    async def _generate_one(
        self,
        result: SlotGenerationResult,
        venue_id: int,
        court_number: str,
        start: datetime,
        end: datetime,
    ) -> None:
        try:
            existing = await self.slots.find_one(
                Slot.venue_id == venue_id,
                Slot.court_number == court_number,
                Slot.start_time == start,
                Slot.end_time == end,
            )
            if existing is not None:
                result.skipped_count += 1
                return

            slot = await self.slots.create(
                Slot(
                    venue_id=venue_id,
                    court_number=court_number,
                    start_time=start,
                    end_time=end,
                    booked_by=AUTO_GENERATED,
                    is_slot_booked=False,
                    booking_date=self.clock(),
                )
            )
        except DuplicateKeyError:
            # Another run created it between the lookup and the insert
            result.skipped_count += 1
            return
        except InternalFailureError:
            logger.exception(
                "Could not create slot %s at venue %s starting %s",
                court_number, venue_id, start.isoformat(),
            )
            result.failed_count += 1
            return

        # Detached so that a later rollback cannot expire it
        self.session.expunge(slot)
        result.created.append(slot)

    async def list_slots(
        self, venue_id: Optional[int] = None, day: Optional[date] = None
    ) -> List[Slot]:
        criteria = []
        if venue_id is not None:
            criteria.append(Slot.venue_id == venue_id)
        if day is not None:
            day_start = datetime.combine(day, time.min, tzinfo=self.tz)
            next_day = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self.tz)
            criteria.append(Slot.start_time >= day_start)
            criteria.append(Slot.start_time < next_day)
        return await self.slots.find(
            *criteria,
            order_by=[col(Slot.venue_id), col(Slot.start_time), col(Slot.court_number)],
        )


# --- Availability Calculator ---

@dataclass
class Availability:
    venue: str
    max_courts: int
    booked_courts: int
    available_courts: int
    start_time: datetime
    end_time: datetime


class AvailabilityCalculator:
    def __init__(self, session: AsyncSession):
        self.venues = Repository(session, Venue)
        self.bookings = Repository(session, Booking)

    async def get_availability(
        self, venue_id: int, start_time: datetime, end_time: datetime
    ) -> Availability:
        start, end = _require_window(start_time, end_time)

        venue = await self.venues.find_by_id(venue_id)
        if venue is None:
            raise NotFoundError("Venue not found.")

        # Venue-wide: bookings on any court of this venue that overlap the window
        candidates = await self.bookings.find(
            Booking.venue_id == venue_id,
            overlap_clause(Booking.start_time, Booking.end_time, start, end),
        )
        booked = sum(1 for b in candidates if overlaps(start, end, b.start_time, b.end_time))

        return Availability(
            venue=venue.name,
            max_courts=venue.max_courts,
            booked_courts=booked,
            available_courts=max(0, venue.max_courts - booked),
            start_time=start,
            end_time=end,
        )
