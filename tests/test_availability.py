"""Tests for venue availability counts."""

from datetime import datetime

import pytest

from errors import InvalidInputError, NotFoundError
from services import AvailabilityCalculator, BookingAllocator, VenueRegistry
from tests.helpers import at, fixed_clock


@pytest.fixture()
def calculator(session) -> AvailabilityCalculator:
    return AvailabilityCalculator(session)


@pytest.fixture()
def allocator(session, court_locks) -> BookingAllocator:
    return BookingAllocator(session, court_locks, clock=fixed_clock)


class TestGetAvailability:
    async def test_empty_venue_is_fully_available(self, calculator, venue):
        availability = await calculator.get_availability(venue.id, at(20, 10), at(20, 11))

        assert availability.venue == "Arena A"
        assert availability.max_courts == 2
        assert availability.booked_courts == 0
        assert availability.available_courts == 2

    async def test_arena_scenario(self, calculator, allocator, venue):
        await allocator.create_booking(venue.id, "Court 1", at(20, 10), at(20, 11), "Alice")
        await allocator.create_booking(venue.id, "Court 2", at(20, 10), at(20, 11), "Bob")

        availability = await calculator.get_availability(venue.id, at(20, 10), at(20, 11))

        assert availability.booked_courts == 2
        assert availability.available_courts == 0

    async def test_counts_across_courts_and_ignores_touching(self, calculator, allocator, venue):
        await allocator.create_booking(venue.id, "Court 1", at(20, 9), at(20, 10), "Alice")
        await allocator.create_booking(venue.id, "Court 2", at(20, 10, 30), at(20, 12), "Bob")
        await allocator.create_booking(venue.id, "Court 1", at(20, 11), at(20, 12), "Carol")

        availability = await calculator.get_availability(venue.id, at(20, 10), at(20, 11))

        assert availability.booked_courts == 1
        assert availability.available_courts == 1

    async def test_other_venues_are_not_counted(self, session, calculator, allocator, venue):
        other = await VenueRegistry(session, clock=fixed_clock).create_venue("Arena B", 1)
        await allocator.create_booking(other.id, "Court 1", at(20, 10), at(20, 11), "Alice")

        availability = await calculator.get_availability(venue.id, at(20, 10), at(20, 11))

        assert availability.booked_courts == 0

    async def test_available_courts_never_negative(self, session, calculator, allocator):
        small = await VenueRegistry(session, clock=fixed_clock).create_venue("Tiny Hall", 1)
        for court in ("Court 1", "Court 2", "Court 3"):
            await allocator.create_booking(small.id, court, at(20, 10), at(20, 11), "Alice")

        availability = await calculator.get_availability(small.id, at(20, 10), at(20, 11))

        assert availability.booked_courts == 3
        assert availability.available_courts == 0

    async def test_window_is_normalized_to_utc(self, calculator, venue):
        availability = await calculator.get_availability(
            venue.id, datetime(2026, 10, 20, 10), datetime(2026, 10, 20, 11)
        )

        assert availability.start_time == at(20, 10)
        assert availability.end_time == at(20, 11)

    @pytest.mark.parametrize("end", [at(20, 10), at(20, 9)])
    async def test_invalid_window(self, calculator, venue, end):
        with pytest.raises(InvalidInputError):
            await calculator.get_availability(venue.id, at(20, 10), end)

    async def test_unknown_venue(self, calculator):
        with pytest.raises(NotFoundError):
            await calculator.get_availability(404, at(20, 10), at(20, 11))
