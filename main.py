import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

import uvicorn
from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession

from config import configure_logging, cors_origins, load_settings
from database import Database, get_session
from errors import register_exception_handlers
from models import utcnow
from schemas import (
    AvailabilityResponse,
    BookingCreate,
    BookingRead,
    BookingResponse,
    BookingWithVenue,
    HealthResponse,
    SlotGenerationResponse,
    SlotRead,
    TimeWindow,
    VenueRead,
    VenueResponse,
    VenueWrite,
)
from services import (
    AvailabilityCalculator,
    BookingAllocator,
    BookingPartition,
    CourtLocks,
    SlotGridGenerator,
    VenueRegistry,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    configure_logging(settings.log_level)

    database = Database(settings.database_url, echo=settings.sql_echo)
    await database.connect(settings.db_connect_retries, settings.db_retry_delay)

    app.state.database = database
    app.state.court_locks = CourtLocks()
    app.state.slot_generation_lock = asyncio.Lock()
    app.state.slot_timezone = ZoneInfo(settings.slot_timezone)
    logger.info("Court booking service started (slot grid timezone %s)", settings.slot_timezone)
    try:
        yield
    finally:
        await database.dispose()


app = FastAPI(title="Court Booking System", lifespan=lifespan)
register_exception_handlers(app)


# --- Dependencies ---

def get_venue_registry(session: AsyncSession = Depends(get_session)) -> VenueRegistry:
    return VenueRegistry(session)


def get_allocator(
    request: Request, session: AsyncSession = Depends(get_session)
) -> BookingAllocator:
    return BookingAllocator(session, request.app.state.court_locks)


def get_slot_generator(
    request: Request, session: AsyncSession = Depends(get_session)
) -> SlotGridGenerator:
    return SlotGridGenerator(
        session,
        tz=request.app.state.slot_timezone,
        run_lock=request.app.state.slot_generation_lock,
    )


def get_availability_calculator(
    session: AsyncSession = Depends(get_session),
) -> AvailabilityCalculator:
    return AvailabilityCalculator(session)


def _with_venue(rows) -> List[BookingWithVenue]:
    return [
        BookingWithVenue(
            **BookingRead.model_validate(booking).model_dump(),
            venue=VenueRead.model_validate(venue) if venue is not None else None,
        )
        for booking, venue in rows
    ]


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok", timestamp=utcnow())


# --- Venues ---

@app.post("/api/venues", response_model=VenueResponse, status_code=status.HTTP_201_CREATED)
async def create_venue(payload: VenueWrite, registry: VenueRegistry = Depends(get_venue_registry)):
    venue = await registry.create_venue(payload.name, payload.max_courts)
    return {"message": "Venue created successfully!", "venue": venue}


@app.get("/api/venues", response_model=List[VenueRead])
async def list_venues(registry: VenueRegistry = Depends(get_venue_registry)):
    return await registry.list_venues()


@app.get("/api/venues/{venue_id}", response_model=VenueRead)
async def get_venue(venue_id: int, registry: VenueRegistry = Depends(get_venue_registry)):
    return await registry.get_venue(venue_id)


@app.put("/api/venues/{venue_id}", response_model=VenueResponse)
async def update_venue(
    venue_id: int,
    payload: VenueWrite,
    registry: VenueRegistry = Depends(get_venue_registry),
):
    venue = await registry.update_venue(venue_id, payload.name, payload.max_courts)
    return {"message": "Venue updated successfully!", "venue": venue}


@app.delete("/api/venues/{venue_id}", response_model=VenueResponse)
async def delete_venue(venue_id: int, registry: VenueRegistry = Depends(get_venue_registry)):
    venue = await registry.delete_venue(venue_id)
    return {"message": "Venue deleted successfully!", "venue": venue}


@app.get("/api/venues/{venue_id}/availability", response_model=AvailabilityResponse)
async def get_venue_availability(
    venue_id: int,
    start_time: datetime = Query(..., description="ISO-8601 start of the window"),
    end_time: datetime = Query(..., description="ISO-8601 end of the window"),
    calculator: AvailabilityCalculator = Depends(get_availability_calculator),
):
    availability = await calculator.get_availability(venue_id, start_time, end_time)
    return AvailabilityResponse(
        venue=availability.venue,
        max_courts=availability.max_courts,
        booked_courts=availability.booked_courts,
        available_courts=availability.available_courts,
        requested_time_slot=TimeWindow(
            start_time=availability.start_time, end_time=availability.end_time
        ),
    )


# --- Bookings ---

@app.post("/api/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate, allocator: BookingAllocator = Depends(get_allocator)
):
    booking = await allocator.create_booking(
        payload.venue_id,
        payload.court_number,
        payload.start_time,
        payload.end_time,
        payload.booked_by,
    )
    return {"message": "Court booked successfully!", "booking": booking}


@app.post(
    "/api/bookings/generate-slots",
    response_model=SlotGenerationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_daily_slots(generator: SlotGridGenerator = Depends(get_slot_generator)):
    result = await generator.generate_daily_slots()
    return SlotGenerationResponse(
        message="Daily booking slots generated successfully.",
        target_date=result.target_date,
        created_count=result.created_count,
        skipped_count=result.skipped_count,
        failed_count=result.failed_count,
        details=[SlotRead.model_validate(slot) for slot in result.created],
    )


@app.get("/api/bookings", response_model=List[BookingWithVenue])
async def list_bookings(allocator: BookingAllocator = Depends(get_allocator)):
    return _with_venue(await allocator.list_bookings(BookingPartition.ALL))


@app.get("/api/bookings/expired", response_model=List[BookingWithVenue])
async def list_expired_bookings(allocator: BookingAllocator = Depends(get_allocator)):
    return _with_venue(await allocator.list_bookings(BookingPartition.EXPIRED))


@app.get("/api/bookings/active", response_model=List[BookingWithVenue])
async def list_active_bookings(allocator: BookingAllocator = Depends(get_allocator)):
    return _with_venue(await allocator.list_bookings(BookingPartition.ACTIVE))


@app.delete("/api/bookings/{booking_id}", response_model=BookingResponse)
async def delete_booking(booking_id: int, allocator: BookingAllocator = Depends(get_allocator)):
    booking = await allocator.delete_booking(booking_id)
    return {"message": "Booking deleted successfully!", "booking": booking}


# --- Slots ---

@app.get("/api/slots", response_model=List[SlotRead])
async def list_slots(
    venue_id: Optional[int] = None,
    slot_date: Optional[date] = None,
    generator: SlotGridGenerator = Depends(get_slot_generator),
):
    return await generator.list_slots(venue_id=venue_id, day=slot_date)


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
