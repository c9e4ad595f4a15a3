from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import ensure_utc


# Pydantic Schemas for Request/Response
class VenueWrite(BaseModel):
    name: str = Field(..., min_length=1, description="Unique venue name")
    max_courts: int = Field(..., ge=1, description="Number of courts at the venue")


class VenueRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    max_courts: int
    created_at: datetime
    updated_at: datetime


class VenueResponse(BaseModel):
    message: str
    venue: VenueRead


class BookingCreate(BaseModel):
    venue_id: int
    court_number: str = Field(..., min_length=1, examples=["Court 1"])
    start_time: datetime
    end_time: datetime
    booked_by: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_window(self):
        if ensure_utc(self.end_time) <= ensure_utc(self.start_time):
            raise ValueError("End time must be after start time.")
        return self


class BookingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    venue_id: int
    court_number: str
    start_time: datetime
    end_time: datetime
    booked_by: str
    booking_date: datetime


class BookingWithVenue(BookingRead):
    venue: Optional[VenueRead] = None


class BookingResponse(BaseModel):
    message: str
    booking: BookingRead


class SlotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    venue_id: int
    court_number: str
    start_time: datetime
    end_time: datetime
    booked_by: str
    is_slot_booked: bool


class SlotGenerationResponse(BaseModel):
    message: str
    target_date: date
    created_count: int
    skipped_count: int
    failed_count: int
    details: List[SlotRead]


class TimeWindow(BaseModel):
    start_time: datetime
    end_time: datetime


class AvailabilityResponse(BaseModel):
    venue: str
    max_courts: int
    booked_courts: int
    available_courts: int
    requested_time_slot: TimeWindow


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
