from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_HOLIDAY_REGION

BookingStatus = Literal["PENDING", "CONFIRMED", "COMPLETED", "CANCELLED", "NO_SHOW"]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---- Garages ----

class CreateGarageRequest(BaseModel):
    name: str
    # only admins may assign another owner; a garage_owner always owns what they create
    owner_id: Optional[str] = None
    mot_price: Decimal = Decimal("0")
    saturday_cutoff_time: Optional[str] = None
    holiday_region: str = DEFAULT_HOLIDAY_REGION
    is_active: bool = True


class UpdateGaragePolicyRequest(BaseModel):
    # an explicit null clears the Saturday cutoff; omitting the field leaves it alone
    saturday_cutoff_time: Optional[str] = None
    is_active: Optional[bool] = None
    mot_price: Optional[Decimal] = None


class GarageResponse(ORMModel):
    garage_id: str
    owner_id: Optional[str] = None
    name: str
    is_active: bool
    mot_price: Decimal
    saturday_cutoff_time: Optional[str] = None
    holiday_region: str


# ---- Availability ----

class DayAvailabilityResponse(BaseModel):
    garage_id: str
    date: date
    available_slots: List[str]


class RangeDay(BaseModel):
    date: date
    available_slots: List[str]


class RangeAvailabilityResponse(BaseModel):
    garage_id: str
    start: date
    end: date
    days: List[RangeDay]


# ---- Schedule ----

class SetWeeklyScheduleRequest(BaseModel):
    is_open: bool = True
    open_time: str = "09:00"
    close_time: str = "17:00"
    slot_duration_minutes: int = 30


class WeeklyScheduleResponse(ORMModel):
    day_of_week: int
    is_open: bool
    open_time: str
    close_time: str
    slot_duration_minutes: int


class SetExceptionRequest(BaseModel):
    is_closed: bool = True
    reason: Optional[str] = None
    open_time: Optional[str] = None
    close_time: Optional[str] = None


class ExceptionResponse(ORMModel):
    date: date
    is_closed: bool
    reason: Optional[str] = None
    open_time: Optional[str] = None
    close_time: Optional[str] = None


class SetBlockRequest(BaseModel):
    date: date
    time_slot: str
    blocked: bool = True
    reason: Optional[str] = None


class SetBlockResponse(BaseModel):
    changed: bool


class BulkBlockRequest(BaseModel):
    start: date
    end: date
    blocked: bool = True
    time_slots: Optional[List[str]] = None
    reason: Optional[str] = None


class BulkBlockResponse(BaseModel):
    changed: int


class BlockResponse(ORMModel):
    date: date
    time_slot: str
    reason: Optional[str] = None


class SetHolidayOverrideRequest(BaseModel):
    is_available: bool


class HolidayOverrideResponse(ORMModel):
    garage_id: str
    date: date
    is_available: bool


class HolidaysResponse(BaseModel):
    year: int
    region: str
    dates: List[date]


# ---- Bookings ----

class CreateBookingRequest(BaseModel):
    garage_id: str
    date: date
    time_slot: str
    vehicle_id: str
    customer_id: Optional[str] = None
    notes: Optional[str] = None


class BookingResponse(ORMModel):
    booking_id: str
    garage_id: str
    vehicle_id: str
    customer_id: str
    date: date
    time_slot: str
    status: BookingStatus
    total_price: Decimal
    payment_status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class TransitionRequest(BaseModel):
    status: BookingStatus
    reason: Optional[str] = None


class ScheduledActionResponse(ORMModel):
    kind: str
    scheduled_for: datetime
    status: str
    retry_count: int
    last_error: Optional[str] = None
    sent_at: Optional[datetime] = None


class DispatchResponse(BaseModel):
    sent: int = 0
    retried: int = 0
    failed: int = 0
    cancelled: int = 0
    skipped: int = 0


class ConflictResponse(BaseModel):
    detail: str
    refresh_availability: bool = Field(default=True)
