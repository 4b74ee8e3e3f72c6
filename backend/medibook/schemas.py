from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer, model_validator

from .domain.services import StayQuote
from .models import AccommodationOption, Appointment, BookingStatus, EntityKind, Stay
from .utils.time import format_hhmm


class SlotRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    slot_time: time = Field(alias="time")
    available: bool

    @field_serializer("slot_time")
    def _ser_time(self, value: time) -> str:
        return format_hhmm(value)


class AvailabilityRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    doctor_id: int
    day: date = Field(alias="date")
    slots: list[SlotRead]


class AppointmentCreate(BaseModel):
    doctor_id: int = Field(ge=1)
    appointment_date: date
    appointment_time: time
    duration_minutes: Optional[int] = Field(default=None, ge=1, le=24 * 60)
    appointment_type: str = Field(default="consultation", min_length=1, max_length=50)
    is_telemedicine: bool = False
    notes: Optional[str] = Field(default=None, max_length=2000)
    idempotency_key: Optional[str] = Field(default=None, min_length=8, max_length=64)


class StatusChange(BaseModel):
    status: BookingStatus
    version: Optional[int] = Field(default=None, ge=1)
    note: Optional[str] = Field(default=None, max_length=2000)


class AppointmentCancel(BaseModel):
    version: Optional[int] = Field(default=None, ge=1)


class AppointmentRead(BaseModel):
    appointment_id: int
    doctor_id: int
    hospital_id: int
    user_id: Optional[int]
    appointment_type: str
    appointment_date: date
    appointment_time: time
    duration_minutes: int
    status: BookingStatus
    consultation_fee: Decimal
    is_telemedicine: bool
    notes: Optional[str]
    version: int
    created_at: datetime

    @field_serializer("appointment_time")
    def _ser_time(self, value: time) -> str:
        return format_hhmm(value)

    @classmethod
    def from_db(cls, *, appointment: Appointment) -> "AppointmentRead":
        return cls(
            appointment_id=appointment.id,
            doctor_id=appointment.doctor_id,
            hospital_id=appointment.hospital_id,
            user_id=appointment.user_id,
            appointment_type=appointment.appointment_type,
            appointment_date=appointment.appointment_date,
            appointment_time=appointment.appointment_time,
            duration_minutes=appointment.duration_minutes,
            status=appointment.status,
            consultation_fee=appointment.consultation_fee,
            is_telemedicine=appointment.is_telemedicine,
            notes=appointment.notes,
            version=appointment.version,
            created_at=appointment.created_at,
        )


class RatingCreate(BaseModel):
    # Range is checked by the rating use case so out-of-range scores surface as 400.
    score: int
    review_text: Optional[str] = Field(default=None, max_length=5000)
    reviewer_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    treatment_type: Optional[str] = Field(default=None, max_length=100)
    visit_date: Optional[date] = None
    is_anonymous: bool = False


class RatingRead(BaseModel):
    entity_kind: EntityKind
    entity_id: int
    rating_count: int
    average_rating: float


class StayQuoteRead(BaseModel):
    accommodation_id: int
    check_in: date
    check_out: date
    nights: int
    nightly_rate: Decimal
    total_cost: Decimal
    currency: str

    @classmethod
    def from_quote(
        cls,
        *,
        option: AccommodationOption,
        check_in: date,
        check_out: date,
        quote: StayQuote,
    ) -> "StayQuoteRead":
        return cls(
            accommodation_id=option.id,
            check_in=check_in,
            check_out=check_out,
            nights=quote.nights,
            nightly_rate=quote.nightly_rate,
            total_cost=quote.total_cost,
            currency=option.currency,
        )


class StayCreate(BaseModel):
    accommodation_id: int = Field(ge=1)
    check_in: date
    check_out: date
    number_of_guests: int = 1
    special_requests: Optional[str] = Field(default=None, max_length=2000)
    guest_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    guest_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = Field(default=None, max_length=32)
    emergency_contact: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _guest_contact_complete(self) -> "StayCreate":
        if (self.guest_name is None) != (self.guest_email is None):
            raise ValueError("guest_name and guest_email must be given together")
        return self


class StayRead(BaseModel):
    booking_id: int
    accommodation_id: int
    user_id: Optional[int]
    guest_name: Optional[str]
    check_in: date
    check_out: date
    number_of_guests: int
    nights: int
    nightly_rate: Decimal
    total_cost: Decimal
    currency: str
    status: BookingStatus
    contact_phone: Optional[str] = None
    emergency_contact: Optional[str] = None
    admin_notes: Optional[str]
    version: int

    @classmethod
    def from_db(cls, *, stay: Stay) -> "StayRead":
        return cls(
            booking_id=stay.id,
            accommodation_id=stay.accommodation_id,
            user_id=stay.user_id,
            guest_name=stay.guest_name,
            check_in=stay.check_in_date,
            check_out=stay.check_out_date,
            number_of_guests=stay.number_of_guests,
            nights=stay.nights,
            nightly_rate=stay.nightly_rate,
            total_cost=stay.total_cost,
            currency=stay.currency,
            status=stay.status,
            contact_phone=stay.contact_phone,
            emergency_contact=stay.emergency_contact,
            admin_notes=stay.admin_notes,
            version=stay.version,
        )
