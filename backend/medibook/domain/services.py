import math
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from .calendar import fits_window, is_on_grid, overlaps
from .errors import (
    ConflictError,
    InvalidRangeError,
    InvalidScoreError,
    InvalidSlotError,
    MissingRequesterError,
    NotFoundError,
)

CENT = Decimal("0.01")
SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class ProviderSnapshot:
    is_available: bool
    telemedicine_available: bool
    window_start_hour: int
    window_end_hour: int
    slot_minutes: int


@dataclass(frozen=True)
class BookedInterval:
    starts_at: time
    duration_minutes: int


def validate_booking(
    provider: ProviderSnapshot,
    occupied: Iterable[BookedInterval],
    *,
    slot_time: time,
    duration_minutes: int,
    is_telemedicine: bool,
) -> None:
    """
    Pure validation of a booking request against the doctor's schedule and the
    appointments that currently occupy the same day. Raises domain errors.
    """
    if not provider.is_available:
        raise NotFoundError("doctor is not currently available")
    if duration_minutes <= 0:
        raise InvalidSlotError("duration must be positive")
    if not is_on_grid(slot_time, provider.window_start_hour, provider.slot_minutes):
        raise InvalidSlotError("time is not aligned to the doctor's slot grid")
    if not fits_window(slot_time, duration_minutes, provider.window_start_hour, provider.window_end_hour):
        raise InvalidSlotError("appointment does not fit inside the doctor's working hours")
    if is_telemedicine and not provider.telemedicine_available:
        raise InvalidSlotError("doctor does not offer telemedicine")
    for existing in occupied:
        if overlaps(slot_time, duration_minutes, existing.starts_at, existing.duration_minutes):
            raise ConflictError("time slot is already booked")


@dataclass(frozen=True)
class StayQuote:
    nights: int
    nightly_rate: Decimal
    total_cost: Decimal


def count_nights(check_in: date | datetime, check_out: date | datetime) -> int:
    if check_out <= check_in:
        raise InvalidRangeError("check-out must be after check-in")
    delta = check_out - check_in
    return max(1, math.ceil(delta.total_seconds() / SECONDS_PER_DAY))


def compute_stay_cost(check_in: date | datetime, check_out: date | datetime, nightly_rate: Decimal) -> StayQuote:
    """Nights are whole days rounded up; the total is nights times the nightly rate."""
    nights = count_nights(check_in, check_out)
    rate = Decimal(nightly_rate)
    if rate < 0:
        raise InvalidRangeError("nightly rate must not be negative")
    total = (rate * nights).quantize(CENT, rounding=ROUND_HALF_UP)
    return StayQuote(nights=nights, nightly_rate=rate, total_cost=total)


def validate_guest_count(number_of_guests: int, *, max_guests: Optional[int]) -> None:
    if number_of_guests < 1:
        raise InvalidRangeError("number of guests must be at least 1")
    if max_guests is not None and number_of_guests > max_guests:
        raise InvalidRangeError(f"accommodation hosts at most {max_guests} guests")


@dataclass(frozen=True)
class StayRequester:
    """Either an authenticated user or an anonymous guest with contact details."""

    user_id: Optional[int] = None
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    def validate(self) -> None:
        if self.user_id is None and not (self.guest_name and self.guest_email):
            raise MissingRequesterError("guest name and email are required for anonymous bookings")


def validate_score(score: int, *, minimum: int = 1, maximum: int = 5) -> int:
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidScoreError("score must be an integer")
    if not minimum <= score <= maximum:
        raise InvalidScoreError(f"score must be between {minimum} and {maximum}")
    return score
