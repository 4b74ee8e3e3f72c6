from __future__ import annotations

from datetime import date, time
from decimal import Decimal
from typing import Protocol

from ..models import (
    AccommodationOption,
    Appointment,
    BookingStatus,
    Doctor,
    EntityKind,
    RecordKind,
    Stay,
)


class DoctorRepository(Protocol):
    async def get(self, doctor_id: int) -> Doctor | None: ...

    async def get_for_update(self, doctor_id: int) -> Doctor | None: ...


class AppointmentRepository(Protocol):
    async def list_occupying(self, doctor_id: int, day: date) -> list[Appointment]: ...

    async def get_by_idempotency_key(self, idempotency_key: str) -> Appointment | None: ...

    async def create(
        self,
        *,
        doctor: Doctor,
        user_id: int | None,
        appointment_type: str,
        appointment_date: date,
        appointment_time: time,
        duration_minutes: int,
        is_telemedicine: bool,
        notes: str | None,
        idempotency_key: str | None,
        occupancy_key: str,
    ) -> Appointment: ...

    async def get_for_update(self, appointment_id: int) -> Appointment | None: ...

    async def get_for_user(self, appointment_id: int, user_id: int) -> Appointment | None: ...

    async def list_by_user(
        self,
        user_id: int,
        status: BookingStatus | None = None,
        from_date: date | None = None,
    ) -> list[Appointment]: ...

    async def save(self, appointment: Appointment) -> Appointment: ...


class AccommodationRepository(Protocol):
    async def get(self, accommodation_id: int) -> AccommodationOption | None: ...


class StayRepository(Protocol):
    async def create(
        self,
        *,
        accommodation: AccommodationOption,
        user_id: int | None,
        guest_name: str | None,
        guest_email: str | None,
        check_in_date: date,
        check_out_date: date,
        number_of_guests: int,
        nightly_rate: Decimal,
        nights: int,
        total_cost: Decimal,
        special_requests: str | None,
        contact_phone: str | None = None,
        emergency_contact: str | None = None,
    ) -> Stay: ...

    async def get_for_update(self, stay_id: int) -> Stay | None: ...

    async def list_by_user(self, user_id: int) -> list[Stay]: ...

    async def list_all(self, *, status: BookingStatus | None = None) -> list[Stay]: ...

    async def save(self, stay: Stay) -> Stay: ...


class TransitionLog(Protocol):
    async def record(
        self,
        *,
        record_kind: RecordKind,
        record_id: int,
        status_from: BookingStatus | None,
        status_to: BookingStatus,
        user_id: int | None,
        note: str | None = None,
    ) -> None: ...


class RatingRepository(Protocol):
    async def apply(self, kind: EntityKind, entity_id: int, score: int) -> tuple[int, float] | None: ...

    async def record_observation(
        self,
        *,
        kind: EntityKind,
        entity_id: int,
        score: int,
        user_id: int | None,
        review_text: str | None,
        reviewer_name: str | None = None,
        treatment_type: str | None = None,
        visit_date: date | None = None,
        is_anonymous: bool = False,
    ) -> None: ...
