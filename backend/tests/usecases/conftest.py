import asyncio
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Optional

import pytest
from medibook.domain.errors import ConflictError
from medibook.domain.state_machine import is_occupying
from medibook.models import (
    AccommodationOption,
    Appointment,
    BookingStatus,
    Doctor,
    EntityKind,
    RecordKind,
    Stay,
)


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def make_doctor(
    doctor_id: int = 1,
    *,
    fee: str = "150.00",
    from_hour: int = 9,
    to_hour: int = 17,
    slot_minutes: int = 30,
    is_available: bool = True,
    telemedicine: bool = False,
) -> Doctor:
    now = _utc_now_naive()
    return Doctor(
        id=doctor_id,
        hospital_id=7,
        name="Dr. Rao",
        consultation_fee=Decimal(fee),
        available_from_hour=from_hour,
        available_to_hour=to_hour,
        slot_minutes=slot_minutes,
        is_available=is_available,
        telemedicine_available=telemedicine,
        average_rating=0.0,
        rating_count=0,
        created_at=now,
        updated_at=now,
    )


class FakeDoctorRepo:
    def __init__(self, *doctors: Doctor) -> None:
        self.doctors = {d.id: d for d in doctors}

    async def get(self, doctor_id: int) -> Optional[Doctor]:
        return self.doctors.get(doctor_id)

    async def get_for_update(self, doctor_id: int) -> Optional[Doctor]:
        return self.doctors.get(doctor_id)


class FakeAppointmentRepo:
    """In-memory ledger whose create() enforces the unique occupancy key like the database does."""

    def __init__(self) -> None:
        self.rows: dict[int, Appointment] = {}
        self.next_id = 1

    async def list_occupying(self, doctor_id: int, day: date) -> list[Appointment]:
        # Yield so concurrent attempts interleave between check and insert.
        await asyncio.sleep(0)
        return [
            a
            for a in self.rows.values()
            if a.doctor_id == doctor_id and a.appointment_date == day and is_occupying(a.status)
        ]

    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Appointment]:
        return next((a for a in self.rows.values() if a.idempotency_key == idempotency_key), None)

    async def create(
        self,
        *,
        doctor: Doctor,
        user_id: Optional[int],
        appointment_type: str,
        appointment_date: date,
        appointment_time: time,
        duration_minutes: int,
        is_telemedicine: bool,
        notes: Optional[str],
        idempotency_key: Optional[str],
        occupancy_key: str,
    ) -> Appointment:
        if any(a.occupancy_key == occupancy_key for a in self.rows.values()):
            raise ConflictError("time slot is already booked")
        now = _utc_now_naive()
        appointment = Appointment(
            id=self.next_id,
            doctor_id=doctor.id,
            hospital_id=doctor.hospital_id,
            user_id=user_id,
            appointment_type=appointment_type,
            appointment_date=appointment_date,
            appointment_time=appointment_time,
            duration_minutes=duration_minutes,
            status=BookingStatus.PENDING,
            consultation_fee=doctor.consultation_fee,
            is_telemedicine=is_telemedicine,
            notes=notes,
            idempotency_key=idempotency_key,
            occupancy_key=occupancy_key,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.rows[appointment.id] = appointment
        self.next_id += 1
        return appointment

    async def get_for_update(self, appointment_id: int) -> Optional[Appointment]:
        return self.rows.get(appointment_id)

    async def get_for_user(self, appointment_id: int, user_id: int) -> Optional[Appointment]:
        row = self.rows.get(appointment_id)
        return row if row is not None and row.user_id == user_id else None

    async def list_by_user(
        self,
        user_id: int,
        status: Optional[BookingStatus] = None,
        from_date: Optional[date] = None,
    ) -> list[Appointment]:
        rows = [a for a in self.rows.values() if a.user_id == user_id]
        if status is not None:
            rows = [a for a in rows if a.status == status]
        if from_date is not None:
            rows = [a for a in rows if a.appointment_date >= from_date]
        return rows

    async def save(self, appointment: Appointment) -> Appointment:
        self.rows[appointment.id] = appointment
        return appointment


class FakeTransitionLog:
    def __init__(self) -> None:
        self.entries: list[dict[str, object]] = []

    async def record(
        self,
        *,
        record_kind: RecordKind,
        record_id: int,
        status_from: Optional[BookingStatus],
        status_to: BookingStatus,
        user_id: Optional[int],
        note: Optional[str] = None,
    ) -> None:
        self.entries.append(
            {
                "record_kind": record_kind,
                "record_id": record_id,
                "status_from": status_from,
                "status_to": status_to,
                "user_id": user_id,
                "note": note,
                "at": _utc_now_naive(),
            }
        )


class FakeRatingRepo:
    """Applies the running-mean update in one step, like the single SQL UPDATE."""

    def __init__(self, *entities: tuple[EntityKind, int]) -> None:
        self.aggregates: dict[tuple[EntityKind, int], tuple[int, float]] = {key: (0, 0.0) for key in entities}
        self.observations: list[tuple[EntityKind, int, int]] = []
        self.reviews: list[dict] = []

    async def apply(self, kind: EntityKind, entity_id: int, score: int) -> Optional[tuple[int, float]]:
        await asyncio.sleep(0)
        key = (kind, entity_id)
        if key not in self.aggregates:
            return None
        count, mean = self.aggregates[key]
        updated = (count + 1, (mean * count + score) / (count + 1))
        self.aggregates[key] = updated
        return updated

    async def record_observation(
        self,
        *,
        kind: EntityKind,
        entity_id: int,
        score: int,
        user_id: Optional[int],
        review_text: Optional[str],
        reviewer_name: Optional[str] = None,
        treatment_type: Optional[str] = None,
        visit_date: Optional[date] = None,
        is_anonymous: bool = False,
    ) -> None:
        self.observations.append((kind, entity_id, score))
        self.reviews.append(
            {
                "user_id": user_id,
                "reviewer_name": reviewer_name,
                "review_text": review_text,
                "treatment_type": treatment_type,
                "visit_date": visit_date,
                "is_anonymous": is_anonymous,
            }
        )


def make_option(
    option_id: int = 3,
    *,
    price: str = "100.00",
    max_guests: Optional[int] = 4,
    is_active: bool = True,
) -> AccommodationOption:
    now = _utc_now_naive()
    return AccommodationOption(
        id=option_id,
        hospital_id=7,
        name="Guest House",
        price_per_night=Decimal(price),
        currency="USD",
        max_guests=max_guests,
        is_active=is_active,
        created_at=now,
        updated_at=now,
    )


class FakeAccommodationRepo:
    def __init__(self, *options: AccommodationOption) -> None:
        self.options = {o.id: o for o in options}

    async def get(self, accommodation_id: int) -> Optional[AccommodationOption]:
        return self.options.get(accommodation_id)


class FakeStayRepo:
    def __init__(self) -> None:
        self.rows: dict[int, Stay] = {}

    async def create(
        self,
        *,
        accommodation: AccommodationOption,
        user_id: Optional[int],
        guest_name: Optional[str],
        guest_email: Optional[str],
        check_in_date: date,
        check_out_date: date,
        number_of_guests: int,
        nightly_rate: Decimal,
        nights: int,
        total_cost: Decimal,
        special_requests: Optional[str],
        contact_phone: Optional[str] = None,
        emergency_contact: Optional[str] = None,
    ) -> Stay:
        now = _utc_now_naive()
        stay = Stay(
            id=len(self.rows) + 1,
            accommodation_id=accommodation.id,
            user_id=user_id,
            guest_name=guest_name,
            guest_email=guest_email,
            check_in_date=check_in_date,
            check_out_date=check_out_date,
            number_of_guests=number_of_guests,
            nightly_rate=nightly_rate,
            nights=nights,
            total_cost=total_cost,
            currency=accommodation.currency,
            special_requests=special_requests,
            contact_phone=contact_phone,
            emergency_contact=emergency_contact,
            status=BookingStatus.PENDING,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.rows[stay.id] = stay
        return stay

    async def get_for_update(self, stay_id: int) -> Optional[Stay]:
        return self.rows.get(stay_id)

    async def list_by_user(self, user_id: int) -> list[Stay]:
        return [s for s in self.rows.values() if s.user_id == user_id]

    async def list_all(self, *, status: Optional[BookingStatus] = None) -> list[Stay]:
        rows = sorted(self.rows.values(), key=lambda s: s.id, reverse=True)
        return [s for s in rows if status is None or s.status == status]

    async def save(self, stay: Stay) -> Stay:
        self.rows[stay.id] = stay
        return stay


@pytest.fixture
def doctor_repo() -> FakeDoctorRepo:
    return FakeDoctorRepo(
        make_doctor(1),
        make_doctor(2, is_available=False),
        make_doctor(3, telemedicine=True),
    )


@pytest.fixture
def appt_repo() -> FakeAppointmentRepo:
    return FakeAppointmentRepo()


@pytest.fixture
def transitions() -> FakeTransitionLog:
    return FakeTransitionLog()


@pytest.fixture
def rating_repo() -> FakeRatingRepo:
    return FakeRatingRepo((EntityKind.FACILITY, 10), (EntityKind.PROVIDER, 1))


@pytest.fixture
def accom_repo() -> FakeAccommodationRepo:
    return FakeAccommodationRepo(make_option(3), make_option(4, is_active=False))


@pytest.fixture
def stay_repo() -> FakeStayRepo:
    return FakeStayRepo()
