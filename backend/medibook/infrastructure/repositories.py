from __future__ import annotations

import logging
import re
from datetime import date, time
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import ConflictError
from ..domain.repositories import (
    AccommodationRepository,
    AppointmentRepository,
    DoctorRepository,
    RatingRepository,
    StayRepository,
    TransitionLog,
)
from ..domain.state_machine import OCCUPYING_STATUSES
from ..models import (
    AccommodationOption,
    Appointment,
    BookingStatus,
    Doctor,
    EntityKind,
    Hospital,
    RatingObservation,
    RecordKind,
    Stay,
    StatusTransition,
)
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)

OCCUPANCY_CONSTRAINT = "uq_appt_occupancy_key"
OCCUPANCY_COLUMN = "occupancy_key"

# MySQL: for key 't.name'; PostgreSQL: unique constraint "name"; SQLite: constraint failed: t.col
_CONSTRAINT_NAME = re.compile(r"(?:for key|unique constraint|constraint failed:)\s*['\"]?([\w.]+)", re.IGNORECASE)


def is_occupancy_violation(exc: IntegrityError) -> bool:
    """True when the violated constraint is the one guarding occupied slots.

    MySQL and PostgreSQL report the constraint name (uq_appt_occupancy_key),
    SQLite reports the column (appointments.occupancy_key).
    """
    names = _CONSTRAINT_NAME.findall(str(exc.orig))
    if not names:
        return False
    # The driver names the violated key last; earlier text may echo row values.
    violated = names[-1].rsplit(".", 1)[-1]
    return violated in (OCCUPANCY_CONSTRAINT, OCCUPANCY_COLUMN)


class SqlAlchemyDoctorRepository(DoctorRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, doctor_id: int) -> Doctor | None:
        return await self.session.get(Doctor, doctor_id)

    async def get_for_update(self, doctor_id: int) -> Doctor | None:
        # Serialises every booking attempt for this doctor until commit.
        result = await self.session.scalar(select(Doctor).where(Doctor.id == doctor_id).with_for_update())
        return result if isinstance(result, Doctor) else None


class SqlAlchemyAppointmentRepository(AppointmentRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_occupying(self, doctor_id: int, day: date) -> list[Appointment]:
        stmt = (
            select(Appointment)
            .where(
                Appointment.doctor_id == doctor_id,
                Appointment.appointment_date == day,
                Appointment.status.in_(OCCUPYING_STATUSES),
            )
            .order_by(Appointment.appointment_time)
        )
        return list((await self.session.scalars(stmt)).all())

    async def get_by_idempotency_key(self, idempotency_key: str) -> Appointment | None:
        stmt = select(Appointment).where(Appointment.idempotency_key == idempotency_key)
        return await self.session.scalar(stmt)

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
    ) -> Appointment:
        now = utc_now_naive()
        appointment = Appointment(
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
        # SAVEPOINT so a lost race leaves the outer transaction usable.
        try:
            async with self.session.begin_nested():
                self.session.add(appointment)
                await self.session.flush()
        except IntegrityError as exc:
            if is_occupancy_violation(exc):
                logger.info("occupancy constraint rejected appointment %s", occupancy_key)
                raise ConflictError("time slot is already booked") from exc
            raise
        return appointment

    async def get_for_update(self, appointment_id: int) -> Appointment | None:
        stmt = select(Appointment).where(Appointment.id == appointment_id).with_for_update()
        return await self.session.scalar(stmt)

    async def get_for_user(self, appointment_id: int, user_id: int) -> Appointment | None:
        stmt = select(Appointment).where(Appointment.id == appointment_id, Appointment.user_id == user_id)
        return await self.session.scalar(stmt)

    async def list_by_user(
        self,
        user_id: int,
        status: BookingStatus | None = None,
        from_date: date | None = None,
    ) -> list[Appointment]:
        stmt = select(Appointment).where(Appointment.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Appointment.status == status)
        if from_date is not None:
            stmt = stmt.where(Appointment.appointment_date >= from_date)
        stmt = stmt.order_by(Appointment.appointment_date.desc(), Appointment.appointment_time.desc())
        return list((await self.session.scalars(stmt)).all())

    async def save(self, appointment: Appointment) -> Appointment:
        self.session.add(appointment)
        await self.session.flush()
        return appointment


class SqlAlchemyAccommodationRepository(AccommodationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, accommodation_id: int) -> AccommodationOption | None:
        return await self.session.get(AccommodationOption, accommodation_id)


class SqlAlchemyStayRepository(StayRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

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
    ) -> Stay:
        now = utc_now_naive()
        stay = Stay(
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
        self.session.add(stay)
        await self.session.flush()
        return stay

    async def get_for_update(self, stay_id: int) -> Stay | None:
        return await self.session.scalar(select(Stay).where(Stay.id == stay_id).with_for_update())

    async def list_by_user(self, user_id: int) -> list[Stay]:
        stmt = select(Stay).where(Stay.user_id == user_id).order_by(Stay.created_at.desc())
        return list((await self.session.scalars(stmt)).all())

    async def list_all(self, *, status: BookingStatus | None = None) -> list[Stay]:
        stmt = select(Stay).order_by(Stay.created_at.desc(), Stay.id.desc())
        if status is not None:
            stmt = stmt.where(Stay.status == status)
        return list((await self.session.scalars(stmt)).all())

    async def save(self, stay: Stay) -> Stay:
        self.session.add(stay)
        await self.session.flush()
        return stay


class SqlAlchemyTransitionLog(TransitionLog):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(
        self,
        *,
        record_kind: RecordKind,
        record_id: int,
        status_from: BookingStatus | None,
        status_to: BookingStatus,
        user_id: int | None,
        note: str | None = None,
    ) -> None:
        self.session.add(
            StatusTransition(
                record_kind=record_kind,
                record_id=record_id,
                status_from=status_from,
                status_to=status_to,
                note=note,
                user_id=user_id,
                created_at=utc_now_naive(),
            )
        )
        await self.session.flush()


RATED_MODELS: dict[EntityKind, type[Hospital] | type[Doctor]] = {
    EntityKind.FACILITY: Hospital,
    EntityKind.PROVIDER: Doctor,
}


class SqlAlchemyRatingRepository(RatingRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def apply(self, kind: EntityKind, entity_id: int, score: int) -> Optional[tuple[int, float]]:
        model = RATED_MODELS[kind]
        # One UPDATE so concurrent submissions cannot read the same stale pair.
        # average_rating is assigned first: MySQL evaluates SET left to right
        # and must still see the old rating_count.
        stmt = (
            update(model)
            .where(model.id == entity_id)
            .ordered_values(
                (model.average_rating, (model.average_rating * model.rating_count + score) / (model.rating_count + 1)),
                (model.rating_count, model.rating_count + 1),
                (model.updated_at, utc_now_naive()),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            return None
        # The UPDATE holds the row lock until commit, so this read is ours.
        row = (
            await self.session.execute(
                select(model.rating_count, model.average_rating)
                .where(model.id == entity_id)
            )
        ).one()
        return int(row.rating_count), float(row.average_rating)

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
    ) -> None:
        self.session.add(
            RatingObservation(
                entity_kind=kind,
                entity_id=entity_id,
                user_id=user_id,
                score=score,
                review_text=review_text,
                reviewer_name=reviewer_name,
                treatment_type=treatment_type,
                visit_date=visit_date,
                is_anonymous=is_anonymous,
                created_at=utc_now_naive(),
            )
        )
        await self.session.flush()
