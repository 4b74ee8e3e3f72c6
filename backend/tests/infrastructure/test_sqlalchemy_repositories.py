from datetime import date, time

import pytest
from medibook.domain.errors import ConflictError
from medibook.domain.services import StayRequester
from medibook.infrastructure.repositories import (
    SqlAlchemyAccommodationRepository,
    SqlAlchemyAppointmentRepository,
    SqlAlchemyDoctorRepository,
    SqlAlchemyRatingRepository,
    SqlAlchemyStayRepository,
    SqlAlchemyTransitionLog,
)
from medibook.models import Appointment, BookingStatus, EntityKind, Hospital, RatingObservation, StatusTransition
from medibook.usecases import appointments as appt_usecase
from medibook.usecases import ratings as rating_usecase
from medibook.usecases import stays as stay_usecase
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

DAY = date(2024, 6, 1)


async def _book(factory, *, at: time, user_id: int, idempotency_key: str | None = None) -> Appointment:
    async with factory() as session, session.begin():
        return await appt_usecase.attempt_booking(
            SqlAlchemyDoctorRepository(session),
            SqlAlchemyAppointmentRepository(session),
            SqlAlchemyTransitionLog(session),
            doctor_id=1,
            day=DAY,
            slot_time=at,
            duration_minutes=30,
            user_id=user_id,
            idempotency_key=idempotency_key,
        )


@pytest.mark.asyncio
async def test_book_conflict_cancel_rebook_against_database(session_factory) -> None:
    first = await _book(session_factory, at=time(10, 0), user_id=101)
    assert first.occupancy_key == "1:2024-06-01:10:00"

    with pytest.raises(ConflictError):
        await _book(session_factory, at=time(10, 0), user_id=102)

    async with session_factory() as session, session.begin():
        cancelled, previous = await appt_usecase.cancel_appointment(
            SqlAlchemyAppointmentRepository(session),
            SqlAlchemyTransitionLog(session),
            appointment_id=first.id,
            user_id=101,
        )
    assert previous == BookingStatus.PENDING
    assert cancelled.occupancy_key is None

    again = await _book(session_factory, at=time(10, 0), user_id=103)
    assert again.id != first.id

    async with session_factory() as session:
        rows = (await session.scalars(select(Appointment).order_by(Appointment.id))).all()
        logged = await session.scalar(select(func.count()).select_from(StatusTransition))
    assert [(row.status, row.occupancy_key) for row in rows] == [
        (BookingStatus.CANCELLED, None),
        (BookingStatus.PENDING, "1:2024-06-01:10:00"),
    ]
    assert logged == 3


@pytest.mark.asyncio
async def test_occupancy_key_collision_keeps_outer_transaction_usable(session_factory) -> None:
    await _book(session_factory, at=time(11, 0), user_id=101)

    async with session_factory() as session, session.begin():
        doctor = await SqlAlchemyDoctorRepository(session).get(1)
        repo = SqlAlchemyAppointmentRepository(session)
        params = dict(
            doctor=doctor,
            user_id=102,
            appointment_type="consultation",
            appointment_date=DAY,
            duration_minutes=30,
            is_telemedicine=False,
            notes=None,
            idempotency_key=None,
        )
        with pytest.raises(ConflictError):
            await repo.create(appointment_time=time(11, 0), occupancy_key="1:2024-06-01:11:00", **params)
        created = await repo.create(appointment_time=time(12, 0), occupancy_key="1:2024-06-01:12:00", **params)

    async with session_factory() as session:
        stored = await session.get(Appointment, created.id)
    assert stored is not None
    assert stored.user_id == 102


@pytest.mark.asyncio
async def test_duplicate_idempotency_key_is_not_a_slot_conflict(session_factory) -> None:
    await _book(session_factory, at=time(9, 0), user_id=101, idempotency_key="req-0001")

    async with session_factory() as session:
        with pytest.raises(IntegrityError):
            async with session.begin():
                doctor = await SqlAlchemyDoctorRepository(session).get(1)
                await SqlAlchemyAppointmentRepository(session).create(
                    doctor=doctor,
                    user_id=101,
                    appointment_type="consultation",
                    appointment_date=DAY,
                    appointment_time=time(9, 30),
                    duration_minutes=30,
                    is_telemedicine=False,
                    notes=None,
                    idempotency_key="req-0001",
                    occupancy_key="1:2024-06-01:09:30",
                )


@pytest.mark.asyncio
async def test_replayed_idempotency_key_returns_stored_booking(session_factory) -> None:
    first = await _book(session_factory, at=time(14, 0), user_id=101, idempotency_key="req-0002")
    again = await _book(session_factory, at=time(14, 0), user_id=101, idempotency_key="req-0002")
    assert again.id == first.id


async def _rate(factory, score: int, *, kind: EntityKind = EntityKind.FACILITY, entity_id: int = 7):
    async with factory() as session, session.begin():
        return await rating_usecase.apply_rating(
            SqlAlchemyRatingRepository(session),
            entity_kind=kind,
            entity_id=entity_id,
            score=score,
            user_id=5,
        )


@pytest.mark.asyncio
async def test_rating_update_keeps_exact_running_mean(session_factory) -> None:
    result = None
    for score in (5, 3, 2, 3):
        result = await _rate(session_factory, score)
    assert result is not None
    assert result.count == 4
    assert result.mean == pytest.approx(3.25)

    async with session_factory() as session:
        hospital = await session.get(Hospital, 7)
        logged = await session.scalar(select(func.count()).select_from(RatingObservation))
    assert hospital is not None
    assert hospital.rating_count == 4
    assert hospital.average_rating == pytest.approx(3.25)
    assert logged == 4


@pytest.mark.asyncio
async def test_rating_update_ignores_stale_loaded_row(session_factory) -> None:
    async with session_factory() as stale_session:
        async with stale_session.begin():
            stale = await stale_session.get(Hospital, 7)
        assert stale is not None
        assert stale.rating_count == 0

        await _rate(session_factory, 4)

        async with stale_session.begin():
            result = await rating_usecase.apply_rating(
                SqlAlchemyRatingRepository(stale_session),
                entity_kind=EntityKind.FACILITY,
                entity_id=7,
                score=2,
                user_id=6,
            )
    assert result.count == 2
    assert result.mean == pytest.approx(3.0)


@pytest.mark.asyncio
async def test_rating_unknown_entity_returns_none(session_factory) -> None:
    async with session_factory() as session, session.begin():
        assert await SqlAlchemyRatingRepository(session).apply(EntityKind.PROVIDER, 404, 3) is None


@pytest.mark.asyncio
async def test_stays_round_trip_with_contacts_and_staff_listing(session_factory) -> None:
    async with session_factory() as session, session.begin():
        stay = await stay_usecase.book_stay(
            SqlAlchemyAccommodationRepository(session),
            SqlAlchemyStayRepository(session),
            SqlAlchemyTransitionLog(session),
            accommodation_id=3,
            check_in=date(2024, 7, 1),
            check_out=date(2024, 7, 4),
            number_of_guests=2,
            requester=StayRequester(guest_name="Asha", guest_email="asha@example.com"),
            contact_phone="+91 98450 00000",
            emergency_contact="Meera",
        )

    async with session_factory() as session:
        everything = await stay_usecase.list_all_stays(SqlAlchemyStayRepository(session))
        confirmed = await stay_usecase.list_all_stays(SqlAlchemyStayRepository(session), status=BookingStatus.CONFIRMED)
    assert [row.id for row in everything] == [stay.id]
    assert everything[0].contact_phone == "+91 98450 00000"
    assert everything[0].total_cost == stay.total_cost
    assert confirmed == []
