from datetime import date, time

from ..domain.calendar import occupancy_key
from ..domain.errors import IdempotencyKeyReusedError, NotFoundError, VersionConflictError
from ..domain.repositories import AppointmentRepository, DoctorRepository, TransitionLog
from ..domain.services import BookedInterval, ProviderSnapshot, validate_booking
from ..domain.state_machine import ensure_transition, releases_slot
from ..models import Appointment, BookingStatus, RecordKind
from ..utils.time import utc_now_naive


async def attempt_booking(
    doctor_repo: DoctorRepository,
    appt_repo: AppointmentRepository,
    transitions: TransitionLog,
    *,
    doctor_id: int,
    day: date,
    slot_time: time,
    duration_minutes: int,
    user_id: int | None,
    is_telemedicine: bool = False,
    appointment_type: str = "consultation",
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> Appointment:
    """
    Book `[slot_time, slot_time + duration)` with the doctor on `day`.

    Must run inside a transaction. The doctor row is locked first so the
    overlap check and the insert are not interleaved with another attempt;
    the unique occupancy key on the appointment row backs this up.
    """
    doctor = await doctor_repo.get_for_update(doctor_id)
    if doctor is None:
        raise NotFoundError("doctor not found")

    if idempotency_key is not None:
        existing = await appt_repo.get_by_idempotency_key(idempotency_key)
        if existing is not None:
            if existing.user_id != user_id or existing.doctor_id != doctor_id:
                raise IdempotencyKeyReusedError("idempotency key already used for another booking")
            return existing

    occupied = await appt_repo.list_occupying(doctor_id, day)
    snapshot = ProviderSnapshot(
        is_available=doctor.is_available,
        telemedicine_available=doctor.telemedicine_available,
        window_start_hour=doctor.available_from_hour,
        window_end_hour=doctor.available_to_hour,
        slot_minutes=doctor.slot_minutes,
    )
    validate_booking(
        snapshot,
        [BookedInterval(starts_at=a.appointment_time, duration_minutes=a.duration_minutes) for a in occupied],
        slot_time=slot_time,
        duration_minutes=duration_minutes,
        is_telemedicine=is_telemedicine,
    )

    appointment = await appt_repo.create(
        doctor=doctor,
        user_id=user_id,
        appointment_type=appointment_type,
        appointment_date=day,
        appointment_time=slot_time,
        duration_minutes=duration_minutes,
        is_telemedicine=is_telemedicine,
        notes=notes,
        idempotency_key=idempotency_key,
        occupancy_key=occupancy_key(doctor_id, day, slot_time),
    )
    await transitions.record(
        record_kind=RecordKind.APPOINTMENT,
        record_id=appointment.id,
        status_from=None,
        status_to=appointment.status,
        user_id=user_id,
    )
    return appointment


async def transition_appointment(
    appt_repo: AppointmentRepository,
    transitions: TransitionLog,
    *,
    appointment_id: int,
    target: BookingStatus,
    actor_id: int | None,
    expected_version: int | None = None,
    owner_id: int | None = None,
    note: str | None = None,
) -> tuple[Appointment, BookingStatus]:
    """Move an appointment to `target`. Returns the updated row and its previous status."""
    appointment = await appt_repo.get_for_update(appointment_id)
    if appointment is None or (owner_id is not None and appointment.user_id != owner_id):
        raise NotFoundError("appointment not found")
    if expected_version is not None and appointment.version != expected_version:
        raise VersionConflictError("version mismatch")

    previous = appointment.status
    ensure_transition(previous, target)

    appointment.status = target
    if releases_slot(previous, target):
        appointment.occupancy_key = None
    appointment.version += 1
    appointment.updated_at = utc_now_naive()
    updated = await appt_repo.save(appointment)
    await transitions.record(
        record_kind=RecordKind.APPOINTMENT,
        record_id=updated.id,
        status_from=previous,
        status_to=target,
        user_id=actor_id,
        note=note,
    )
    return updated, previous


async def cancel_appointment(
    appt_repo: AppointmentRepository,
    transitions: TransitionLog,
    *,
    appointment_id: int,
    user_id: int,
    expected_version: int | None = None,
) -> tuple[Appointment, BookingStatus]:
    return await transition_appointment(
        appt_repo,
        transitions,
        appointment_id=appointment_id,
        target=BookingStatus.CANCELLED,
        actor_id=user_id,
        expected_version=expected_version,
        owner_id=user_id,
    )


async def list_user_appointments(
    appt_repo: AppointmentRepository,
    *,
    user_id: int,
    status: BookingStatus | None = None,
    upcoming_only: bool = False,
) -> list[Appointment]:
    from_date = utc_now_naive().date() if upcoming_only else None
    return await appt_repo.list_by_user(user_id, status=status, from_date=from_date)


async def get_user_appointment(
    appt_repo: AppointmentRepository,
    *,
    appointment_id: int,
    user_id: int,
) -> Appointment | None:
    return await appt_repo.get_for_user(appointment_id, user_id)
