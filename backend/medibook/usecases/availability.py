from dataclasses import dataclass
from datetime import date, time

from ..domain.calendar import fits_window, generate_slots, overlaps
from ..domain.errors import InvalidSlotError, NotFoundError
from ..domain.repositories import AppointmentRepository, DoctorRepository


@dataclass(frozen=True)
class SlotAvailability:
    time: time
    is_free: bool


async def resolve_availability(
    doctor_repo: DoctorRepository,
    appt_repo: AppointmentRepository,
    *,
    doctor_id: int,
    day: date,
    duration_minutes: int | None = None,
) -> list[SlotAvailability]:
    """
    Full slot grid for the doctor on `day`, each slot flagged free or taken.
    A slot is taken when `[slot, slot + duration)` overlaps any occupying
    appointment or runs past the end of working hours. Advisory only: the booking ledger re-checks under lock.
    """
    doctor = await doctor_repo.get(doctor_id)
    if doctor is None:
        raise NotFoundError("doctor not found")
    if duration_minutes is not None and duration_minutes <= 0:
        raise InvalidSlotError("duration must be positive")
    width = duration_minutes or doctor.slot_minutes

    grid = generate_slots(doctor.available_from_hour, doctor.available_to_hour, doctor.slot_minutes)
    booked = await appt_repo.list_occupying(doctor_id, day)

    items: list[SlotAvailability] = []
    for slot in grid:
        taken = (
            not doctor.is_available
            or not fits_window(slot, width, doctor.available_from_hour, doctor.available_to_hour)
            or any(overlaps(slot, width, appt.appointment_time, appt.duration_minutes) for appt in booked)
        )
        items.append(SlotAvailability(time=slot, is_free=not taken))
    return items
