import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import extract_version, get_current_user_id, get_session, get_staff_user_id
from ..domain.errors import (
    ConflictError,
    IdempotencyKeyReusedError,
    InvalidRequestError,
    InvalidTransition,
    NotFoundError,
    VersionConflictError,
)
from ..infrastructure.repositories import (
    SqlAlchemyAppointmentRepository,
    SqlAlchemyDoctorRepository,
    SqlAlchemyTransitionLog,
)
from ..models import BookingStatus
from ..schemas import AppointmentCancel, AppointmentCreate, AppointmentRead, StatusChange
from ..usecases import appointments as appointment_usecase
from ..utils.audit_log import emit_audit_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["appointments"])


def _audit_failed() -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to record audit log")


@router.post("/appointments", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    payload: AppointmentCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> AppointmentRead:
    doctor_repo = SqlAlchemyDoctorRepository(session)
    appt_repo = SqlAlchemyAppointmentRepository(session)
    transitions = SqlAlchemyTransitionLog(session)
    duration = payload.duration_minutes or get_settings().default_appointment_minutes
    async with session.begin():
        try:
            appointment = await appointment_usecase.attempt_booking(
                doctor_repo,
                appt_repo,
                transitions,
                doctor_id=payload.doctor_id,
                day=payload.appointment_date,
                slot_time=payload.appointment_time,
                duration_minutes=duration,
                user_id=user_id,
                is_telemedicine=payload.is_telemedicine,
                appointment_type=payload.appointment_type,
                notes=payload.notes,
                idempotency_key=payload.idempotency_key,
            )
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="doctor not found")
        except ConflictError:
            logger.info("slot conflict doctor=%s %s %s", payload.doctor_id, payload.appointment_date, payload.appointment_time)
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="time slot is already booked")
        except IdempotencyKeyReusedError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="idempotency key already used")
        except InvalidRequestError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    try:
        emit_audit_log(
            action="appointment.created",
            initiator="user",
            subject="appointment",
            subject_id=appointment.id,
            user_id=user_id,
            status_to=appointment.status,
            version=appointment.version,
            extra={
                "doctor_id": appointment.doctor_id,
                "appointment_date": appointment.appointment_date,
                "appointment_time": appointment.appointment_time,
                "consultation_fee": appointment.consultation_fee,
            },
        )
    except RuntimeError:
        raise _audit_failed()
    return AppointmentRead.from_db(appointment=appointment)


@router.get("/me/appointments", response_model=List[AppointmentRead])
async def list_my_appointments(
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    upcoming: bool = Query(default=False),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[AppointmentRead]:
    appt_repo = SqlAlchemyAppointmentRepository(session)
    rows = await appointment_usecase.list_user_appointments(
        appt_repo,
        user_id=user_id,
        status=status_filter,
        upcoming_only=upcoming,
    )
    return [AppointmentRead.from_db(appointment=row) for row in rows]


@router.get("/me/appointments/{appointment_id}", response_model=AppointmentRead)
async def get_my_appointment(
    appointment_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> AppointmentRead:
    appt_repo = SqlAlchemyAppointmentRepository(session)
    appointment = await appointment_usecase.get_user_appointment(
        appt_repo, appointment_id=appointment_id, user_id=user_id
    )
    if appointment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="appointment not found")
    return AppointmentRead.from_db(appointment=appointment)


@router.post("/me/appointments/{appointment_id}/cancel", response_model=AppointmentRead)
async def cancel_my_appointment(
    appointment_id: int = Path(..., ge=1),
    payload: Optional[AppointmentCancel] = Body(default=None),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> AppointmentRead:
    expected_version = extract_version(if_match, payload.version if payload else None)
    appt_repo = SqlAlchemyAppointmentRepository(session)
    transitions = SqlAlchemyTransitionLog(session)
    async with session.begin():
        try:
            updated, previous = await appointment_usecase.cancel_appointment(
                appt_repo,
                transitions,
                appointment_id=appointment_id,
                user_id=user_id,
                expected_version=expected_version,
            )
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="appointment not found")
        except VersionConflictError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="version mismatch")
        except InvalidTransition as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    try:
        emit_audit_log(
            action="appointment.status_changed",
            initiator="user",
            subject="appointment",
            subject_id=updated.id,
            user_id=user_id,
            status_from=previous,
            status_to=updated.status,
            version=updated.version,
        )
    except RuntimeError:
        raise _audit_failed()
    return AppointmentRead.from_db(appointment=updated)


@router.post("/appointments/{appointment_id}/status", response_model=AppointmentRead)
async def change_appointment_status(
    payload: StatusChange,
    appointment_id: int = Path(..., ge=1),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_staff_user_id),
) -> AppointmentRead:
    expected_version = extract_version(if_match, payload.version)
    appt_repo = SqlAlchemyAppointmentRepository(session)
    transitions = SqlAlchemyTransitionLog(session)
    async with session.begin():
        try:
            updated, previous = await appointment_usecase.transition_appointment(
                appt_repo,
                transitions,
                appointment_id=appointment_id,
                target=payload.status,
                actor_id=user_id,
                expected_version=expected_version,
                note=payload.note,
            )
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="appointment not found")
        except VersionConflictError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="version mismatch")
        except InvalidTransition as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    try:
        emit_audit_log(
            action="appointment.status_changed",
            initiator="staff",
            subject="appointment",
            subject_id=updated.id,
            user_id=user_id,
            status_from=previous,
            status_to=updated.status,
            version=updated.version,
            message=payload.note,
        )
    except RuntimeError:
        raise _audit_failed()
    return AppointmentRead.from_db(appointment=updated)
