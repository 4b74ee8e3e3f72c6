from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session
from ..domain.errors import InvalidRequestError, NotFoundError
from ..infrastructure.repositories import SqlAlchemyAppointmentRepository, SqlAlchemyDoctorRepository
from ..schemas import AvailabilityRead, SlotRead
from ..usecases import availability as availability_usecase

router = APIRouter(prefix="/doctors", tags=["doctors"])


@router.get("/{doctor_id}/availability", response_model=AvailabilityRead)
async def get_availability(
    doctor_id: int = Path(..., ge=1),
    day: date = Query(..., alias="date", description="Calendar date (YYYY-MM-DD)"),
    duration: Optional[int] = Query(default=None, ge=1, description="Desired appointment length in minutes"),
    session: AsyncSession = Depends(get_session),
) -> AvailabilityRead:
    doctor_repo = SqlAlchemyDoctorRepository(session)
    appt_repo = SqlAlchemyAppointmentRepository(session)
    try:
        slots = await availability_usecase.resolve_availability(
            doctor_repo,
            appt_repo,
            doctor_id=doctor_id,
            day=day,
            duration_minutes=duration,
        )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="doctor not found")
    except InvalidRequestError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    return AvailabilityRead(
        doctor_id=doctor_id,
        day=day,
        slots=[SlotRead(slot_time=slot.time, available=slot.is_free) for slot in slots],
    )
