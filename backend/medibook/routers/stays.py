from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import extract_version, get_current_user_id, get_optional_user_id, get_session, get_staff_user_id
from ..domain.errors import InvalidRequestError, InvalidTransition, NotFoundError, VersionConflictError
from ..domain.services import StayRequester
from ..infrastructure.repositories import (
    SqlAlchemyAccommodationRepository,
    SqlAlchemyStayRepository,
    SqlAlchemyTransitionLog,
)
from ..models import BookingStatus
from ..schemas import StatusChange, StayCreate, StayQuoteRead, StayRead
from ..usecases import stays as stay_usecase
from ..utils.audit_log import emit_audit_log

router = APIRouter(prefix="", tags=["stays"])


def _audit_failed() -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to record audit log")


@router.get("/accommodations/{accommodation_id}/quote", response_model=StayQuoteRead)
async def quote_stay(
    accommodation_id: int = Path(..., ge=1),
    check_in: date = Query(...),
    check_out: date = Query(...),
    session: AsyncSession = Depends(get_session),
) -> StayQuoteRead:
    accom_repo = SqlAlchemyAccommodationRepository(session)
    try:
        option, quote = await stay_usecase.quote_stay(
            accom_repo,
            accommodation_id=accommodation_id,
            check_in=check_in,
            check_out=check_out,
        )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="accommodation not found")
    except InvalidRequestError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return StayQuoteRead.from_quote(option=option, check_in=check_in, check_out=check_out, quote=quote)


@router.post("/accommodation-bookings", response_model=StayRead, status_code=status.HTTP_201_CREATED)
async def create_stay(
    payload: StayCreate,
    session: AsyncSession = Depends(get_session),
    user_id: Optional[int] = Depends(get_optional_user_id),
) -> StayRead:
    requester = StayRequester(
        user_id=user_id,
        guest_name=payload.guest_name,
        guest_email=str(payload.guest_email) if payload.guest_email else None,
    )
    accom_repo = SqlAlchemyAccommodationRepository(session)
    stay_repo = SqlAlchemyStayRepository(session)
    transitions = SqlAlchemyTransitionLog(session)
    async with session.begin():
        try:
            stay = await stay_usecase.book_stay(
                accom_repo,
                stay_repo,
                transitions,
                accommodation_id=payload.accommodation_id,
                check_in=payload.check_in,
                check_out=payload.check_out,
                number_of_guests=payload.number_of_guests,
                requester=requester,
                special_requests=payload.special_requests,
                contact_phone=payload.contact_phone,
                emergency_contact=payload.emergency_contact,
            )
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="accommodation not found")
        except InvalidRequestError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    try:
        emit_audit_log(
            action="stay.created",
            initiator="guest" if requester.is_anonymous else "user",
            subject="stay",
            subject_id=stay.id,
            user_id=user_id,
            status_to=stay.status,
            version=stay.version,
            extra={"nights": stay.nights, "total_cost": stay.total_cost, "currency": stay.currency},
        )
    except RuntimeError:
        raise _audit_failed()
    return StayRead.from_db(stay=stay)


@router.get("/me/accommodation-bookings", response_model=List[StayRead])
async def list_my_stays(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[StayRead]:
    stay_repo = SqlAlchemyStayRepository(session)
    rows = await stay_usecase.list_user_stays(stay_repo, user_id=user_id)
    return [StayRead.from_db(stay=row) for row in rows]


@router.get("/admin/accommodation-bookings", response_model=List[StayRead])
async def list_all_stays(
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_staff_user_id),
) -> list[StayRead]:
    stay_repo = SqlAlchemyStayRepository(session)
    rows = await stay_usecase.list_all_stays(stay_repo, status=status_filter)
    return [StayRead.from_db(stay=row) for row in rows]


@router.post("/accommodation-bookings/{booking_id}/status", response_model=StayRead)
async def change_stay_status(
    payload: StatusChange,
    booking_id: int = Path(..., ge=1),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_staff_user_id),
) -> StayRead:
    expected_version = extract_version(if_match, payload.version)
    stay_repo = SqlAlchemyStayRepository(session)
    transitions = SqlAlchemyTransitionLog(session)
    async with session.begin():
        try:
            updated, previous = await stay_usecase.transition_stay(
                stay_repo,
                transitions,
                stay_id=booking_id,
                target=payload.status,
                actor_id=user_id,
                expected_version=expected_version,
                note=payload.note,
            )
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="accommodation booking not found")
        except VersionConflictError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="version mismatch")
        except InvalidTransition as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    try:
        emit_audit_log(
            action="stay.status_changed",
            initiator="staff",
            subject="stay",
            subject_id=updated.id,
            user_id=user_id,
            status_from=previous,
            status_to=updated.status,
            version=updated.version,
            message=payload.note,
        )
    except RuntimeError:
        raise _audit_failed()
    return StayRead.from_db(stay=updated)
