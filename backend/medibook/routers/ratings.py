from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_optional_user_id, get_session
from ..domain.errors import InvalidRequestError, NotFoundError
from ..infrastructure.repositories import SqlAlchemyRatingRepository
from ..models import EntityKind
from ..schemas import RatingCreate, RatingRead
from ..usecases import ratings as rating_usecase
from ..utils.audit_log import emit_audit_log

router = APIRouter(prefix="", tags=["ratings"])


async def _submit(
    *,
    kind: EntityKind,
    entity_id: int,
    payload: RatingCreate,
    session: AsyncSession,
    user_id: Optional[int],
) -> RatingRead:
    settings = get_settings()
    rating_repo = SqlAlchemyRatingRepository(session)
    async with session.begin():
        try:
            aggregate = await rating_usecase.apply_rating(
                rating_repo,
                entity_kind=kind,
                entity_id=entity_id,
                score=payload.score,
                user_id=user_id,
                review_text=payload.review_text,
                reviewer_name=payload.reviewer_name,
                treatment_type=payload.treatment_type,
                visit_date=payload.visit_date,
                is_anonymous=payload.is_anonymous,
                min_score=settings.rating_min,
                max_score=settings.rating_max,
            )
        except InvalidRequestError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        except NotFoundError:
            label = "hospital" if kind == EntityKind.FACILITY else "doctor"
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")

    try:
        emit_audit_log(
            action="rating.applied",
            initiator="user" if user_id is not None else "guest",
            subject=kind.value,
            subject_id=entity_id,
            user_id=user_id,
            extra={"score": payload.score, "rating_count": aggregate.count, "average_rating": aggregate.mean},
        )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to record audit log")
    return RatingRead(
        entity_kind=aggregate.entity_kind,
        entity_id=aggregate.entity_id,
        rating_count=aggregate.count,
        average_rating=aggregate.mean,
    )


@router.post("/hospitals/{hospital_id}/ratings", response_model=RatingRead, status_code=status.HTTP_201_CREATED)
async def rate_hospital(
    payload: RatingCreate,
    hospital_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: Optional[int] = Depends(get_optional_user_id),
) -> RatingRead:
    return await _submit(
        kind=EntityKind.FACILITY,
        entity_id=hospital_id,
        payload=payload,
        session=session,
        user_id=user_id,
    )


@router.post("/doctors/{doctor_id}/ratings", response_model=RatingRead, status_code=status.HTTP_201_CREATED)
async def rate_doctor(
    payload: RatingCreate,
    doctor_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: Optional[int] = Depends(get_optional_user_id),
) -> RatingRead:
    return await _submit(
        kind=EntityKind.PROVIDER,
        entity_id=doctor_id,
        payload=payload,
        session=session,
        user_id=user_id,
    )
