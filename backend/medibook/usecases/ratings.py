from dataclasses import dataclass
from datetime import date

from ..domain.errors import MissingRequesterError, NotFoundError
from ..domain.repositories import RatingRepository
from ..domain.services import validate_score
from ..models import EntityKind


@dataclass(frozen=True)
class RatingAggregate:
    entity_kind: EntityKind
    entity_id: int
    count: int
    mean: float


async def apply_rating(
    rating_repo: RatingRepository,
    *,
    entity_kind: EntityKind,
    entity_id: int,
    score: int,
    user_id: int | None = None,
    review_text: str | None = None,
    reviewer_name: str | None = None,
    treatment_type: str | None = None,
    visit_date: date | None = None,
    is_anonymous: bool = False,
    min_score: int = 1,
    max_score: int = 5,
) -> RatingAggregate:
    """Fold one score into the entity's running mean and log the observation."""
    validate_score(score, minimum=min_score, maximum=max_score)
    # Doctor reviews are attributed; hospital ratings may be fully anonymous.
    if entity_kind == EntityKind.PROVIDER and user_id is None and not reviewer_name:
        raise MissingRequesterError("reviewer_name is required for anonymous doctor reviews")
    updated = await rating_repo.apply(entity_kind, entity_id, score)
    if updated is None:
        raise NotFoundError(f"{entity_kind} not found")
    await rating_repo.record_observation(
        kind=entity_kind,
        entity_id=entity_id,
        score=score,
        user_id=user_id,
        review_text=review_text,
        reviewer_name=reviewer_name,
        treatment_type=treatment_type,
        visit_date=visit_date,
        is_anonymous=is_anonymous,
    )
    count, mean = updated
    return RatingAggregate(entity_kind=entity_kind, entity_id=entity_id, count=count, mean=mean)
