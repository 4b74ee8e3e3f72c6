from datetime import date

from ..domain.errors import NotFoundError, VersionConflictError
from ..domain.repositories import AccommodationRepository, StayRepository, TransitionLog
from ..domain.services import StayQuote, StayRequester, compute_stay_cost, validate_guest_count
from ..domain.state_machine import ensure_transition
from ..models import AccommodationOption, BookingStatus, RecordKind, Stay
from ..utils.time import utc_now_naive


async def _active_option(accom_repo: AccommodationRepository, accommodation_id: int) -> AccommodationOption:
    option = await accom_repo.get(accommodation_id)
    if option is None or not option.is_active:
        raise NotFoundError("accommodation not found")
    return option


async def quote_stay(
    accom_repo: AccommodationRepository,
    *,
    accommodation_id: int,
    check_in: date,
    check_out: date,
) -> tuple[AccommodationOption, StayQuote]:
    option = await _active_option(accom_repo, accommodation_id)
    return option, compute_stay_cost(check_in, check_out, option.price_per_night)


async def book_stay(
    accom_repo: AccommodationRepository,
    stay_repo: StayRepository,
    transitions: TransitionLog,
    *,
    accommodation_id: int,
    check_in: date,
    check_out: date,
    number_of_guests: int,
    requester: StayRequester,
    special_requests: str | None = None,
    contact_phone: str | None = None,
    emergency_contact: str | None = None,
) -> Stay:
    requester.validate()
    option = await _active_option(accom_repo, accommodation_id)
    validate_guest_count(number_of_guests, max_guests=option.max_guests)
    quote = compute_stay_cost(check_in, check_out, option.price_per_night)

    stay = await stay_repo.create(
        accommodation=option,
        user_id=requester.user_id,
        guest_name=requester.guest_name if requester.is_anonymous else None,
        guest_email=requester.guest_email if requester.is_anonymous else None,
        check_in_date=check_in,
        check_out_date=check_out,
        number_of_guests=number_of_guests,
        nightly_rate=quote.nightly_rate,
        nights=quote.nights,
        total_cost=quote.total_cost,
        special_requests=special_requests,
        contact_phone=contact_phone,
        emergency_contact=emergency_contact,
    )
    await transitions.record(
        record_kind=RecordKind.STAY,
        record_id=stay.id,
        status_from=None,
        status_to=stay.status,
        user_id=requester.user_id,
    )
    return stay


async def transition_stay(
    stay_repo: StayRepository,
    transitions: TransitionLog,
    *,
    stay_id: int,
    target: BookingStatus,
    actor_id: int | None,
    expected_version: int | None = None,
    note: str | None = None,
) -> tuple[Stay, BookingStatus]:
    stay = await stay_repo.get_for_update(stay_id)
    if stay is None:
        raise NotFoundError("accommodation booking not found")
    if expected_version is not None and stay.version != expected_version:
        raise VersionConflictError("version mismatch")

    previous = stay.status
    ensure_transition(previous, target)

    stay.status = target
    if note is not None:
        stay.admin_notes = note
    stay.version += 1
    stay.updated_at = utc_now_naive()
    updated = await stay_repo.save(stay)
    await transitions.record(
        record_kind=RecordKind.STAY,
        record_id=updated.id,
        status_from=previous,
        status_to=target,
        user_id=actor_id,
        note=note,
    )
    return updated, previous


async def list_user_stays(stay_repo: StayRepository, *, user_id: int) -> list[Stay]:
    return await stay_repo.list_by_user(user_id)


async def list_all_stays(stay_repo: StayRepository, *, status: BookingStatus | None = None) -> list[Stay]:
    """Every accommodation booking, newest first; staff view."""
    return await stay_repo.list_all(status=status)
