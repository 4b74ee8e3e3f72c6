from ..models import BookingStatus
from .errors import InvalidTransition

OCCUPYING_STATUSES: frozenset[BookingStatus] = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})

TERMINAL_STATUSES: frozenset[BookingStatus] = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})

# Appointments and stays share one lifecycle.
ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


def is_occupying(status: BookingStatus) -> bool:
    return status in OCCUPYING_STATUSES


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: BookingStatus, target: BookingStatus) -> None:
    """Raise InvalidTransition unless `current -> target` is a legal move."""
    if not can_transition(current, target):
        raise InvalidTransition(str(current), str(target))


def releases_slot(current: BookingStatus, target: BookingStatus) -> bool:
    return is_occupying(current) and not is_occupying(target)
