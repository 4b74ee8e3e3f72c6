"""Domain error taxonomy.

Every error here is an expected, caller-recoverable condition. Routers
translate them into HTTP responses; storage failures are never wrapped.
"""


class DomainError(Exception):
    """Base class for scheduling and booking domain errors."""


class NotFoundError(DomainError):
    """A referenced doctor, hospital, accommodation or booking does not exist."""


class ConflictError(DomainError):
    """The requested slot is already held by an occupying appointment."""


class VersionConflictError(DomainError):
    """The record changed since the caller last read it."""


class InvalidTransition(DomainError):
    """The requested status change is not allowed from the current status."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"cannot move from {current} to {target}")
        self.current = current
        self.target = target


class InvalidRequestError(DomainError):
    """Malformed input detected by the domain layer."""


class InvalidRangeError(InvalidRequestError):
    pass


class InvalidWindow(InvalidRequestError):
    pass


class InvalidScoreError(InvalidRequestError):
    pass


class InvalidSlotError(InvalidRequestError):
    pass


class MissingRequesterError(InvalidRequestError):
    pass


class IdempotencyKeyReusedError(DomainError):
    """An idempotency key was replayed with a different requester or doctor."""
