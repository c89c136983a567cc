from __future__ import annotations

from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Sequence
    from labres.db.conflicts import Commitment
    from labres.db.models import Reservation


class LabresError(Exception):
    __slots__ = ('reservation',)
    reservation: Reservation
    """
    This attribute is not guaranteed to exist
    """


class ContextAlreadyExists(LabresError):
    pass


class UnknownContext(LabresError):
    pass


class ContextIsLocked(LabresError):
    pass


class UnknownService(LabresError):
    pass


class ValidationError(LabresError):
    """ The request is malformed. Always fixable by the caller, never
    retried internally.

    """


class MalformedTime(ValidationError):
    pass


class MalformedDate(ValidationError):
    pass


class InvalidDuration(ValidationError):
    pass


class MissingField(ValidationError):
    pass


class ReservationInPast(ValidationError):
    pass


class ResourceNotReservable(ValidationError):
    pass


class QuotaExceeded(ValidationError):
    pass


class InvalidRecurrence(ValidationError):
    pass


class ConflictError(LabresError):
    """ An overlapping committed booking exists. The conflicting
    commitments are available as ``conflicts``.

    """

    __slots__ = ('conflicts',)

    def __init__(self, conflicts: Sequence[Commitment]):
        super().__init__(conflicts)
        self.conflicts = list(conflicts)


class OverlappingScheduleError(ConflictError):
    pass


class InvalidTransitionError(LabresError):

    __slots__ = ('status', 'action')

    def __init__(self, status: str, action: str):
        super().__init__(f'Cannot {action} a reservation that is {status}')
        self.status = status
        self.action = action


class NotFoundError(LabresError):
    pass


class PermissionDeniedError(LabresError):
    pass


class RateLimitedError(LabresError):

    __slots__ = ('key', 'retry_after')

    def __init__(self, key: str, retry_after: float):
        super().__init__(key, retry_after)
        self.key = key
        self.retry_after = retry_after
