from __future__ import annotations

from labres.context.core import ContextServicesMixin
from labres.db.queries import Queries
from labres.modules import timegrid


from typing import Literal
from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import date

    from labres.context.core import Context
    from labres.db.models import ClassSchedule, Reservation
    from labres.db.models import Room, Workstation
    from labres.modules.lifecycle import ResourceKind


class Commitment(NamedTuple):
    """ Something occupying a resource for an interval of a day, either a
    reservation or a class.

    """

    source: Literal['reservation', 'class_schedule']
    id: int
    number: str | None
    resource_kind: ResourceKind
    start: int
    end: int
    status: str
    label: str
    holder_id: int | None

    @classmethod
    def from_reservation(cls, reservation: Reservation) -> Commitment:
        return cls(
            source='reservation',
            id=reservation.id,
            number=reservation.number,
            resource_kind=reservation.resource_kind,
            start=reservation.start,
            end=reservation.end,
            status=reservation.status,
            label=reservation.purpose,
            holder_id=reservation.holder_id
        )

    @classmethod
    def from_class_schedule(cls, schedule: ClassSchedule) -> Commitment:
        return cls(
            source='class_schedule',
            id=schedule.id,
            number=None,
            resource_kind='room',
            start=schedule.start,
            end=schedule.end,
            status='scheduled',
            label=schedule.subject_name,
            holder_id=None
        )

    @property
    def start_time(self) -> str:
        return timegrid.to_time(self.start)

    @property
    def end_time(self) -> str:
        return timegrid.to_time(self.end)

    def overlaps(self, start: int, end: int) -> bool:
        return timegrid.overlaps(self.start, self.end, start, end)


def overlapping(
    commitments: Iterable[Commitment],
    start: int,
    end: int
) -> list[Commitment]:
    """ Returns the commitments overlapping the given interval. """
    return [c for c in commitments if c.overlaps(start, end)]


class ConflictDetector(ContextServicesMixin):
    """ Finds the commitments standing in the way of a booking.

    A workstation is blocked by the approved and active reservations of
    itself and of its room, as well as by the classes taught in its room.
    A room is blocked by its own reservations and classes, never by the
    reservations of its workstations.

    Pending reservations never block anything. Whoever gets approved first
    gets the resource.

    """

    def __init__(self, context: Context):
        self.context = context
        self.queries = Queries(context)

    def commitments(
        self,
        resource: Room | Workstation,
        day: date,
        exclude_reservation_id: int | None = None
    ) -> list[Commitment]:
        """ Returns all commitments blocking the given resource on the given
        day, ordered by start.

        """
        reservations = self.queries.committed_reservations(
            resource, day, exclude_reservation_id
        )
        classes = self.queries.class_schedules_in_room(resource.room_id, day)

        result = [Commitment.from_reservation(r) for r in reservations]
        result.extend(Commitment.from_class_schedule(c) for c in classes)
        result.sort(key=lambda c: (c.start, c.end, c.source, c.id))

        return result

    def conflicting_commitments(
        self,
        resource: Room | Workstation,
        day: date,
        start: int,
        end: int,
        exclude_reservation_id: int | None = None
    ) -> list[Commitment]:
        """ Returns the commitments overlapping the given interval. The
        given reservation id is ignored, which allows to check a reservation
        against everything but itself.

        """
        assert start < end

        return overlapping(
            self.commitments(resource, day, exclude_reservation_id),
            start, end
        )

    def has_conflict(
        self,
        resource: Room | Workstation,
        day: date,
        start: int,
        end: int,
        exclude_reservation_id: int | None = None
    ) -> bool:
        return bool(self.conflicting_commitments(
            resource, day, start, end, exclude_reservation_id
        ))
