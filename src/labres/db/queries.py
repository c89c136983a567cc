from __future__ import annotations

from labres.context.core import ContextServicesMixin
from labres.db.models import ClassSchedule, Reservation
from labres.modules.lifecycle import COMMITTED
from sqlalchemy.sql import or_


from typing import TypeVar
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Collection
    from datetime import date
    from sqlalchemy.orm import Query

    from labres.context.core import Context
    from labres.db.models import Room, Workstation
    from labres.modules.lifecycle import ResourceKind, Status

_T = TypeVar('_T')


class Queries(ContextServicesMixin):
    """ Contains helper methods shared by the scheduler and its engines.

    Some contained methods require the current context (for the session).
    Some contained methods do not require any context, they are marked
    as staticmethods.

    """

    def __init__(self, context: Context):
        self.context = context

    def reservations(self, include_deleted: bool = False) -> Query[Reservation]:
        query = self.session.query(Reservation)

        if not include_deleted:
            query = query.filter(Reservation.is_deleted.is_(False))

        return query

    def class_schedules(
        self,
        include_deleted: bool = False
    ) -> Query[ClassSchedule]:
        query = self.session.query(ClassSchedule)

        if not include_deleted:
            query = query.filter(ClassSchedule.is_deleted.is_(False))

        return query

    @staticmethod
    def reservations_blocking(
        query: Query[_T],
        resource: Room | Workstation
    ) -> Query[_T]:
        """ Takes a reservation query and limits it to the reservations
        which block the given resource.

        A room is blocked by reservations of the room itself. A workstation
        is blocked by reservations of itself and of its room.

        """
        query = query.filter(Reservation.room_id == resource.room_id)

        if resource.kind == 'room':
            return query.filter(Reservation.resource_kind == 'room')

        return query.filter(or_(
            Reservation.resource_kind == 'room',
            Reservation.workstation_id == resource.id
        ))

    def committed_reservations(
        self,
        resource: Room | Workstation,
        day: date,
        exclude_reservation_id: int | None = None
    ) -> Query[Reservation]:
        """ The approved and active reservations blocking the given resource
        on the given day.

        """
        query = self.reservations()
        query = query.filter(Reservation.date == day)
        query = query.filter(Reservation.status.in_(COMMITTED))
        query = self.reservations_blocking(query, resource)

        if exclude_reservation_id is not None:
            query = query.filter(Reservation.id != exclude_reservation_id)

        return query.order_by(Reservation.start, Reservation.id)

    def class_schedules_in_room(
        self,
        room_id: int,
        day: date
    ) -> Query[ClassSchedule]:
        query = self.class_schedules()
        query = query.filter(ClassSchedule.room_id == room_id)
        query = query.filter(ClassSchedule.date == day)

        return query.order_by(ClassSchedule.start, ClassSchedule.id)

    def search_reservations(
        self,
        statuses: Collection[Status] | None = None,
        resource_kind: ResourceKind | None = None,
        holder_id: int | None = None,
        room_id: int | None = None,
        start: date | None = None,
        end: date | None = None,
        number: str | None = None,
        include_deleted: bool = False
    ) -> Query[Reservation]:
        """ Searches reservations, all given filters have to match.

        The number may be a fragment of a reservation number and is
        matched case-insensitively. Start and end are inclusive.

        """
        query = self.reservations(include_deleted=include_deleted)

        if statuses:
            query = query.filter(Reservation.status.in_(statuses))

        if resource_kind:
            query = query.filter(Reservation.resource_kind == resource_kind)

        if holder_id is not None:
            query = query.filter(Reservation.holder_id == holder_id)

        if room_id is not None:
            query = query.filter(Reservation.room_id == room_id)

        if start:
            query = query.filter(Reservation.date >= start)

        if end:
            query = query.filter(Reservation.date <= end)

        if number:
            fragment = number.strip().upper()
            query = query.filter(Reservation.number.contains(fragment))

        return query.order_by(
            Reservation.date, Reservation.start, Reservation.id
        )
