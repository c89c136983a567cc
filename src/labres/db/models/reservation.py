from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import types
from sqlalchemy import ForeignKey
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import object_session
from sqlalchemy.orm import relationship
from sqlalchemy.orm import Mapped
from sqlalchemy.schema import Index

from labres.db.models.base import ORMBase
from labres.db.models.holder import QuotaHolder
from labres.db.models.other import OtherModels
from labres.db.models.resource import Room, Workstation
from labres.db.models.timestamp import TimestampMixin
from labres.modules import timegrid
from labres.modules.lifecycle import ResourceKind, Status, STATUSES


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sedate.types import TzInfoOrName

    from labres.db.models import UsageSession


class Reservation(TimestampMixin, ORMBase, OtherModels):
    """ A request for a room or a workstation on one day.

    The booked interval is stored as minutes since midnight in the configured
    timezone. For workstation reservations the room_id is the room holding
    the workstation, so all reservations touching a room are found through
    a single column.

    """

    __tablename__ = 'reservations'

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    number: Mapped[str] = mapped_column(types.String(64), unique=True)

    holder_id: Mapped[int] = mapped_column(ForeignKey('quota_holders.id'))

    resource_kind: Mapped[ResourceKind] = mapped_column(
        types.Enum('room', 'workstation', name='resource_kind')
    )

    room_id: Mapped[int] = mapped_column(ForeignKey('rooms.id'))

    workstation_id: Mapped[int | None] = mapped_column(
        ForeignKey('workstations.id')
    )

    date: Mapped[date] = mapped_column(types.Date)

    start: Mapped[int]

    end: Mapped[int]

    duration: Mapped[int]

    purpose: Mapped[str]

    notes: Mapped[str | None]

    status: Mapped[Status] = mapped_column(
        types.Enum(*STATUSES, name='reservation_status'),
        default='pending'
    )

    approved_by: Mapped[int | None]

    approved_at: Mapped[datetime | None]

    started_at: Mapped[datetime | None]

    completed_at: Mapped[datetime | None]

    is_deleted: Mapped[bool] = mapped_column(default=False)

    holder: Mapped[QuotaHolder] = relationship()

    room: Mapped[Room] = relationship()

    workstation: Mapped[Workstation | None] = relationship()

    usage_sessions: Mapped[list[UsageSession]] = relationship(
        back_populates='reservation',
        order_by='UsageSession.id'
    )

    __table_args__ = (
        Index('reservation_room_day_ix', 'room_id', 'date', 'status'),
        Index('reservation_holder_ix', 'holder_id', 'status'),
    )

    def __repr__(self) -> str:
        return f'<Reservation {self.number} {self.status}>'

    @property
    def start_time(self) -> str:
        return timegrid.to_time(self.start)

    @property
    def end_time(self) -> str:
        return timegrid.to_time(self.end)

    @property
    def resource(self) -> Room | Workstation:
        if self.resource_kind == 'workstation':
            assert self.workstation is not None
            return self.workstation
        return self.room

    @property
    def resource_id(self) -> int:
        if self.resource_kind == 'workstation':
            assert self.workstation_id is not None
            return self.workstation_id
        return self.room_id

    def display_start(self, timezone: TzInfoOrName) -> datetime:
        return timegrid.as_local_datetime(self.date, self.start, timezone)

    def display_end(self, timezone: TzInfoOrName) -> datetime:
        return timegrid.as_local_datetime(self.date, self.end, timezone)

    @property
    def open_usage_session(self) -> UsageSession | None:
        """ The usage session which has not ended yet, if any. """

        session = object_session(self)
        assert session, "Don't call if the reservation is detached"

        UsageSession = self.models.UsageSession  # noqa: N806
        query = session.query(UsageSession)
        query = query.filter(UsageSession.reservation_id == self.id)
        query = query.filter(UsageSession.time_out.is_(None))

        return query.order_by(UsageSession.id.desc()).first()
