from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import types
from sqlalchemy import ForeignKey
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship
from sqlalchemy.orm import Mapped
from sqlalchemy.schema import Index

from labres.db.models.base import ORMBase
from labres.db.models.timestamp import TimestampMixin
from labres.modules import timegrid
from labres.modules.utils import Recurrence


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from labres.db.models import Room


class ClassSchedule(TimestampMixin, ORMBase):
    """ A class taught in a room, blocking it for a timeslot on one day.

    Recurring classes are stored as one record per occurrence. All the
    occurrences created together share the same group.

    """

    __tablename__ = 'class_schedules'

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    room_id: Mapped[int] = mapped_column(ForeignKey('rooms.id'))

    subject_name: Mapped[str]

    subject_code: Mapped[str | None]

    instructor_name: Mapped[str]

    date: Mapped[date] = mapped_column(types.Date)

    start: Mapped[int]

    end: Mapped[int]

    recurrence: Mapped[Recurrence | None] = mapped_column(
        types.Enum('daily', 'weekly', 'monthly', name='class_recurrence'),
        nullable=True
    )

    recurrence_end: Mapped[date | None] = mapped_column(
        types.Date,
        nullable=True
    )

    group: Mapped[UUID] = mapped_column(types.Uuid)

    is_deleted: Mapped[bool] = mapped_column(default=False)

    room: Mapped[Room] = relationship()

    __table_args__ = (
        Index('class_schedule_room_day_ix', 'room_id', 'date'),
        Index('class_schedule_group_ix', 'group'),
    )

    def __repr__(self) -> str:
        return f'<ClassSchedule {self.subject_name!r} {self.date} {self.timeslot}>'

    @property
    def start_time(self) -> str:
        return timegrid.to_time(self.start)

    @property
    def end_time(self) -> str:
        return timegrid.to_time(self.end)

    @property
    def timeslot(self) -> str:
        return f'{self.start_time}-{self.end_time}'
