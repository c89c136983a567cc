from __future__ import annotations

from datetime import date

from sqlalchemy import types
from sqlalchemy import ForeignKey
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship
from sqlalchemy.orm import Mapped
from sqlalchemy.schema import Index

from labres.db.models.base import ORMBase
from labres.db.models.timestamp import TimestampMixin
from labres.modules import timegrid


from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from typing_extensions import TypeAlias

    from labres.db.models import Reservation


SessionStatus: TypeAlias = Literal[
    'active', 'completed', 'interrupted', 'overtime'
]

SESSION_STATUSES: tuple[SessionStatus, ...] = (
    'active', 'completed', 'interrupted', 'overtime'
)


class UsageSession(TimestampMixin, ORMBase):
    """ The time someone actually spent on a reserved resource.

    A session is opened when a reservation is started and closed when it
    is completed or cancelled. Closing it debits the holder's balance.

    """

    __tablename__ = 'usage_sessions'

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    reservation_id: Mapped[int] = mapped_column(ForeignKey('reservations.id'))

    holder_id: Mapped[int] = mapped_column(ForeignKey('quota_holders.id'))

    date: Mapped[date] = mapped_column(types.Date)

    time_in: Mapped[int]

    time_out: Mapped[int | None]

    duration: Mapped[int] = mapped_column(default=0)

    purpose: Mapped[str | None]

    status: Mapped[SessionStatus] = mapped_column(
        types.Enum(*SESSION_STATUSES, name='usage_session_status'),
        default='active'
    )

    approved_by: Mapped[int | None]

    notes: Mapped[str | None]

    reservation: Mapped[Reservation] = relationship(
        back_populates='usage_sessions'
    )

    __table_args__ = (
        Index('usage_session_reservation_ix', 'reservation_id'),
        Index('usage_session_holder_day_ix', 'holder_id', 'date'),
    )

    def __repr__(self) -> str:
        return f'<UsageSession {self.id} {self.status}>'

    @property
    def is_open(self) -> bool:
        return self.time_out is None

    @property
    def time_in_display(self) -> str:
        return timegrid.to_time(self.time_in)

    @property
    def time_out_display(self) -> str | None:
        if self.time_out is None:
            return None
        return timegrid.to_time(self.time_out)
