from __future__ import annotations

from sqlalchemy import types
from sqlalchemy import ForeignKey
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship
from sqlalchemy.orm import Mapped
from sqlalchemy.schema import UniqueConstraint

from labres.db.models.base import ORMBase
from labres.db.models.timestamp import TimestampMixin
from labres.modules.lifecycle import ResourceKind


from typing import ClassVar
from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from typing_extensions import TypeAlias


RoomStatus: TypeAlias = Literal['active', 'inactive', 'maintenance']
WorkstationStatus: TypeAlias = Literal[
    'available', 'occupied', 'maintenance', 'out_of_order', 'reserved', 'locked'
]

ROOM_STATUSES: tuple[RoomStatus, ...] = ('active', 'inactive', 'maintenance')
WORKSTATION_STATUSES: tuple[WorkstationStatus, ...] = (
    'available', 'occupied', 'maintenance', 'out_of_order', 'reserved', 'locked'
)


def room_lock_key(room_id: int) -> str:
    return f'room:{room_id}'


def workstation_lock_key(workstation_id: int) -> str:
    return f'workstation:{workstation_id}'


class Room(TimestampMixin, ORMBase):
    """ A laboratory. Booking a room blocks every workstation inside it. """

    __tablename__ = 'rooms'

    kind: ClassVar[ResourceKind] = 'room'

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    name: Mapped[str] = mapped_column(unique=True)

    status: Mapped[RoomStatus] = mapped_column(
        types.Enum(*ROOM_STATUSES, name='room_status'),
        default='active'
    )

    notes: Mapped[str | None]

    is_deleted: Mapped[bool] = mapped_column(default=False)

    workstations: Mapped[list[Workstation]] = relationship(
        back_populates='room',
        order_by='Workstation.label'
    )

    def __repr__(self) -> str:
        return f'<Room {self.id} {self.name!r}>'

    @property
    def room_id(self) -> int:
        return self.id

    @property
    def lock_keys(self) -> frozenset[str]:
        return frozenset((room_lock_key(self.id), ))

    @property
    def is_reservable(self) -> bool:
        return self.status == 'active' and not self.is_deleted

    @property
    def title(self) -> str:
        return self.name


class Workstation(TimestampMixin, ORMBase):
    """ A computer inside a room. Its bookings never block the room. """

    __tablename__ = 'workstations'

    kind: ClassVar[ResourceKind] = 'workstation'

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    room_id: Mapped[int] = mapped_column(ForeignKey('rooms.id'))

    label: Mapped[str]

    status: Mapped[WorkstationStatus] = mapped_column(
        types.Enum(*WORKSTATION_STATUSES, name='workstation_status'),
        default='available'
    )

    notes: Mapped[str | None]

    is_deleted: Mapped[bool] = mapped_column(default=False)

    room: Mapped[Room] = relationship(back_populates='workstations')

    __table_args__ = (
        UniqueConstraint('room_id', 'label', name='workstation_label_uq'),
    )

    def __repr__(self) -> str:
        return f'<Workstation {self.id} {self.label!r} in room {self.room_id}>'

    @property
    def lock_keys(self) -> frozenset[str]:
        return frozenset((
            room_lock_key(self.room_id),
            workstation_lock_key(self.id)
        ))

    @property
    def is_reservable(self) -> bool:
        if self.is_deleted:
            return False

        return self.status not in ('maintenance', 'out_of_order')

    @property
    def title(self) -> str:
        return f'{self.room.name} / {self.label}'
