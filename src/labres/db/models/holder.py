from __future__ import annotations

from datetime import timedelta

from sqlalchemy import types
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import Mapped

from labres.db.models.base import ORMBase
from labres.db.models.timestamp import TimestampMixin
from labres.modules import utils


from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from typing_extensions import TypeAlias


HolderType: TypeAlias = Literal['student', 'faculty']


class QuotaHolder(TimestampMixin, ORMBase):
    """ Someone who makes reservations, with a balance of remaining time.

    Holders without a balance (remaining is None) are never debited. Only
    the ledger changes the balance.

    """

    __tablename__ = 'quota_holders'

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    name: Mapped[str]

    email: Mapped[str | None] = mapped_column(types.Unicode(254))

    holder_type: Mapped[HolderType] = mapped_column(
        types.Enum('student', 'faculty', name='holder_type'),
        default='student'
    )

    remaining: Mapped[timedelta | None]

    is_deleted: Mapped[bool] = mapped_column(default=False)

    def __repr__(self) -> str:
        return f'<QuotaHolder {self.id} {self.name!r}>'

    @property
    def remaining_time(self) -> str | None:
        """ The balance as HH:MM:SS. """
        if self.remaining is None:
            return None
        return utils.format_hms(self.remaining)

    @property
    def remaining_minutes(self) -> int | None:
        if self.remaining is None:
            return None
        return utils.whole_minutes(self.remaining)
