from __future__ import annotations

from datetime import date, datetime, timedelta

from sqlalchemy import types
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import Mapped

from labres.db.models.base import ORMBase


class ScheduleLock(ORMBase):
    """ One row per resource and day, locked by every writer which checks
    for conflicts before writing.

    Two writers for the same room or workstation on the same day queue on
    this row, writers for other resources or days never meet.

    """

    __tablename__ = 'schedule_locks'

    resource_key: Mapped[str] = mapped_column(
        types.String(64),
        primary_key=True
    )

    date: Mapped[date] = mapped_column(types.Date, primary_key=True)

    version: Mapped[int] = mapped_column(default=0)


class QuotaReset(ORMBase):
    """ Marks a reset of the quota balances as applied for a period. """

    __tablename__ = 'quota_resets'

    period: Mapped[str] = mapped_column(types.String(64), primary_key=True)

    remaining: Mapped[timedelta]

    holders: Mapped[int] = mapped_column(default=0)

    applied_at: Mapped[datetime]
