from __future__ import annotations

from labres.db.models.base import ORMBase
from labres.db.models.resource import Room, Workstation
from labres.db.models.holder import QuotaHolder
from labres.db.models.reservation import Reservation
from labres.db.models.class_schedule import ClassSchedule
from labres.db.models.usage_session import UsageSession
from labres.db.models.lock import ScheduleLock, QuotaReset


__all__ = (
    'ORMBase',
    'ClassSchedule',
    'QuotaHolder',
    'QuotaReset',
    'Reservation',
    'Room',
    'ScheduleLock',
    'UsageSession',
    'Workstation',
)
