from __future__ import annotations

import re
import secrets

from datetime import date, datetime, timedelta
from dateutil.rrule import rrule, DAILY, WEEKLY, MONTHLY

from labres.modules import errors


from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from typing_extensions import TypeAlias


Recurrence: TypeAlias = Literal['daily', 'weekly', 'monthly']
RECURRENCE_MAP = {
    'daily': DAILY,
    'weekly': WEEKLY,
    'monthly': MONTHLY
}

# no 0/O and 1/I, the numbers are read out loud over the counter
RESERVATION_NUMBER_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'

_hms_expression = re.compile(r'^(\d+):([0-5]\d):([0-5]\d)$')


def new_reservation_number(prefix: str = 'RSV-', length: int = 8) -> str:
    return prefix + ''.join(
        secrets.choice(RESERVATION_NUMBER_ALPHABET) for _ in range(length)
    )


def parse_hms(value: str) -> timedelta:
    """ Parses the ``HH:MM:SS`` format used to present balances. Hours may
    exceed 24.

    """
    match = _hms_expression.match(value.strip()) if value else None

    if not match:
        raise errors.MalformedTime(value)

    hours, minutes, seconds = (int(g) for g in match.groups())
    return timedelta(hours=hours, minutes=minutes, seconds=seconds)


def format_hms(value: timedelta) -> str:
    """ Formats a non-negative timedelta as ``HH:MM:SS``. Fractions of a
    second are dropped.

    """
    assert value >= timedelta(0), 'Balances are never negative'

    seconds = int(value.total_seconds())
    return '{:02d}:{:02d}:{:02d}'.format(
        seconds // 3600,
        seconds % 3600 // 60,
        seconds % 60
    )


def as_timedelta(value: timedelta | int | str) -> timedelta:
    """ Coerces minutes or an ``HH:MM:SS`` string into a timedelta. """

    if isinstance(value, timedelta):
        return value

    if isinstance(value, bool):
        raise errors.InvalidDuration(value)

    if isinstance(value, int):
        return timedelta(minutes=value)

    return parse_hms(value)


def whole_minutes(value: timedelta) -> int:
    return int(value.total_seconds()) // 60


def expand_recurrence(
    start: date,
    recurrence: Recurrence | None = None,
    until: date | None = None
) -> list[date]:
    """ Returns the dates of a recurring event, starting with ``start``
    and ending on or before ``until``.

    Monthly recurrences skip months which do not have the start's day
    (a class on the 31st does not happen in April).

    """

    if recurrence is None:
        return [start]

    if recurrence not in RECURRENCE_MAP:
        raise errors.InvalidRecurrence(recurrence)

    if until is None or until < start:
        raise errors.InvalidRecurrence(until)

    return [
        dt.date() for dt in rrule(
            RECURRENCE_MAP[recurrence],
            dtstart=datetime.combine(start, datetime.min.time()),
            until=datetime.combine(until, datetime.min.time())
        )
    ]
