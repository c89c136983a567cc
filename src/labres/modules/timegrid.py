""" The timegrid module converts wall-clock values into minutes since midnight
and builds the slot grid of a resource's day.

Reservations never cross midnight, so a whole day fits into the integers
between 0 and 1439. Two intervals on that grid are always half-open, which
means that back-to-back bookings (10:00-11:00 and 11:00-12:00) never touch.

All interpretation of "today" and "now" happens in the configured timezone,
never in the timezone of the running process. The server and the people
operating the laboratories may well be in different places.

"""
from __future__ import annotations

import re
import sedate

from datetime import date, datetime, time, timedelta

from labres.modules import errors


from typing import Final
from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Iterator
    from sedate.types import TzInfoOrName
    from typing_extensions import TypeAlias


ALL_DAY: Final = 'all-day'
AllDay: TypeAlias = Literal['all-day']

MINUTES_PER_DAY = 24 * 60

_time_expression = re.compile(r'^([01]?[0-9]|2[0-3]):([0-5][0-9])$')


def to_minutes(value: str | time) -> int:
    """ Parses a 24-hour ``HH:MM`` value (or a :class:`datetime.time`) into
    minutes since midnight.

    """
    if isinstance(value, time):
        return value.hour * 60 + value.minute

    if not isinstance(value, str):
        raise errors.MalformedTime(value)

    match = _time_expression.match(value.strip())

    if not match:
        raise errors.MalformedTime(value)

    return int(match.group(1)) * 60 + int(match.group(2))


def to_time(minutes: int) -> str:
    """ Formats minutes since midnight as ``HH:MM``. """

    if not 0 <= minutes < MINUTES_PER_DAY:
        raise errors.MalformedTime(minutes)

    return f'{minutes // 60:02d}:{minutes % 60:02d}'


def parse_timeslot(timeslot: str) -> tuple[int, int]:
    """ Parses a timeslot like '08:00-10:00' or '16:55 - 17:55'. """

    parts = timeslot.split('-') if isinstance(timeslot, str) else ()

    if len(parts) != 2:
        raise errors.MalformedTime(timeslot)

    start, end = to_minutes(parts[0]), to_minutes(parts[1])

    if end <= start:
        raise errors.MalformedTime(timeslot)

    return start, end


def overlaps(start: int, end: int, otherstart: int, otherend: int) -> bool:
    """ Returns True if the two half-open intervals overlap.

    This is the only overlap test used in labres. Intervals sharing just
    a boundary do not overlap.

    """
    return start < otherend and otherstart < end


def validate_duration(
    duration: int | AllDay,
    minimum: int,
    maximum: int
) -> int | AllDay:
    """ Returns the duration if it is the all-day duration or a whole
    number of minutes within the given bounds.

    """
    if duration == ALL_DAY:
        return ALL_DAY

    if isinstance(duration, bool) or not isinstance(duration, int):
        raise errors.InvalidDuration(duration)

    if not minimum <= duration <= maximum:
        raise errors.InvalidDuration(duration)

    return duration


def slot_boundaries(
    day_start: int,
    day_end: int,
    duration: int | AllDay
) -> Iterator[tuple[int, int]]:
    """ Yields the half-open slots of the given duration between day_start
    and day_end. A trailing slot which would exceed day_end is left out.

    The all-day duration results in a single slot spanning the whole window.

    """

    assert day_start < day_end

    if duration == ALL_DAY:
        yield day_start, day_end
        return

    assert isinstance(duration, int) and duration > 0

    start = day_start
    while start + duration <= day_end:
        yield start, start + duration
        start += duration


def local_now(now: datetime, timezone: TzInfoOrName) -> datetime:
    return sedate.to_timezone(now, timezone)


def today(now: datetime, timezone: TzInfoOrName) -> date:
    """ The current date in the given timezone. """
    return local_now(now, timezone).date()


def minutes_since_midnight(now: datetime, timezone: TzInfoOrName) -> int:
    local = local_now(now, timezone)
    return local.hour * 60 + local.minute


def is_past(
    day: date,
    minutes: int,
    now: datetime,
    timezone: TzInfoOrName
) -> bool:
    """ True only if the given day is today (in the given timezone) and the
    given minutes lie before the current time of day.

    """
    if day != today(now, timezone):
        return False

    return minutes < minutes_since_midnight(now, timezone)


def day_range(day: date, timezone: TzInfoOrName) -> tuple[datetime, datetime]:
    """ Returns the start and the end of the given day in the given timezone,
    as UTC datetimes. The end is the last microsecond of the day.

    """
    start = sedate.standardize_date(datetime.combine(day, time(0)), timezone)
    end = sedate.standardize_date(
        datetime.combine(day + timedelta(days=1), time(0)), timezone
    ) - timedelta(microseconds=1)

    return start, end


def as_local_datetime(
    day: date,
    minutes: int,
    timezone: TzInfoOrName
) -> datetime:
    """ Combines a day and minutes since midnight into an aware datetime
    in the given timezone.

    """
    naive = datetime.combine(day, time(minutes // 60, minutes % 60))
    return sedate.replace_timezone(naive, timezone)


def split_date(
    value: date | datetime,
    timezone: TzInfoOrName
) -> tuple[date, int | None]:
    """ Splits the given value into a day and the minutes since midnight.

    Plain dates have no time of day, in which case None is returned for
    the minutes. Naive datetimes are assumed to be in the given timezone,
    aware ones are converted into it.

    """
    if not isinstance(value, datetime):
        if not isinstance(value, date):
            raise errors.MalformedDate(value)
        return value, None

    if value.tzinfo is not None:
        value = sedate.to_timezone(value, timezone)

    return value.date(), value.hour * 60 + value.minute
