""" Events are called by the :class:`labres.db.scheduler.Scheduler` whenever
something interesting occurs. Audit trails and notifications live outside of
labres, they hook in here.

The implementation is very simple:

To add an event::

    from labres.modules import events

    def on_reservation_approved(context, reservation):
        pass

    events.on_reservation_approved.append(on_reservation_approved)

To remove the same event::

    events.on_reservation_approved.remove(on_reservation_approved)

Events are called in the order they were added.
"""
from __future__ import annotations


from typing import overload
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable
    from collections.abc import Sequence
    from datetime import timedelta
    from typing_extensions import ParamSpec

    from labres.context.core import Context
    from labres.db.models import ClassSchedule, Reservation, UsageSession

    _P = ParamSpec('_P')


class Event(list['Callable[_P, object]']):
    """Event subscription. By http://stackoverflow.com/a/2022629

    A list of callable objects. Calling an instance of this will cause a
    call to each item in the list in ascending order by index.

    """
    @overload
    def __init__(self, f: type[Callable[_P, object]]) -> None: ...
    @overload
    def __init__(self) -> None: ...

    def __init__(self, f: object = None) -> None:
        return

    def __call__(self, *args: _P.args, **kwargs: _P.kwargs) -> None:
        for f in self:
            f(*args, **kwargs)


on_reservation_created: Event[Context, Reservation] = Event()
""" Called when a reservation is created, with the following arguments:

    :context:
        The :class:`labres.context.core.Context` used when creating the
        reservation.

    :reservation:
        The :class:`labres.db.models.Reservation` to be commited. Its status
        is either pending or, if it was auto-approved, approved.

"""

on_reservation_approved: Event[Context, Reservation] = Event()
""" Called when a pending reservation is approved, with the context and the
approved reservation.

"""

on_reservation_rejected: Event[Context, Reservation] = Event()
""" Called when a pending reservation is rejected, with the context and the
rejected reservation. The reason is found in ``reservation.notes``.

"""

on_reservation_started: Event[Context, Reservation, UsageSession] = Event()
""" Called when an approved reservation becomes active, with the following
arguments:

    :context:
        The :class:`labres.context.core.Context`.

    :reservation:
        The reservation that is now active.

    :usage_session:
        The :class:`labres.db.models.UsageSession` opened for it.

"""

on_reservation_completed: Event[Context, Reservation] = Event()
""" Called when a reservation is completed, with the context and the
reservation.

"""

on_reservation_cancelled: Event[Context, Reservation] = Event()
""" Called when a reservation is cancelled, with the context and the
reservation.

"""

on_usage_session_closed: Event[Context, UsageSession, int] = Event()
""" Called when a usage session is closed, with the following arguments:

    :context:
        The :class:`labres.context.core.Context`.

    :usage_session:
        The closed :class:`labres.db.models.UsageSession`.

    :debited:
        The number of minutes taken from the holder's balance.

"""

on_quota_overtime: Event[Context, int, int] = Event()
""" Called when a debit exceeds the remaining balance of a holder, with the
context, the holder id and the minutes by which the balance was exceeded.
The debit itself succeeds, the balance is floored at zero.

"""

on_quotas_reset: Event[Context, str, 'timedelta', int] = Event()
""" Called once per period when the balances are reset, with the context,
the period, the new balance and the number of holders that were reset.

"""

on_class_schedules_added: Event[Context, 'Sequence[ClassSchedule]'] = Event()
""" Called when class schedules are added, with the context and the list of
materialized occurrences (all sharing the same group).

"""
