from __future__ import annotations

import logging

from datetime import timedelta
from sqlalchemy.exc import IntegrityError

from labres.context.core import ContextServicesMixin
from labres.db.models import QuotaHolder, QuotaReset
from labres.modules import errors
from labres.modules import events
from labres.modules import utils


from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sqlalchemy.sql import ColumnElement

    from labres.context.core import Context


log = logging.getLogger('labres')


class Debit(NamedTuple):
    #: the minutes taken from the balance, as requested
    debited: int
    #: the balance after the debit, None for holders without a balance
    remaining: timedelta | None
    #: the minutes which exceeded the balance
    overtime: int


class QuotaResetResult(NamedTuple):
    period: str
    remaining: timedelta
    holders: int
    applied: bool


class QuotaLedger(ContextServicesMixin):
    """ Keeps the remaining time of each quota holder.

    Debits lock the row of the holder they change, so debits of the same
    holder are applied one after the other while different holders never
    wait for each other.

    As with the scheduler, nothing is committed here. The caller commits.

    """

    def __init__(self, context: Context):
        self.context = context

    def holder(
        self,
        holder_id: int,
        for_update: bool = False
    ) -> QuotaHolder:
        query = self.session.query(QuotaHolder)
        query = query.filter(QuotaHolder.id == holder_id)

        if for_update:
            query = query.with_for_update()

        holder = query.one_or_none()

        if holder is None:
            raise errors.NotFoundError(f'No quota holder with id {holder_id}')

        return holder

    def balance(self, holder_id: int) -> timedelta | None:
        return self.holder(holder_id).remaining

    def grant(
        self,
        holder_id: int,
        remaining: timedelta | int | str | None
    ) -> QuotaHolder:
        """ Sets the balance of a single holder. Minutes, HH:MM:SS strings
        and timedeltas are accepted. None removes the quota of the holder.

        """
        holder = self.holder(holder_id, for_update=True)

        if remaining is not None:
            remaining = utils.as_timedelta(remaining)

            if remaining < timedelta(0):
                raise errors.InvalidDuration(remaining)

        holder.remaining = remaining
        self.session.flush()

        return holder

    def debit(self, holder_id: int, minutes: int) -> Debit:
        """ Takes the given minutes from the balance of the holder.

        The balance never drops below zero. Using more time than left is
        logged as overtime, the debit itself succeeds regardless.

        """
        if isinstance(minutes, bool) or not isinstance(minutes, int):
            raise errors.InvalidDuration(minutes)

        if minutes < 0:
            raise errors.InvalidDuration(minutes)

        holder = self.holder(holder_id, for_update=True)

        if holder.remaining is None:
            return Debit(debited=0, remaining=None, overtime=0)

        amount = timedelta(minutes=minutes)
        overtime = 0

        if amount > holder.remaining:
            overtime = utils.whole_minutes(amount - holder.remaining)

            log.warning(
                f'Quota holder {holder_id} exceeded the remaining time '
                f'by {overtime} minutes'
            )
            events.on_quota_overtime(self.context, holder_id, overtime)

        holder.remaining = max(timedelta(0), holder.remaining - amount)
        self.session.flush()

        return Debit(
            debited=minutes,
            remaining=holder.remaining,
            overtime=overtime
        )

    def reset_all(
        self,
        remaining: timedelta | int | str,
        period: str,
        filter: ColumnElement[bool] | None = None
    ) -> QuotaResetResult:
        """ Sets the balance of every matching holder to the given value,
        once per period (a semester for example).

        By default all students are reset. Pass a SQLAlchemy expression on
        :class:`~labres.db.models.QuotaHolder` as filter to select other
        holders. Deleted holders are never reset.

        The marker of the period and the balances are written in one
        savepoint. If the reset is interrupted nothing is marked, and a
        reset which was already applied (possibly by someone else at the
        same time) changes nothing.

        """
        assert period, 'A period is required'

        remaining = utils.as_timedelta(remaining)

        if remaining < timedelta(0):
            raise errors.InvalidDuration(remaining)

        existing = self.session.get(QuotaReset, period)

        if existing is not None:
            log.info(f'Quota reset for {period} has already been applied')
            return QuotaResetResult(
                period, existing.remaining, existing.holders, False
            )

        if filter is None:
            filter = QuotaHolder.holder_type == 'student'

        try:
            with self.begin_nested():
                marker = QuotaReset(
                    period=period,
                    remaining=remaining,
                    holders=0,
                    applied_at=self.now()
                )
                self.session.add(marker)
                self.session.flush()

                query = self.session.query(QuotaHolder)
                query = query.filter(QuotaHolder.is_deleted.is_(False))
                query = query.filter(filter)

                count = query.update(
                    {QuotaHolder.remaining: remaining},
                    synchronize_session='fetch'
                )

                marker.holders = count
                self.session.flush()

        except IntegrityError:
            log.info(f'Quota reset for {period} was applied concurrently')

            # the other marker may not be visible in this transaction
            existing = self.session.get(QuotaReset, period)

            if existing is None:
                return QuotaResetResult(period, remaining, 0, False)

            return QuotaResetResult(
                period, existing.remaining, existing.holders, False
            )

        log.info(f'Reset the quota of {count} holders for {period}')
        events.on_quotas_reset(self.context, period, remaining, count)

        return QuotaResetResult(period, remaining, count, True)
