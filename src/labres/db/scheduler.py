from __future__ import annotations

import logging

from datetime import date, timedelta
from itertools import product
from sqlalchemy.exc import IntegrityError
from uuid import uuid4 as new_uuid, UUID

from labres.context.core import ContextServicesMixin, missing
from labres.db.availability import AvailabilityEngine
from labres.db.conflicts import Commitment, ConflictDetector
from labres.db.ledger import QuotaLedger
from labres.db.models import ORMBase, ClassSchedule, QuotaHolder, Reservation
from labres.db.models import Room, ScheduleLock, UsageSession, Workstation
from labres.db.models.resource import ROOM_STATUSES, WORKSTATION_STATUSES
from labres.db.models.usage_session import SESSION_STATUSES
from labres.db.queries import Queries
from labres.modules import errors
from labres.modules import events
from labres.modules import lifecycle
from labres.modules import timegrid
from labres.modules import utils
from labres.modules.lifecycle import Role


from typing import Any
from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Collection
    from collections.abc import Iterable
    from datetime import datetime
    from sqlalchemy.orm import Query
    from typing_extensions import Self, TypeAlias

    from labres.context.core import Context, missing_t
    from labres.db.availability import SlotView
    from labres.db.ledger import Debit
    from labres.db.models.holder import HolderType
    from labres.db.models.resource import RoomStatus, WorkstationStatus
    from labres.db.models.usage_session import SessionStatus
    from labres.modules.lifecycle import Action, ResourceKind, Status
    from labres.modules.timegrid import AllDay
    from labres.modules.utils import Recurrence

    DateLike: TypeAlias = date | datetime | str
    _Role: TypeAlias = Role | str


log = logging.getLogger('labres')

AUTO_APPROVED_NOTE = '[Auto-approved: Faculty laboratory reservation]'


class UsageSessionResult(NamedTuple):
    reservation: Reservation
    usage_session: UsageSession
    debited: int
    remaining: timedelta | None


def join_notes(*notes: str | None) -> str | None:
    return ' '.join(n.strip() for n in notes if n and n.strip()) or None


class Scheduler(ContextServicesMixin):
    """ The Scheduler is responsible for talking to the backend of the given
    context to create and manage reservations. It is the main part of the
    API.

    The scheduler never commits, the caller decides when a unit of work is
    done::

        scheduler = new_scheduler(context)
        reservation = scheduler.create_reservation(...)
        scheduler.commit()

    """

    def __init__(self, context: Context):
        """ Initializes a new Scheduler instance.

        :context:
            The :class:`labres.context.core.Context` this scheduler should
            operate on. Acquire a context by using
            :func:`labres.context.registry.Registry.register_context`.

            The timezone of the context decides what "today" means. Dates
            and times passed to the scheduler are wall-clock values in this
            timezone.

        """

        self.context = context
        self.queries = Queries(context)
        self.detector = ConflictDetector(context)
        self.availability = AvailabilityEngine(context, self.detector)
        self.ledger = QuotaLedger(context)

    def clone(self) -> Self:
        """ Clones the scheduler. The result will be a new scheduler using the
        same context.

        """

        return self.__class__(self.context)

    def clear_cache(self) -> None:
        super().clear_cache()

        for component in (
            self.queries, self.detector, self.availability, self.ledger
        ):
            component.clear_cache()

    def setup_database(self) -> None:
        """ Creates the tables and indices required for labres. This needs
        to be called once per database. Multiple invocations won't hurt but
        they are unnecessary.

        """
        ORMBase.metadata.create_all(self.session.bind)

    def _prepare_date(self, value: DateLike) -> tuple[date, int | None]:
        if isinstance(value, str):
            try:
                value = date.fromisoformat(value.strip())
            except ValueError:
                raise errors.MalformedDate(value) from None

        return timegrid.split_date(value, self.timezone)

    def _prepare_day(self, value: DateLike) -> date:
        return self._prepare_date(value)[0]

    def _prepare_interval(
        self,
        day: DateLike,
        start: str | None,
        end: str | None,
        duration: int | AllDay | None
    ) -> tuple[date, int, int]:
        """ Turns either a start/end pair or a duration into the interval
        of a single day.

        With a duration the reservation starts at the time of the given
        datetime, or at the opening time if only a date is given.

        """
        prepared, minutes = self._prepare_date(day)
        opening, closing = self.availability.operating_window

        if start is not None or end is not None:
            if duration is not None:
                raise errors.ValidationError(
                    'Either pass a start and an end or a duration'
                )

            if start is None or end is None:
                raise errors.MissingField('start' if start is None else 'end')

            start_minutes = timegrid.to_minutes(start)
            end_minutes = timegrid.to_minutes(end)

            if end_minutes <= start_minutes:
                raise errors.InvalidDuration(f'{start}-{end}')

            self.availability.validate_duration(end_minutes - start_minutes)
            return prepared, start_minutes, end_minutes

        if duration is None:
            raise errors.MissingField('duration')

        duration = self.availability.validate_duration(duration)

        if duration == timegrid.ALL_DAY:
            return prepared, opening, closing

        assert isinstance(duration, int)
        start_minutes = opening if minutes is None else minutes
        end_minutes = start_minutes + duration

        if end_minutes >= timegrid.MINUTES_PER_DAY:
            raise errors.InvalidDuration(duration)

        return prepared, start_minutes, end_minutes

    def _assert_not_in_past(self, day: date, start: int) -> None:
        now = self.now()

        if day < timegrid.today(now, self.timezone):
            raise errors.ReservationInPast(day)

        if timegrid.is_past(day, start, now, self.timezone):
            raise errors.ReservationInPast(timegrid.to_time(start))

    def _assert_operator(self, role: _Role, action: str) -> Role:
        role = Role.coerce(role)

        if role is not Role.operator:
            raise errors.PermissionDeniedError(
                f'Only operators may {action} reservations'
            )

        return role

    def lock_schedule(
        self,
        keys: Iterable[str],
        days: Iterable[date]
    ) -> None:
        """ Locks the schedule of the given resource keys on the given days
        until the end of the transaction.

        Locks are always taken in the same order, so two writers locking
        overlapping sets never deadlock.

        """
        for key, day in sorted(product(set(keys), set(days))):
            query = self.session.query(ScheduleLock)
            query = query.filter(ScheduleLock.resource_key == key)
            query = query.filter(ScheduleLock.date == day)
            query = query.with_for_update()

            lock = query.one_or_none()

            if lock is None:
                try:
                    with self.begin_nested():
                        lock = ScheduleLock(
                            resource_key=key, date=day, version=0
                        )
                        self.session.add(lock)
                        self.session.flush()
                except IntegrityError:
                    lock = query.one_or_none()

                    # created by a concurrent transaction we cannot see
                    if lock is None:
                        raise

            lock.version += 1

        self.session.flush()

    # resources and holders

    def add_room(
        self,
        name: str,
        status: RoomStatus = 'active',
        notes: str | None = None
    ) -> Room:

        if not name or not name.strip():
            raise errors.MissingField('name')

        if status not in ROOM_STATUSES:
            raise errors.ValidationError(f'Unknown room status: {status}')

        room = Room()
        room.name = name.strip()
        room.status = status
        room.notes = notes
        room.is_deleted = False

        self.session.add(room)
        self.session.flush()

        return room

    def add_workstation(
        self,
        room_id: int,
        label: str,
        status: WorkstationStatus = 'available',
        notes: str | None = None
    ) -> Workstation:

        room = self.room_by_id(room_id)

        if room.is_deleted:
            raise errors.NotFoundError(f'No room with id {room_id}')

        if not label or not label.strip():
            raise errors.MissingField('label')

        if status not in WORKSTATION_STATUSES:
            raise errors.ValidationError(
                f'Unknown workstation status: {status}'
            )

        workstation = Workstation()
        workstation.room = room
        workstation.label = label.strip()
        workstation.status = status
        workstation.notes = notes
        workstation.is_deleted = False

        self.session.add(workstation)
        self.session.flush()

        return workstation

    def add_holder(
        self,
        name: str,
        holder_type: HolderType = 'student',
        email: str | None = None,
        remaining: timedelta | int | str | None | missing_t = missing
    ) -> QuotaHolder:
        """ Adds a quota holder. Students start with the default balance
        unless another one is given, faculty start without a balance.

        """

        if not name or not name.strip():
            raise errors.MissingField('name')

        if holder_type not in ('student', 'faculty'):
            raise errors.ValidationError(f'Unknown holder type: {holder_type}')

        if remaining is missing:
            if holder_type == 'student':
                remaining = self.context.get_setting('default_remaining')
            else:
                remaining = None

        holder = QuotaHolder()
        holder.name = name.strip()
        holder.holder_type = holder_type
        holder.email = email
        holder.is_deleted = False
        holder.remaining = (
            None if remaining is None else utils.as_timedelta(remaining)
        )

        if holder.remaining is not None and holder.remaining < timedelta(0):
            raise errors.InvalidDuration(remaining)

        self.session.add(holder)
        self.session.flush()

        return holder

    def room_by_id(self, id: int) -> Room:
        room = self.session.get(Room, id)

        if room is None:
            raise errors.NotFoundError(f'No room with id {id}')

        return room

    def workstation_by_id(self, id: int) -> Workstation:
        workstation = self.session.get(Workstation, id)

        if workstation is None:
            raise errors.NotFoundError(f'No workstation with id {id}')

        return workstation

    def holder_by_id(self, id: int) -> QuotaHolder:
        return self.ledger.holder(id)

    def resource_by_kind(
        self,
        kind: ResourceKind,
        id: int
    ) -> Room | Workstation:
        if kind == 'room':
            return self.room_by_id(id)
        elif kind == 'workstation':
            return self.workstation_by_id(id)
        else:
            raise errors.ValidationError(f'Unknown resource kind: {kind}')

    def change_room_status(self, room_id: int, status: RoomStatus) -> Room:
        if status not in ROOM_STATUSES:
            raise errors.ValidationError(f'Unknown room status: {status}')

        room = self.room_by_id(room_id)
        room.status = status
        self.session.flush()

        return room

    def change_workstation_status(
        self,
        workstation_id: int,
        status: WorkstationStatus
    ) -> Workstation:
        if status not in WORKSTATION_STATUSES:
            raise errors.ValidationError(
                f'Unknown workstation status: {status}'
            )

        workstation = self.workstation_by_id(workstation_id)
        workstation.status = status
        self.session.flush()

        return workstation

    # class schedules

    def add_class_schedule(
        self,
        room_id: int,
        subject_name: str,
        instructor_name: str,
        date: DateLike,
        timeslot: str,
        recurrence: Recurrence | None = None,
        recurrence_end: DateLike | None = None,
        subject_code: str | None = None
    ) -> list[ClassSchedule]:
        """ Adds a class to the given room, once or recurring up to and
        including the recurrence end.

        Every occurrence is stored as its own record, all of them sharing
        one group. If any occurrence overlaps a class already in the room
        on that day, nothing is added and an
        :class:`~labres.modules.errors.OverlappingScheduleError` is raised.

        Classes are not checked against reservations, they take precedence.

        """

        room = self.room_by_id(room_id)

        if room.is_deleted:
            raise errors.NotFoundError(f'No room with id {room_id}')

        if not subject_name or not subject_name.strip():
            raise errors.MissingField('subject_name')

        if not instructor_name or not instructor_name.strip():
            raise errors.MissingField('instructor_name')

        start, end = timegrid.parse_timeslot(timeslot)
        first = self._prepare_day(date)
        until = recurrence_end and self._prepare_day(recurrence_end)

        dates = utils.expand_recurrence(first, recurrence, until)

        self.lock_schedule(room.lock_keys, dates)

        conflicts: list[Commitment] = []

        for day in dates:
            conflicts.extend(
                Commitment.from_class_schedule(c)
                for c in self.queries.class_schedules_in_room(room.id, day)
                if timegrid.overlaps(c.start, c.end, start, end)
            )

        if conflicts:
            raise errors.OverlappingScheduleError(conflicts)

        group = new_uuid()
        schedules = []

        for day in dates:
            schedule = ClassSchedule()
            schedule.room_id = room.id
            schedule.subject_name = subject_name.strip()
            schedule.subject_code = subject_code
            schedule.instructor_name = instructor_name.strip()
            schedule.date = day
            schedule.start = start
            schedule.end = end
            schedule.recurrence = recurrence
            schedule.recurrence_end = until if recurrence else None
            schedule.group = group
            schedule.is_deleted = False

            self.session.add(schedule)
            schedules.append(schedule)

        self.session.flush()

        log.info(
            f'Added {len(schedules)} occurrences of {subject_name!r} '
            f'to room {room.id}'
        )
        events.on_class_schedules_added(self.context, schedules)

        return schedules

    def class_schedules_by_group(self, group: UUID) -> Query[ClassSchedule]:
        query = self.queries.class_schedules()
        query = query.filter(ClassSchedule.group == group)

        return query.order_by(ClassSchedule.date)

    def remove_class_schedule(
        self,
        id: int | None = None,
        group: UUID | None = None
    ) -> list[ClassSchedule]:
        """ Removes a single occurrence by id or all occurrences of a group.
        The records are kept, flagged as deleted.

        """

        if (id is None) == (group is None):
            raise errors.ValidationError('Pass either an id or a group')

        if group is not None:
            schedules = self.class_schedules_by_group(group).all()
        else:
            query = self.queries.class_schedules()
            schedules = query.filter(ClassSchedule.id == id).all()

        if not schedules:
            raise errors.NotFoundError(f'No class schedule for {id or group}')

        for schedule in schedules:
            schedule.is_deleted = True

        self.session.flush()

        return schedules

    # availability

    def probe_availability(
        self,
        resource_kind: ResourceKind,
        resource_id: int,
        date: DateLike,
        duration: int | AllDay
    ) -> list[SlotView]:
        """ Returns the availability of the given resource on the given day,
        sliced into slots of the given duration.

        See :meth:`labres.db.availability.AvailabilityEngine.day_view`.

        """
        resource = self.resource_by_kind(resource_kind, resource_id)
        return self.availability.day_view(
            resource, self._prepare_day(date), duration
        )

    # reservations

    def reservation_by_id(self, id: int) -> Reservation:
        query = self.queries.reservations()
        reservation = query.filter(Reservation.id == id).one_or_none()

        if reservation is None:
            raise errors.NotFoundError(f'No reservation with id {id}')

        return reservation

    def reservation_by_number(self, number: str) -> Reservation:
        query = self.queries.reservations()
        query = query.filter(Reservation.number == number.strip().upper())
        reservation = query.one_or_none()

        if reservation is None:
            raise errors.NotFoundError(f'No reservation numbered {number}')

        return reservation

    def search_reservations(
        self,
        statuses: Collection[Status] | None = None,
        resource_kind: ResourceKind | None = None,
        holder_id: int | None = None,
        room_id: int | None = None,
        start: DateLike | None = None,
        end: DateLike | None = None,
        number: str | None = None
    ) -> Query[Reservation]:
        return self.queries.search_reservations(
            statuses=statuses,
            resource_kind=resource_kind,
            holder_id=holder_id,
            room_id=room_id,
            start=start and self._prepare_day(start),
            end=end and self._prepare_day(end),
            number=number
        )

    def _persist_reservation(self, reservation: Reservation) -> Reservation:
        """ Stores the reservation under a new random number, generating
        another number if it is already taken.

        """
        attempts = self.context.get_setting('reservation_number_attempts')

        for _ in range(attempts):
            number = self.generate_reservation_number()

            query = self.queries.reservations(include_deleted=True)
            if query.filter(Reservation.number == number).first():
                log.warning(f'Reservation number {number} is taken, retrying')
                continue

            reservation.number = number

            try:
                with self.begin_nested():
                    self.session.add(reservation)
                    self.session.flush()
            except IntegrityError:
                log.warning(f'Reservation number {number} is taken, retrying')
                continue

            return reservation

        raise errors.LabresError(
            f'No free reservation number found after {attempts} attempts'
        )

    def create_reservation(
        self,
        holder_id: int,
        role: _Role,
        resource_kind: ResourceKind,
        resource_id: int,
        date: DateLike,
        start: str | None = None,
        end: str | None = None,
        duration: int | AllDay | None = None,
        purpose: str | None = None,
        notes: str | None = None,
        actor_id: int | None = None
    ) -> Reservation:
        """ Creates a reservation for the given holder.

        The interval is either given by start and end (``HH:MM``) or by a
        duration in minutes. With a duration the reservation starts at the
        time of the given datetime, or at the opening time for a plain date.
        The all-day duration spans the whole operating window.

        The role decides the initial status. Operators get their
        reservations approved right away (recorded as approved by the
        actor), elevated requesters get rooms approved if nothing conflicts
        and everything else starts out as pending.

        If an elevated requester's room booking conflicts, a
        :class:`~labres.modules.errors.ConflictError` is raised and nothing
        is stored.

        """

        role = Role.coerce(role)

        if not purpose or not purpose.strip():
            raise errors.MissingField('purpose')

        resource = self.resource_by_kind(resource_kind, resource_id)

        if not resource.is_reservable:
            raise errors.ResourceNotReservable(
                f'The {resource.kind} {resource.id} is not reservable'
            )

        holder = self.holder_by_id(holder_id)

        if holder.is_deleted:
            raise errors.NotFoundError(f'No quota holder with id {holder_id}')

        day, start_minutes, end_minutes = self._prepare_interval(
            date, start, end, duration
        )

        self._assert_not_in_past(day, start_minutes)

        if role is Role.ordinary and self.context.get_setting('enforce_quota'):
            requested = timedelta(minutes=end_minutes - start_minutes)

            if holder.remaining is not None and requested > holder.remaining:
                raise errors.QuotaExceeded(
                    f'{utils.format_hms(requested)} requested but only '
                    f'{utils.format_hms(holder.remaining)} left'
                )

        policy = lifecycle.creation_policy(role, resource.kind)

        if policy.check_conflicts:
            self.lock_schedule(resource.lock_keys, (day, ))

            conflicts = self.detector.conflicting_commitments(
                resource, day, start_minutes, end_minutes
            )

            if conflicts:
                raise errors.ConflictError(conflicts)

        reservation = Reservation()
        reservation.holder_id = holder.id
        reservation.resource_kind = resource.kind
        reservation.room_id = resource.room_id
        reservation.workstation_id = (
            resource.id if resource.kind == 'workstation' else None
        )
        reservation.date = day
        reservation.start = start_minutes
        reservation.end = end_minutes
        reservation.duration = end_minutes - start_minutes
        reservation.purpose = purpose.strip()
        reservation.notes = join_notes(notes)
        reservation.status = policy.status
        reservation.is_deleted = False

        if policy.auto_approved:
            reservation.approved_at = self.now()

            if role is Role.operator:
                reservation.approved_by = actor_id
            else:
                reservation.notes = join_notes(notes, AUTO_APPROVED_NOTE)

        self._persist_reservation(reservation)

        log.info(
            f'Created reservation {reservation.number} ({reservation.status})'
            f' for {resource.kind} {resource.id} on {day}'
        )
        events.on_reservation_created(self.context, reservation)

        return reservation

    def update_reservation(
        self,
        reservation_id: int,
        purpose: str | None | missing_t = missing,
        notes: str | None | missing_t = missing,
        duration: int | AllDay | None = None,
        date: DateLike | None = None
    ) -> Reservation:
        """ Changes the free-text fields, the duration or the date of a
        reservation which has not reached a final status.

        A new duration keeps the start and moves the end. Changes are not
        checked for conflicts, a changed reservation stays in its status.

        """

        reservation = self.reservation_by_id(reservation_id)

        if lifecycle.is_terminal(reservation.status):
            raise errors.InvalidTransitionError(reservation.status, 'update')

        if purpose is not missing:
            if not purpose or not purpose.strip():
                raise errors.MissingField('purpose')
            reservation.purpose = purpose.strip()

        if notes is not missing:
            reservation.notes = join_notes(notes)

        if date is not None:
            reservation.date = self._prepare_day(date)

        if duration is not None:
            duration = self.availability.validate_duration(duration)

            if duration == timegrid.ALL_DAY:
                start, end = self.availability.operating_window
            else:
                assert isinstance(duration, int)
                start, end = reservation.start, reservation.start + duration

                if end >= timegrid.MINUTES_PER_DAY:
                    raise errors.InvalidDuration(duration)

            reservation.start = start
            reservation.end = end
            reservation.duration = end - start

        self.session.flush()

        return reservation

    def remove_reservation(self, reservation_id: int) -> Reservation:
        """ Flags the reservation as deleted. It no longer blocks anything
        nor is it found, though it stays in the database for the records.

        """

        reservation = self.reservation_by_id(reservation_id)
        reservation.is_deleted = True
        self.session.flush()

        log.info(f'Removed reservation {reservation.number}')

        return reservation

    # lifecycle

    def transition(
        self,
        reservation_id: int,
        action: Action,
        role: _Role,
        actor_id: int | None,
        notes: str | None = None,
        **options: Any
    ) -> Reservation:
        """ Applies the given action to the reservation. Further options
        are passed on to the method handling the action (reason for reject,
        time_in for start and time_out for complete).

        """

        handlers = {
            'approve': self.approve_reservation,
            'reject': self.reject_reservation,
            'start': self.start_reservation,
            'complete': self.complete_reservation,
            'cancel': self.cancel_reservation,
        }

        if action not in handlers:
            raise errors.ValidationError(f'Unknown action: {action}')

        handler: Any = handlers[action]
        return handler(reservation_id, role, actor_id, notes=notes, **options)

    def approve_reservation(
        self,
        reservation_id: int,
        role: _Role,
        actor_id: int | None,
        notes: str | None = None
    ) -> Reservation:
        """ Approves a pending reservation.

        The reservation is checked for conflicts once more, under lock.
        A pending reservation may have been fine when it was made and
        still conflict with one approved in the meantime.

        """

        self._assert_operator(role, 'approve')
        reservation = self.reservation_by_id(reservation_id)
        status = lifecycle.next_status(reservation.status, 'approve')

        resource = reservation.resource
        self.lock_schedule(resource.lock_keys, (reservation.date, ))

        conflicts = self.detector.conflicting_commitments(
            resource,
            reservation.date,
            reservation.start,
            reservation.end,
            exclude_reservation_id=reservation.id
        )

        if conflicts:
            error = errors.ConflictError(conflicts)
            error.reservation = reservation
            raise error

        reservation.status = status
        reservation.approved_by = actor_id
        reservation.approved_at = self.now()

        if notes:
            reservation.notes = join_notes(reservation.notes, notes)

        self.session.flush()

        log.info(f'Approved reservation {reservation.number}')
        events.on_reservation_approved(self.context, reservation)

        return reservation

    def reject_reservation(
        self,
        reservation_id: int,
        role: _Role,
        actor_id: int | None,
        notes: str | None = None,
        reason: str | None = None
    ) -> Reservation:
        """ Rejects a pending reservation. The reason and the notes replace
        the notes of the reservation.

        """

        self._assert_operator(role, 'reject')
        reservation = self.reservation_by_id(reservation_id)
        reservation.status = lifecycle.next_status(
            reservation.status, 'reject'
        )
        reservation.approved_by = actor_id

        parts = []

        if reason and reason.strip():
            parts.append(f'Reason: {reason.strip()}')

        if notes and notes.strip():
            parts.append(
                f'Notes: {notes.strip()}' if parts else notes.strip()
            )

        reservation.notes = '. '.join(parts) or None
        self.session.flush()

        log.info(f'Rejected reservation {reservation.number}')
        events.on_reservation_rejected(self.context, reservation)

        return reservation

    def start_reservation(
        self,
        reservation_id: int,
        role: _Role,
        actor_id: int | None,
        notes: str | None = None,
        time_in: str | None = None
    ) -> Reservation:
        """ Marks an approved reservation as active and opens its usage
        session, starting now or at the given time (``HH:MM``).

        """

        self._assert_operator(role, 'start')
        reservation = self.reservation_by_id(reservation_id)
        status = lifecycle.next_status(reservation.status, 'start')

        now = self.now()

        if time_in is None:
            minutes_in = timegrid.minutes_since_midnight(now, self.timezone)
        else:
            minutes_in = timegrid.to_minutes(time_in)

        usage_session = UsageSession()
        usage_session.reservation = reservation
        usage_session.holder_id = reservation.holder_id
        usage_session.date = timegrid.today(now, self.timezone)
        usage_session.time_in = minutes_in
        usage_session.time_out = None
        usage_session.duration = 0
        usage_session.purpose = reservation.purpose
        usage_session.status = 'active'
        usage_session.approved_by = actor_id
        usage_session.notes = join_notes(notes)

        self.session.add(usage_session)

        reservation.status = status
        reservation.started_at = now

        self.session.flush()

        log.info(f'Started reservation {reservation.number}')
        events.on_reservation_started(
            self.context, reservation, usage_session
        )

        return reservation

    def _close_usage_session(
        self,
        usage_session: UsageSession,
        time_out: str | None,
        status: SessionStatus,
        notes: str | None
    ) -> Debit:

        if status not in SESSION_STATUSES or status == 'active':
            raise errors.ValidationError(f'Unknown session status: {status}')

        if time_out is not None:
            minutes_out = timegrid.to_minutes(time_out)

            if minutes_out < usage_session.time_in:
                raise errors.MalformedTime(time_out)
        else:
            now = self.now()

            if timegrid.today(now, self.timezone) > usage_session.date:
                minutes_out = timegrid.MINUTES_PER_DAY - 1
            else:
                minutes_out = timegrid.minutes_since_midnight(
                    now, self.timezone
                )

            minutes_out = max(minutes_out, usage_session.time_in)

        usage_session.time_out = minutes_out
        usage_session.duration = minutes_out - usage_session.time_in

        debit = self.ledger.debit(
            usage_session.holder_id, usage_session.duration
        )

        if debit.overtime and status == 'completed':
            status = 'overtime'

        usage_session.status = status

        if notes:
            usage_session.notes = join_notes(usage_session.notes, notes)

        self.session.flush()

        events.on_usage_session_closed(
            self.context, usage_session, debit.debited
        )

        return debit

    def close_usage_session(
        self,
        reservation_id: int,
        time_out: str | None = None,
        status: SessionStatus = 'completed',
        notes: str | None = None
    ) -> UsageSessionResult:
        """ Ends the usage session of an active reservation, now or at the
        given time (``HH:MM``), and completes the reservation.

        The duration of the session is taken from the holder's balance,
        exactly once. Closing a session of a reservation that is not active
        raises an :class:`~labres.modules.errors.InvalidTransitionError`.

        """

        reservation = self.reservation_by_id(reservation_id)

        if reservation.status != 'active':
            raise errors.InvalidTransitionError(reservation.status, 'close')

        usage_session = reservation.open_usage_session

        if usage_session is None:
            raise errors.InvalidTransitionError(reservation.status, 'close')

        debit = self._close_usage_session(
            usage_session, time_out, status, notes
        )

        reservation.status = lifecycle.next_status(
            reservation.status, 'complete'
        )
        reservation.completed_at = self.now()
        self.session.flush()

        log.info(
            f'Completed reservation {reservation.number} after '
            f'{usage_session.duration} minutes'
        )
        events.on_reservation_completed(self.context, reservation)

        return UsageSessionResult(
            reservation, usage_session, debit.debited, debit.remaining
        )

    def complete_reservation(
        self,
        reservation_id: int,
        role: _Role,
        actor_id: int | None,
        notes: str | None = None,
        time_out: str | None = None
    ) -> Reservation:
        """ Completes an approved or active reservation. The open usage
        session of an active reservation is closed first.

        """

        self._assert_operator(role, 'complete')
        reservation = self.reservation_by_id(reservation_id)
        status = lifecycle.next_status(reservation.status, 'complete')

        if reservation.status == 'active':
            return self.close_usage_session(
                reservation_id, time_out=time_out, notes=notes
            ).reservation

        reservation.status = status
        reservation.completed_at = self.now()

        if notes:
            reservation.notes = join_notes(reservation.notes, notes)

        self.session.flush()

        log.info(f'Completed reservation {reservation.number}')
        events.on_reservation_completed(self.context, reservation)

        return reservation

    def cancel_reservation(
        self,
        reservation_id: int,
        role: _Role,
        actor_id: int | None,
        notes: str | None = None
    ) -> Reservation:
        """ Cancels a reservation which has not reached a final status.

        Anybody but an operator may only cancel their own reservations.
        The usage session of an active reservation is closed as interrupted
        and the time spent so far is taken from the balance.

        """

        role = Role.coerce(role)
        reservation = self.reservation_by_id(reservation_id)

        if role is not Role.operator and reservation.holder_id != actor_id:
            raise errors.PermissionDeniedError(
                'Only your own reservations may be cancelled'
            )

        status = lifecycle.next_status(reservation.status, 'cancel')

        if reservation.status == 'active':
            usage_session = reservation.open_usage_session

            if usage_session is not None:
                self._close_usage_session(
                    usage_session, None, 'interrupted', None
                )

        reservation.status = status

        if notes:
            reservation.notes = join_notes(reservation.notes, notes)

        self.session.flush()

        log.info(f'Cancelled reservation {reservation.number}')
        events.on_reservation_cancelled(self.context, reservation)

        return reservation
