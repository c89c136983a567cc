from __future__ import annotations

import labres
import pytest
import time

from datetime import date
from labres.context.session import SessionProvider
from labres.db.models import Reservation
from labres.db.scheduler import Scheduler
from labres.modules import errors
from psycopg2.extensions import TransactionRollbackError
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from threading import Barrier, Thread
from uuid import uuid4 as new_uuid


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable


class SessionId(Thread):
    def __init__(self, dsn: str) -> None:
        Thread.__init__(self)
        self.session_id: int | None = None
        self.dsn = dsn

    def run(self) -> None:
        context = labres.registry.register_context(str(id(self)))
        context.set_setting('dsn', self.dsn)
        scheduler = Scheduler(context)
        self.session_id = id(scheduler.session)

        # make sure the thread runs long enough for test_sessionstore to
        # have both threads running at the same time, since the docs states:
        # "Two objects with non-overlapping lifetimes may have the same
        # id() value."
        time.sleep(0.1)

        scheduler.close()
        scheduler.session_provider.stop_service()


class ExceptionThread(Thread):
    def __init__(self, call: Callable[[], object]) -> None:
        Thread.__init__(self)
        self.call = call
        self.exception: Exception | None = None

    def run(self) -> None:
        try:
            self.call()
        except Exception as e:
            self.exception = e


def test_stop_unused_session(dsn: str) -> None:
    provider = SessionProvider(dsn)
    provider.stop_service()  # should not throw any exceptions


def test_sessionstore(dsn: str) -> None:
    t1 = SessionId(dsn)
    t2 = SessionId(dsn)

    t1.start()
    t2.start()

    t1.join()
    t2.join()

    assert t1.session_id is not None
    assert t2.session_id is not None
    assert t1.session_id != t2.session_id


def test_savepoints(scheduler: Scheduler) -> None:
    room = scheduler.add_room('Laboratory 1')

    with pytest.raises(IntegrityError):
        with scheduler.begin_nested():
            scheduler.add_room('Laboratory 2')
            scheduler.add_room('Laboratory 2')

    # the outer transaction is still usable
    assert scheduler.room_by_id(room.id) is room
    scheduler.commit()

    assert scheduler.session.execute(
        text('SELECT COUNT(*) FROM rooms')
    ).scalar() == 1


def test_schedule_locks(scheduler: Scheduler) -> None:
    room = scheduler.add_room('Laboratory 1')
    workstation = scheduler.add_workstation(room.id, 'PC-01')

    scheduler.lock_schedule(workstation.lock_keys, [date(2025, 6, 1)])
    scheduler.lock_schedule(room.lock_keys, [date(2025, 6, 1)])
    scheduler.commit()

    rows = scheduler.session.execute(text(
        'SELECT resource_key, version FROM schedule_locks '
        'ORDER BY resource_key'
    )).all()

    assert [tuple(row) for row in rows] == [
        (f'room:{room.id}', 2),
        (f'workstation:{workstation.id}', 1),
    ]


def test_concurrent_elevated_reservations(
    scheduler: Scheduler,
    postgresql_dsn: str
) -> None:

    room = scheduler.add_room('Laboratory 1')
    holder = scheduler.add_holder('Prof. Santos', holder_type='faculty')
    scheduler.commit()

    room_id, holder_id = room.id, holder.id
    barrier = Barrier(2)

    def reserve() -> None:
        context = labres.registry.register_context(new_uuid().hex)
        context.set_setting('dsn', postgresql_dsn)
        context.set_service('clock', lambda ctx: scheduler.now)

        other = Scheduler(context)

        try:
            barrier.wait()
            other.create_reservation(
                holder_id=holder_id,
                role='elevated',
                resource_kind='room',
                resource_id=room_id,
                date=date(2025, 6, 1),
                start='09:00',
                end='10:00',
                purpose='Midterm exam'
            )
            # give the other thread the chance to run into the lock
            time.sleep(0.5)
            other.commit()
        except Exception:
            other.rollback()
            raise
        finally:
            other.close()
            other.session_provider.stop_service()

    t1 = ExceptionThread(reserve)
    t2 = ExceptionThread(reserve)

    t1.start()
    t2.start()

    t1.join()
    t2.join()

    exceptions = [e for e in (t1.exception, t2.exception) if e is not None]

    def is_rollback(ex: Exception) -> bool:
        return isinstance(getattr(ex, 'orig', None), TransactionRollbackError)

    # the second writer either sees the first one's booking and conflicts
    # or fails to serialize, it never books the room a second time
    assert len(exceptions) == 1
    assert (
        isinstance(exceptions[0], errors.ConflictError)
        or is_rollback(exceptions[0])
    )

    scheduler.rollback()
    assert scheduler.session.query(Reservation).count() == 1
