from __future__ import annotations

import pytest

from datetime import date
from labres.db.models import ClassSchedule
from labres.modules import errors, events
from mock import Mock
from uuid import uuid4 as new_uuid


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from labres.db.models import Room
    from labres.db.scheduler import Scheduler


@pytest.fixture
def room(scheduler: Scheduler) -> Room:
    return scheduler.add_room('Laboratory 1')


def test_single_class(scheduler: Scheduler, room: Room) -> None:
    added = Mock()
    events.on_class_schedules_added.append(added)

    schedules = scheduler.add_class_schedule(
        room.id,
        subject_name=' Data Structures ',
        instructor_name='Prof. Santos',
        date='2025-06-02',
        timeslot='13:00 - 15:00',
        subject_code='CS201'
    )

    assert len(schedules) == 1

    schedule = schedules[0]
    assert schedule.room is room
    assert schedule.subject_name == 'Data Structures'
    assert schedule.subject_code == 'CS201'
    assert schedule.date == date(2025, 6, 2)
    assert schedule.timeslot == '13:00-15:00'
    assert schedule.recurrence is None
    assert schedule.recurrence_end is None
    assert schedule.group is not None

    assert added.called
    assert added.call_args[0][1] == schedules


def test_recurring_classes(scheduler: Scheduler, room: Room) -> None:
    weekly = scheduler.add_class_schedule(
        room.id, 'Networks', 'Prof. Reyes', date(2025, 6, 2), '08:00-10:00',
        recurrence='weekly', recurrence_end=date(2025, 6, 30)
    )

    assert [s.date.day for s in weekly] == [2, 9, 16, 23, 30]
    assert len({s.group for s in weekly}) == 1
    assert all(s.recurrence_end == date(2025, 6, 30) for s in weekly)

    daily = scheduler.add_class_schedule(
        room.id, 'Bootcamp', 'Prof. Reyes', date(2025, 7, 1), '08:00-10:00',
        recurrence='daily', recurrence_end='2025-07-03'
    )
    assert [s.date for s in daily] == [
        date(2025, 7, 1), date(2025, 7, 2), date(2025, 7, 3)
    ]
    assert daily[0].group != weekly[0].group

    # months without the 31st are skipped
    monthly = scheduler.add_class_schedule(
        room.id, 'Seminar', 'Prof. Cruz', date(2025, 7, 31), '13:00-14:00',
        recurrence='monthly', recurrence_end=date(2025, 12, 31)
    )
    assert [s.date for s in monthly] == [
        date(2025, 7, 31), date(2025, 8, 31), date(2025, 10, 31),
        date(2025, 12, 31)
    ]

    group = scheduler.class_schedules_by_group(weekly[0].group)
    assert [s.id for s in group] == [s.id for s in weekly]


def test_invalid_classes(scheduler: Scheduler, room: Room) -> None:

    with pytest.raises(errors.MissingField):
        scheduler.add_class_schedule(
            room.id, '', 'Prof. Reyes', date(2025, 6, 2), '08:00-10:00'
        )

    with pytest.raises(errors.MissingField):
        scheduler.add_class_schedule(
            room.id, 'Networks', ' ', date(2025, 6, 2), '08:00-10:00'
        )

    with pytest.raises(errors.MalformedTime):
        scheduler.add_class_schedule(
            room.id, 'Networks', 'Prof. Reyes', date(2025, 6, 2), '10:00'
        )

    with pytest.raises(errors.MalformedTime):
        scheduler.add_class_schedule(
            room.id, 'Networks', 'Prof. Reyes', date(2025, 6, 2),
            '10:00-08:00'
        )

    with pytest.raises(errors.InvalidRecurrence):
        scheduler.add_class_schedule(
            room.id, 'Networks', 'Prof. Reyes', date(2025, 6, 2),
            '08:00-10:00', recurrence='yearly'  # type: ignore[arg-type]
        )

    with pytest.raises(errors.InvalidRecurrence):
        scheduler.add_class_schedule(
            room.id, 'Networks', 'Prof. Reyes', date(2025, 6, 2),
            '08:00-10:00', recurrence='weekly'
        )

    with pytest.raises(errors.InvalidRecurrence):
        scheduler.add_class_schedule(
            room.id, 'Networks', 'Prof. Reyes', date(2025, 6, 2),
            '08:00-10:00', recurrence='weekly',
            recurrence_end=date(2025, 6, 1)
        )

    with pytest.raises(errors.NotFoundError):
        scheduler.add_class_schedule(
            room.id + 1000, 'Networks', 'Prof. Reyes', date(2025, 6, 2),
            '08:00-10:00'
        )

    assert scheduler.session.query(ClassSchedule).count() == 0


def test_overlapping_classes_are_refused(
    scheduler: Scheduler,
    room: Room
) -> None:

    existing = scheduler.add_class_schedule(
        room.id, 'Networks', 'Prof. Reyes', date(2025, 6, 9), '13:00-15:00'
    )

    with pytest.raises(errors.OverlappingScheduleError) as e:
        scheduler.add_class_schedule(
            room.id, 'Databases', 'Prof. Cruz', date(2025, 6, 2),
            '14:00-16:00', recurrence='weekly',
            recurrence_end=date(2025, 6, 30)
        )

    assert [c.id for c in e.value.conflicts] == [existing[0].id]
    assert isinstance(e.value, errors.ConflictError)

    # nothing of the series was added
    assert scheduler.session.query(ClassSchedule).count() == 1

    # back-to-back classes are fine
    scheduler.add_class_schedule(
        room.id, 'Databases', 'Prof. Cruz', date(2025, 6, 2),
        '15:00-16:00', recurrence='weekly', recurrence_end=date(2025, 6, 30)
    )

    # as are classes in other rooms
    other = scheduler.add_room('Laboratory 2')
    scheduler.add_class_schedule(
        other.id, 'Networks', 'Prof. Reyes', date(2025, 6, 9), '13:00-15:00'
    )

    assert scheduler.session.query(ClassSchedule).count() == 7


def test_classes_take_precedence_over_reservations(
    scheduler: Scheduler,
    room: Room
) -> None:

    holder = scheduler.add_holder('Juan dela Cruz')
    reservation = scheduler.create_reservation(
        holder_id=holder.id,
        role='operator',
        resource_kind='room',
        resource_id=room.id,
        date=date(2025, 6, 2),
        start='13:00',
        end='14:00',
        purpose='Thesis defense'
    )

    scheduler.add_class_schedule(
        room.id, 'Networks', 'Prof. Reyes', date(2025, 6, 2), '13:00-15:00'
    )

    assert reservation.status == 'approved'

    conflicts = scheduler.detector.conflicting_commitments(
        room, date(2025, 6, 2), 780, 840
    )
    assert {c.source for c in conflicts} == {'reservation', 'class_schedule'}


def test_remove_class_schedule(scheduler: Scheduler, room: Room) -> None:
    weekly = scheduler.add_class_schedule(
        room.id, 'Networks', 'Prof. Reyes', date(2025, 6, 2), '08:00-10:00',
        recurrence='weekly', recurrence_end=date(2025, 6, 23)
    )
    single = scheduler.add_class_schedule(
        room.id, 'Seminar', 'Prof. Cruz', date(2025, 6, 3), '13:00-14:00'
    )

    removed = scheduler.remove_class_schedule(id=weekly[1].id)
    assert removed == [weekly[1]]
    assert weekly[1].is_deleted

    group = scheduler.class_schedules_by_group(weekly[0].group)
    assert group.count() == 3

    # a removed occurrence no longer blocks the room
    assert not scheduler.detector.has_conflict(
        room, date(2025, 6, 9), 480, 600
    )
    assert scheduler.detector.has_conflict(room, date(2025, 6, 16), 480, 600)

    # and the slot can be taught again
    scheduler.add_class_schedule(
        room.id, 'Networks', 'Prof. Lim', date(2025, 6, 9), '08:00-10:00'
    )

    removed = scheduler.remove_class_schedule(group=weekly[0].group)
    assert len(removed) == 3
    assert group.count() == 0
    assert not single[0].is_deleted

    # the records are kept
    assert scheduler.session.query(ClassSchedule).count() == 6

    with pytest.raises(errors.ValidationError):
        scheduler.remove_class_schedule()

    with pytest.raises(errors.ValidationError):
        scheduler.remove_class_schedule(id=single[0].id, group=new_uuid())

    with pytest.raises(errors.NotFoundError):
        scheduler.remove_class_schedule(group=new_uuid())

    with pytest.raises(errors.NotFoundError):
        scheduler.remove_class_schedule(id=weekly[0].id)
