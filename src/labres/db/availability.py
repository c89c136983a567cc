from __future__ import annotations

from labres.context.core import ContextServicesMixin
from labres.db.conflicts import ConflictDetector, overlapping
from labres.modules import timegrid


from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import date

    from labres.context.core import Context
    from labres.db.conflicts import Commitment
    from labres.db.models import Room, Workstation
    from labres.modules.timegrid import AllDay


class SlotView(NamedTuple):
    start: int
    end: int
    is_past: bool
    is_available: bool
    conflicts: tuple[Commitment, ...]

    @property
    def start_time(self) -> str:
        return timegrid.to_time(self.start)

    @property
    def end_time(self) -> str:
        return timegrid.to_time(self.end)


class AvailabilitySummary(NamedTuple):
    total: int
    available: int
    past: int
    conflicted: int


class AvailabilityEngine(ContextServicesMixin):
    """ Lays the commitments of a resource over the slot grid of a day.

    The engine only reads. A slot shown as available may be gone by the
    time it is booked, which is why creating a reservation checks for
    conflicts again.

    """

    def __init__(
        self,
        context: Context,
        detector: ConflictDetector | None = None
    ):
        self.context = context
        self.detector = detector or ConflictDetector(context)

    @property
    def operating_window(self) -> tuple[int, int]:
        opening = timegrid.to_minutes(self.context.get_setting('opening_time'))
        closing = timegrid.to_minutes(self.context.get_setting('closing_time'))

        assert opening < closing, 'The opening time must precede the closing'
        return opening, closing

    def validate_duration(self, duration: int | AllDay) -> int | AllDay:
        return timegrid.validate_duration(
            duration,
            self.context.get_setting('min_duration'),
            self.context.get_setting('max_duration')
        )

    def day_view(
        self,
        resource: Room | Workstation,
        day: date,
        duration: int | AllDay
    ) -> list[SlotView]:
        """ Returns one :class:`SlotView` per slot of the given duration
        within the operating window.

        A slot is available if it has not started yet and no commitment
        overlaps it.

        """
        duration = self.validate_duration(duration)
        opening, closing = self.operating_window

        commitments = self.detector.commitments(resource, day)
        now = self.now()

        slots = []

        for start, end in timegrid.slot_boundaries(opening, closing, duration):
            conflicts = tuple(overlapping(commitments, start, end))
            is_past = timegrid.is_past(day, start, now, self.timezone)

            slots.append(SlotView(
                start=start,
                end=end,
                is_past=is_past,
                is_available=not is_past and not conflicts,
                conflicts=conflicts
            ))

        return slots

    @staticmethod
    def summary(slots: Sequence[SlotView]) -> AvailabilitySummary:
        return AvailabilitySummary(
            total=len(slots),
            available=sum(1 for s in slots if s.is_available),
            past=sum(1 for s in slots if s.is_past),
            conflicted=sum(1 for s in slots if s.conflicts)
        )
