""" The lifecycle of a reservation.

A reservation starts out as pending or, depending on who made it, approved.
From there it moves as follows::

    pending  -> approved | rejected | cancelled
    approved -> active | completed | cancelled
    active   -> completed | cancelled

Rejected, completed and cancelled reservations are final.

"""
from __future__ import annotations

import enum

from labres.modules import errors


from typing import Literal
from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from typing_extensions import TypeAlias


Status: TypeAlias = Literal[
    'pending', 'approved', 'rejected', 'active', 'completed', 'cancelled'
]
Action: TypeAlias = Literal['approve', 'reject', 'start', 'complete', 'cancel']
ResourceKind: TypeAlias = Literal['room', 'workstation']

STATUSES: tuple[Status, ...] = (
    'pending', 'approved', 'rejected', 'active', 'completed', 'cancelled'
)

#: statuses which hold a resource, only these cause conflicts
COMMITTED: frozenset[Status] = frozenset(('approved', 'active'))

TERMINAL: frozenset[Status] = frozenset(('rejected', 'completed', 'cancelled'))


class Transition(NamedTuple):
    sources: frozenset[Status]
    target: Status


TRANSITIONS: dict[Action, Transition] = {
    'approve': Transition(frozenset(('pending', )), 'approved'),
    'reject': Transition(frozenset(('pending', )), 'rejected'),
    'start': Transition(frozenset(('approved', )), 'active'),
    'complete': Transition(frozenset(('approved', 'active')), 'completed'),
    'cancel': Transition(
        frozenset(('pending', 'approved', 'active')), 'cancelled'
    ),
}


class Role(enum.Enum):
    """ The role of the caller, as supplied by the identity collaborator. """

    #: administrators, may do anything and never need approval
    operator = 'operator'

    #: faculty, their laboratory bookings are approved if nothing conflicts
    elevated = 'elevated'

    #: students
    ordinary = 'ordinary'

    @classmethod
    def coerce(cls, value: Role | str) -> Role:
        try:
            return cls(value)
        except ValueError:
            raise errors.ValidationError(f'Unknown role: {value}') from None


def next_status(status: Status, action: Action) -> Status:
    """ Returns the status the given action leads to, or raises an
    :class:`~labres.modules.errors.InvalidTransitionError`.

    """
    if action not in TRANSITIONS:
        raise errors.ValidationError(f'Unknown action: {action}')

    transition = TRANSITIONS[action]

    if status not in transition.sources:
        raise errors.InvalidTransitionError(status, action)

    return transition.target


def reachable(status: Status) -> set[Status]:
    """ The statuses reachable from the given status with one action. """
    return {
        t.target for t in TRANSITIONS.values()
        if status in t.sources
    }


def is_terminal(status: Status) -> bool:
    return status in TERMINAL


class CreationPolicy(NamedTuple):
    status: Status
    check_conflicts: bool
    auto_approved: bool


def creation_policy(role: Role, kind: ResourceKind) -> CreationPolicy:
    """ Decides how a new reservation starts out.

    Operators get their reservations approved straight away, without any
    conflict check. Elevated requesters get their laboratory reservations
    approved if nothing conflicts. Everybody else waits in pending, which
    never blocks anyone.

    """
    if role is Role.operator:
        return CreationPolicy('approved', False, True)

    if role is Role.elevated and kind == 'room':
        return CreationPolicy('approved', True, True)

    return CreationPolicy('pending', False, False)
