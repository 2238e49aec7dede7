"""Allowed instance status transitions.

Every status write goes through :func:`transition`, so a settled instance
can never be swept back to overdue and a cancelled one cannot be paid.
"""

from billtrack.core.exceptions import InvalidStatusTransitionError
from billtrack.instances.models import InstanceStatus

TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.SCHEDULED: frozenset(
        {InstanceStatus.PENDING, InstanceStatus.PAID, InstanceStatus.OVERDUE, InstanceStatus.CANCELLED}
    ),
    InstanceStatus.PENDING: frozenset(
        {InstanceStatus.PAID, InstanceStatus.OVERDUE, InstanceStatus.CANCELLED}
    ),
    InstanceStatus.OVERDUE: frozenset({InstanceStatus.PAID, InstanceStatus.CANCELLED}),
    InstanceStatus.PAID: frozenset(),
    InstanceStatus.CANCELLED: frozenset(),
}

UNRESOLVED = frozenset({InstanceStatus.SCHEDULED, InstanceStatus.PENDING})


def can_transition(current: InstanceStatus, target: InstanceStatus) -> bool:
    return target in TRANSITIONS[current]


def transition(current: InstanceStatus, target: InstanceStatus) -> InstanceStatus:
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(current.value, target.value)
    return target


def sources_for(target: InstanceStatus) -> frozenset[InstanceStatus]:
    """Statuses from which ``target`` is reachable, for bulk status updates."""
    return frozenset(status for status, targets in TRANSITIONS.items() if target in targets)
