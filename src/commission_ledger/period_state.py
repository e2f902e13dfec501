"""State machine for the period lifecycle.

::

    open --close--> closed --settle--> paid
      ^               |
      +----reopen-----+

Every transition is a pure function returning an updated record. Illegal
transitions raise :class:`~commission_ledger.errors.InvalidStateTransition`
before anything is written.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import FrozenSet, Mapping, Tuple

from . import data_manager, log
from .constants import EntryKind, LateEntryPolicy, PeriodStatus
from .errors import InvalidStateTransition


TRANSITIONS: Mapping[Tuple[PeriodStatus, PeriodStatus], str] = {
    (PeriodStatus.OPEN, PeriodStatus.CLOSED): "close",
    (PeriodStatus.CLOSED, PeriodStatus.PAID): "settle",
    (PeriodStatus.CLOSED, PeriodStatus.OPEN): "reopen",
}

# Period states that accept postings, per policy and entry kind.
_POSTABLE: Mapping[LateEntryPolicy, Mapping[EntryKind, FrozenSet[PeriodStatus]]] = {
    LateEntryPolicy.STRICT: {
        EntryKind.COMMISSION: frozenset({PeriodStatus.OPEN}),
        EntryKind.CREDIT: frozenset({PeriodStatus.OPEN}),
        EntryKind.DEBIT: frozenset({PeriodStatus.OPEN}),
        EntryKind.PAYMENT: frozenset({PeriodStatus.OPEN, PeriodStatus.CLOSED}),
    },
    LateEntryPolicy.LENIENT: {
        kind: frozenset({PeriodStatus.OPEN, PeriodStatus.CLOSED}) for kind in EntryKind
    },
}


def status_of(record: data_manager.PeriodRecordRow) -> PeriodStatus:
    """Return the record's status as a :class:`PeriodStatus`."""

    return PeriodStatus(record.status)


def can_transition(current: PeriodStatus, target: PeriodStatus) -> bool:
    """Return ``True`` when ``current -> target`` is in the transition table."""

    return (PeriodStatus(current), PeriodStatus(target)) in TRANSITIONS


def close(record: data_manager.PeriodRecordRow, *, when: datetime) -> data_manager.PeriodRecordRow:
    """Move an open period to ``closed`` and stamp ``closed_at``."""

    status = status_of(record)
    if not can_transition(status, PeriodStatus.CLOSED):
        raise InvalidStateTransition(
            f"only open periods can be closed (period {record.period} is {status.value})",
            status=status.value,
        )
    return replace(record, status=PeriodStatus.CLOSED.value, closed_at=when.isoformat())


def reopen(record: data_manager.PeriodRecordRow) -> data_manager.PeriodRecordRow:
    """Move a closed period back to ``open`` and clear ``closed_at``.

    Totals are left untouched.
    """

    status = status_of(record)
    if status is PeriodStatus.PAID:
        raise InvalidStateTransition("a paid period cannot be reopened", status=status.value)
    if not can_transition(status, PeriodStatus.OPEN):
        raise InvalidStateTransition("only closed periods can be reopened", status=status.value)
    return replace(record, status=PeriodStatus.OPEN.value, closed_at=None)


def settle(record: data_manager.PeriodRecordRow, *, when: datetime) -> data_manager.PeriodRecordRow:
    """Move a closed period whose balance is zero or below to ``paid``.

    ``paid_at`` is stamped only if it was never set.
    """

    status = status_of(record)
    if not can_transition(status, PeriodStatus.PAID):
        raise InvalidStateTransition(
            f"only closed periods can be settled (period {record.period} is {status.value})",
            status=status.value,
        )
    if record.balance > Decimal("0"):
        raise InvalidStateTransition(
            f"period {record.period} still owes {record.balance} and cannot be settled",
            status=status.value,
        )
    return replace(record, status=PeriodStatus.PAID.value, paid_at=record.paid_at or when.isoformat())


def settle_if_due(record: data_manager.PeriodRecordRow, *, when: datetime) -> data_manager.PeriodRecordRow:
    """Post-condition run after every recalculation.

    A closed record whose balance dropped to zero or below becomes ``paid``;
    any other record is returned unchanged.
    """

    if status_of(record) is PeriodStatus.CLOSED and record.balance <= Decimal("0"):
        log.info("Period '%s' of seller '%s' settled automatically", record.period, record.seller_id)
        return settle(record, when=when)
    return record


def ensure_accepts(
    record: data_manager.PeriodRecordRow,
    kind: EntryKind,
    *,
    policy: LateEntryPolicy = LateEntryPolicy.STRICT,
) -> None:
    """Reject postings of ``kind`` that the period's status forbids.

    Raises:
        InvalidStateTransition: If the period is paid, or closed and the
            policy keeps ``kind`` out of closed periods.
    """

    status = status_of(record)
    if status in _POSTABLE[LateEntryPolicy(policy)][EntryKind(kind)]:
        return
    if status is PeriodStatus.PAID:
        message = f"period {record.period} is paid and no longer accepts entries"
    else:
        message = f"period {record.period} is {status.value}; reopen it before posting {EntryKind(kind).value} entries"
    log.warning("Rejected %s posting for seller '%s': %s", EntryKind(kind).value, record.seller_id, message)
    raise InvalidStateTransition(message, status=status.value)


__all__ = [
    "TRANSITIONS",
    "status_of",
    "can_transition",
    "close",
    "reopen",
    "settle",
    "settle_if_due",
    "ensure_accepts",
]
