"""Pure arithmetic over a period's entries.

Nothing in this module reads or writes the workbook and nothing touches the
period status. The ledger service fetches entries, calls
:func:`compute_totals`, copies the result onto the record with
:func:`apply_totals`, and then asks :mod:`commission_ledger.period_state`
whether the record settles.

    net_liability = commissions + credits - debits + prior_balance
    balance       = net_liability - paid
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, List

from . import data_manager
from .constants import CENTS, ZERO, EntryKind
from .entry_store import Entry, PeriodEntries, entry_kind


@dataclass(frozen=True)
class PeriodTotals:
    """Totals derived from one period's entries."""

    sales_total: Decimal
    sales_count: int
    commissions_total: Decimal
    credits_total: Decimal
    debits_total: Decimal
    paid_total: Decimal
    prior_balance: Decimal
    net_liability: Decimal
    balance: Decimal


def _sum(amounts: Iterable[Decimal]) -> Decimal:
    return sum(amounts, ZERO).quantize(CENTS)


def compute_totals(entries: PeriodEntries, prior_balance: Decimal) -> PeriodTotals:
    """Derive the period totals from ``entries`` and the carried balance.

    The function is deterministic: equal inputs always produce equal
    :class:`PeriodTotals`, so recalculating an unchanged period is a no-op.
    """

    commissions_total = _sum(entry.commission_amount for entry in entries.commissions)
    credits_total = _sum(entry.amount for entry in entries.credits)
    debits_total = _sum(entry.amount for entry in entries.debits)
    paid_total = _sum(entry.amount for entry in entries.payments)
    prior = Decimal(prior_balance).quantize(CENTS)

    net_liability = (commissions_total + credits_total - debits_total + prior).quantize(CENTS)
    balance = (net_liability - paid_total).quantize(CENTS)

    return PeriodTotals(
        sales_total=_sum(entry.sale_amount for entry in entries.commissions),
        sales_count=len(entries.commissions),
        commissions_total=commissions_total,
        credits_total=credits_total,
        debits_total=debits_total,
        paid_total=paid_total,
        prior_balance=prior,
        net_liability=net_liability,
        balance=balance,
    )


def apply_totals(record: data_manager.PeriodRecordRow, totals: PeriodTotals) -> data_manager.PeriodRecordRow:
    """Return ``record`` with its persisted totals replaced by ``totals``."""

    return replace(
        record,
        net_liability=totals.net_liability,
        total_paid=totals.paid_total,
        balance=totals.balance,
    )


def contribution(entry: Entry) -> Decimal:
    """Return what ``entry`` adds to its period's net liability.

    Commissions and credits add their amount, debits subtract it, and
    payments contribute nothing (they reduce the balance instead).
    """

    kind = entry_kind(entry)
    if kind in (EntryKind.COMMISSION, EntryKind.CREDIT):
        return entry.amount
    if kind is EntryKind.DEBIT:
        return -entry.amount
    return ZERO


def check_identity(record: data_manager.PeriodRecordRow, entries: PeriodEntries) -> List[str]:
    """Recompute ``record`` from scratch and describe every mismatch.

    Returns:
        list[str]: Human-readable discrepancies; empty when the stored totals
            satisfy the ledger identity.
    """

    totals = compute_totals(entries, record.prior_balance)
    problems: List[str] = []
    if record.net_liability != totals.net_liability:
        problems.append(
            f"net_liability stored {record.net_liability} but entries give {totals.net_liability}"
        )
    if record.total_paid != totals.paid_total:
        problems.append(f"total_paid stored {record.total_paid} but payments give {totals.paid_total}")
    if record.balance != record.net_liability - record.total_paid:
        problems.append(
            f"balance stored {record.balance} but net_liability - total_paid is "
            f"{record.net_liability - record.total_paid}"
        )
    return problems


__all__ = ["PeriodTotals", "compute_totals", "apply_totals", "contribution", "check_identity"]
