"""Tests for the pure period arithmetic."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from commission_ledger import data_manager, recalculation
from commission_ledger.entry_store import PeriodEntries

CREATED_AT = "2025-10-05T12:00:00+00:00"


def _commission(amount: str, sale: str = "10000.00", entry_id: str = "SC-1") -> data_manager.SaleCommissionRow:
    return data_manager.SaleCommissionRow(
        entry_id=entry_id,
        sale_id=f"V-{entry_id}",
        seller_id="S1",
        period="2025-10",
        sale_amount=Decimal(sale),
        commission_percent=Decimal("10"),
        commission_amount=Decimal(amount),
        rule_applied="fixed-seller-rate",
        price_list_id=None,
        price_list_name=None,
        discount_percent=None,
        customer_name=None,
        sale_date=None,
        note=None,
        created_at=CREATED_AT,
    )


def _manual(kind: str, amount: str, entry_id: str = "LC-1") -> data_manager.ManualEntryRow:
    return data_manager.ManualEntryRow(
        entry_id=entry_id,
        seller_id="S1",
        period="2025-10",
        entry_date="2025-10-05",
        kind=kind,
        amount=Decimal(amount),
        description="manual",
        created_by="admin",
        created_at=CREATED_AT,
    )


def _payment(amount: str, entry_id: str = "PG-1") -> data_manager.PaymentRow:
    return data_manager.PaymentRow(
        entry_id=entry_id,
        seller_id="S1",
        period="2025-10",
        payment_date="2025-10-30",
        amount=Decimal(amount),
        payment_method="pix",
        receipt=None,
        notes=None,
        paid_by="admin",
        created_at=CREATED_AT,
    )


def _record(**overrides) -> data_manager.PeriodRecordRow:
    values = dict(
        record_id="S1:2025-10",
        seller_id="S1",
        period="2025-10",
        period_type="monthly",
        status="open",
        generated_at=CREATED_AT,
        closed_at=None,
        paid_at=None,
        prior_balance=Decimal("0.00"),
        net_liability=Decimal("0.00"),
        total_paid=Decimal("0.00"),
        balance=Decimal("0.00"),
    )
    values.update(overrides)
    return data_manager.PeriodRecordRow(**values)


@pytest.fixture
def october_entries() -> PeriodEntries:
    return PeriodEntries(
        commissions=(_commission("1000.00"),),
        credits=(_manual("credit", "200.00"),),
        debits=(_manual("debit", "50.00", entry_id="LD-1"),),
    )


def test_compute_totals_for_a_fresh_period(october_entries: PeriodEntries):
    totals = recalculation.compute_totals(october_entries, Decimal("0"))

    assert totals.commissions_total == Decimal("1000.00")
    assert totals.credits_total == Decimal("200.00")
    assert totals.debits_total == Decimal("50.00")
    assert totals.paid_total == Decimal("0.00")
    assert totals.net_liability == Decimal("1150.00")
    assert totals.balance == Decimal("1150.00")
    assert totals.sales_total == Decimal("10000.00")
    assert totals.sales_count == 1


def test_payment_reduces_balance_but_not_net_liability(october_entries: PeriodEntries):
    entries = replace(october_entries, payments=(_payment("1150.00"),))

    totals = recalculation.compute_totals(entries, Decimal("0"))

    assert totals.net_liability == Decimal("1150.00")
    assert totals.paid_total == Decimal("1150.00")
    assert totals.balance == Decimal("0.00")


def test_prior_balance_flows_into_net_liability():
    entries = PeriodEntries(commissions=(_commission("800.00"),))

    totals = recalculation.compute_totals(entries, Decimal("-100"))

    assert totals.prior_balance == Decimal("-100.00")
    assert totals.net_liability == Decimal("700.00")


def test_empty_period_only_carries_prior_balance():
    totals = recalculation.compute_totals(PeriodEntries(), Decimal("42.5"))
    assert totals.net_liability == totals.balance == Decimal("42.50")
    assert totals.sales_count == 0


def test_overpayment_leaves_negative_balance():
    entries = PeriodEntries(commissions=(_commission("100.00"),), payments=(_payment("120.00"),))
    assert recalculation.compute_totals(entries, Decimal("0")).balance == Decimal("-20.00")


def test_compute_totals_is_deterministic(october_entries: PeriodEntries):
    first = recalculation.compute_totals(october_entries, Decimal("10"))
    second = recalculation.compute_totals(october_entries, Decimal("10"))
    assert first == second


def test_apply_totals_replaces_only_stored_totals(october_entries: PeriodEntries):
    record = _record(status="closed", notes="keep me")
    totals = recalculation.compute_totals(october_entries, record.prior_balance)

    updated = recalculation.apply_totals(record, totals)

    assert updated.net_liability == Decimal("1150.00")
    assert updated.total_paid == Decimal("0.00")
    assert updated.balance == Decimal("1150.00")
    assert updated.status == "closed"
    assert updated.notes == "keep me"


@pytest.mark.parametrize(
    ("entry", "expected"),
    [
        (_commission("300.00"), Decimal("300.00")),
        (_manual("credit", "20.00"), Decimal("20.00")),
        (_manual("debit", "20.00"), Decimal("-20.00")),
        (_payment("99.00"), Decimal("0.00")),
    ],
)
def test_contribution_signs(entry, expected):
    assert recalculation.contribution(entry) == expected


def test_check_identity_accepts_consistent_record(october_entries: PeriodEntries):
    record = _record(net_liability=Decimal("1150.00"), balance=Decimal("1150.00"))
    assert recalculation.check_identity(record, october_entries) == []


def test_check_identity_reports_every_mismatch(october_entries: PeriodEntries):
    record = _record(
        net_liability=Decimal("1000.00"),
        total_paid=Decimal("5.00"),
        balance=Decimal("1000.00"),
    )

    problems = recalculation.check_identity(record, october_entries)

    assert len(problems) == 3
    assert problems[0].startswith("net_liability stored 1000.00")
    assert problems[1].startswith("total_paid stored 5.00")
    assert problems[2].startswith("balance stored 1000.00")
