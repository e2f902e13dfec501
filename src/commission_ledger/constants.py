"""Enumerations shared across the commission ledger modules.

Centralises domain constants so that the data access layer (DAL), the ledger
services, and the CLI rely on a single source of truth for collection names,
period states, and entry kinds.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Monetary values are stored and compared at cent precision.
CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


class PeriodStatus(str, Enum):
    """Lifecycle states of a commission period."""

    OPEN = "open"
    CLOSED = "closed"
    PAID = "paid"


class PeriodType(str, Enum):
    """Granularity of a period key."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class EntryKind(str, Enum):
    """Enumerate the financial facts a period can accumulate."""

    COMMISSION = "commission"
    CREDIT = "credit"
    DEBIT = "debit"
    PAYMENT = "payment"


class CommissionRule(str, Enum):
    """Rule used upstream to compute a sale commission."""

    FIXED_SELLER_RATE = "fixed-seller-rate"
    PRICE_LIST_FIXED = "price-list-fixed"
    PRICE_LIST_TIERED = "price-list-tiered"


class LateEntryPolicy(str, Enum):
    """Which period states accept new or edited entries.

    ``STRICT`` only lets payments reach closed periods; ``LENIENT`` lets every
    entry kind reach them. Paid periods never accept entries.
    """

    STRICT = "strict"
    LENIENT = "lenient"


class SheetName(str, Enum):
    """Enumerate the workbook sheets (collections) managed by the DAL."""

    PERIOD_RECORDS = "relatoriosComissao"
    MANUAL_ENTRIES = "lancamentosComissao"
    PAYMENTS = "pagamentosComissao"
    SALE_COMMISSIONS = "comissoesVendas"
    SELLERS = "vendedores"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "CENTS",
    "ZERO",
    "PeriodStatus",
    "PeriodType",
    "EntryKind",
    "CommissionRule",
    "LateEntryPolicy",
    "SheetName",
]
