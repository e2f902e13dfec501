"""Repository for the three entry kinds a commission period accumulates.

The store is a pure data holder: it validates field-level input, assigns
identifiers, and answers queries, but it never recalculates periods or looks
at period status. Those rules live in :mod:`commission_ledger.core_logic`.

Entries are indexed by their ``(seller_id, period)`` key so that period
queries never scan the whole workbook more than once per cache generation.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import CENTS, CommissionRule, EntryKind
from .errors import NotFoundError, ValidationError
from .periods import validate_period


Entry = Union[
    data_manager.SaleCommissionRow,
    data_manager.ManualEntryRow,
    data_manager.PaymentRow,
]

PeriodKey = Tuple[str, str]

ID_PREFIXES: Mapping[EntryKind, str] = {
    EntryKind.COMMISSION: "SC",
    EntryKind.CREDIT: "LC",
    EntryKind.DEBIT: "LD",
    EntryKind.PAYMENT: "PG",
}

COLLECTION_BY_KIND: Mapping[EntryKind, str] = {
    EntryKind.COMMISSION: data_manager.SALE_COMMISSIONS,
    EntryKind.CREDIT: data_manager.MANUAL_ENTRIES,
    EntryKind.DEBIT: data_manager.MANUAL_ENTRIES,
    EntryKind.PAYMENT: data_manager.PAYMENTS,
}

AUDIT_FIELDS = frozenset({"edited_by", "edited_at"})

EDITABLE_FIELDS: Mapping[EntryKind, frozenset[str]] = {
    EntryKind.COMMISSION: frozenset({"period", "note"}),
    EntryKind.CREDIT: frozenset({"period", "entry_date", "amount", "description"}),
    EntryKind.DEBIT: frozenset({"period", "entry_date", "amount", "description"}),
    EntryKind.PAYMENT: frozenset(
        {"period", "payment_date", "amount", "payment_method", "receipt", "notes"}
    ),
}


@dataclass(frozen=True)
class PeriodEntries:
    """Entries attributed to one ``(seller_id, period)`` key, split by kind."""

    commissions: Tuple[data_manager.SaleCommissionRow, ...] = ()
    credits: Tuple[data_manager.ManualEntryRow, ...] = ()
    debits: Tuple[data_manager.ManualEntryRow, ...] = ()
    payments: Tuple[data_manager.PaymentRow, ...] = ()

    def __iter__(self) -> Iterator[Entry]:
        yield from self.commissions
        yield from self.credits
        yield from self.debits
        yield from self.payments

    def __len__(self) -> int:
        return len(self.commissions) + len(self.credits) + len(self.debits) + len(self.payments)


def entry_kind(entry: Entry) -> EntryKind:
    """Return the :class:`EntryKind` of any stored entry row."""

    return EntryKind(entry.kind)


def generate_entry_id(kind: EntryKind) -> str:
    """Generate a unique identifier such as ``LC-3F9A0C1B22D4``."""

    return f"{ID_PREFIXES[kind]}-{uuid.uuid4().hex[:12].upper()}"


def coerce_money(field_name: str, value: Any, *, allow_zero: bool = False) -> Decimal:
    """Convert ``value`` into a cent-quantized, range-checked :class:`Decimal`.

    Raises:
        ValidationError: If the value is missing, not numeric, negative, or
            zero when ``allow_zero`` is ``False``.
    """

    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(field_name, "amount is required")
    try:
        amount = Decimal(str(value)).quantize(CENTS)
    except InvalidOperation as exc:
        raise ValidationError(field_name, f"not a number: {value!r}") from exc
    if not amount.is_finite():
        raise ValidationError(field_name, f"not a number: {value!r}")
    if allow_zero and amount < Decimal("0"):
        raise ValidationError(field_name, "must be zero or positive")
    if not allow_zero and amount <= Decimal("0"):
        raise ValidationError(field_name, "must be greater than zero")
    return amount


def require_text(field_name: str, value: Any) -> str:
    """Return ``value`` stripped, rejecting missing or blank text."""

    if value is None or not str(value).strip():
        raise ValidationError(field_name, "must not be empty")
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    if value is None or not str(value).strip():
        return None
    return str(value).strip()


def _optional_number(field_name: str, value: Any) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(field_name, f"not a number: {value!r}") from exc
    if not number.is_finite() or number < Decimal("0"):
        raise ValidationError(field_name, "must be zero or positive")
    return number


class EntryStore:
    """Workbook-backed repository for commissions, manual entries, and payments."""

    def __init__(self, workbook: Workbook):
        self._workbook = workbook
        self._cache: Dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: str) -> Entry:
        """Return the entry with ``entry_id`` from any collection.

        Raises:
            NotFoundError: If no collection holds the identifier.
        """

        try:
            return self._ensure_cache()["by_id"][entry_id]
        except KeyError as exc:
            log.warning("Entry lookup failed for id '%s'", entry_id)
            raise NotFoundError("entry", entry_id) from exc

    def list_entries(self, seller_id: str, period: str) -> PeriodEntries:
        """Return every entry attributed to ``(seller_id, period)``."""

        bucket = self._ensure_cache()["by_key"].get((seller_id, period))
        if bucket is None:
            return PeriodEntries()
        return PeriodEntries(
            commissions=tuple(bucket[EntryKind.COMMISSION]),
            credits=tuple(bucket[EntryKind.CREDIT]),
            debits=tuple(bucket[EntryKind.DEBIT]),
            payments=tuple(bucket[EntryKind.PAYMENT]),
        )

    def period_keys(self) -> List[PeriodKey]:
        """Return every ``(seller_id, period)`` key referenced by an entry."""

        return sorted(self._ensure_cache()["by_key"])

    def find_commission_by_sale(self, sale_id: str) -> Optional[data_manager.SaleCommissionRow]:
        """Return the commission recorded for ``sale_id`` if one exists."""

        return self._ensure_cache()["by_sale"].get(sale_id)

    def find_by_request_key(self, kind: EntryKind, request_key: str) -> Optional[Entry]:
        """Return the entry created with the idempotency ``request_key``."""

        return self._ensure_cache()["by_request"].get((COLLECTION_BY_KIND[kind], request_key))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_entry(self, kind: EntryKind, data: Mapping[str, Any]) -> str:
        """Validate ``data``, append it as a new ``kind`` entry, return its id.

        ``data`` carries the row fields except ``entry_id`` (always generated)
        and, for manual entries, ``kind`` (taken from the argument). A
        ``created_at`` timestamp must be supplied by the caller.

        Raises:
            ValidationError: If any field violates its constraint.
        """

        kind = EntryKind(kind)
        entry_id = generate_entry_id(kind)
        if kind is EntryKind.COMMISSION:
            record: Entry = self._build_commission(entry_id, data)
        elif kind is EntryKind.PAYMENT:
            record = self._build_payment(entry_id, data)
        else:
            record = self._build_manual_entry(entry_id, kind, data)

        data_manager.create(self._workbook, COLLECTION_BY_KIND[kind], record)
        self._invalidate()
        log.debug("Stored %s entry '%s' for %s/%s", kind.value, entry_id, record.seller_id, record.period)
        return entry_id

    def update_entry(self, entry_id: str, patch: Mapping[str, Any]) -> Entry:
        """Apply ``patch`` to the stored entry and return the updated row.

        Only the editable fields of the entry's kind plus the audit fields
        ``edited_by``/``edited_at`` may be patched.

        Raises:
            NotFoundError: If ``entry_id`` is unknown.
            ValidationError: If a field is not editable or a value is invalid.
        """

        current = self.get_entry(entry_id)
        kind = entry_kind(current)
        allowed = EDITABLE_FIELDS[kind] | AUDIT_FIELDS
        changes: Dict[str, Any] = {}
        for field_name, value in patch.items():
            if field_name not in allowed:
                log.error("Rejected edit of field '%s' on %s entry '%s'", field_name, kind.value, entry_id)
                raise ValidationError(field_name, f"field is not editable on {kind.value} entries")
            changes[field_name] = self._coerce_field(kind, field_name, value)

        updated = replace(current, **changes)
        self._write(updated)
        return updated

    def restore_entry(self, entry: Entry) -> None:
        """Overwrite the stored row with a previously captured ``entry``."""

        self.get_entry(entry.entry_id)
        self._write(entry)

    def invalidate(self) -> None:
        """Drop cached rows so the next query rereads the workbook."""

        self._invalidate()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _write(self, entry: Entry) -> None:
        collection = COLLECTION_BY_KIND[entry_kind(entry)]
        data_manager.update(self._workbook, collection, entry.entry_id, entry)
        self._invalidate()

    def _coerce_field(self, kind: EntryKind, field_name: str, value: Any) -> Any:
        if field_name == "period":
            return validate_period(value)
        if field_name == "amount":
            return coerce_money("amount", value)
        if field_name == "description":
            return require_text("description", value)
        if field_name == "payment_method":
            return require_text("payment_method", value)
        if field_name in ("entry_date", "payment_date"):
            return require_text(field_name, value)
        return _optional_text(value)

    def _build_commission(self, entry_id: str, data: Mapping[str, Any]) -> data_manager.SaleCommissionRow:
        rule = data.get("rule_applied")
        try:
            rule_value = CommissionRule(rule).value
        except ValueError as exc:
            raise ValidationError("rule_applied", f"unknown commission rule: {rule!r}") from exc

        return data_manager.SaleCommissionRow(
            entry_id=entry_id,
            sale_id=require_text("sale_id", data.get("sale_id")),
            seller_id=require_text("seller_id", data.get("seller_id")),
            period=validate_period(data.get("period")),
            sale_amount=coerce_money("sale_amount", data.get("sale_amount"), allow_zero=True),
            commission_percent=_optional_number("commission_percent", data.get("commission_percent"))
            or Decimal("0"),
            commission_amount=coerce_money(
                "commission_amount", data.get("commission_amount"), allow_zero=True
            ),
            rule_applied=rule_value,
            price_list_id=_optional_text(data.get("price_list_id")),
            price_list_name=_optional_text(data.get("price_list_name")),
            discount_percent=_optional_number("discount_percent", data.get("discount_percent")),
            customer_name=_optional_text(data.get("customer_name")),
            sale_date=_optional_text(data.get("sale_date")),
            note=_optional_text(data.get("note")),
            created_at=require_text("created_at", data.get("created_at")),
        )

    def _build_manual_entry(
        self, entry_id: str, kind: EntryKind, data: Mapping[str, Any]
    ) -> data_manager.ManualEntryRow:
        return data_manager.ManualEntryRow(
            entry_id=entry_id,
            seller_id=require_text("seller_id", data.get("seller_id")),
            period=validate_period(data.get("period")),
            entry_date=require_text("entry_date", data.get("entry_date")),
            kind=kind.value,
            amount=coerce_money("amount", data.get("amount")),
            description=require_text("description", data.get("description")),
            created_by=require_text("created_by", data.get("created_by")),
            created_at=require_text("created_at", data.get("created_at")),
            request_key=_optional_text(data.get("request_key")),
        )

    def _build_payment(self, entry_id: str, data: Mapping[str, Any]) -> data_manager.PaymentRow:
        return data_manager.PaymentRow(
            entry_id=entry_id,
            seller_id=require_text("seller_id", data.get("seller_id")),
            period=validate_period(data.get("period")),
            payment_date=require_text("payment_date", data.get("payment_date")),
            amount=coerce_money("amount", data.get("amount")),
            payment_method=require_text("payment_method", data.get("payment_method")),
            receipt=_optional_text(data.get("receipt")),
            notes=_optional_text(data.get("notes")),
            paid_by=require_text("paid_by", data.get("paid_by")),
            created_at=require_text("created_at", data.get("created_at")),
            request_key=_optional_text(data.get("request_key")),
        )

    def _ensure_cache(self) -> Dict[str, Any]:
        if "by_id" in self._cache:
            return self._cache

        by_id: Dict[str, Entry] = {}
        by_key: Dict[PeriodKey, Dict[EntryKind, List[Entry]]] = {}
        by_sale: Dict[str, data_manager.SaleCommissionRow] = {}
        by_request: Dict[Tuple[str, str], Entry] = {}

        for collection in (data_manager.SALE_COMMISSIONS, data_manager.MANUAL_ENTRIES, data_manager.PAYMENTS):
            for entry in data_manager.get(self._workbook, collection):
                by_id[entry.entry_id] = entry
                bucket = by_key.setdefault(
                    (entry.seller_id, entry.period), {kind: [] for kind in EntryKind}
                )
                bucket[entry_kind(entry)].append(entry)
                if collection == data_manager.SALE_COMMISSIONS:
                    by_sale[entry.sale_id] = entry
                elif entry.request_key:
                    by_request[(collection, entry.request_key)] = entry

        self._cache.update(by_id=by_id, by_key=by_key, by_sale=by_sale, by_request=by_request)
        log.debug("Populated entry cache with %d entries across %d periods", len(by_id), len(by_key))
        return self._cache

    def _invalidate(self) -> None:
        if self._cache:
            log.debug("Invalidating entry cache")
        self._cache.clear()


__all__ = [
    "Entry",
    "PeriodEntries",
    "EntryStore",
    "entry_kind",
    "generate_entry_id",
    "coerce_money",
    "require_text",
    "EDITABLE_FIELDS",
]
