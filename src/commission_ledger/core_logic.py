"""Business logic layer for the commission ledger.

This module orchestrates every operation that changes a seller's commission
periods. It consumes the repositories in :mod:`commission_ledger.entry_store`
and :mod:`commission_ledger.period_store` for all I/O, runs the pure
arithmetic in :mod:`commission_ledger.recalculation`, and asks
:mod:`commission_ledger.period_state` which status transitions are legal.

Every mutation follows the same shape: take the per-period locks, guard the
period status, write the entry, recalculate the touched periods, and let the
settlement post-condition move closed periods to ``paid``. Nothing is written
to disk until :func:`persist_context` is called.
"""

from __future__ import annotations

import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook

from . import data_manager, log, period_state, recalculation
from .constants import CENTS, EXPECTED_SCHEMA_VERSION, ZERO, CommissionRule, EntryKind, PeriodStatus, PeriodType
from .entry_store import Entry, EntryStore, PeriodKey, entry_kind, require_text
from .errors import NotFoundError, PersistenceError, ValidationError
from .period_store import PeriodRecordStore
from .periods import validate_period


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, workbook, and repositories used by the BLL.

    The repositories and the lock registry are built from ``workbook`` when
    the context is created, so two contexts never share caches or locks.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)
    entries: EntryStore = field(init=False, repr=False, compare=False)
    periods: PeriodRecordStore = field(init=False, repr=False, compare=False)
    _locks: Dict[PeriodKey, threading.RLock] = field(init=False, repr=False, compare=False)
    _locks_guard: threading.Lock = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", EntryStore(self.workbook))
        object.__setattr__(self, "periods", PeriodRecordStore(self.workbook))
        object.__setattr__(self, "_locks", {})
        object.__setattr__(self, "_locks_guard", threading.Lock())


@dataclass(frozen=True)
class SaleCommissionCommand:
    """Commission computed upstream for one sale, as delivered by the sale feed."""

    sale_id: str
    seller_id: str
    period: str
    sale_amount: Decimal
    commission_percent: Decimal
    commission_amount: Decimal
    rule_applied: CommissionRule
    price_list_id: Optional[str] = None
    price_list_name: Optional[str] = None
    discount_percent: Optional[Decimal] = None
    customer_name: Optional[str] = None
    sale_date: Optional[str] = None
    note: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ManualEntryCommand:
    """User intent for posting a manual credit or debit."""

    seller_id: str
    period: str
    kind: EntryKind
    amount: Decimal
    description: str
    created_by: str
    entry_date: Optional[str] = None
    request_key: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PaymentCommand:
    """User intent for registering a payment made to a seller."""

    seller_id: str
    period: str
    amount: Decimal
    payment_method: str
    paid_by: str
    payment_date: Optional[str] = None
    receipt: Optional[str] = None
    notes: Optional[str] = None
    request_key: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class EditEntryCommand:
    """User intent for editing an entry, optionally moving it to another period."""

    entry_id: str
    edited_by: str
    period: Optional[str] = None
    changes: Mapping[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PeriodFilter:
    """Criteria for :func:`list_period_records`; ``None`` fields match anything."""

    seller_id: Optional[str] = None
    period: Optional[str] = None
    period_type: Optional[PeriodType] = None
    status: Optional[PeriodStatus] = None
    generated_from: Optional[date] = None
    generated_to: Optional[date] = None


@dataclass(frozen=True)
class PeriodReport:
    """Everything known about one seller's period."""

    record: data_manager.PeriodRecordRow
    seller_name: str
    seller_email: Optional[str]
    seller_initials: str
    commissions: tuple[data_manager.SaleCommissionRow, ...]
    credits: tuple[data_manager.ManualEntryRow, ...]
    debits: tuple[data_manager.ManualEntryRow, ...]
    payments: tuple[data_manager.PaymentRow, ...]
    sales_total: Decimal
    sales_count: int
    commissions_total: Decimal
    credits_total: Decimal
    debits_total: Decimal


@dataclass(frozen=True)
class SellerSummary:
    """Accumulated figures across every period of one seller."""

    seller_id: str
    seller_name: str
    period_count: int
    commissions_total: Decimal
    paid_total: Decimal
    outstanding_balance: Decimal
    average_commissions: Decimal
    max_commissions: Decimal
    min_commissions: Decimal
    latest_report: Optional[PeriodReport]


@dataclass(frozen=True)
class LedgerDiscrepancy:
    """A period whose stored totals disagree with its entries."""

    seller_id: str
    period: str
    problems: tuple[str, ...]


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or, when ``None``, the current UTC datetime."""

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return the mutable cache bucket called ``name``, creating it if needed."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _ensure_sellers_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "sellers")
    if "by_id" not in bucket:
        sellers = data_manager.get(context.workbook, data_manager.SELLERS)
        bucket["by_id"] = {seller.seller_id: seller for seller in sellers}
        log.debug("Populated sellers cache with %d entries", len(sellers))
    return bucket


def _lock_for(context: RuntimeContext, key: PeriodKey) -> threading.RLock:
    with context._locks_guard:
        lock = context._locks.get(key)
        if lock is None:
            lock = threading.RLock()
            context._locks[key] = lock
        return lock


@contextmanager
def _period_locks(context: RuntimeContext, *keys: PeriodKey) -> Iterator[None]:
    """Hold the lock of every ``(seller_id, period)`` key, taken in sorted order."""

    with ExitStack() as stack:
        for key in sorted(set(keys)):
            stack.enter_context(_lock_for(context, key))
        yield


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context holding the settings, the open workbook, and
            fresh repositories.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
        PersistenceError: If the workbook cannot be read.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Commit in-memory workbook changes to the configured data file.

    Raises:
        PersistenceError: If the workbook cannot be written.
    """
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    A new :class:`RuntimeContext` is returned, so caches and locks held by the
    previous one are dropped along with the uncommitted edits.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


# ----------------------------------------------------------------------
# Seller directory
# ----------------------------------------------------------------------


def lookup_seller(context: RuntimeContext, seller_id: str) -> data_manager.SellerRow:
    """Resolve a seller from the directory sheet.

    Raises:
        NotFoundError: If ``seller_id`` is not listed.
    """
    try:
        return _ensure_sellers_cache(context)["by_id"][seller_id]
    except KeyError as exc:
        log.warning("Seller lookup failed for id '%s'", seller_id)
        raise NotFoundError("seller", seller_id) from exc


# ----------------------------------------------------------------------
# Recalculation
# ----------------------------------------------------------------------


def _recalculate(context: RuntimeContext, seller_id: str, period: str, *, when: datetime) -> data_manager.PeriodRecordRow:
    record = context.periods.get(seller_id, period)
    entries = context.entries.list_entries(seller_id, period)
    totals = recalculation.compute_totals(entries, record.prior_balance)
    updated = period_state.settle_if_due(recalculation.apply_totals(record, totals), when=when)
    if updated != record:
        context.periods.save(updated)
        log.debug(
            "Recalculated period '%s' of seller '%s': net_liability=%s paid=%s balance=%s",
            period,
            seller_id,
            updated.net_liability,
            updated.total_paid,
            updated.balance,
        )
    return updated


def recalculate_period(
    context: RuntimeContext,
    seller_id: str,
    period: str,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.PeriodRecordRow:
    """Rebuild a period's totals from its entries and apply the settlement rule.

    Running it twice in a row changes nothing the second time.

    Raises:
        NotFoundError: If the period has no record.
    """
    with _period_locks(context, (seller_id, period)):
        return _recalculate(context, seller_id, period, when=_resolve_timestamp(timestamp))


def reconcile_periods(
    context: RuntimeContext,
    seller_id: str,
    periods: Optional[Sequence[str]] = None,
    *,
    timestamp: Optional[datetime] = None,
) -> List[data_manager.PeriodRecordRow]:
    """Recalculate ``periods`` of ``seller_id``, or every period when omitted."""

    if periods is None:
        periods = [record.period for record in context.periods.list_records(seller_id)]
    keys = [(seller_id, validate_period(period)) for period in periods]
    when = _resolve_timestamp(timestamp)
    with _period_locks(context, *keys):
        results = [_recalculate(context, seller_id, period, when=when) for _, period in sorted(keys)]
    log.info("Reconciled %d period(s) for seller '%s'", len(results), seller_id)
    return results


# ----------------------------------------------------------------------
# Entry creation
# ----------------------------------------------------------------------


def _guard_existing(context: RuntimeContext, seller_id: str, period: str, kind: EntryKind) -> None:
    record = context.periods.find(seller_id, period)
    if record is not None:
        period_state.ensure_accepts(record, kind, policy=context.settings.late_entry_policy)


def _post_entry(
    context: RuntimeContext,
    kind: EntryKind,
    seller_id: str,
    period: str,
    data: Mapping[str, Any],
    *,
    when: datetime,
) -> Entry:
    """Guard, store, and recalculate; the caller holds the period lock."""

    _guard_existing(context, seller_id, period, kind)
    entry_id = context.entries.add_entry(kind, data)
    context.periods.get_or_create(seller_id, period, when=when)
    _recalculate(context, seller_id, period, when=when)
    return context.entries.get_entry(entry_id)


def record_sale_commission(context: RuntimeContext, command: SaleCommissionCommand) -> data_manager.SaleCommissionRow:
    """Record the commission of one sale in its seller's period.

    A sale delivered twice returns the commission stored the first time
    instead of recording it again.

    Args:
        context (RuntimeContext): Runtime context with the open workbook.
        command (SaleCommissionCommand): Commission computed by the sale feed.

    Returns:
        data_manager.SaleCommissionRow: The stored commission.

    Raises:
        ValidationError: If a field violates its constraint.
        NotFoundError: If the seller is unknown.
        InvalidStateTransition: If the period no longer accepts commissions.
    """
    sale_id = require_text("sale_id", command.sale_id)
    seller_id = require_text("seller_id", command.seller_id)
    period = validate_period(command.period)
    lookup_seller(context, seller_id)

    with _period_locks(context, (seller_id, period)):
        existing = context.entries.find_commission_by_sale(sale_id)
        if existing is not None:
            log.info("Sale '%s' already recorded as commission '%s'", sale_id, existing.entry_id)
            return existing

        timestamp = _resolve_timestamp(command.timestamp)
        entry = _post_entry(
            context,
            EntryKind.COMMISSION,
            seller_id,
            period,
            {
                "sale_id": sale_id,
                "seller_id": seller_id,
                "period": period,
                "sale_amount": command.sale_amount,
                "commission_percent": command.commission_percent,
                "commission_amount": command.commission_amount,
                "rule_applied": command.rule_applied,
                "price_list_id": command.price_list_id,
                "price_list_name": command.price_list_name,
                "discount_percent": command.discount_percent,
                "customer_name": command.customer_name,
                "sale_date": command.sale_date,
                "note": command.note,
                "created_at": timestamp.isoformat(),
            },
            when=timestamp,
        )
    log.info(
        "Recorded commission '%s' for sale '%s' (seller=%s, period=%s, amount=%s)",
        entry.entry_id,
        sale_id,
        seller_id,
        period,
        entry.commission_amount,
    )
    return entry


def record_manual_entry(context: RuntimeContext, command: ManualEntryCommand) -> data_manager.ManualEntryRow:
    """Post a manual credit or debit to a seller's period.

    When ``command.request_key`` matches an entry already stored, that entry
    is returned and nothing is written.

    Raises:
        ValidationError: If the kind is not credit/debit or a field is invalid.
        NotFoundError: If the seller is unknown.
        InvalidStateTransition: If the period no longer accepts manual entries.
    """
    try:
        kind = EntryKind(command.kind)
    except ValueError as exc:
        raise ValidationError("kind", f"unknown entry kind: {command.kind!r}") from exc
    if kind not in (EntryKind.CREDIT, EntryKind.DEBIT):
        log.error("Manual entry rejected: kind '%s' is not credit or debit", kind.value)
        raise ValidationError("kind", "manual entries are either credit or debit")

    seller_id = require_text("seller_id", command.seller_id)
    period = validate_period(command.period)
    lookup_seller(context, seller_id)

    with _period_locks(context, (seller_id, period)):
        if command.request_key:
            existing = context.entries.find_by_request_key(kind, command.request_key)
            if existing is not None:
                log.info("Request '%s' already recorded as entry '%s'", command.request_key, existing.entry_id)
                return existing

        timestamp = _resolve_timestamp(command.timestamp)
        entry = _post_entry(
            context,
            kind,
            seller_id,
            period,
            {
                "seller_id": seller_id,
                "period": period,
                "entry_date": command.entry_date or timestamp.date().isoformat(),
                "amount": command.amount,
                "description": command.description,
                "created_by": command.created_by,
                "created_at": timestamp.isoformat(),
                "request_key": command.request_key,
            },
            when=timestamp,
        )
    log.info(
        "Recorded %s entry '%s' (seller=%s, period=%s, amount=%s)",
        kind.value,
        entry.entry_id,
        seller_id,
        period,
        entry.amount,
    )
    return entry


def register_payment(context: RuntimeContext, command: PaymentCommand) -> data_manager.PaymentRow:
    """Register a payment made to a seller against one period.

    A payment that brings a closed period's balance to zero or below settles
    it. Replaying a ``request_key`` returns the stored payment.

    Raises:
        ValidationError: If a field is invalid.
        NotFoundError: If the seller is unknown.
        InvalidStateTransition: If the period is paid.
    """
    seller_id = require_text("seller_id", command.seller_id)
    period = validate_period(command.period)
    lookup_seller(context, seller_id)

    with _period_locks(context, (seller_id, period)):
        if command.request_key:
            existing = context.entries.find_by_request_key(EntryKind.PAYMENT, command.request_key)
            if existing is not None:
                log.info("Request '%s' already recorded as payment '%s'", command.request_key, existing.entry_id)
                return existing

        timestamp = _resolve_timestamp(command.timestamp)
        entry = _post_entry(
            context,
            EntryKind.PAYMENT,
            seller_id,
            period,
            {
                "seller_id": seller_id,
                "period": period,
                "payment_date": command.payment_date or timestamp.date().isoformat(),
                "amount": command.amount,
                "payment_method": command.payment_method,
                "receipt": command.receipt,
                "notes": command.notes,
                "paid_by": command.paid_by,
                "created_at": timestamp.isoformat(),
                "request_key": command.request_key,
            },
            when=timestamp,
        )
    log.info(
        "Registered payment '%s' (seller=%s, period=%s, amount=%s)",
        entry.entry_id,
        seller_id,
        period,
        entry.amount,
    )
    return entry


# ----------------------------------------------------------------------
# Edits and transfers
# ----------------------------------------------------------------------


def transfer_entry(
    context: RuntimeContext,
    entry_id: str,
    period_to: str,
    *,
    edited_by: str,
    patch: Optional[Mapping[str, Any]] = None,
    timestamp: Optional[datetime] = None,
) -> Entry:
    """Move an entry to ``period_to``, applying optional field edits.

    Both periods are recalculated; the entry's contribution leaves the source
    period and arrives in the target one. When ``period_to`` is the entry's
    current period only the edits are applied and that period is recalculated
    once.

    Should a recalculation fail to persist, the entry row is restored, both
    periods are recalculated again, and the failure is re-raised.

    Args:
        context (RuntimeContext): Runtime context with the open workbook.
        entry_id (str): Identifier of the entry to move.
        period_to (str): Destination period key.
        edited_by (str): Operator recorded in the audit fields.
        patch (Mapping[str, Any] | None): Editable fields to change alongside
            the move. ``period`` is not accepted here.
        timestamp (datetime | None): Edit time; defaults to now.

    Returns:
        Entry: The entry as stored after the move.

    Raises:
        NotFoundError: If the entry or its source period is unknown.
        ValidationError: If the patch or the destination is invalid.
        InvalidStateTransition: If either period refuses the entry.
        PersistenceError: If recalculation could not be written.
    """
    original = context.entries.get_entry(entry_id)
    period_to = validate_period(period_to)
    editor = require_text("edited_by", edited_by)
    changes: Dict[str, Any] = dict(patch or {})
    if "period" in changes:
        raise ValidationError("period", "pass the destination as period_to")

    kind = entry_kind(original)
    seller_id = original.seller_id
    period_from = original.period
    policy = context.settings.late_entry_policy

    with _period_locks(context, (seller_id, period_from), (seller_id, period_to)):
        period_state.ensure_accepts(context.periods.get(seller_id, period_from), kind, policy=policy)
        if period_to != period_from:
            _guard_existing(context, seller_id, period_to, kind)

        when = _resolve_timestamp(timestamp)
        changes.update(edited_by=editor, edited_at=when.isoformat())
        if period_to != period_from:
            changes["period"] = period_to
        updated = context.entries.update_entry(entry_id, changes)

        if period_to == period_from:
            _recalculate(context, seller_id, period_from, when=when)
            log.info("Edited %s entry '%s' in period '%s' by '%s'", kind.value, entry_id, period_from, editor)
            return updated

        try:
            # Source first: a target opened here snapshots the source balance as its prior balance.
            _recalculate(context, seller_id, period_from, when=when)
            context.periods.get_or_create(seller_id, period_to, when=when)
            _recalculate(context, seller_id, period_to, when=when)
        except PersistenceError as exc:
            log.error(
                "Transfer of entry '%s' from '%s' to '%s' failed; restoring original row: %s",
                entry_id,
                period_from,
                period_to,
                exc,
            )
            context.entries.restore_entry(original)
            _recalculate(context, seller_id, period_from, when=when)
            if context.periods.find(seller_id, period_to) is not None:
                _recalculate(context, seller_id, period_to, when=when)
            raise PersistenceError(
                f"Transfer of entry '{entry_id}' to period '{period_to}' was rolled back: {exc}"
            ) from exc

    log.info(
        "Transferred %s entry '%s' from '%s' to '%s' (amount=%s) by '%s'",
        kind.value,
        entry_id,
        period_from,
        period_to,
        original.amount,
        editor,
    )
    return updated


def edit_entry(context: RuntimeContext, command: EditEntryCommand) -> Entry:
    """Apply ``command.changes`` to an entry, moving it when ``command.period`` differs.

    Edits without a period change go through the same path as transfers.
    """
    current = context.entries.get_entry(command.entry_id)
    return transfer_entry(
        context,
        command.entry_id,
        command.period or current.period,
        edited_by=command.edited_by,
        patch=command.changes,
        timestamp=command.timestamp,
    )


# ----------------------------------------------------------------------
# Period lifecycle
# ----------------------------------------------------------------------


def close_period(
    context: RuntimeContext,
    seller_id: str,
    period: str,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.PeriodRecordRow:
    """Close an open period; one that owes nothing is settled straight away.

    Raises:
        NotFoundError: If the period has no record.
        InvalidStateTransition: If the period is not open.
    """
    with _period_locks(context, (seller_id, period)):
        when = _resolve_timestamp(timestamp)
        record = context.periods.get(seller_id, period)
        context.periods.save(period_state.close(record, when=when))
        result = _recalculate(context, seller_id, period, when=when)
    log.info("Closed period '%s' of seller '%s' (status=%s, balance=%s)", period, seller_id, result.status, result.balance)
    return result


def reopen_period(context: RuntimeContext, seller_id: str, period: str) -> data_manager.PeriodRecordRow:
    """Return a closed period to ``open``, keeping its totals.

    Raises:
        NotFoundError: If the period has no record.
        InvalidStateTransition: If the period is open or paid.
    """
    with _period_locks(context, (seller_id, period)):
        record = context.periods.get(seller_id, period)
        reopened = period_state.reopen(record)
        context.periods.save(reopened)
    log.info("Reopened period '%s' of seller '%s'", period, seller_id)
    return reopened


def settle_period(
    context: RuntimeContext,
    seller_id: str,
    period: str,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.PeriodRecordRow:
    """Mark a closed period whose balance is zero or below as ``paid``.

    Raises:
        NotFoundError: If the period has no record.
        InvalidStateTransition: If the period is not closed or still owes money.
    """
    with _period_locks(context, (seller_id, period)):
        record = context.periods.get(seller_id, period)
        settled = period_state.settle(record, when=_resolve_timestamp(timestamp))
        context.periods.save(settled)
    log.info("Settled period '%s' of seller '%s'", period, seller_id)
    return settled


def annotate_period(context: RuntimeContext, seller_id: str, period: str, notes: Optional[str]) -> data_manager.PeriodRecordRow:
    """Replace the free-text notes of a period; blank notes clear them."""

    cleaned = notes.strip() if notes and notes.strip() else None
    with _period_locks(context, (seller_id, period)):
        record = replace(context.periods.get(seller_id, period), notes=cleaned)
        context.periods.save(record)
    log.info("Updated notes of period '%s' for seller '%s'", period, seller_id)
    return record


# ----------------------------------------------------------------------
# Reporting
# ----------------------------------------------------------------------


def get_period_report(context: RuntimeContext, seller_id: str, period: str) -> PeriodReport:
    """Assemble the record, seller details, and entries of one period.

    Sellers missing from the directory are reported under their id.

    Raises:
        NotFoundError: If the period has no record.
    """
    record = context.periods.get(seller_id, period)
    entries = context.entries.list_entries(seller_id, period)
    totals = recalculation.compute_totals(entries, record.prior_balance)

    seller = _ensure_sellers_cache(context)["by_id"].get(seller_id)
    return PeriodReport(
        record=record,
        seller_name=seller.name if seller else seller_id,
        seller_email=seller.email if seller else None,
        seller_initials=(seller.initials or seller_id) if seller else seller_id,
        commissions=entries.commissions,
        credits=entries.credits,
        debits=entries.debits,
        payments=entries.payments,
        sales_total=totals.sales_total,
        sales_count=totals.sales_count,
        commissions_total=totals.commissions_total,
        credits_total=totals.credits_total,
        debits_total=totals.debits_total,
    )


def _generated_on(record: data_manager.PeriodRecordRow) -> Optional[date]:
    try:
        return datetime.fromisoformat(record.generated_at).date()
    except (TypeError, ValueError):
        log.warning("Period record '%s' has an unreadable GeneratedAt value", record.record_id)
        return None


def list_period_records(
    context: RuntimeContext, filters: Optional[PeriodFilter] = None
) -> List[data_manager.PeriodRecordRow]:
    """Return period records matching ``filters``, ordered by seller then period."""

    filters = filters or PeriodFilter()
    records = context.periods.list_records(filters.seller_id)
    if filters.period is not None:
        records = [record for record in records if record.period == filters.period]
    if filters.period_type is not None:
        wanted_type = PeriodType(filters.period_type).value
        records = [record for record in records if record.period_type == wanted_type]
    if filters.status is not None:
        wanted_status = PeriodStatus(filters.status).value
        records = [record for record in records if record.status == wanted_status]
    if filters.generated_from is not None or filters.generated_to is not None:
        selected = []
        for record in records:
            generated = _generated_on(record)
            if generated is None:
                continue
            if filters.generated_from is not None and generated < filters.generated_from:
                continue
            if filters.generated_to is not None and generated > filters.generated_to:
                continue
            selected.append(record)
        records = selected
    return records


def summarize_seller(context: RuntimeContext, seller_id: str) -> SellerSummary:
    """Aggregate every period of ``seller_id``.

    The outstanding balance sums what each period added on its own
    (``balance - prior_balance``) on top of the first period's carried
    balance. Prior balances are snapshots, so a later period does not see
    payments or transfers made against earlier ones after it was opened.

    Raises:
        NotFoundError: If the seller is unknown.
    """
    seller = lookup_seller(context, seller_id)
    records = context.periods.list_records(seller_id)
    if not records:
        return SellerSummary(
            seller_id=seller_id,
            seller_name=seller.name,
            period_count=0,
            commissions_total=ZERO,
            paid_total=ZERO,
            outstanding_balance=ZERO,
            average_commissions=ZERO,
            max_commissions=ZERO,
            min_commissions=ZERO,
            latest_report=None,
        )

    per_period = [
        recalculation.compute_totals(
            context.entries.list_entries(seller_id, record.period), record.prior_balance
        ).commissions_total
        for record in records
    ]
    latest = records[-1]
    commissions_total = sum(per_period, ZERO)
    outstanding = sum(
        (record.balance - record.prior_balance for record in records), records[0].prior_balance
    ).quantize(CENTS)
    return SellerSummary(
        seller_id=seller_id,
        seller_name=seller.name,
        period_count=len(records),
        commissions_total=commissions_total,
        paid_total=sum((record.total_paid for record in records), ZERO),
        outstanding_balance=outstanding,
        average_commissions=(commissions_total / len(per_period)).quantize(CENTS),
        max_commissions=max(per_period),
        min_commissions=min(per_period),
        latest_report=get_period_report(context, seller_id, latest.period),
    )


def verify_ledger(context: RuntimeContext) -> List[LedgerDiscrepancy]:
    """Recompute every period from scratch and report stored totals that disagree.

    Entries pointing at a period that has no record are reported too.
    """
    discrepancies: List[LedgerDiscrepancy] = []
    known = set()
    for record in context.periods.list_records():
        known.add((record.seller_id, record.period))
        problems = recalculation.check_identity(
            record, context.entries.list_entries(record.seller_id, record.period)
        )
        if problems:
            discrepancies.append(LedgerDiscrepancy(record.seller_id, record.period, tuple(problems)))

    for seller_id, period in context.entries.period_keys():
        if (seller_id, period) not in known:
            discrepancies.append(
                LedgerDiscrepancy(seller_id, period, ("entries reference a period without a record",))
            )

    for discrepancy in discrepancies:
        log.warning(
            "Ledger discrepancy in period '%s' of seller '%s': %s",
            discrepancy.period,
            discrepancy.seller_id,
            "; ".join(discrepancy.problems),
        )
    log.info("Verified ledger: %d discrepancy(ies) found", len(discrepancies))
    return discrepancies


__all__ = [
    "RuntimeContext",
    "SaleCommissionCommand",
    "ManualEntryCommand",
    "PaymentCommand",
    "EditEntryCommand",
    "PeriodFilter",
    "PeriodReport",
    "SellerSummary",
    "LedgerDiscrepancy",
    "load_runtime_context",
    "ensure_schema_version",
    "persist_context",
    "refresh_context",
    "lookup_seller",
    "recalculate_period",
    "reconcile_periods",
    "record_sale_commission",
    "record_manual_entry",
    "register_payment",
    "transfer_entry",
    "edit_entry",
    "close_period",
    "reopen_period",
    "settle_period",
    "annotate_period",
    "get_period_report",
    "list_period_records",
    "summarize_seller",
    "verify_ledger",
]
