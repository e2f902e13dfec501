"""Data access layer for the commission ledger.

This module provides low-level helpers that read from and write to the ledger
workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Collection operations: the four persistence verbs (:func:`get`,
   :func:`get_by_id`, :func:`create`, :func:`update`) over named collections,
   each backed by one worksheet.

Library and filesystem failures surface as
:class:`~commission_ledger.errors.PersistenceError` so callers never need to
know about ``openpyxl`` internals.
"""


from __future__ import annotations

import configparser
import zipfile
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import log
from .constants import CENTS, EntryKind, LateEntryPolicy, SheetName
from .errors import PersistenceError


CONFIG_FILE_NAME = "config.ini"
PERIOD_RECORDS = SheetName.PERIOD_RECORDS.value
MANUAL_ENTRIES = SheetName.MANUAL_ENTRIES.value
PAYMENTS = SheetName.PAYMENTS.value
SALE_COMMISSIONS = SheetName.SALE_COMMISSIONS.value
SELLERS = SheetName.SELLERS.value


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    company_name: str
    schema_version: str
    default_operator: str
    late_entry_policy: LateEntryPolicy = LateEntryPolicy.STRICT


@dataclass(frozen=True)
class SaleCommissionRow:
    """In-memory view of a row from the ``comissoesVendas`` sheet."""

    entry_id: str
    sale_id: str
    seller_id: str
    period: str
    sale_amount: Decimal
    commission_percent: Decimal
    commission_amount: Decimal
    rule_applied: str
    price_list_id: Optional[str]
    price_list_name: Optional[str]
    discount_percent: Optional[Decimal]
    customer_name: Optional[str]
    sale_date: Optional[str]
    note: Optional[str]
    created_at: str
    edited_by: Optional[str] = None
    edited_at: Optional[str] = None

    @property
    def kind(self) -> EntryKind:
        return EntryKind.COMMISSION

    @property
    def amount(self) -> Decimal:
        return self.commission_amount


@dataclass(frozen=True)
class ManualEntryRow:
    """In-memory view of a row from the ``lancamentosComissao`` sheet."""

    entry_id: str
    seller_id: str
    period: str
    entry_date: str
    kind: str
    amount: Decimal
    description: str
    created_by: str
    created_at: str
    edited_by: Optional[str] = None
    edited_at: Optional[str] = None
    request_key: Optional[str] = None


@dataclass(frozen=True)
class PaymentRow:
    """In-memory view of a row from the ``pagamentosComissao`` sheet."""

    entry_id: str
    seller_id: str
    period: str
    payment_date: str
    amount: Decimal
    payment_method: str
    receipt: Optional[str]
    notes: Optional[str]
    paid_by: str
    created_at: str
    edited_by: Optional[str] = None
    edited_at: Optional[str] = None
    request_key: Optional[str] = None

    @property
    def kind(self) -> EntryKind:
        return EntryKind.PAYMENT


@dataclass(frozen=True)
class PeriodRecordRow:
    """In-memory view of a row from the ``relatoriosComissao`` sheet."""

    record_id: str
    seller_id: str
    period: str
    period_type: str
    status: str
    generated_at: str
    closed_at: Optional[str]
    paid_at: Optional[str]
    prior_balance: Decimal
    net_liability: Decimal
    total_paid: Decimal
    balance: Decimal
    notes: Optional[str] = None


@dataclass(frozen=True)
class SellerRow:
    """In-memory view of a row from the ``vendedores`` sheet."""

    seller_id: str
    name: str
    email: Optional[str]
    initials: Optional[str]
    is_active: bool


@dataclass(frozen=True)
class CollectionSchema:
    """Column layout and row codecs for one named collection."""

    name: str
    columns: tuple[str, ...]
    serialize: Callable[[Any], List[object]]
    deserialize: Callable[[Sequence[object]], Any]

    @property
    def key_column(self) -> str:
        return self.columns[0]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data. Required entries are validated later by
            :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` entries are mandatory. The ``[Ledger]``
    section is optional; ``LateEntryPolicy`` falls back to ``strict``. Relative
    ``DataFile`` paths are anchored to ``base_path`` (or the working
    directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``LateEntryPolicy`` names an unknown policy.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        company_name = parser.get("System", "CompanyName")
        schema_version = parser.get("System", "SchemaVersion")
        default_operator = parser.get("Defaults", "Operator")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    policy_raw = parser.get("Ledger", "LateEntryPolicy", fallback=LateEntryPolicy.STRICT.value)
    try:
        late_entry_policy = LateEntryPolicy(policy_raw.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown LateEntryPolicy: {policy_raw}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        company_name=company_name,
        schema_version=schema_version,
        default_operator=default_operator,
        late_entry_policy=late_entry_policy,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the ledger workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
        PersistenceError: If the file exists but cannot be read as a workbook.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    try:
        return openpyxl.load_workbook(data_file)
    except (InvalidFileException, zipfile.BadZipFile, OSError) as exc:
        log.error("Unable to read workbook '%s': %s", data_file, exc)
        raise PersistenceError(f"Unable to read workbook {data_file}: {exc}") from exc


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.

    Raises:
        PersistenceError: If the file cannot be written.
    """

    dest = Path(destination).expanduser().resolve()
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(dest)
    except OSError as exc:
        log.error("Unable to write workbook '%s': %s", dest, exc)
        raise PersistenceError(f"Unable to write workbook {dest}: {exc}") from exc


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def get_schema(collection: str) -> CollectionSchema:
    """Return the :class:`CollectionSchema` registered for ``collection``.

    Raises:
        KeyError: If no collection with that name is known.
    """

    try:
        return COLLECTIONS[collection]
    except KeyError as exc:
        raise KeyError(f"Unknown collection: {collection}") from exc


def get(workbook: Workbook, collection: str) -> List[Any]:
    """Return every record stored in ``collection`` in sheet order.

    The header row and fully empty rows are skipped. Each remaining row is
    converted into the collection's row dataclass.

    Raises:
        PersistenceError: If the workbook lacks the collection's sheet.
    """

    schema = get_schema(collection)
    sheet = _sheet(workbook, collection)
    return [schema.deserialize(_pad(raw, len(schema.columns))) for raw in _iter_raw_rows(sheet)]


def get_by_id(workbook: Workbook, collection: str, record_id: str) -> Optional[Any]:
    """Return the record whose key column equals ``record_id`` or ``None``."""

    schema = get_schema(collection)
    row_index = locate_row(workbook, collection, schema.key_column, record_id)
    if row_index is None:
        return None
    sheet = _sheet(workbook, collection)
    raw = next(sheet.iter_rows(min_row=row_index, max_row=row_index, values_only=True))
    return schema.deserialize(_pad(raw, len(schema.columns)))


def create(workbook: Workbook, collection: str, record: Any) -> None:
    """Append ``record`` to ``collection``.

    The dataclass is serialized into the exact column ordering expected by the
    sheet before being appended.
    """

    schema = get_schema(collection)
    sheet = _sheet(workbook, collection)
    sheet.append(schema.serialize(record))


def update(workbook: Workbook, collection: str, record_id: str, record: Any) -> None:
    """Overwrite the stored row identified by ``record_id`` with ``record``.

    Every column is rewritten from the serialized record, so callers pass the
    full replacement (typically built with :func:`dataclasses.replace`).

    Raises:
        KeyError: If no row carries ``record_id``.
        PersistenceError: If the workbook lacks the collection's sheet.
    """

    schema = get_schema(collection)
    row_index = locate_row(workbook, collection, schema.key_column, record_id)
    if row_index is None:
        raise KeyError(f"Record not found in {collection}: {record_id}")

    sheet = _sheet(workbook, collection)
    for column_index, value in enumerate(schema.serialize(record), start=1):
        sheet.cell(row=row_index, column=column_index).value = value


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = _sheet(workbook, sheet_name)
    header_cells = list(sheet[1])
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(header_cells)}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def _sheet(workbook: Workbook, name: str) -> Worksheet:
    try:
        return workbook[name]
    except KeyError as exc:
        log.error("Workbook is missing the '%s' sheet", name)
        raise PersistenceError(f"Workbook is missing the '{name}' collection") from exc


def _iter_raw_rows(sheet: Worksheet) -> Iterable[Sequence[object]]:
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def _pad(raw: Sequence[object], width: int) -> tuple[object, ...]:
    values = tuple(raw[:width])
    return values + (None,) * (width - len(values))


def _money(raw: object) -> Decimal:
    if raw is None or raw == "":
        return Decimal("0.00")
    try:
        return Decimal(str(raw)).quantize(CENTS)
    except InvalidOperation as exc:
        raise PersistenceError(f"Invalid monetary value in workbook: {raw!r}") from exc


def _number(raw: object) -> Optional[Decimal]:
    if raw is None or raw == "":
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation as exc:
        raise PersistenceError(f"Invalid numeric value in workbook: {raw!r}") from exc


def _text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def serialize_sale_commission(record: SaleCommissionRow) -> List[object]:
    """Convert a sale commission dataclass into the worksheet column order."""

    return [
        record.entry_id,
        record.sale_id,
        record.seller_id,
        record.period,
        record.sale_amount,
        record.commission_percent,
        record.commission_amount,
        record.rule_applied,
        record.price_list_id,
        record.price_list_name,
        record.discount_percent,
        record.customer_name,
        record.sale_date,
        record.note,
        record.created_at,
        record.edited_by,
        record.edited_at,
    ]


def serialize_manual_entry(record: ManualEntryRow) -> List[object]:
    """Convert a manual entry dataclass into the worksheet column order."""

    return [
        record.entry_id,
        record.seller_id,
        record.period,
        record.entry_date,
        record.kind,
        record.amount,
        record.description,
        record.created_by,
        record.created_at,
        record.edited_by,
        record.edited_at,
        record.request_key,
    ]


def serialize_payment(record: PaymentRow) -> List[object]:
    """Convert a payment dataclass into the worksheet column order."""

    return [
        record.entry_id,
        record.seller_id,
        record.period,
        record.payment_date,
        record.amount,
        record.payment_method,
        record.receipt,
        record.notes,
        record.paid_by,
        record.created_at,
        record.edited_by,
        record.edited_at,
        record.request_key,
    ]


def serialize_period_record(record: PeriodRecordRow) -> List[object]:
    """Convert a period record dataclass into the worksheet column order."""

    return [
        record.record_id,
        record.seller_id,
        record.period,
        record.period_type,
        record.status,
        record.generated_at,
        record.closed_at,
        record.paid_at,
        record.prior_balance,
        record.net_liability,
        record.total_paid,
        record.balance,
        record.notes,
    ]


def serialize_seller(record: SellerRow) -> List[object]:
    """Convert a seller dataclass into the worksheet column order."""

    return [record.seller_id, record.name, record.email, record.initials, record.is_active]


def deserialize_sale_commission(raw_row: Sequence[object]) -> SaleCommissionRow:
    """Convert a raw worksheet row into a :class:`SaleCommissionRow`.

    Monetary columns become cent-quantized :class:`~decimal.Decimal` values;
    percentages keep their stored precision. Identifier columns are coerced
    to ``str`` because Excel may have turned them into numbers.
    """

    (
        entry_id,
        sale_id,
        seller_id,
        period,
        sale_amount,
        commission_percent,
        commission_amount,
        rule_applied,
        price_list_id,
        price_list_name,
        discount_percent,
        customer_name,
        sale_date,
        note,
        created_at,
        edited_by,
        edited_at,
    ) = raw_row

    return SaleCommissionRow(
        entry_id=str(entry_id),
        sale_id=str(sale_id),
        seller_id=str(seller_id),
        period=str(period),
        sale_amount=_money(sale_amount),
        commission_percent=_number(commission_percent) or Decimal("0"),
        commission_amount=_money(commission_amount),
        rule_applied=str(rule_applied) if rule_applied is not None else "",
        price_list_id=_text(price_list_id),
        price_list_name=_text(price_list_name),
        discount_percent=_number(discount_percent),
        customer_name=_text(customer_name),
        sale_date=_text(sale_date),
        note=_text(note),
        created_at=str(created_at) if created_at is not None else "",
        edited_by=_text(edited_by),
        edited_at=_text(edited_at),
    )


def deserialize_manual_entry(raw_row: Sequence[object]) -> ManualEntryRow:
    """Convert a raw worksheet row into a :class:`ManualEntryRow`."""

    (
        entry_id,
        seller_id,
        period,
        entry_date,
        kind,
        amount,
        description,
        created_by,
        created_at,
        edited_by,
        edited_at,
        request_key,
    ) = raw_row

    return ManualEntryRow(
        entry_id=str(entry_id),
        seller_id=str(seller_id),
        period=str(period),
        entry_date=str(entry_date) if entry_date is not None else "",
        kind=str(kind) if kind is not None else "",
        amount=_money(amount),
        description=str(description) if description is not None else "",
        created_by=str(created_by) if created_by is not None else "",
        created_at=str(created_at) if created_at is not None else "",
        edited_by=_text(edited_by),
        edited_at=_text(edited_at),
        request_key=_text(request_key),
    )


def deserialize_payment(raw_row: Sequence[object]) -> PaymentRow:
    """Convert a raw worksheet row into a :class:`PaymentRow`."""

    (
        entry_id,
        seller_id,
        period,
        payment_date,
        amount,
        payment_method,
        receipt,
        notes,
        paid_by,
        created_at,
        edited_by,
        edited_at,
        request_key,
    ) = raw_row

    return PaymentRow(
        entry_id=str(entry_id),
        seller_id=str(seller_id),
        period=str(period),
        payment_date=str(payment_date) if payment_date is not None else "",
        amount=_money(amount),
        payment_method=str(payment_method) if payment_method is not None else "",
        receipt=_text(receipt),
        notes=_text(notes),
        paid_by=str(paid_by) if paid_by is not None else "",
        created_at=str(created_at) if created_at is not None else "",
        edited_by=_text(edited_by),
        edited_at=_text(edited_at),
        request_key=_text(request_key),
    )


def deserialize_period_record(raw_row: Sequence[object]) -> PeriodRecordRow:
    """Convert a raw worksheet row into a :class:`PeriodRecordRow`.

    Optional timestamps stay ``None`` when the sheet leaves them blank; totals
    default to zero.
    """

    (
        record_id,
        seller_id,
        period,
        period_type,
        status,
        generated_at,
        closed_at,
        paid_at,
        prior_balance,
        net_liability,
        total_paid,
        balance,
        notes,
    ) = raw_row

    return PeriodRecordRow(
        record_id=str(record_id),
        seller_id=str(seller_id),
        period=str(period),
        period_type=str(period_type) if period_type is not None else "",
        status=str(status) if status is not None else "",
        generated_at=str(generated_at) if generated_at is not None else "",
        closed_at=_text(closed_at),
        paid_at=_text(paid_at),
        prior_balance=_money(prior_balance),
        net_liability=_money(net_liability),
        total_paid=_money(total_paid),
        balance=_money(balance),
        notes=_text(notes),
    )


def deserialize_seller(raw_row: Sequence[object]) -> SellerRow:
    """Convert a raw worksheet row into a :class:`SellerRow`."""

    seller_id, name, email, initials, is_active = raw_row
    return SellerRow(
        seller_id=str(seller_id),
        name=str(name) if name is not None else str(seller_id),
        email=_text(email),
        initials=_text(initials),
        is_active=bool(is_active),
    )


COLLECTIONS: Mapping[str, CollectionSchema] = {
    SALE_COMMISSIONS: CollectionSchema(
        name=SALE_COMMISSIONS,
        columns=(
            "ID",
            "SaleID",
            "SellerID",
            "Period",
            "SaleAmount",
            "CommissionPercent",
            "CommissionAmount",
            "RuleApplied",
            "PriceListID",
            "PriceListName",
            "DiscountPercent",
            "CustomerName",
            "SaleDate",
            "Note",
            "CreatedAt",
            "EditedBy",
            "EditedAt",
        ),
        serialize=serialize_sale_commission,
        deserialize=deserialize_sale_commission,
    ),
    MANUAL_ENTRIES: CollectionSchema(
        name=MANUAL_ENTRIES,
        columns=(
            "ID",
            "SellerID",
            "Period",
            "EntryDate",
            "Kind",
            "Amount",
            "Description",
            "CreatedBy",
            "CreatedAt",
            "EditedBy",
            "EditedAt",
            "RequestKey",
        ),
        serialize=serialize_manual_entry,
        deserialize=deserialize_manual_entry,
    ),
    PAYMENTS: CollectionSchema(
        name=PAYMENTS,
        columns=(
            "ID",
            "SellerID",
            "Period",
            "PaymentDate",
            "Amount",
            "PaymentMethod",
            "Receipt",
            "Notes",
            "PaidBy",
            "CreatedAt",
            "EditedBy",
            "EditedAt",
            "RequestKey",
        ),
        serialize=serialize_payment,
        deserialize=deserialize_payment,
    ),
    PERIOD_RECORDS: CollectionSchema(
        name=PERIOD_RECORDS,
        columns=(
            "ID",
            "SellerID",
            "Period",
            "PeriodType",
            "Status",
            "GeneratedAt",
            "ClosedAt",
            "PaidAt",
            "PriorBalance",
            "NetLiability",
            "TotalPaid",
            "Balance",
            "Notes",
        ),
        serialize=serialize_period_record,
        deserialize=deserialize_period_record,
    ),
    SELLERS: CollectionSchema(
        name=SELLERS,
        columns=("SellerID", "Name", "Email", "Initials", "IsActive"),
        serialize=serialize_seller,
        deserialize=deserialize_seller,
    ),
}

SHEET_COLUMNS: Dict[str, Sequence[str]] = {name: schema.columns for name, schema in COLLECTIONS.items()}
