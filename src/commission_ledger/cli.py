"""Command-line entry points for the commission ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing results. Workbook changes are saved only when a mutating
command finishes with exit code ``0``.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, log
from .constants import CommissionRule, EntryKind, PeriodStatus, PeriodType
from .entry_store import entry_kind
from .errors import InvalidStateTransition, NotFoundError, PersistenceError, ValidationError


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-cli",
        description="Command-line tools for the commission ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
    )
    parser.add_argument(
        "--operator",
        default=None,
        help="Operator recorded on new and edited entries (defaults to [Defaults] Operator).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare commands that change entries or periods."""
    specs = {
        "record-commission": register_record_commission_command(subparsers),
        "add-entry": register_add_entry_command(subparsers),
        "pay": register_pay_command(subparsers),
        "edit-entry": register_edit_entry_command(subparsers),
        "transfer": register_transfer_command(subparsers),
        "close": register_period_command(subparsers, "close", "Close an open period.", run_close),
        "reopen": register_period_command(subparsers, "reopen", "Reopen a closed period.", run_reopen),
        "settle": register_period_command(
            subparsers, "settle", "Mark a closed period that owes nothing as paid.", run_settle
        ),
        "recalculate": register_recalculate_command(subparsers),
        "annotate": register_annotate_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only commands such as reports."""
    specs = {
        "report": register_report_command(subparsers),
        "periods": register_periods_command(subparsers),
        "summary": register_summary_command(subparsers),
        "verify": register_verify_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_period_key_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--seller-id", required=True)
    parser.add_argument("--period", required=True, help="Period key, YYYY-MM or YYYY.")


def register_record_commission_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``record-commission``."""
    name = "record-commission"
    help_text = "Record the commission of one sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        _add_period_key_arguments(parser)
        parser.add_argument("--sale-amount", required=True)
        parser.add_argument("--commission-percent", required=True)
        parser.add_argument("--commission-amount", required=True)
        parser.add_argument(
            "--rule",
            choices=[member.value for member in CommissionRule],
            default=CommissionRule.FIXED_SELLER_RATE.value,
        )
        parser.add_argument("--price-list-id", default=None)
        parser.add_argument("--price-list-name", default=None)
        parser.add_argument("--discount-percent", default=None)
        parser.add_argument("--customer-name", default=None)
        parser.add_argument("--sale-date", default=None)
        parser.add_argument("--note", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_record_commission)


def register_add_entry_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-entry``."""
    name = "add-entry"
    help_text = "Post a manual credit or debit."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_period_key_arguments(parser)
        parser.add_argument(
            "--kind",
            choices=[EntryKind.CREDIT.value, EntryKind.DEBIT.value],
            required=True,
        )
        parser.add_argument("--amount", required=True)
        parser.add_argument("--description", required=True)
        parser.add_argument("--entry-date", default=None)
        parser.add_argument("--request-key", default=None, help="Idempotency key for safe retries.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_entry)


def register_pay_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay``."""
    name = "pay"
    help_text = "Register a payment made to a seller."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_period_key_arguments(parser)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--method", required=True, help="Payment method, for example pix or transfer.")
        parser.add_argument("--payment-date", default=None)
        parser.add_argument("--receipt", default=None)
        parser.add_argument("--notes", default=None)
        parser.add_argument("--request-key", default=None, help="Idempotency key for safe retries.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay)


def _add_edit_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--amount", default=None)
    parser.add_argument("--description", default=None)
    parser.add_argument("--entry-date", default=None)
    parser.add_argument("--payment-date", default=None)
    parser.add_argument("--method", dest="payment_method", default=None)
    parser.add_argument("--receipt", default=None)
    parser.add_argument("--notes", default=None)
    parser.add_argument("--note", default=None)


def register_edit_entry_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-entry``."""
    name = "edit-entry"
    help_text = "Edit the editable fields of an entry."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--entry-id", required=True)
        parser.add_argument("--period", default=None, help="Move the entry to this period as part of the edit.")
        _add_edit_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_entry)


def register_transfer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``transfer``."""
    name = "transfer"
    help_text = "Move an entry to another period of the same seller."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--entry-id", required=True)
        parser.add_argument("--to", dest="period_to", required=True, help="Destination period key.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_transfer)


def register_period_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Register a lifecycle command that only needs a seller and a period."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_period_key_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_recalculate_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``recalculate``."""
    name = "recalculate"
    help_text = "Rebuild period totals from their entries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--seller-id", required=True)
        parser.add_argument(
            "--period",
            action="append",
            dest="periods",
            default=None,
            help="Period to rebuild; repeat for several. Defaults to every period of the seller.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_recalculate)


def register_annotate_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``annotate``."""
    name = "annotate"
    help_text = "Replace the notes of a period."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_period_key_arguments(parser)
        parser.add_argument("--notes", default="", help="New notes; omit to clear them.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_annotate)


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Display one period with its entries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_period_key_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_report, mutates=False)


def register_periods_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``periods``."""
    name = "periods"
    help_text = "List period records matching optional filters."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--seller-id", default=None)
        parser.add_argument("--period", default=None)
        parser.add_argument("--period-type", choices=[member.value for member in PeriodType], default=None)
        parser.add_argument("--status", choices=[member.value for member in PeriodStatus], default=None)
        parser.add_argument("--generated-from", type=date.fromisoformat, default=None)
        parser.add_argument("--generated-to", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_periods, mutates=False)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display accumulated figures for one seller."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--seller-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary, mutates=False)


def register_verify_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``verify``."""
    name = "verify"
    help_text = "Check every period against its entries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_verify, mutates=False)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def _decimal(field_name: str, raw: Optional[str]) -> Optional[Decimal]:
    if raw is None:
        return None
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValidationError(field_name, f"not a number: {raw!r}") from exc


def _operator(context: core_logic.RuntimeContext, args: argparse.Namespace) -> str:
    return getattr(args, "operator", None) or context.settings.default_operator


def translate_record_commission(args: argparse.Namespace) -> core_logic.SaleCommissionCommand:
    """Translate CLI args into a sale commission command object."""
    return core_logic.SaleCommissionCommand(
        sale_id=args.sale_id,
        seller_id=args.seller_id,
        period=args.period,
        sale_amount=_decimal("sale_amount", args.sale_amount),
        commission_percent=_decimal("commission_percent", args.commission_percent),
        commission_amount=_decimal("commission_amount", args.commission_amount),
        rule_applied=CommissionRule(args.rule),
        price_list_id=args.price_list_id,
        price_list_name=args.price_list_name,
        discount_percent=_decimal("discount_percent", args.discount_percent),
        customer_name=args.customer_name,
        sale_date=args.sale_date,
        note=args.note,
    )


def translate_add_entry(args: argparse.Namespace, operator: str) -> core_logic.ManualEntryCommand:
    """Translate CLI args into a manual entry command object."""
    return core_logic.ManualEntryCommand(
        seller_id=args.seller_id,
        period=args.period,
        kind=EntryKind(args.kind),
        amount=_decimal("amount", args.amount),
        description=args.description,
        created_by=operator,
        entry_date=args.entry_date,
        request_key=args.request_key,
    )


def translate_pay(args: argparse.Namespace, operator: str) -> core_logic.PaymentCommand:
    """Translate CLI args into a payment command object."""
    return core_logic.PaymentCommand(
        seller_id=args.seller_id,
        period=args.period,
        amount=_decimal("amount", args.amount),
        payment_method=args.method,
        paid_by=operator,
        payment_date=args.payment_date,
        receipt=args.receipt,
        notes=args.notes,
        request_key=args.request_key,
    )


_EDIT_FIELDS = ("amount", "description", "entry_date", "payment_date", "payment_method", "receipt", "notes", "note")


def translate_edit_entry(args: argparse.Namespace, operator: str) -> core_logic.EditEntryCommand:
    """Translate CLI args into an edit command; only supplied fields are changed."""
    changes = {
        field_name: getattr(args, field_name)
        for field_name in _EDIT_FIELDS
        if getattr(args, field_name, None) is not None
    }
    if "amount" in changes:
        changes["amount"] = _decimal("amount", changes["amount"])
    return core_logic.EditEntryCommand(
        entry_id=args.entry_id,
        edited_by=operator,
        period=args.period,
        changes=changes,
    )


def _print_record(record: data_manager.PeriodRecordRow) -> None:
    print(
        f"{record.seller_id} {record.period} [{record.status}] "
        f"prior={record.prior_balance} net={record.net_liability} "
        f"paid={record.total_paid} balance={record.balance}"
    )


def run_record_commission(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale commission workflow via the BLL."""
    entry = core_logic.record_sale_commission(context, translate_record_commission(args))
    print(entry.entry_id)
    return 0


def run_add_entry(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the manual entry workflow via the BLL."""
    entry = core_logic.record_manual_entry(context, translate_add_entry(args, _operator(context, args)))
    print(entry.entry_id)
    return 0


def run_pay(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the payment workflow via the BLL."""
    entry = core_logic.register_payment(context, translate_pay(args, _operator(context, args)))
    print(entry.entry_id)
    return 0


def run_edit_entry(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit workflow via the BLL."""
    entry = core_logic.edit_entry(context, translate_edit_entry(args, _operator(context, args)))
    print(f"{entry.entry_id} {entry.period}")
    return 0


def run_transfer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transfer workflow via the BLL."""
    entry = core_logic.transfer_entry(
        context, args.entry_id, args.period_to, edited_by=_operator(context, args)
    )
    print(f"{entry.entry_id} {entry.period}")
    return 0


def run_close(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the close workflow via the BLL."""
    _print_record(core_logic.close_period(context, args.seller_id, args.period))
    return 0


def run_reopen(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the reopen workflow via the BLL."""
    _print_record(core_logic.reopen_period(context, args.seller_id, args.period))
    return 0


def run_settle(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the settle workflow via the BLL."""
    _print_record(core_logic.settle_period(context, args.seller_id, args.period))
    return 0


def run_recalculate(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the reconciliation workflow via the BLL."""
    for record in core_logic.reconcile_periods(context, args.seller_id, args.periods):
        _print_record(record)
    return 0


def run_annotate(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the annotate workflow via the BLL."""
    _print_record(core_logic.annotate_period(context, args.seller_id, args.period, args.notes))
    return 0


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one period report."""
    report = core_logic.get_period_report(context, args.seller_id, args.period)
    print(f"{report.seller_name} ({report.seller_initials})")
    _print_record(report.record)
    print(
        f"sales={report.sales_count} sales_total={report.sales_total} "
        f"commissions={report.commissions_total} credits={report.credits_total} debits={report.debits_total}"
    )
    for entry in (*report.commissions, *report.credits, *report.debits, *report.payments):
        print(f"  {entry.entry_id} {entry_kind(entry).value} {entry.amount}")
    return 0


def run_periods(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the period records matching the supplied filters."""
    filters = core_logic.PeriodFilter(
        seller_id=args.seller_id,
        period=args.period,
        period_type=PeriodType(args.period_type) if args.period_type else None,
        status=PeriodStatus(args.status) if args.status else None,
        generated_from=args.generated_from,
        generated_to=args.generated_to,
    )
    for record in core_logic.list_period_records(context, filters):
        _print_record(record)
    return 0


def run_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the accumulated figures of one seller."""
    summary = core_logic.summarize_seller(context, args.seller_id)
    print(
        f"{summary.seller_name}: periods={summary.period_count} "
        f"commissions={summary.commissions_total} paid={summary.paid_total} "
        f"outstanding={summary.outstanding_balance}"
    )
    return 0


def run_verify(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Report ledger discrepancies; exit code 1 when any are found."""
    discrepancies = core_logic.verify_ledger(context)
    for discrepancy in discrepancies:
        print(f"{discrepancy.seller_id} {discrepancy.period}: {'; '.join(discrepancy.problems)}")
    return 1 if discrepancies else 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (ValidationError, InvalidStateTransition)):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, NotFoundError):
        log.error("%s", error)
        return 4
    if isinstance(error, PersistenceError):
        log.error("%s", error)
        return 5
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            core_logic.persist_context(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":
    raise SystemExit(main())
