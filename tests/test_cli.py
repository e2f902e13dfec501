"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Iterable

import pytest

from commission_ledger import cli, core_logic, data_manager
from commission_ledger.constants import CommissionRule, EntryKind, PeriodStatus
from commission_ledger.entry_store import EntryStore
from commission_ledger.errors import InvalidStateTransition, NotFoundError, PersistenceError, ValidationError
from commission_ledger.period_store import PeriodRecordStore


WRITE_COMMANDS = {
    "record-commission",
    "add-entry",
    "pay",
    "edit-entry",
    "transfer",
    "close",
    "reopen",
    "settle",
    "recalculate",
    "annotate",
}

READ_COMMANDS = {
    "report",
    "periods",
    "summary",
    "verify",
}

# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "ledger-cli"
    assert "commission ledger" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire the write and read sub-commands."""

    command_table = cli.configure_subcommands(cli_parser)
    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_mutating_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    for name, spec in specs.items():
        assert isinstance(spec, cli.CommandSpec)
        assert spec.mutates is True
        assert spec.help_text
        assert name in subparsers_action.choices


def test_register_read_commands_returns_read_only_specs(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    for name, spec in specs.items():
        assert spec.mutates is False
        assert name in subparsers_action.choices


def test_pay_command_parses_arguments():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    args = parser.parse_args(
        ["--operator", "ops", "pay", "--seller-id", "S1", "--period", "2025-10", "--amount", "150", "--method", "pix"]
    )

    assert args.command == "pay"
    assert args.operator == "ops"
    assert args.amount == "150"
    assert args.method == "pix"
    assert args.request_key is None


def test_add_entry_command_rejects_payment_kind():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    with pytest.raises(SystemExit):
        parser.parse_args(
            ["add-entry", "--seller-id", "S1", "--period", "2025-10", "--kind", "payment", "--amount", "1", "--description", "x"]
        )


def test_recalculate_command_collects_repeated_periods():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    args = parser.parse_args(["recalculate", "--seller-id", "S1", "--period", "2025-09", "--period", "2025-10"])
    assert args.periods == ["2025-09", "2025-10"]

    args = parser.parse_args(["recalculate", "--seller-id", "S1"])
    assert args.periods is None


def test_periods_command_parses_dates():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    args = parser.parse_args(["periods", "--status", "closed", "--generated-from", "2025-10-01"])
    assert args.status == "closed"
    assert args.generated_from == date(2025, 10, 1)
    assert args.generated_to is None


# ---------------------------------------------------------------------------
# Runtime context and dispatch helpers
# ---------------------------------------------------------------------------


def test_load_runtime_context_uses_provided_path(config_file, monkeypatch):
    """load_runtime_context should load settings from the specified config path."""

    loaded = core_logic.load_runtime_context(config_file)

    def fake_loader(path: Path | None) -> core_logic.RuntimeContext:
        assert path == config_file
        return loaded

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    assert cli.load_runtime_context(config_file) is loaded


def test_dispatch_command_invokes_executor(runtime_context):
    calls = []
    spec = cli.CommandSpec(
        "alpha", "help", lambda s: s.add_parser("alpha"), lambda context, args: calls.append(args.command) or 0
    )

    result = cli.dispatch_command(runtime_context, argparse.Namespace(command="alpha"), {"alpha": spec})

    assert result == 0
    assert calls == ["alpha"]


def test_dispatch_command_handles_unknown_commands(runtime_context):
    """dispatch_command should raise a clear error for unknown commands."""

    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, argparse.Namespace(command="unknown"), {})


def test_build_command_table_indexes_specs(command_spec_iterable):
    """build_command_table should index specs by their command names."""

    table = cli.build_command_table(command_spec_iterable)
    assert set(table) == {spec.name for spec in command_spec_iterable}


def test_build_command_table_detects_duplicate_commands():
    """build_command_table should guard against duplicate command names."""

    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def test_translate_record_commission_returns_command():
    args = argparse.Namespace(
        sale_id="V-1",
        seller_id="S1",
        period="2025-10",
        sale_amount="10000",
        commission_percent="10",
        commission_amount="1000",
        rule="price-list-tiered",
        price_list_id="PL-1",
        price_list_name="Atacado",
        discount_percent="5",
        customer_name="Mercado Central",
        sale_date="2025-10-04",
        note=None,
    )

    command = cli.translate_record_commission(args)

    assert command.sale_amount == Decimal("10000")
    assert command.commission_amount == Decimal("1000")
    assert command.discount_percent == Decimal("5")
    assert command.rule_applied is CommissionRule.PRICE_LIST_TIERED
    assert command.timestamp is None


def test_translate_add_entry_uses_operator():
    args = argparse.Namespace(
        seller_id="S1",
        period="2025-10",
        kind="debit",
        amount="50.00",
        description="Advance",
        entry_date=None,
        request_key="form-7",
    )

    command = cli.translate_add_entry(args, "ops")

    assert command.kind is EntryKind.DEBIT
    assert command.amount == Decimal("50.00")
    assert command.created_by == "ops"
    assert command.request_key == "form-7"


def test_translate_pay_maps_method():
    args = argparse.Namespace(
        seller_id="S1",
        period="2025-10",
        amount="150",
        method="transfer",
        payment_date="2025-10-30",
        receipt="R-1",
        notes=None,
        request_key=None,
    )

    command = cli.translate_pay(args, "ops")

    assert command.payment_method == "transfer"
    assert command.paid_by == "ops"
    assert command.amount == Decimal("150")


def test_translate_edit_entry_keeps_supplied_fields_only():
    args = argparse.Namespace(
        entry_id="LC-1",
        period="2025-11",
        amount="75",
        description=None,
        entry_date=None,
        payment_date=None,
        payment_method=None,
        receipt=None,
        notes=None,
        note=None,
    )

    command = cli.translate_edit_entry(args, "ops")

    assert command.changes == {"amount": Decimal("75")}
    assert command.period == "2025-11"
    assert command.edited_by == "ops"


def test_translate_rejects_non_numeric_amount():
    args = argparse.Namespace(
        seller_id="S1",
        period="2025-10",
        amount="twelve",
        method="pix",
        payment_date=None,
        receipt=None,
        notes=None,
        request_key=None,
    )
    with pytest.raises(ValidationError) as excinfo:
        cli.translate_pay(args, "ops")
    assert excinfo.value.field == "amount"


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (ValidationError("amount", "must be greater than zero"), 2),
        (InvalidStateTransition("only open periods can be closed", status="paid"), 2),
        (FileNotFoundError("missing"), 3),
        (NotFoundError("period", "S1:2025-10"), 4),
        (PersistenceError("disk full"), 5),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    exit_code = cli.handle_cli_error(error)
    assert exit_code == expected
    assert caplog.records


def test_handle_cli_error_logs_human_readable_message(caplog: pytest.LogCaptureFixture):
    """handle_cli_error should emit a user-friendly log message."""

    caplog.set_level("ERROR")
    cli.handle_cli_error(InvalidStateTransition("a paid period cannot be reopened", status="paid"))
    assert any("a paid period cannot be reopened" in record.getMessage() for record in caplog.records)


# ---------------------------------------------------------------------------
# main()
# ---------------------------------------------------------------------------


def test_main_persists_on_success(monkeypatch, runtime_context):
    """main should persist workbook changes when a mutating command succeeds."""

    parser = _stub_parser(command="close")
    command_table = {"close": cli.CommandSpec("close", "help", lambda _: parser, lambda *_: 0)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)

    persisted = {}
    monkeypatch.setattr(cli.core_logic, "persist_context", lambda context: persisted.setdefault("context", context))

    assert cli.main(["close"]) == 0
    assert persisted["context"] is runtime_context


def test_main_skips_persist_for_read_commands(monkeypatch, runtime_context):
    parser = _stub_parser(command="report")
    command_table = {"report": cli.CommandSpec("report", "help", lambda _: parser, lambda *_: 0, mutates=False)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)
    monkeypatch.setattr(
        cli.core_logic, "persist_context", lambda _: (_ for _ in ()).throw(AssertionError("should not persist"))
    )

    assert cli.main(["report"]) == 0


def test_main_handles_bll_errors(monkeypatch, runtime_context):
    """main should route raised errors through handle_cli_error without persisting."""

    parser = _stub_parser(command="close")
    command_table = {"close": cli.CommandSpec("close", "help", lambda _: parser, lambda *_: 0)}

    def fake_dispatch(*_: object) -> int:
        raise InvalidStateTransition("only open periods can be closed", status="closed")

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)
    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)
    monkeypatch.setattr(
        cli.core_logic, "persist_context", lambda _: (_ for _ in ()).throw(AssertionError("should not persist"))
    )

    assert cli.main(["close"]) == 2


def test_main_end_to_end_writes_workbook(config_factory, capsys):
    bundle = config_factory()
    base = ["--config", str(bundle.config_path)]

    assert cli.main(
        base
        + [
            "record-commission",
            "--sale-id", "V-1",
            "--seller-id", "S1",
            "--period", "2025-10",
            "--sale-amount", "10000",
            "--commission-percent", "10",
            "--commission-amount", "1000",
        ]
    ) == 0
    assert cli.main(
        base + ["add-entry", "--seller-id", "S1", "--period", "2025-10", "--kind", "credit", "--amount", "200", "--description", "Bonus"]
    ) == 0
    assert cli.main(
        base + ["add-entry", "--seller-id", "S1", "--period", "2025-10", "--kind", "debit", "--amount", "50", "--description", "Advance"]
    ) == 0
    assert cli.main(base + ["close", "--seller-id", "S1", "--period", "2025-10"]) == 0
    assert cli.main(
        base + ["--operator", "finance", "pay", "--seller-id", "S1", "--period", "2025-10", "--amount", "1150", "--method", "pix"]
    ) == 0

    workbook = data_manager.open_workbook(bundle.workbook_path)
    record = PeriodRecordStore(workbook).get("S1", "2025-10")
    assert record.status == PeriodStatus.PAID.value
    assert record.net_liability == Decimal("1150.00")
    assert record.balance == Decimal("0.00")
    payments = EntryStore(workbook).list_entries("S1", "2025-10").payments
    assert [payment.paid_by for payment in payments] == ["finance"]

    capsys.readouterr()
    assert cli.main(base + ["report", "--seller-id", "S1", "--period", "2025-10"]) == 0
    output = capsys.readouterr().out
    assert "Ana Souza (AS)" in output
    assert "[paid]" in output
    assert cli.main(base + ["verify"]) == 0


def test_main_does_not_persist_failed_commands(config_factory):
    bundle = config_factory()
    base = ["--config", str(bundle.config_path)]

    assert cli.main(base + ["close", "--seller-id", "S1", "--period", "2025-10"]) == 4
    assert cli.main(
        base + ["add-entry", "--seller-id", "S9", "--period", "2025-10", "--kind", "credit", "--amount", "1", "--description", "x"]
    ) == 4
    assert cli.main(
        base + ["add-entry", "--seller-id", "S1", "--period", "2025-10", "--kind", "credit", "--amount", "0", "--description", "x"]
    ) == 2

    workbook = data_manager.open_workbook(bundle.workbook_path)
    assert PeriodRecordStore(workbook).list_records() == []


def test_main_missing_config_returns_file_not_found(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "verify"]) == 3


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            return argparse.Namespace(command=command, config=None, operator=None)

    return _Stub(prog="test")


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    """Return the set of registered sub-command names for assertion helpers."""

    actions = getattr(parser, "_subparsers", None)
    if not actions:
        return set()
    group_actions = actions._group_actions  # type: ignore[attr-defined]
    if not group_actions:
        return set()
    return set(group_actions[0].choices)  # type: ignore[index]
