"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
import json
from dataclasses import replace
from decimal import Decimal

import pytest

from esnaf_defteri import cli, core_logic, data_manager
from esnaf_defteri.constants import Collection, ExpenseCategory, PaymentMethod, ProductType, StockAdjustmentCategory


WRITE_COMMANDS = {
    "add-customer",
    "add-product",
    "sale",
    "payment",
    "cash-sale",
    "delete-sale",
    "adjust-stock",
    "delete-adjustment",
    "add-expense",
    "delete-customer",
    "delete-product",
    "close-day",
    "assistant-action",
}

READ_COMMANDS = {
    "balances",
    "stock",
    "alerts",
    "cashbox",
    "profit",
    "check",
    "snapshot",
}

# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should name the program and accept global options."""

    parser = cli.build_parser()
    assert parser.prog == "esnaf-cli"

    args = parser.parse_args(["--config", "shop.ini", "--owner", "owner-9"])
    assert str(args.config) == "shop.ini"
    assert args.owner == "owner-9"


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should expose read and write commands."""

    table = cli.configure_subcommands(cli_parser)
    assert set(table) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    """register_write_commands should return one spec per write command."""

    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    assert all(isinstance(spec, cli.CommandSpec) for spec in specs.values())


def test_register_read_commands_returns_command_specs(subparsers_action):
    """register_read_commands should return one spec per read command."""

    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS


def test_register_add_product_command_configures_arguments(cli_parser, subparsers_action):
    """add-product should parse type, prices and the low-stock threshold."""

    spec = cli.register_add_product_command(subparsers_action)
    spec.register(subparsers_action)

    args = cli_parser.parse_args(
        ["add-product", "--name", "Kıyma", "--type", "beef", "--price", "450", "--cost", "380"]
    )
    assert args.command == "add-product"
    assert args.product_type == "beef"
    assert args.low_stock_threshold == "0"

    with pytest.raises(SystemExit):
        cli_parser.parse_args(["add-product", "--name", "X", "--type", "fish", "--price", "1", "--cost", "1"])


def test_register_payment_command_defaults_to_cash(cli_parser, subparsers_action):
    """payment should default to a cash payment without a description."""

    cli.register_payment_command(subparsers_action).register(subparsers_action)

    args = cli_parser.parse_args(["payment", "--customer-id", "CUS1", "--total", "50"])
    assert args.method == PaymentMethod.CASH.value
    assert args.description is None


def test_register_adjust_stock_command_accepts_negative_quantity(cli_parser, subparsers_action):
    """adjust-stock should accept signed quantities and known categories."""

    cli.register_adjust_stock_command(subparsers_action).register(subparsers_action)

    args = cli_parser.parse_args(
        ["adjust-stock", "--product-id", "PRD1", "--quantity=-2", "--description", "Fire", "--category", "Bozulma"]
    )
    assert args.quantity == "-2"
    assert args.category == StockAdjustmentCategory.SPOILAGE.value


def test_register_assistant_action_command_limits_names(cli_parser, subparsers_action):
    """assistant-action should only accept known action names."""

    cli.register_assistant_action_command(subparsers_action).register(subparsers_action)

    args = cli_parser.parse_args(["assistant-action", "--name", "deleteSale", "--payload", '{"saleId": "ORD1"}'])
    assert args.action_name == "deleteSale"

    with pytest.raises(SystemExit):
        cli_parser.parse_args(["assistant-action", "--name", "dropDatabase"])


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_dispatch_command_invokes_executor(runtime_context):
    """dispatch_command should call the executor associated with the command."""

    calls = []
    spec = cli.CommandSpec(
        "alpha",
        "alpha help",
        lambda subparsers: subparsers.add_parser("alpha"),
        lambda context, args: calls.append((context, args)) or 0,
    )
    args = argparse.Namespace(command="alpha")

    assert cli.dispatch_command(runtime_context, args, {"alpha": spec}) == 0
    assert calls == [(runtime_context, args)]


def test_dispatch_command_handles_unknown_commands(runtime_context):
    """dispatch_command should raise a clear error for unknown commands."""

    args = argparse.Namespace(command="unknown")
    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, args, {})


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


def test_parse_decimal_rejects_non_numbers():
    """parse_decimal should turn bad input into a validation error."""

    assert cli.parse_decimal("12.50", "total") == Decimal("12.50")
    with pytest.raises(core_logic.ValidationError):
        cli.parse_decimal("on iki", "total")


def test_translate_add_customer_returns_customer_command():
    """translate_add_customer should produce a CustomerCommand instance."""

    args = argparse.Namespace(name="Ayşe", email=None, opening_balance="250")
    command = cli.translate_add_customer(args)
    assert command == core_logic.CustomerCommand(name="Ayşe", email=None, opening_balance=Decimal("250"))


def test_translate_add_product_returns_product_command():
    """translate_add_product should produce a ProductCommand instance."""

    args = argparse.Namespace(name="Kıyma", product_type="beef", price="450", cost="380", low_stock_threshold="5")
    command = cli.translate_add_product(args)
    assert command.product_type is ProductType.BEEF
    assert command.low_stock_threshold == Decimal("5")


def test_translate_payment_returns_payment_command():
    """translate_payment should produce a PaymentCommand instance."""

    args = argparse.Namespace(customer_id="CUS1", total="40", method="card", description=None)
    command = cli.translate_payment(args)
    assert isinstance(command, core_logic.PaymentCommand)
    assert command.payment_method is PaymentMethod.CARD
    assert command.total == Decimal("40")


def test_translate_adjust_stock_returns_adjustment_command():
    """translate_adjust_stock should keep the quantity's sign."""

    args = argparse.Namespace(product_id="PRD1", quantity="-9", description="Fire", category="Bozulma")
    command = cli.translate_adjust_stock(args)
    assert command.quantity == Decimal("-9")
    assert command.category is StockAdjustmentCategory.SPOILAGE


def test_translate_add_expense_returns_expense_command():
    """translate_add_expense should produce an ExpenseCommand instance."""

    args = argparse.Namespace(description="Kira", amount="5000", category="Kira")
    command = cli.translate_add_expense(args)
    assert command.category is ExpenseCategory.RENT


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]"])
def test_translate_assistant_payload_requires_json_object(raw):
    """The payload option must decode to a JSON object."""

    with pytest.raises(core_logic.ValidationError):
        cli.translate_assistant_payload(argparse.Namespace(payload=raw))


# ---------------------------------------------------------------------------
# Command execution helpers
# ---------------------------------------------------------------------------


def test_run_sale_invokes_coordinator(runtime_context, monkeypatch, capsys):
    """run_sale should delegate to the coordinator and print the order id."""

    command = core_logic.SaleCommand(customer_id="CUS1", description="Kıyma", total=Decimal("10"))
    monkeypatch.setattr(cli, "translate_sale", lambda value: command)
    called = {}

    def fake_add_sale(context, cmd):
        called["context"] = context
        called["cmd"] = cmd
        return argparse.Namespace(order_id="ORD1")

    monkeypatch.setattr(cli.core_logic, "add_sale", fake_add_sale)

    assert cli.run_sale(runtime_context, argparse.Namespace()) == 0
    assert called == {"context": runtime_context, "cmd": command}
    assert capsys.readouterr().out.strip() == "ORD1"


def test_run_check_reports_drift(runtime_context, capsys):
    """run_check should exit with 1 when stored values disagree with the log."""

    customer = core_logic.add_customer(
        runtime_context, core_logic.CustomerCommand(name="Ayşe", opening_balance=Decimal("100"))
    )
    assert cli.run_check(runtime_context, argparse.Namespace()) == 0
    assert capsys.readouterr().out.strip() == "OK"

    core_logic.update_customer(runtime_context, replace(customer, balance=Decimal("1")))

    assert cli.run_check(runtime_context, argparse.Namespace()) == 1
    assert customer.customer_id in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Error handling and entry point
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (core_logic.ValidationError("bad"), 2),
        (core_logic.NotFoundError("missing"), 2),
        (FileNotFoundError("config"), 3),
        (data_manager.PersistenceFailure("disk"), 4),
        (RuntimeError("schema"), 1),
    ],
)
def test_handle_cli_error_maps_exit_codes(error, code):
    """handle_cli_error should convert failures into exit codes."""

    assert cli.handle_cli_error(error) == code


def test_main_records_sale_and_reports_balances(config_file, capsys):
    """main should run write and read commands against the configured workbook."""

    base = ["--config", str(config_file)]
    assert cli.main([*base, "add-customer", "--name", "Ayşe", "--opening-balance", "100"]) == 0
    customer_id = capsys.readouterr().out.split("\t")[0]

    assert cli.main([*base, "sale", "--customer-id", customer_id, "--description", "Kıyma", "--total", "25.50"]) == 0
    capsys.readouterr()

    assert cli.main([*base, "balances"]) == 0
    output = capsys.readouterr().out
    assert f"{customer_id}\tAyşe\t₺125,50" in output

    assert cli.main([*base, "check"]) == 0
    assert capsys.readouterr().out.strip() == "OK"


def test_main_profit_report_includes_monthly_series(config_file, capsys):
    """profit prints the totals followed by one line per recent month."""

    base = ["--config", str(config_file)]
    assert cli.main([*base, "cash-sale", "--description", "Sucuk", "--total", "90"]) == 0
    capsys.readouterr()

    assert cli.main([*base, "profit"]) == 0
    lines = capsys.readouterr().out.splitlines()

    assert lines[0] == "Gelir: ₺90,00"
    assert len(lines) == 3 + 6
    assert lines[-1].endswith("\t₺90,00")


def test_main_runs_assistant_actions(config_file, capsys):
    """assistant-action should validate the payload and print the message."""

    base = ["--config", str(config_file)]
    payload = json.dumps({"description": "Elektrik", "amount": "320", "category": "Fatura"})

    assert cli.main([*base, "assistant-action", "--name", "addExpense", "--payload", payload]) == 0
    assert "gideri başarıyla eklendi" in capsys.readouterr().out

    context = core_logic.load_runtime_context(config_file)
    assert len(core_logic.list_collection(context, Collection.EXPENSES)) == 1


def test_main_returns_business_rule_exit_code(config_file):
    """Rule violations exit with code 2 and write nothing."""

    code = cli.main(
        ["--config", str(config_file), "sale", "--customer-id", "CUS-missing", "--description", "X", "--total", "5"]
    )
    assert code == 2


def test_main_returns_missing_file_exit_code(tmp_path):
    """A missing configuration exits with code 3."""

    assert cli.main(["--config", str(tmp_path / "missing.ini"), "stock"]) == 3


def test_main_rejects_schema_mismatch(config_factory):
    """A config declaring another schema version fails with code 1."""

    bundle = config_factory(schema_version="0.1.0")
    assert cli.main(["--config", str(bundle.config_path), "stock"]) == 1
