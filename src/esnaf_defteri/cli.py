"""Command-line entry points for Esnaf Defteri.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the coordinator,
and printing results. Keeping the CLI thin ensures the same parser
configuration can be reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import alerts, assistant, cashbox, core_logic, data_manager, log
from .alerts import format_lira
from .constants import Collection, ExpenseCategory, PaymentMethod, ProductType, StockAdjustmentCategory


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="esnaf-cli",
        description="Command-line tools for the Esnaf Defteri workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
    )
    parser.add_argument(
        "--owner",
        default=None,
        help="Owner id to operate as (defaults to [Defaults] OwnerID).",
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
    """Declare mutating CLI commands such as sales and stock adjustments."""
    specs = {
        "add-customer": register_add_customer_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "sale": register_sale_command(subparsers),
        "payment": register_payment_command(subparsers),
        "cash-sale": register_cash_sale_command(subparsers),
        "delete-sale": register_delete_sale_command(subparsers),
        "adjust-stock": register_adjust_stock_command(subparsers),
        "delete-adjustment": register_delete_adjustment_command(subparsers),
        "add-expense": register_add_expense_command(subparsers),
        "delete-customer": register_delete_customer_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "close-day": register_close_day_command(subparsers),
        "assistant-action": register_assistant_action_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "balances": _simple_command("balances", "Display customer balances.", run_balances_report),
        "stock": _simple_command("stock", "Display current stock levels.", run_stock_report),
        "alerts": _simple_command("alerts", "Display stock and overdue-balance alerts.", run_alerts_report),
        "cashbox": _simple_command("cashbox", "Display today's cash drawer summary.", run_cashbox_report),
        "profit": _simple_command("profit", "Display revenue, expense, and profit summaries.", run_profit_report),
        "check": _simple_command("check", "Verify balances and stock against their logs.", run_check),
        "snapshot": _simple_command("snapshot", "Print the assistant's JSON snapshot.", run_snapshot),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _simple_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""
    name = "add-customer"
    help_text = "Register a new customer, optionally with an opening balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--email", default=None)
        parser.add_argument("--opening-balance", default="0")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_customer)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product with zero stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--type", dest="product_type", choices=[member.value for member in ProductType], required=True)
        parser.add_argument("--price", required=True)
        parser.add_argument("--cost", required=True)
        parser.add_argument("--low-stock-threshold", default="0")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a credit sale to a customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--description", required=True)
        parser.add_argument("--total", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_payment_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``payment``."""
    name = "payment"
    help_text = "Record a payment received from a customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--total", required=True)
        parser.add_argument("--method", choices=[member.value for member in PaymentMethod], default=PaymentMethod.CASH.value)
        parser.add_argument("--description", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_payment)


def register_cash_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cash-sale``."""
    name = "cash-sale"
    help_text = "Record an over-the-counter sale not tied to a customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--description", required=True)
        parser.add_argument("--total", required=True)
        parser.add_argument("--method", choices=[member.value for member in PaymentMethod], default=PaymentMethod.CASH.value)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cash_sale)


def register_delete_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-sale``."""
    name = "delete-sale"
    help_text = "Delete a sale or payment and reverse it on the customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--order-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_sale)


def register_adjust_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``adjust-stock``."""
    name = "adjust-stock"
    help_text = "Record a signed stock movement for a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", required=True, help="Positive to add stock, negative to remove it.")
        parser.add_argument("--description", required=True)
        parser.add_argument(
            "--category",
            choices=[member.value for member in StockAdjustmentCategory],
            required=True,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_adjust_stock)


def register_delete_adjustment_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-adjustment``."""
    name = "delete-adjustment"
    help_text = "Delete a stock adjustment and reverse it on the product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--adjustment-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_adjustment)


def register_add_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-expense``."""
    name = "add-expense"
    help_text = "Record an expense paid from the drawer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--description", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--category", choices=[member.value for member in ExpenseCategory], required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_expense)


def register_delete_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-customer``."""
    name = "delete-customer"
    help_text = "Delete a customer and all of its orders."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_customer)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Delete a product and all of its stock adjustments."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_close_day_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``close-day``."""
    name = "close-day"
    help_text = "Close the day with the counted drawer amounts."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--counted-cash", required=True)
        parser.add_argument("--counted-card", default="0")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_close_day)


def register_assistant_action_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``assistant-action``."""
    name = "assistant-action"
    help_text = "Run one assistant action from a JSON payload."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", dest="action_name", choices=sorted(assistant.ACTIONS), required=True)
        parser.add_argument("--payload", default="{}", help="camelCase JSON object.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_assistant_action)


def load_runtime_context(config_path: Optional[Path] = None, owner_id: Optional[str] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path, owner_id=owner_id)
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


def parse_decimal(raw: str, field_name: str) -> Decimal:
    """Convert a CLI string into a Decimal, rejecting non-numbers."""
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise core_logic.ValidationError(f"{field_name} must be a number, got {raw!r}") from None


def translate_add_customer(args: argparse.Namespace) -> core_logic.CustomerCommand:
    """Translate CLI args into a customer command object."""
    return core_logic.CustomerCommand(
        name=args.name,
        email=args.email,
        opening_balance=parse_decimal(args.opening_balance, "opening-balance"),
    )


def translate_add_product(args: argparse.Namespace) -> core_logic.ProductCommand:
    """Translate CLI args into a product command object."""
    return core_logic.ProductCommand(
        name=args.name,
        product_type=ProductType(args.product_type),
        price=parse_decimal(args.price, "price"),
        cost=parse_decimal(args.cost, "cost"),
        low_stock_threshold=parse_decimal(args.low_stock_threshold, "low-stock-threshold"),
    )


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        customer_id=args.customer_id,
        description=args.description,
        total=parse_decimal(args.total, "total"),
    )


def translate_payment(args: argparse.Namespace) -> core_logic.PaymentCommand:
    """Translate CLI args into a payment command object."""
    return core_logic.PaymentCommand(
        customer_id=args.customer_id,
        total=parse_decimal(args.total, "total"),
        payment_method=PaymentMethod(args.method),
        description=args.description,
    )


def translate_cash_sale(args: argparse.Namespace) -> core_logic.CashSaleCommand:
    """Translate CLI args into a cash sale command object."""
    return core_logic.CashSaleCommand(
        description=args.description,
        total=parse_decimal(args.total, "total"),
        payment_method=PaymentMethod(args.method),
    )


def translate_adjust_stock(args: argparse.Namespace) -> core_logic.StockAdjustmentCommand:
    """Translate CLI args into a stock adjustment command object."""
    return core_logic.StockAdjustmentCommand(
        product_id=args.product_id,
        quantity=parse_decimal(args.quantity, "quantity"),
        description=args.description,
        category=StockAdjustmentCategory(args.category),
    )


def translate_add_expense(args: argparse.Namespace) -> core_logic.ExpenseCommand:
    """Translate CLI args into an expense command object."""
    return core_logic.ExpenseCommand(
        description=args.description,
        amount=parse_decimal(args.amount, "amount"),
        category=ExpenseCategory(args.category),
    )


def translate_assistant_payload(args: argparse.Namespace) -> Dict[str, Any]:
    """Decode the ``--payload`` JSON object."""
    try:
        payload = json.loads(args.payload)
    except json.JSONDecodeError as error:
        raise core_logic.ValidationError(f"--payload is not valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise core_logic.ValidationError("--payload must be a JSON object")
    return payload


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-customer workflow."""
    customer = core_logic.add_customer(context, translate_add_customer(args))
    print(f"{customer.customer_id}\t{customer.name}\t{format_lira(customer.balance)}")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow."""
    product = core_logic.add_product(context, translate_add_product(args))
    print(f"{product.product_id}\t{product.name}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow."""
    order = core_logic.add_sale(context, translate_sale(args))
    print(order.order_id)
    return 0


def run_payment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the payment workflow."""
    order = core_logic.add_payment(context, translate_payment(args))
    print(order.order_id)
    return 0


def run_cash_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the cash sale workflow."""
    order = core_logic.add_cash_sale(context, translate_cash_sale(args))
    print(order.order_id)
    return 0


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-sale workflow."""
    core_logic.delete_sale(context, args.order_id)
    return 0


def run_adjust_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock adjustment workflow."""
    adjustment = core_logic.add_stock_adjustment(context, translate_adjust_stock(args))
    print(adjustment.adjustment_id)
    return 0


def run_delete_adjustment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-adjustment workflow."""
    core_logic.delete_stock_adjustment(context, args.adjustment_id)
    return 0


def run_add_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-expense workflow."""
    expense = core_logic.add_expense(context, translate_add_expense(args))
    print(expense.expense_id)
    return 0


def run_delete_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-customer workflow."""
    core_logic.delete_customer(context, args.customer_id)
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-product workflow."""
    core_logic.delete_product(context, args.product_id)
    return 0


def run_close_day(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the close-day workflow."""
    entry = cashbox.close_day(
        context,
        parse_decimal(args.counted_cash, "counted-cash"),
        parse_decimal(args.counted_card, "counted-card"),
    )
    print(f"Beklenen nakit: {format_lira(entry.expected_cash)}")
    print(f"Nakit fark: {format_lira(entry.cash_difference)}")
    return 0


def run_assistant_action(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute one assistant action."""
    result = assistant.execute_action(context, args.action_name, translate_assistant_payload(args))
    print(result.message)
    return 0


def run_balances_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every customer's stored balance."""
    for customer in core_logic.list_collection(context, Collection.CUSTOMERS):
        print(f"{customer.customer_id}\t{customer.name}\t{format_lira(customer.balance)}")
    totals = core_logic.calculate_receivables(context)
    print(f"Alacaklar: {format_lira(totals['receivables'])} ({totals['receivable_count']} müşteri)")
    print(f"Borçlar: {format_lira(totals['payables'])} ({totals['payable_count']} müşteri)")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every product's stored stock."""
    for product in core_logic.list_collection(context, Collection.PRODUCTS):
        print(f"{product.product_id}\t{product.name}\t{product.stock}")
    return 0


def run_alerts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the current alerts, most severe first."""
    for alert in alerts.current_alerts(context):
        print(f"[{alert.severity.value}] {alert.title}: {alert.description}")
    return 0


def run_cashbox_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print today's open cash drawer state."""
    summary = cashbox.summarize_day(context)
    print(f"Açılış: {format_lira(summary.opening_cash)}")
    print(f"Nakit giriş: {format_lira(summary.cash_in)}")
    print(f"Kart giriş: {format_lira(summary.card_in)}")
    print(f"Nakit çıkış: {format_lira(summary.cash_out)}")
    print(f"Beklenen nakit: {format_lira(summary.expected_cash)}")
    return 0


def run_profit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print revenue, expenses, net profit and the monthly revenue series."""
    summary = core_logic.calculate_profit_summary(context)
    print(f"Gelir: {format_lira(summary['total_revenue'])}")
    print(f"Gider: {format_lira(summary['total_expenses'])}")
    print(f"Net kâr: {format_lira(summary['net_profit'])}")
    for month in core_logic.calculate_monthly_revenue(context):
        print(f"{month.label} {month.year}\t{format_lira(month.revenue)}")
    return 0


def run_check(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Report ledger drift; exit code 1 when any is found."""
    drift = core_logic.find_ledger_drift(context)
    for item in drift:
        print(f"{item.collection.value}\t{item.record_id}\t{item.name}\tstored={item.stored}\tderived={item.derived}")
    if drift:
        return 1
    print("OK")
    return 0


def run_snapshot(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the JSON snapshot handed to the assistant."""
    print(assistant.build_snapshot(context))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, data_manager.PersistenceFailure):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None), getattr(args, "owner", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
