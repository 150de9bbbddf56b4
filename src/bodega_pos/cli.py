"""Command-line entry points for the bodega POS.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing results. Persistence happens in the business layer as
each mutation commits, so a command that fails halfway leaves the store as
it was before the failing step.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, log
from .checkout import format_receipt
from .constants import DEFAULT_TOP_SELLING_LIMIT, Currency, CustomerType, PaymentMethod
from .errors import BusinessRuleViolation
from .models import Customer, Product
from .money import format_money, parse_decimal


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
        prog="bodega-cli",
        description="Command-line tools for the bodega point of sale.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini).",
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
    """Declare mutating CLI commands such as sales and stock updates."""
    specs = {
        "set-rate": register_set_rate_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "add-category": register_add_category_command(subparsers),
        "update-stock": register_update_stock_command(subparsers),
        "import-products": register_import_products_command(subparsers),
        "add-customer": register_add_customer_command(subparsers),
        "add-credit": register_add_credit_command(subparsers),
        "pay": register_pay_command(subparsers),
        "sale": register_sale_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "products": register_products_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "top-selling": register_top_selling_command(subparsers),
        "customers": register_customers_command(subparsers),
        "rate": register_rate_command(subparsers),
        "export-products": register_export_products_command(subparsers),
        "change": register_change_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_item(raw: str) -> Tuple[str, str]:
    """Split an ``ID=QTY`` argument into its product id and quantity text."""
    product_id, separator, quantity = raw.partition("=")
    if not separator or not product_id.strip() or not quantity.strip():
        raise argparse.ArgumentTypeError(f"Expected PRODUCT_ID=QUANTITY, got '{raw}'")
    return product_id.strip(), quantity.strip()


# ---------------------------------------------------------------------------
# Write command registration
# ---------------------------------------------------------------------------


def register_set_rate_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-rate``."""
    name = "set-rate"
    help_text = "Set the BS-per-USD exchange rate."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--rate", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_rate)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a product priced from its cost and profit percentage."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--cost", required=True)
        parser.add_argument("--profit-percentage", required=True)
        parser.add_argument("--stock", required=True)
        parser.add_argument("--category", default=None)
        parser.add_argument("--min-stock", default=None)
        parser.add_argument("--unit", default=None)
        parser.add_argument("--key", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_add_category_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-category``."""
    name = "add-category"
    help_text = "Register a new product category."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_category)


def register_update_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-stock``."""
    name = "update-stock"
    help_text = "Replace the stock level of a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--stock", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_stock)


def register_import_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import-products``."""
    name = "import-products"
    help_text = "Import products from a JSON or .xlsx catalog file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--file", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import_products)


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""
    name = "add-customer"
    help_text = "Register a customer who may buy on credit."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--email", default="")
        parser.add_argument("--phone", default="")
        parser.add_argument("--credit-limit", default="0")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_customer)


def register_add_credit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-credit``."""
    name = "add-credit"
    help_text = "Charge an amount in USD to a customer's balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_credit)


def register_pay_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay``."""
    name = "pay"
    help_text = "Record a customer payment against their balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument(
            "--currency",
            choices=[member.value for member in Currency],
            default=Currency.USD.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Sell one or more products in a single checkout."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item", dest="items", type=parse_item, action="append", required=True, metavar="ID=QTY")
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            required=True,
        )
        parser.add_argument("--customer-id", default=None)
        parser.add_argument(
            "--customer-type",
            choices=[member.value for member in CustomerType],
            default=None,
        )
        parser.add_argument("--amount-paid", default=None)
        parser.add_argument(
            "--amount-currency",
            choices=[member.value for member in Currency],
            default=Currency.USD.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


# ---------------------------------------------------------------------------
# Read command registration
# ---------------------------------------------------------------------------


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    name = "products"
    help_text = "List products, optionally filtered by name."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products_report)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "List products at or below their minimum stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock_report)


def register_top_selling_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``top-selling``."""
    name = "top-selling"
    help_text = "List the best-selling products."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--limit", type=int, default=DEFAULT_TOP_SELLING_LIMIT)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_top_selling_report)


def register_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``customers``."""
    name = "customers"
    help_text = "List customers with their balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_customers_report)


def register_rate_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``rate``."""
    name = "rate"
    help_text = "Show the current exchange rate."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_rate_report)


def register_export_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export-products``."""
    name = "export-products"
    help_text = "Export the catalog as JSON or .xlsx."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export_products)


def register_change_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``change``."""
    name = "change"
    help_text = "Quote the change owed for a prospective cash sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item", dest="items", type=parse_item, action="append", required=True, metavar="ID=QTY")
        parser.add_argument("--amount-paid", required=True)
        parser.add_argument(
            "--currency",
            choices=[member.value for member in Currency],
            default=Currency.USD.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_change)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)


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


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def _optional_decimal(raw: Optional[str], field: str):
    return None if raw is None else parse_decimal(raw, field=field)


def translate_add_product(args: argparse.Namespace) -> core_logic.AddProductCommand:
    """Translate CLI args into an add-product command object."""
    return core_logic.AddProductCommand(
        name=args.name,
        cost=parse_decimal(args.cost, field="cost"),
        profit_percentage=parse_decimal(args.profit_percentage, field="profit percentage"),
        stock=parse_decimal(args.stock, field="stock"),
        category=args.category,
        min_stock=_optional_decimal(args.min_stock, "minimum stock"),
        unit=args.unit,
        key=args.key,
    )


def translate_add_customer(args: argparse.Namespace) -> Mapping[str, object]:
    """Translate CLI args into an add-customer request."""
    return {
        "name": args.name,
        "email": args.email,
        "phone": args.phone,
        "credit_limit": parse_decimal(args.credit_limit, field="credit limit"),
    }


def translate_pay(args: argparse.Namespace) -> core_logic.PaymentCommand:
    """Translate CLI args into a payment command object."""
    return core_logic.PaymentCommand(
        customer_id=args.customer_id,
        amount=args.amount,
        currency=Currency(args.currency),
    )


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        items=tuple(args.items),
        payment_method=PaymentMethod(args.payment_method),
        customer_id=args.customer_id,
        customer_type=CustomerType(args.customer_type) if args.customer_type else None,
        amount_paid=args.amount_paid,
        amount_currency=Currency(args.amount_currency),
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def _product_row(product: Product) -> str:
    low = " [LOW]" if product.is_low_stock else ""
    return (
        f"{product.id}  {product.name}  {format_money(product.price, Currency.USD)}  "
        f"stock={product.stock.normalize():f}  sold={product.sales_count.normalize():f}  "
        f"{product.category}{low}"
    )


def _customer_row(customer: Customer) -> str:
    over = " [OVER LIMIT]" if customer.credit_limit_exceeded else ""
    return (
        f"{customer.id}  {customer.name}  credit={format_money(customer.current_credit, Currency.USD)}  "
        f"limit={format_money(customer.credit_limit, Currency.USD)}{over}"
    )


def run_set_rate(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the exchange-rate update."""
    rate = core_logic.set_exchange_rate(context, args.rate)
    print(f"Exchange rate set to {rate} BS/USD")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.add_product(context, translate_add_product(args))
    print(f"Added {product.id} '{product.name}' at {format_money(product.price, Currency.USD)}")
    return 0


def run_add_category(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-category workflow in the BLL."""
    label = core_logic.add_category(context, args.name)
    print(f"Added category {label}")
    return 0


def run_update_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock update workflow in the BLL."""
    product = core_logic.update_product_stock(context, args.product_id, args.stock)
    print(f"Stock for '{product.name}' is now {product.stock.normalize():f}")
    return 0


def run_import_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the catalog import workflow in the BLL."""
    added = core_logic.import_products(context, args.file)
    print(f"Imported {added} products")
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-customer workflow in the BLL."""
    customer = core_logic.add_customer(context, **translate_add_customer(args))
    print(f"Added customer {customer.id} '{customer.name}'")
    return 0


def run_add_credit(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the credit charge workflow in the BLL."""
    customer = core_logic.add_credit(context, args.customer_id, args.amount)
    print(_customer_row(customer))
    return 0


def run_pay(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the customer payment workflow in the BLL."""
    command = translate_pay(args)
    receipt = core_logic.make_payment(context, command)
    customer = context.ledger.get(command.customer_id)
    print(receipt.describe(customer.name))
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    result = core_logic.record_sale(context, translate_sale(args))
    purchase = result.purchase
    customer_name = context.ledger.get(purchase.customer_id).name if purchase.customer_id else None
    print(format_receipt(purchase, customer_name=customer_name))
    if result.change is not None:
        print(
            f"Change: {format_money(result.change.change_usd, Currency.USD)} "
            f"({format_money(result.change.change_bs, Currency.BS)})"
        )
    if result.credit_limit_warning is not None:
        warning = result.credit_limit_warning
        print(
            f"WARNING: {warning.customer_name} exceeded the credit limit "
            f"({format_money(warning.current_credit, Currency.USD)} > "
            f"{format_money(warning.credit_limit, Currency.USD)})"
        )
    return 0


def run_products_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the product listing."""
    for product in core_logic.list_products(context, args.search):
        print(_product_row(product))
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the low-stock listing."""
    for product in core_logic.list_low_stock(context):
        print(_product_row(product))
    return 0


def run_top_selling_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the top-selling listing."""
    for product in core_logic.list_top_selling(context, args.limit):
        print(_product_row(product))
    return 0


def run_customers_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the customer listing."""
    for customer in core_logic.list_customers(context, args.search):
        print(_customer_row(customer))
    return 0


def run_rate_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the exchange-rate report."""
    rate = context.exchange_rate
    print(f"Exchange rate: {rate.value} BS/USD")
    if rate.updated_at is not None:
        print(f"Last updated: {rate.updated_at:%d/%m/%Y %H:%M}")
    if rate.needs_update():
        print("Reminder: the exchange rate has not been updated today.")
    return 0


def run_export_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the catalog export."""
    destination = core_logic.export_products(context, args.output)
    print(f"Exported {len(context.catalog)} products to {destination}")
    return 0


def run_change(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the change calculator."""
    change = core_logic.calculate_change(
        context,
        tuple(args.items),
        args.amount_paid,
        Currency(args.currency),
    )
    print(
        f"Change: {format_money(change.change_usd, Currency.USD)} "
        f"({format_money(change.change_bs, Currency.BS)})"
    )
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
