"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping

import pytest

from bodega_pos import cli, core_logic, errors
from bodega_pos.constants import Currency, CustomerType, PaymentMethod


WRITE_COMMANDS = {
    "set-rate",
    "add-product",
    "add-category",
    "update-stock",
    "import-products",
    "add-customer",
    "add-credit",
    "pay",
    "sale",
}

READ_COMMANDS = {
    "products",
    "low-stock",
    "top-selling",
    "customers",
    "rate",
    "export-products",
    "change",
}


def _parse(argv: list[str]) -> argparse.Namespace:
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    return parser.parse_args(argv)


def _seed(context: core_logic.RuntimeContext) -> None:
    context.catalog.bulk_import(
        [
            {"id": "P1", "name": "Harina PAN", "price": 10, "cost": 8, "stock": 20},
            {"id": "P2", "name": "Malta", "price": 1.5, "cost": 1, "stock": 3},
        ]
    )


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "bodega-cli"
    assert "bodega" in (parser.description or "")


def test_configure_subcommands_registers_all_commands(cli_parser):
    """configure_subcommands should wire every read and write sub-command."""

    command_table = cli.configure_subcommands(cli_parser)
    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    for spec in specs.values():
        assert isinstance(spec, cli.CommandSpec)
        assert spec.help_text


def test_register_read_commands_returns_command_specs(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    for name in READ_COMMANDS:
        assert name in subparsers_action.choices


def test_sale_command_accepts_repeated_items():
    """``sale`` collects every ``--item ID=QTY`` pair in order."""

    namespace = _parse(
        [
            "sale",
            "--item",
            "P1=3",
            "--item",
            "P2=0,5",
            "--payment-method",
            "cash",
            "--amount-paid",
            "50",
            "--amount-currency",
            "BS",
        ]
    )

    assert namespace.command == "sale"
    assert namespace.items == [("P1", "3"), ("P2", "0,5")]
    assert namespace.payment_method == "cash"
    assert namespace.amount_currency == "BS"


def test_sale_command_rejects_unknown_payment_method():
    with pytest.raises(SystemExit):
        _parse(["sale", "--item", "P1=1", "--payment-method", "barter"])


@pytest.mark.parametrize("raw", ["P1", "=3", "P1=", "P1 3"])
def test_parse_item_rejects_malformed_pairs(raw):
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_item(raw)


def test_parse_item_strips_whitespace():
    assert cli.parse_item(" P1 = 2 ") == ("P1", "2")


# ---------------------------------------------------------------------------
# Runtime context and dispatch helpers
# ---------------------------------------------------------------------------


def test_load_runtime_context_uses_provided_path(config_file, monkeypatch):
    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path == config_file
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    assert cli.load_runtime_context(config_file) is sentinel_context


def test_load_runtime_context_defers_discovery_to_data_layer(monkeypatch):
    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path is None
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    assert cli.load_runtime_context() is sentinel_context


def test_dispatch_command_invokes_executor(context):
    called = {}

    def execute(ctx: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        called["context"] = ctx
        return 0

    spec = cli.CommandSpec("ping", "help", lambda s: s.add_parser("ping"), execute)
    result = cli.dispatch_command(context, argparse.Namespace(command="ping"), {"ping": spec})

    assert result == 0
    assert called["context"] is context


def test_dispatch_command_handles_unknown_commands(context):
    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="unknown"), {})


def test_build_command_table_indexes_specs(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert set(table) == {spec.name for spec in command_spec_iterable}


def test_build_command_table_detects_duplicate_commands():
    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def test_translate_add_product_parses_decimals():
    args = _parse(
        [
            "add-product",
            "--name",
            "Café",
            "--cost",
            "4,5",
            "--profit-percentage",
            "30",
            "--stock",
            "12",
            "--min-stock",
            "3",
        ]
    )

    command = cli.translate_add_product(args)

    assert command == core_logic.AddProductCommand(
        name="Café",
        cost=Decimal("4.5"),
        profit_percentage=Decimal("30"),
        stock=Decimal("12"),
        min_stock=Decimal("3"),
    )


def test_translate_add_product_rejects_non_numeric_cost():
    args = _parse(["add-product", "--name", "X", "--cost", "abc", "--profit-percentage", "1", "--stock", "1"])
    with pytest.raises(errors.InvalidInput):
        cli.translate_add_product(args)


def test_translate_sale_returns_sale_command():
    args = _parse(
        ["sale", "--item", "P1=2", "--payment-method", "credit", "--customer-id", "C1", "--customer-type", "regular"]
    )

    command = cli.translate_sale(args)

    assert command.items == (("P1", "2"),)
    assert command.payment_method is PaymentMethod.CREDIT
    assert command.customer_id == "C1"
    assert command.customer_type is CustomerType.REGULAR
    assert command.amount_paid is None
    assert command.amount_currency is Currency.USD


def test_translate_pay_returns_payment_command():
    args = _parse(["pay", "--customer-id", "C1", "--amount", "100", "--currency", "BS"])

    command = cli.translate_pay(args)

    assert command == core_logic.PaymentCommand(customer_id="C1", amount="100", currency=Currency.BS)


def test_translate_add_customer_returns_payload():
    args = _parse(["add-customer", "--name", "Ana", "--credit-limit", "25,5"])

    payload = cli.translate_add_customer(args)

    assert payload == {"name": "Ana", "email": "", "phone": "", "credit_limit": Decimal("25.5")}


# ---------------------------------------------------------------------------
# Command execution helpers
# ---------------------------------------------------------------------------


def test_run_set_rate_updates_context(context, capsys):
    assert cli.run_set_rate(context, _parse(["set-rate", "--rate", "40"])) == 0
    assert context.exchange_rate.value == Decimal("40")
    assert "40" in capsys.readouterr().out


def test_run_add_product_invokes_bll(context, monkeypatch, capsys):
    args = argparse.Namespace()
    command = core_logic.AddProductCommand(
        name="Café", cost=Decimal("4"), profit_percentage=Decimal("50"), stock=Decimal("1")
    )
    monkeypatch.setattr(cli, "translate_add_product", lambda value: command)

    assert cli.run_add_product(context, args) == 0
    assert context.catalog.find_by_name("Café").price == Decimal("6.00")
    assert "$6.00" in capsys.readouterr().out


def test_run_sale_prints_receipt_and_change(context, capsys):
    _seed(context)
    args = _parse(["sale", "--item", "P1=3", "--payment-method", "cash", "--amount-paid", "50"])

    assert cli.run_sale(context, args) == 0

    out = capsys.readouterr().out
    assert "Total: $30.00 (Bs. 1065.00)" in out
    assert "Change: $20.00 (Bs. 710.00)" in out
    assert context.catalog.get("P1").stock == Decimal("17")


def test_run_sale_prints_credit_warning(context, capsys):
    _seed(context)
    customer = context.ledger.add_customer(name="Ana", credit_limit=Decimal("20"))
    args = _parse(["sale", "--item", "P1=3", "--payment-method", "credit", "--customer-id", customer.id])

    cli.run_sale(context, args)

    out = capsys.readouterr().out
    assert "Customer: Ana" in out
    assert "WARNING: Ana exceeded the credit limit ($30.00 > $20.00)" in out


def test_run_pay_prints_overpayment(context, capsys):
    customer = context.ledger.add_customer(name="Ana")
    args = _parse(["pay", "--customer-id", customer.id, "--amount", "5"])

    assert cli.run_pay(context, args) == 0
    assert "remains as credit in favor" in capsys.readouterr().out


def test_run_rate_report_reminds_when_stale(context, capsys):
    assert cli.run_rate_report(context, argparse.Namespace()) == 0
    out = capsys.readouterr().out
    assert "35.5" in out
    assert "Reminder" in out


def test_run_listing_reports(context, capsys):
    _seed(context)

    cli.run_products_report(context, argparse.Namespace(search="harina"))
    cli.run_low_stock_report(context, argparse.Namespace())
    cli.run_top_selling_report(context, argparse.Namespace(limit=1))
    cli.run_customers_report(context, argparse.Namespace(search=""))

    out = capsys.readouterr().out
    assert "Harina PAN" in out
    assert "Malta" in out and "[LOW]" in out


def test_run_change_does_not_sell(context, capsys):
    _seed(context)
    args = _parse(["change", "--item", "P1=3", "--amount-paid", "1420", "--currency", "BS"])

    assert cli.run_change(context, args) == 0
    assert "Change: $10.00 (Bs. 355.00)" in capsys.readouterr().out
    assert context.catalog.get("P1").stock == Decimal("20")


def test_run_export_products_writes_file(context, tmp_path, capsys):
    _seed(context)
    destination = tmp_path / "inventario.xlsx"

    assert cli.run_export_products(context, argparse.Namespace(output=destination)) == 0
    assert destination.exists()
    assert "Exported 2 products" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (errors.BusinessRuleViolation("invalid"), 2),
        (errors.InsufficientStock("Malta", Decimal("3"), Decimal("4")), 2),
        (FileNotFoundError("missing"), 3),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    caplog.set_level("ERROR")
    assert cli.handle_cli_error(error) == expected
    assert caplog.records


def test_handle_cli_error_logs_human_readable_message(caplog: pytest.LogCaptureFixture):
    caplog.set_level("ERROR")
    cli.handle_cli_error(errors.InsufficientStock("Malta", Decimal("3"), Decimal("4")))
    assert any("only 3 available" in record.getMessage() for record in caplog.records)


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def test_main_executes_specified_command(monkeypatch, context):
    parser = _stub_parser(command="rate")
    command_table = {"rate": cli.CommandSpec("rate", "help", lambda _: parser, lambda *_: 0)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)

    called = {}

    def fake_dispatch(ctx: core_logic.RuntimeContext, args: argparse.Namespace, table: Mapping[str, cli.CommandSpec]) -> int:
        called["context"] = ctx
        called["args"] = args
        return 0

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)

    assert cli.main(["rate"]) == 0
    assert called["context"] is context
    assert called["args"].command == "rate"


def test_main_handles_business_errors(monkeypatch, context):
    parser = _stub_parser(command="sale")
    command_table = {"sale": cli.CommandSpec("sale", "help", lambda _: parser, lambda *_: 0)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)

    def fake_dispatch(*_: object) -> int:
        raise errors.EmptyCart("empty")

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)

    assert cli.main(["sale"]) == 2


def test_main_rejects_schema_mismatch(config_factory):
    bundle = config_factory(schema_version="0.1.0")
    assert cli.main(["--config", str(bundle.config_path), "rate"]) == 1


def test_main_reports_missing_config(tmp_path):
    assert cli.main(["--config", str(tmp_path / "missing.ini"), "rate"]) == 3


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            return argparse.Namespace(command=command, config=None)

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
