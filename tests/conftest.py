"""Shared pytest fixtures and utilities for bodega POS tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR,):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from bodega_pos import checkout, cli, constants, core_logic, data_manager  # noqa: E402
from bodega_pos.catalog import Catalog  # noqa: E402
from bodega_pos.customers import CustomerLedger  # noqa: E402
from bodega_pos.models import Product  # noqa: E402
from bodega_pos.setup_workbook import create_store_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "ExchangeRate = {exchange_rate}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    shop_name: str


class InMemoryStore:
    """Dict-backed key-value store used in place of the workbook."""

    def __init__(self, values: Optional[Dict[str, str]] = None) -> None:
        self.values: Dict[str, str] = dict(values or {})
        self.writes: list[str] = []

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def put(self, key: str, value: str) -> None:
        self.values[key] = value
        self.writes.append(key)


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_product() -> Callable[..., Product]:
    """Factory building products with sensible defaults."""

    def _make(
        product_id: str = "P1",
        name: str = "Harina PAN",
        *,
        price: str = "10",
        cost: str = "8",
        stock: str = "20",
        category: str = "ALIMENTOS",
        min_stock: str = "5",
        sales_count: str = "0",
    ) -> Product:
        return Product(
            id=product_id,
            name=name,
            price=Decimal(price),
            cost=Decimal(cost),
            stock=Decimal(stock),
            category=category,
            min_stock=Decimal(min_stock),
            sales_count=Decimal(sales_count),
            unit=constants.DEFAULT_UNIT,
        )

    return _make


@pytest.fixture
def catalog(make_product: Callable[..., Product]) -> Catalog:
    """Catalog holding a small, known set of products."""

    return Catalog(
        [
            make_product("P1", "Harina PAN", price="10", cost="8", stock="20"),
            make_product("P2", "Malta", price="1.5", cost="1", stock="3", category="BEBIDA"),
            make_product("P3", "Jabón Azul", price="2.25", cost="1.5", stock="0.5", category="LIMPIEZA"),
        ]
    )


@pytest.fixture
def ledger() -> CustomerLedger:
    """Empty customer ledger."""

    return CustomerLedger()


@pytest.fixture
def memory_store() -> InMemoryStore:
    """Fresh dict-backed store."""

    return InMemoryStore()


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``checkout.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(checkout, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# Config and workbook fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized store workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "bodega_store.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_store_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Bodega de Prueba",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        exchange_rate: str = "35.5",
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}")
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                exchange_rate=exchange_rate,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "bodega_store.xlsx",
        shop_name="Bodega de Prueba",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def context(settings: data_manager.ConfigSettings, memory_store: InMemoryStore) -> core_logic.RuntimeContext:
    """Assemble a runtime context over an in-memory store."""

    return core_logic.build_runtime_context(settings, memory_store)


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="bodega-cli", description="Bodega CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
