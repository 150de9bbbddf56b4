"""Utility for initializing the bodega POS store workbook.

The module doubles as a script (``bodega-setup``) and as a library used by
tests or other tooling. The new workbook holds an empty ``Storage`` sheet
seeded with the configured categories and default exchange rate.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Iterable, Sequence

from . import data_manager
from .constants import DEFAULT_CATEGORIES, DEFAULT_EXCHANGE_RATE
from .errors import PersistenceError
from .money import ExchangeRate

CONFIG_FILE = data_manager.CONFIG_FILE_NAME


def create_store_workbook(
    destination: Path,
    *,
    categories: Iterable[str] = DEFAULT_CATEGORIES,
    exchange_rate=DEFAULT_EXCHANGE_RATE,
    overwrite: bool = False,
) -> Path:
    """Create the store workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing store workbook: {destination}"
        )

    workbook = data_manager.create_store_workbook()
    data_manager.save_workbook(workbook, destination)

    store = data_manager.WorkbookStore(destination, workbook)
    data_manager.save_categories(store, categories)
    data_manager.save_exchange_rate(store, ExchangeRate(value=exchange_rate))
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``[System] DataFile`` in ``config_path``."""

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=Path(config_path).expanduser().resolve().parent)
    return create_store_workbook(
        settings.data_file,
        categories=settings.default_categories,
        exchange_rate=settings.default_exchange_rate,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(prog="bodega-setup", description="Initialize the bodega POS data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Bodega POS Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError, PersistenceError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created store workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
