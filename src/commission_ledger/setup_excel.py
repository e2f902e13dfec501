"""Utility for initializing the commission ledger workbook.

The module doubles as a script (``ledger-setup``) and as a library used by
tests or other tooling. Sheet layouts come from
:data:`commission_ledger.data_manager.SHEET_COLUMNS` so the bootstrap and the
data layer always agree on column order.

Sellers can be seeded from an optional ``[Sellers]`` section of
``config.ini``, one option per seller::

    [Sellers]
    S1 = Ana Souza | ana@example.com | AS
    S2 = Bruno Lima
"""

from __future__ import annotations

import argparse
import configparser
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log

CONFIG_FILE = data_manager.CONFIG_FILE_NAME


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path
    sellers: tuple[data_manager.SellerRow, ...] = ()


def parse_seller_seed(seller_id: str, raw: str) -> data_manager.SellerRow:
    """Build a seller from a ``Name | email | initials`` config value.

    Email and initials are optional.

    Raises:
        ValueError: If the name is blank.
    """

    parts = [part.strip() for part in raw.split("|")]
    name = parts[0] if parts else ""
    if not name:
        raise ValueError(f"Seller '{seller_id}' needs a name")
    email = parts[1] if len(parts) > 1 and parts[1] else None
    initials = parts[2] if len(parts) > 2 and parts[2] else None
    return data_manager.SellerRow(
        seller_id=seller_id,
        name=name,
        email=email,
        initials=initials,
        is_active=True,
    )


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory, matching how the ledger itself resolves them.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    # Seller ids are case sensitive.
    parser.optionxform = str  # type: ignore[assignment]
    parser.read(config_path)

    try:
        data_file_raw = parser.get("System", "DataFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    sellers: tuple[data_manager.SellerRow, ...] = ()
    if parser.has_section("Sellers"):
        sellers = tuple(
            parse_seller_seed(seller_id, raw) for seller_id, raw in parser.items("Sellers")
        )

    return SetupSettings(data_file=data_file_path, sellers=sellers)


def create_master_workbook(
    destination: Path,
    *,
    sellers: Sequence[data_manager.SellerRow] = (),
    sheet_columns: Mapping[str, Sequence[str]] = data_manager.SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create an empty ledger workbook at ``destination``.

    Every collection sheet gets a bold header row; ``sellers`` are appended to
    the seller directory sheet. When ``overwrite`` is ``False`` (the default)
    an existing file is left alone and ``FileExistsError`` is raised.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing ledger workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    for seller in sellers:
        data_manager.create(workbook, data_manager.SELLERS, seller)

    workbook.save(destination)
    log.info("Created ledger workbook '%s' with %d seller(s)", destination, len(sellers))
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``config_path`` with its seller seeds."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        sellers=settings.sellers,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(
        prog="ledger-setup",
        description="Initialize the commission ledger workbook",
    )
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

    print("--- Commission Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except (KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created ledger workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
