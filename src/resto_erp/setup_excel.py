"""Utility for initializing the restaurant ERP master workbook.

The module doubles as a script (``python -m resto_erp.setup_excel``) and as a
library used by the CLI ``init`` command and by tests. Shared helpers keep the
workbook bootstrap logic consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .constants import SheetName


# Column order must match the serialize_* helpers in data_manager.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "Code",
        "Name",
        "SaleDepartment",
        "ProductionSegment",
        "CreatedAt",
        "UpdatedAt",
    ],
    SheetName.MATERIALS.value: [
        "MaterialID",
        "Code",
        "Name",
        "Unit",
        "Price",
        "CreatedAt",
        "UpdatedAt",
        "Stock",
    ],
    SheetName.RECIPE_INGREDIENTS.value: [
        "RecipeID",
        "ProductID",
        "MaterialID",
        "Amount",
    ],
    SheetName.SALE_BATCHES.value: [
        "BatchID",
        "StartDate",
        "EndDate",
        "TotalRevenue",
        "TotalCost",
        "CreatedAt",
        "UpdatedAt",
    ],
    SheetName.SALE_ENTRIES.value: [
        "EntryID",
        "BatchID",
        "ProductID",
        "ProductCode",
        "ProductName",
        "SaleDepartment",
        "ProductionSegment",
        "Quantity",
        "UnitPrice",
        "TotalPrice",
        "SaleDate",
        "CreatedAt",
        "UpdatedAt",
    ],
    SheetName.INVENTORY_ENTRIES.value: [
        "EntryID",
        "MaterialID",
        "Quantity",
        "UnitPrice",
        "Discount",
        "Tax",
        "Shipping",
        "TotalPrice",
        "EntryDate",
        "Seller",
        "InvoiceNumber",
        "Notes",
        "CreatedAt",
    ],
}

CONFIG_FILE = "config.ini"


def row_values(sheet_name: str, values: Sequence[object]) -> dict[str, object]:
    """Pair serialized cell values with their header names for ``sheet_name``."""

    return dict(zip(SHEET_COLUMNS[sheet_name], values))


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the master workbook at ``destination``.

    Parameters are overridable to facilitate testing. When ``overwrite`` is
    ``False`` (the default) this function raises ``FileExistsError`` if the
    target already exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
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

    workbook.save(destination)
    log.info("Created master workbook '%s'", destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``DataFile`` in ``config_path``."""

    config_path = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Initialize the restaurant ERP data file")
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

    print("--- Restaurant ERP Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
