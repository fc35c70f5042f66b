"""Data access layer for the restaurant ERP.

This module provides low-level helpers that read from and write to the master
workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, updating or
   deleting individual rows.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import SheetName


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
MATERIALS_SHEET = SheetName.MATERIALS.value
RECIPE_INGREDIENTS_SHEET = SheetName.RECIPE_INGREDIENTS.value
SALE_BATCHES_SHEET = SheetName.SALE_BATCHES.value
SALE_ENTRIES_SHEET = SheetName.SALE_ENTRIES.value
INVENTORY_ENTRIES_SHEET = SheetName.INVENTORY_ENTRIES.value


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    restaurant_name: str
    schema_version: str
    default_sale_department: str
    default_production_segment: str


@dataclass(frozen=True)
class ProductDefinition:
    """In-memory view of a row from the ``ProductDefinitions`` sheet."""

    product_id: str
    code: str
    name: str
    sale_department: str
    production_segment: str
    created_at: int
    updated_at: int


@dataclass(frozen=True)
class Material:
    """In-memory view of a row from the ``Materials`` sheet."""

    material_id: str
    code: str
    name: str
    unit: str
    price: Decimal
    created_at: int
    updated_at: int
    stock: Decimal = Decimal("0")


@dataclass(frozen=True)
class RecipeIngredient:
    """One ingredient line of a product recipe."""

    recipe_id: str
    product_id: str
    material_id: str
    amount: Decimal


@dataclass(frozen=True)
class InventoryEntry:
    """A stock receipt recorded on the ``InventoryEntries`` sheet.

    ``total_price`` is ``quantity * unit_price - discount + tax + shipping``
    as computed when the receipt was entered.
    """

    entry_id: str
    material_id: str
    quantity: Decimal
    unit_price: Decimal
    discount: Decimal
    tax: Decimal
    shipping: Decimal
    total_price: Decimal
    entry_date: str
    seller: str
    invoice_number: str
    notes: str
    created_at: int


@dataclass(frozen=True)
class ProductReference:
    """Product details copied onto a sale entry when it was recorded."""

    code: str
    name: str
    sale_department: str
    production_segment: str


@dataclass(frozen=True)
class SaleEntry:
    """A single sold line inside a :class:`SaleBatch`."""

    entry_id: str
    product_id: str
    product: Optional[ProductReference]
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    sale_date: str
    created_at: int
    updated_at: int


@dataclass(frozen=True)
class SaleBatch:
    """Entries submitted together, stored across two worksheets."""

    batch_id: str
    entries: Tuple[SaleEntry, ...]
    start_date: str
    end_date: str
    total_revenue: Decimal
    total_cost: Decimal
    created_at: int
    updated_at: int


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory contains
            ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor relative paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        restaurant_name = parser.get("System", "RestaurantName")
        schema_version = parser.get("System", "SchemaVersion")
        default_department = parser.get("Defaults", "SaleDepartment")
        default_segment = parser.get("Defaults", "ProductionSegment")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        restaurant_name=restaurant_name,
        schema_version=schema_version,
        default_sale_department=default_department,
        default_production_segment=default_segment,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[ProductDefinition]:
    """Iterate over product definitions stored on the products worksheet."""

    for raw in _iter_sheet(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_materials(workbook: Workbook) -> Iterable[Material]:
    for raw in _iter_sheet(workbook, MATERIALS_SHEET):
        yield deserialize_material(raw)


def iter_recipe_ingredients(workbook: Workbook) -> Iterable[RecipeIngredient]:
    for raw in _iter_sheet(workbook, RECIPE_INGREDIENTS_SHEET):
        yield deserialize_recipe_ingredient(raw)


def iter_inventory_entries(workbook: Workbook) -> Iterable[InventoryEntry]:
    for raw in _iter_sheet(workbook, INVENTORY_ENTRIES_SHEET):
        yield deserialize_inventory_entry(raw)


def iter_sale_batches(workbook: Workbook) -> Iterable[SaleBatch]:
    """Stream sale batches joined with their entries.

    Entries are grouped by ``BatchID`` while preserving sheet order, then
    attached to the batch rows in the order batches appear on the
    ``SaleBatches`` sheet. Entries whose batch row is missing are logged and
    ignored.

    Args:
        workbook (Workbook): Workbook containing both sale worksheets.

    Yields:
        SaleBatch: Fully assembled batch records.
    """

    entries_by_batch: Dict[str, List[SaleEntry]] = {}
    for raw in _iter_sheet(workbook, SALE_ENTRIES_SHEET):
        batch_id, entry = deserialize_sale_entry(raw)
        entries_by_batch.setdefault(batch_id, []).append(entry)

    seen = set()
    for raw in _iter_sheet(workbook, SALE_BATCHES_SHEET):
        batch = deserialize_sale_batch(raw, entries_by_batch.get(str(raw[0]), []))
        seen.add(batch.batch_id)
        yield batch

    orphans = set(entries_by_batch) - seen
    if orphans:
        log.warning("Ignoring sale entries for unknown batches: %s", ", ".join(sorted(orphans)))


def append_product(workbook: Workbook, record: ProductDefinition) -> None:
    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_material(workbook: Workbook, record: Material) -> None:
    workbook[MATERIALS_SHEET].append(serialize_material(record))


def append_recipe_ingredient(workbook: Workbook, record: RecipeIngredient) -> None:
    workbook[RECIPE_INGREDIENTS_SHEET].append(serialize_recipe_ingredient(record))


def append_inventory_entry(workbook: Workbook, record: InventoryEntry) -> None:
    workbook[INVENTORY_ENTRIES_SHEET].append(serialize_inventory_entry(record))


def append_sale_batch(workbook: Workbook, record: SaleBatch) -> None:
    """Append a batch row and one entry row per sale line.

    Numerical fields remain :class:`~decimal.Decimal` instances after
    serialization so precision survives the save.
    """

    workbook[SALE_BATCHES_SHEET].append(serialize_sale_batch(record))
    entries_sheet = workbook[SALE_ENTRIES_SHEET]
    for entry in record.entries:
        entries_sheet.append(serialize_sale_entry(record.batch_id, entry))


def delete_sale_batch(workbook: Workbook, batch_id: str) -> int:
    """Remove a batch and all of its entries.

    Returns:
        int: Number of batch rows removed (``0`` when the id is unknown).
    """

    removed = delete_rows(workbook, SALE_BATCHES_SHEET, "BatchID", batch_id)
    delete_rows(workbook, SALE_ENTRIES_SHEET, "BatchID", batch_id)
    return removed


def update_product(workbook: Workbook, product_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing product.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    _update_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, field_values, label="product")


def update_material(workbook: Workbook, material_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing material.

    Raises:
        KeyError: If the material or any referenced column cannot be found.
    """

    _update_row(workbook, MATERIALS_SHEET, "MaterialID", material_id, field_values, label="material")


def delete_product(workbook: Workbook, product_id: str) -> int:
    return delete_rows(workbook, PRODUCTS_SHEET, "ProductID", product_id)


def delete_material(workbook: Workbook, material_id: str) -> int:
    return delete_rows(workbook, MATERIALS_SHEET, "MaterialID", material_id)


def _update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    field_values: dict[str, Any],
    *,
    label: str,
) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{label.capitalize()} not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)

    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown {label} field: {field}")
        sheet.cell(row=row_index, column=header_map[field], value=value)


def _header_map(sheet) -> Dict[object, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find the first row whose ``key_column`` equals ``key_value``.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] is not None and str(row[key_col_index - 1]) == key_value:
            return row_idx

    return None


def delete_rows(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> int:
    """Delete every row whose ``key_column`` equals ``key_value``.

    Rows are removed bottom-up so earlier indices stay valid while deleting.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    matches = [
        row_idx
        for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2)
        if row[key_col_index - 1] is not None and str(row[key_col_index - 1]) == key_value
    ]
    for row_idx in reversed(matches):
        sheet.delete_rows(row_idx)
    return len(matches)


def serialize_product(record: ProductDefinition) -> list[object]:
    return [
        record.product_id,
        record.code,
        record.name,
        record.sale_department,
        record.production_segment,
        record.created_at,
        record.updated_at,
    ]


def serialize_material(record: Material) -> list[object]:
    return [
        record.material_id,
        record.code,
        record.name,
        record.unit,
        record.price,
        record.created_at,
        record.updated_at,
        record.stock,
    ]


def serialize_inventory_entry(record: InventoryEntry) -> list[object]:
    return [
        record.entry_id,
        record.material_id,
        record.quantity,
        record.unit_price,
        record.discount,
        record.tax,
        record.shipping,
        record.total_price,
        record.entry_date,
        record.seller,
        record.invoice_number,
        record.notes,
        record.created_at,
    ]


def serialize_recipe_ingredient(record: RecipeIngredient) -> list[object]:
    return [record.recipe_id, record.product_id, record.material_id, record.amount]


def serialize_sale_batch(record: SaleBatch) -> list[object]:
    return [
        record.batch_id,
        record.start_date,
        record.end_date,
        record.total_revenue,
        record.total_cost,
        record.created_at,
        record.updated_at,
    ]


def serialize_sale_entry(batch_id: str, record: SaleEntry) -> list[object]:
    """Convert a sale entry into the ``SaleEntries`` column ordering.

    Entries without a product reference leave the four denormalised product
    columns blank.
    """

    product = record.product
    return [
        record.entry_id,
        batch_id,
        record.product_id,
        product.code if product else None,
        product.name if product else None,
        product.sale_department if product else None,
        product.production_segment if product else None,
        record.quantity,
        record.unit_price,
        record.total_price,
        record.sale_date,
        record.created_at,
        record.updated_at,
    ]


def _decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None and raw != "" else Decimal(default)


def _text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _millis(raw: object) -> int:
    return int(raw) if raw is not None and raw != "" else 0


def deserialize_product(raw_row: Sequence[object]) -> ProductDefinition:
    """Convert a raw worksheet row into a :class:`ProductDefinition`.

    Id and code cells are coerced to ``str`` because Excel happily stores
    numeric-looking codes as numbers.
    """

    product_id, code, name, department, segment, created_at, updated_at = raw_row[:7]
    return ProductDefinition(
        product_id=_text(product_id),
        code=_text(code),
        name=_text(name),
        sale_department=_text(department),
        production_segment=_text(segment),
        created_at=_millis(created_at),
        updated_at=_millis(updated_at),
    )


def deserialize_material(raw_row: Sequence[object]) -> Material:
    """Convert a ``Materials`` row; rows written before ``Stock`` existed read as zero stock."""

    material_id, code, name, unit, price, created_at, updated_at = raw_row[:7]
    stock = raw_row[7] if len(raw_row) > 7 else None
    return Material(
        material_id=_text(material_id),
        code=_text(code),
        name=_text(name),
        unit=_text(unit),
        price=_decimal(price),
        created_at=_millis(created_at),
        updated_at=_millis(updated_at),
        stock=_decimal(stock),
    )


def deserialize_inventory_entry(raw_row: Sequence[object]) -> InventoryEntry:
    (
        entry_id,
        material_id,
        quantity,
        unit_price,
        discount,
        tax,
        shipping,
        total_price,
        entry_date,
        seller,
        invoice_number,
        notes,
        created_at,
    ) = raw_row[:13]
    return InventoryEntry(
        entry_id=_text(entry_id),
        material_id=_text(material_id),
        quantity=_decimal(quantity),
        unit_price=_decimal(unit_price),
        discount=_decimal(discount),
        tax=_decimal(tax),
        shipping=_decimal(shipping),
        total_price=_decimal(total_price),
        entry_date=_text(entry_date),
        seller=_text(seller),
        invoice_number=_text(invoice_number),
        notes=_text(notes),
        created_at=_millis(created_at),
    )


def deserialize_recipe_ingredient(raw_row: Sequence[object]) -> RecipeIngredient:
    recipe_id, product_id, material_id, amount = raw_row[:4]
    return RecipeIngredient(
        recipe_id=_text(recipe_id),
        product_id=_text(product_id),
        material_id=_text(material_id),
        amount=_decimal(amount),
    )


def deserialize_sale_entry(raw_row: Sequence[object]) -> tuple[str, SaleEntry]:
    """Convert a ``SaleEntries`` row into its batch id and :class:`SaleEntry`.

    Stored totals are trusted as-is; ``TotalPrice`` is not recomputed from
    quantity and unit price.
    """

    (
        entry_id,
        batch_id,
        product_id,
        product_code,
        product_name,
        department,
        segment,
        quantity_raw,
        unit_price_raw,
        total_price_raw,
        sale_date,
        created_at,
        updated_at,
    ) = raw_row[:13]

    reference_cells = (product_code, product_name, department, segment)
    product = None
    if any(cell is not None and cell != "" for cell in reference_cells):
        product = ProductReference(
            code=_text(product_code),
            name=_text(product_name),
            sale_department=_text(department),
            production_segment=_text(segment),
        )

    entry = SaleEntry(
        entry_id=_text(entry_id),
        product_id=_text(product_id),
        product=product,
        quantity=_decimal(quantity_raw),
        unit_price=_decimal(unit_price_raw),
        total_price=_decimal(total_price_raw),
        sale_date=_text(sale_date),
        created_at=_millis(created_at),
        updated_at=_millis(updated_at),
    )
    return _text(batch_id), entry


def deserialize_sale_batch(raw_row: Sequence[object], entries: Sequence[SaleEntry]) -> SaleBatch:
    batch_id, start_date, end_date, revenue_raw, cost_raw, created_at, updated_at = raw_row[:7]
    return SaleBatch(
        batch_id=_text(batch_id),
        entries=tuple(entries),
        start_date=_text(start_date),
        end_date=_text(end_date),
        total_revenue=_decimal(revenue_raw),
        total_cost=_decimal(cost_raw),
        created_at=_millis(created_at),
        updated_at=_millis(updated_at),
    )
