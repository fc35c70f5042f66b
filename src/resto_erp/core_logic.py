"""Business logic layer for the restaurant ERP.

This module owns the rules around the product catalog, material pricing,
recipes and sale batches. It consumes the Data Access Layer (DAL) for all I/O
and hands finished batches to the pure reporting and Boston matrix engines.
Every mutation passes through validation here before reaching the workbook.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook

from . import boston, data_manager, log, material_import, reporting, sales_import, shamsi
from .constants import EXPECTED_SCHEMA_VERSION, CollectionName, SheetName
from .costing import RecipeCostCalculator
from .setup_excel import row_values


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, material, or sale batch is unknown."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class ManualSaleLine:
    """One line typed in by the operator on the manual sales form."""

    product_id: str
    quantity: Decimal
    unit_price: Decimal


@dataclass(frozen=True)
class ImportResult:
    """Outcome of :func:`import_sales_file`.

    ``batch`` is ``None`` when some product codes still need a manual decision;
    in that case nothing was written and ``unmatched`` lists the codes.
    """

    batch: Optional[data_manager.SaleBatch]
    summary: sales_import.ImportSummary
    unmatched: Tuple[sales_import.UnmatchedProduct, ...] = ()
    created_products: Tuple[data_manager.ProductDefinition, ...] = ()

    @property
    def saved(self) -> bool:
        return self.batch is not None


@dataclass(frozen=True)
class MaterialImportResult:
    """Outcome of :func:`import_materials_file`; rejected rows are never written."""

    created: Tuple[data_manager.Material, ...]
    rejected: Tuple[material_import.RejectedMaterialRow, ...]


_PRODUCTS = CollectionName.PRODUCTS.value
_MATERIALS = CollectionName.MATERIALS.value
_SALES_HISTORY = CollectionName.SALES_HISTORY.value
_RECIPES = "recipes"
_INVENTORY = "inventory"


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC datetime when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    The business logic layer keeps in-memory caches keyed by domain area
    (products, materials, recipes, sales history). Buckets are plain
    dictionaries that hold precomputed query results so repeated reads do not
    rescan the workbook.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Missing buckets are ignored so callers can request targeted invalidation
    without checking first.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, _PRODUCTS)
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.workbook))
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        bucket["by_code"] = {
            sales_import.canonicalize_code(product.code): product for product in reversed(all_products)
        }
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def _ensure_materials_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, _MATERIALS)
    if "all" not in bucket:
        all_materials = list(data_manager.iter_materials(context.workbook))
        bucket["all"] = all_materials
        bucket["by_id"] = {material.material_id: material for material in all_materials}
        bucket["by_code"] = {
            sales_import.canonicalize_code(material.code): material for material in reversed(all_materials)
        }
        log.debug("Populated materials cache with %d entries", len(all_materials))
    return bucket


def _ensure_recipes_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, _RECIPES)
    if "all" not in bucket:
        all_ingredients = list(data_manager.iter_recipe_ingredients(context.workbook))
        bucket["all"] = all_ingredients
        log.debug("Populated recipes cache with %d ingredient lines", len(all_ingredients))
    return bucket


def _ensure_inventory_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, _INVENTORY)
    if "all" not in bucket:
        all_entries = list(data_manager.iter_inventory_entries(context.workbook))
        bucket["all"] = all_entries
        log.debug("Populated inventory cache with %d receipts", len(all_entries))
    return bucket


def _ensure_sales_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the sales history bucket on demand.

    Batches are replaced wholesale, never partially edited, so caching the
    assembled list and a ``by_id`` lookup is safe until the next write.
    """

    bucket = _get_cache_bucket(context, _SALES_HISTORY)
    if "all" not in bucket:
        all_batches = list(data_manager.iter_sale_batches(context.workbook))
        bucket["all"] = all_batches
        bucket["by_id"] = {batch.batch_id: batch for batch in all_batches}
        log.debug("Populated sales history cache with %d batches", len(all_batches))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[data_manager.ProductDefinition]:
    """Return a copy of the cached product catalog in sheet order."""
    return list(_ensure_products_cache(context)["all"])


def product_catalog(context: RuntimeContext) -> Mapping[str, data_manager.ProductDefinition]:
    """Return the cached ``product_id`` lookup used by the reporting engines."""
    return _ensure_products_cache(context)["by_id"]


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductDefinition:
    """Resolve a product definition by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the workbook.
    """
    cache = _ensure_products_cache(context)
    try:
        return cache["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def find_product_by_code(context: RuntimeContext, code: str) -> Optional[data_manager.ProductDefinition]:
    return _ensure_products_cache(context)["by_code"].get(sales_import.canonicalize_code(code))


def add_product(
    context: RuntimeContext,
    *,
    code: str,
    name: str,
    sale_department: Optional[str] = None,
    production_segment: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.ProductDefinition:
    """Create a product definition.

    Department and segment fall back to the ``[Defaults]`` section of the
    configuration when omitted.

    Raises:
        BusinessRuleViolation: If the code is blank or already in use.
        ValueError: If the name is blank.
    """
    code = _claim_code(
        _ensure_products_cache(context)["by_code"], code, owner=None, id_field="product_id", label="Product"
    )
    name = _require_name(name, label="Product")

    moment = _resolve_timestamp(timestamp)
    now_ms = _epoch_millis(moment)
    product = data_manager.ProductDefinition(
        product_id=_allocate_id("P", _ensure_products_cache(context)["by_id"], moment),
        code=code,
        name=name,
        sale_department=(sale_department or context.settings.default_sale_department).strip(),
        production_segment=(production_segment or context.settings.default_production_segment).strip(),
        created_at=now_ms,
        updated_at=now_ms,
    )
    data_manager.append_product(context.workbook, product)
    _invalidate_cache(context, _PRODUCTS)
    log.info("Added product '%s' (%s)", product.product_id, product.name)
    return product


def write_product(
    context: RuntimeContext,
    product_id: str,
    fields: Mapping[str, Any],
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.ProductDefinition:
    """Upsert a product from a partial field mapping.

    ``fields`` uses :class:`~resto_erp.data_manager.ProductDefinition`
    attribute names. Existing products are merged with ``fields``; unknown ids
    create a new product, which then requires at least ``code`` and ``name``.
    Codes are canonicalised and must stay unique across the catalog, exactly
    as in :func:`add_product`.

    Raises:
        BusinessRuleViolation: If a new product lacks mandatory fields, or the
            code is blank or held by another product.
        KeyError: If ``fields`` names an attribute products do not have.
        ValueError: If the name is blank.
    """
    now_ms = _epoch_millis(_resolve_timestamp(timestamp))
    values = _checked_fields(data_manager.ProductDefinition, fields)
    cache = _ensure_products_cache(context)
    existing = cache["by_id"].get(product_id)

    if existing is None and (not values.get("code") or not values.get("name")):
        raise BusinessRuleViolation("New products need both a code and a name")
    if "code" in values:
        values["code"] = _claim_code(
            cache["by_code"], values["code"], owner=product_id, id_field="product_id", label="Product"
        )
    if "name" in values:
        values["name"] = _require_name(values["name"], label="Product")

    if existing is None:
        record = data_manager.ProductDefinition(
            product_id=product_id,
            code=str(values["code"]),
            name=str(values["name"]),
            sale_department=str(values.get("sale_department") or context.settings.default_sale_department),
            production_segment=str(values.get("production_segment") or context.settings.default_production_segment),
            created_at=now_ms,
            updated_at=now_ms,
        )
        data_manager.append_product(context.workbook, record)
    else:
        record = dataclasses.replace(existing, **values, updated_at=now_ms)
        data_manager.update_product(
            context.workbook,
            product_id,
            field_values=row_values(SheetName.PRODUCTS.value, data_manager.serialize_product(record)),
        )

    _invalidate_cache(context, _PRODUCTS)
    log.info("Wrote product '%s'", product_id)
    return record


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product definition.

    Raises:
        MissingReferenceError: If the product is unknown.
        BusinessRuleViolation: If a recipe still uses the product.
    """
    get_product(context, product_id)
    if any(line.product_id == product_id for line in _ensure_recipes_cache(context)["all"]):
        raise BusinessRuleViolation(f"Product '{product_id}' still has recipes")
    data_manager.delete_product(context.workbook, product_id)
    _invalidate_cache(context, _PRODUCTS)
    log.info("Deleted product '%s'", product_id)


# ---------------------------------------------------------------------------
# Materials and recipes
# ---------------------------------------------------------------------------


def list_materials(context: RuntimeContext) -> List[data_manager.Material]:
    return list(_ensure_materials_cache(context)["all"])


def get_material(context: RuntimeContext, material_id: str) -> data_manager.Material:
    """Resolve a material by its identifier.

    Raises:
        MissingReferenceError: If ``material_id`` is absent from the workbook.
    """
    cache = _ensure_materials_cache(context)
    try:
        return cache["by_id"][material_id]
    except KeyError as exc:
        log.warning("Material lookup failed for id '%s'", material_id)
        raise MissingReferenceError(f"Unknown material id: {material_id}") from exc


def add_material(
    context: RuntimeContext,
    *,
    code: str,
    name: str,
    unit: str,
    price: Decimal,
    timestamp: Optional[datetime] = None,
) -> data_manager.Material:
    """Create a raw material priced per ``unit``.

    Raises:
        BusinessRuleViolation: If the code is blank or already in use.
        ValueError: If the name is blank or the price is negative.
    """
    code = _claim_code(
        _ensure_materials_cache(context)["by_code"], code, owner=None, id_field="material_id", label="Material"
    )
    name = _require_name(name, label="Material")
    require_nonnegative_money(price)

    moment = _resolve_timestamp(timestamp)
    now_ms = _epoch_millis(moment)
    material = data_manager.Material(
        material_id=_allocate_id("M", _ensure_materials_cache(context)["by_id"], moment),
        code=code,
        name=name,
        unit=(unit or "").strip(),
        price=price,
        created_at=now_ms,
        updated_at=now_ms,
    )
    data_manager.append_material(context.workbook, material)
    _invalidate_cache(context, _MATERIALS)
    log.info("Added material '%s' (%s, price=%s)", material.material_id, material.name, material.price)
    return material


def write_material(
    context: RuntimeContext,
    material_id: str,
    fields: Mapping[str, Any],
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.Material:
    """Upsert a material from a partial field mapping.

    Raises:
        BusinessRuleViolation: If a new material lacks a code or name, or the
            code is blank or held by another material.
        KeyError: If ``fields`` names an attribute materials do not have.
        ValueError: If the name is blank or the price or stock is negative.
    """
    now_ms = _epoch_millis(_resolve_timestamp(timestamp))
    values = _checked_fields(data_manager.Material, fields)
    for money_field in ("price", "stock"):
        if money_field in values:
            values[money_field] = Decimal(str(values[money_field]))
            require_nonnegative_money(values[money_field])
    cache = _ensure_materials_cache(context)
    existing = cache["by_id"].get(material_id)

    if existing is None and (not values.get("code") or not values.get("name")):
        raise BusinessRuleViolation("New materials need both a code and a name")
    if "code" in values:
        values["code"] = _claim_code(
            cache["by_code"], values["code"], owner=material_id, id_field="material_id", label="Material"
        )
    if "name" in values:
        values["name"] = _require_name(values["name"], label="Material")

    if existing is None:
        record = data_manager.Material(
            material_id=material_id,
            code=str(values["code"]),
            name=str(values["name"]),
            unit=str(values.get("unit", "")),
            price=values.get("price", Decimal("0")),
            stock=values.get("stock", Decimal("0")),
            created_at=now_ms,
            updated_at=now_ms,
        )
        data_manager.append_material(context.workbook, record)
    else:
        record = dataclasses.replace(existing, **values, updated_at=now_ms)
        data_manager.update_material(
            context.workbook,
            material_id,
            field_values=row_values(SheetName.MATERIALS.value, data_manager.serialize_material(record)),
        )

    _invalidate_cache(context, _MATERIALS)
    log.info("Wrote material '%s'", material_id)
    return record


def delete_material(context: RuntimeContext, material_id: str) -> None:
    """Remove a material.

    Raises:
        MissingReferenceError: If the material is unknown.
        BusinessRuleViolation: If a recipe or a stock receipt still uses the
            material.
    """
    get_material(context, material_id)
    if any(line.material_id == material_id for line in _ensure_recipes_cache(context)["all"]):
        raise BusinessRuleViolation(f"Material '{material_id}' is used by a recipe")
    if list_inventory_entries(context, material_id):
        raise BusinessRuleViolation(f"Material '{material_id}' has stock receipts")
    data_manager.delete_material(context.workbook, material_id)
    _invalidate_cache(context, _MATERIALS)
    log.info("Deleted material '%s'", material_id)


def list_recipe_ingredients(
    context: RuntimeContext, product_id: Optional[str] = None
) -> List[data_manager.RecipeIngredient]:
    lines = _ensure_recipes_cache(context)["all"]
    if product_id is None:
        return list(lines)
    return [line for line in lines if line.product_id == product_id]


def add_recipe(
    context: RuntimeContext,
    product_id: str,
    ingredients: Sequence[Tuple[str, Decimal]],
    *,
    timestamp: Optional[datetime] = None,
) -> List[data_manager.RecipeIngredient]:
    """Attach a new recipe to a product.

    Args:
        context (RuntimeContext): Active runtime context.
        product_id (str): Product the recipe produces.
        ingredients (Sequence[tuple[str, Decimal]]): ``(material_id, amount)``
            pairs. Amounts are in the material's own unit.
        timestamp (datetime | None): Used to derive the recipe id.

    Returns:
        list[data_manager.RecipeIngredient]: The persisted ingredient lines.

    Raises:
        BusinessRuleViolation: If no ingredients are supplied.
        MissingReferenceError: If the product or a material is unknown.
        ValueError: If an amount is not strictly positive.
    """
    get_product(context, product_id)
    if not ingredients:
        raise BusinessRuleViolation("A recipe needs at least one ingredient")
    for material_id, amount in ingredients:
        get_material(context, material_id)
        require_positive_quantity(amount)

    taken = {line.recipe_id for line in _ensure_recipes_cache(context)["all"]}
    recipe_id = _allocate_id("R", taken, _resolve_timestamp(timestamp))
    lines = [
        data_manager.RecipeIngredient(
            recipe_id=recipe_id,
            product_id=product_id,
            material_id=material_id,
            amount=amount,
        )
        for material_id, amount in ingredients
    ]
    for line in lines:
        data_manager.append_recipe_ingredient(context.workbook, line)
    _invalidate_cache(context, _RECIPES)
    log.info("Added recipe '%s' for product '%s' with %d ingredients", recipe_id, product_id, len(lines))
    return lines


def build_cost_calculator(context: RuntimeContext) -> RecipeCostCalculator:
    """Price sale entries from the current recipes and material prices."""
    return RecipeCostCalculator(
        _ensure_recipes_cache(context)["all"],
        _ensure_materials_cache(context)["all"],
    )


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


def list_inventory_entries(
    context: RuntimeContext, material_id: Optional[str] = None
) -> List[data_manager.InventoryEntry]:
    entries = _ensure_inventory_cache(context)["all"]
    if material_id is None:
        return list(entries)
    return [entry for entry in entries if entry.material_id == material_id]


def receive_stock(
    context: RuntimeContext,
    material_id: str,
    quantity: Decimal,
    unit_price: Decimal,
    *,
    discount: Decimal = Decimal("0"),
    tax: Decimal = Decimal("0"),
    shipping: Decimal = Decimal("0"),
    seller: str = "",
    invoice_number: str = "",
    notes: str = "",
    entry_date: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.InventoryEntry:
    """Record a purchase of ``quantity`` units of a material.

    The receipt is appended to the inventory sheet, the material's stock
    grows by ``quantity`` and its price becomes ``unit_price`` so recipe
    costing follows the latest purchase.

    Args:
        context (RuntimeContext): Active runtime context.
        material_id (str): Material being received.
        quantity (Decimal): Units received, in the material's own unit.
        unit_price (Decimal): Price paid per unit before adjustments.
        discount (Decimal): Subtracted from the invoice total.
        tax (Decimal): Added to the invoice total.
        shipping (Decimal): Added to the invoice total.
        entry_date (str | None): Shamsi receipt date; today when omitted.
        timestamp (datetime | None): Used for the id and audit fields.

    Returns:
        data_manager.InventoryEntry: The stored receipt.

    Raises:
        MissingReferenceError: If the material is unknown.
        ValueError: For a non-positive quantity or unit price, a negative
            adjustment, or a malformed ``entry_date``.
    """
    material = get_material(context, material_id)
    require_positive_quantity(quantity)
    if unit_price <= Decimal("0"):
        log.error("Unit price validation failed: %s", unit_price)
        raise ValueError("Unit price must be greater than zero")
    for amount in (discount, tax, shipping):
        require_nonnegative_money(amount)
    entry_date = shamsi.normalize(entry_date) if entry_date else shamsi.current_date()

    moment = _resolve_timestamp(timestamp)
    now_ms = _epoch_millis(moment)
    taken = {entry.entry_id for entry in _ensure_inventory_cache(context)["all"]}
    entry = data_manager.InventoryEntry(
        entry_id=_allocate_id("I", taken, moment),
        material_id=material_id,
        quantity=quantity,
        unit_price=unit_price,
        discount=discount,
        tax=tax,
        shipping=shipping,
        total_price=quantity * unit_price - discount + tax + shipping,
        entry_date=entry_date,
        seller=seller.strip(),
        invoice_number=invoice_number.strip(),
        notes=notes.strip(),
        created_at=now_ms,
    )
    data_manager.append_inventory_entry(context.workbook, entry)

    updated = dataclasses.replace(
        material,
        stock=material.stock + quantity,
        price=unit_price,
        updated_at=now_ms,
    )
    data_manager.update_material(
        context.workbook,
        material_id,
        field_values=row_values(SheetName.MATERIALS.value, data_manager.serialize_material(updated)),
    )
    _invalidate_cache(context, _INVENTORY, _MATERIALS)
    log.info(
        "Received %s of material '%s' at %s (stock now %s)",
        quantity,
        material_id,
        unit_price,
        updated.stock,
    )
    return entry


def import_materials_file(
    context: RuntimeContext,
    path: Path,
    mapping: Optional[material_import.MaterialColumnMapping] = None,
    *,
    timestamp: Optional[datetime] = None,
) -> MaterialImportResult:
    """Create materials from a ``.csv`` or ``.xlsx`` file.

    Headers are guessed when ``mapping`` is omitted. Valid rows are added;
    rejected rows are returned with their reasons and leave no trace.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        sales_import.ImportValidationError: For unreadable files or when the
            columns cannot be mapped.
    """
    file_data = sales_import.read_sales_file(path)
    if mapping is None:
        mapping = material_import.guess_material_mapping(file_data.headers)
        if mapping is None:
            raise sales_import.ImportValidationError(
                "Could not recognise the code, name, unit and price columns; name them explicitly"
            )
    accepted, rejected = material_import.map_material_rows(file_data, mapping, list_materials(context))

    created = [
        add_material(context, code=row.code, name=row.name, unit=row.unit, price=row.price, timestamp=timestamp)
        for row in accepted
    ]
    log.info("Imported %d materials from '%s' (%d rejected)", len(created), Path(path).name, len(rejected))
    return MaterialImportResult(created=tuple(created), rejected=tuple(rejected))


# ---------------------------------------------------------------------------
# Sales history
# ---------------------------------------------------------------------------


def get_sales_history(context: RuntimeContext) -> List[data_manager.SaleBatch]:
    """Return every stored sale batch in sheet order."""
    return list(_ensure_sales_cache(context)["all"])


def get_sale_batch(context: RuntimeContext, batch_id: str) -> data_manager.SaleBatch:
    """Resolve a sale batch by its identifier.

    Raises:
        MissingReferenceError: If the batch is unknown.
    """
    cache = _ensure_sales_cache(context)
    try:
        return cache["by_id"][batch_id]
    except KeyError as exc:
        log.warning("Sale batch lookup failed for id '%s'", batch_id)
        raise MissingReferenceError(f"Unknown sale batch id: {batch_id}") from exc


def save_sales_batch(context: RuntimeContext, batch: data_manager.SaleBatch) -> data_manager.SaleBatch:
    """Append a new batch with its entries.

    Raises:
        BusinessRuleViolation: If a batch with the same id already exists or
            two of its entries share an id.
        ValueError: If the batch dates are not valid Shamsi dates.
    """
    if batch.batch_id in _ensure_sales_cache(context)["by_id"]:
        raise BusinessRuleViolation(f"Sale batch already exists: {batch.batch_id}")
    validate_batch(batch)
    data_manager.append_sale_batch(context.workbook, batch)
    _invalidate_cache(context, _SALES_HISTORY)
    log.info(
        "Saved sale batch '%s' (%d entries, revenue=%s, cost=%s)",
        batch.batch_id,
        len(batch.entries),
        batch.total_revenue,
        batch.total_cost,
    )
    return batch


def replace_sales_batch(
    context: RuntimeContext,
    batch: data_manager.SaleBatch,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.SaleBatch:
    """Replace a stored batch wholesale.

    The stored ``created_at`` is kept and ``updated_at`` is bumped; batches
    are never partially edited.

    Raises:
        MissingReferenceError: If no batch with that id exists.
        ValueError: If the batch dates are not valid Shamsi dates.
    """
    existing = get_sale_batch(context, batch.batch_id)
    validate_batch(batch)
    replacement = dataclasses.replace(
        batch,
        created_at=existing.created_at,
        updated_at=_epoch_millis(_resolve_timestamp(timestamp)),
    )
    data_manager.delete_sale_batch(context.workbook, batch.batch_id)
    data_manager.append_sale_batch(context.workbook, replacement)
    _invalidate_cache(context, _SALES_HISTORY)
    log.info("Replaced sale batch '%s'", batch.batch_id)
    return replacement


def delete_sales_batch(context: RuntimeContext, batch_id: str) -> None:
    """Delete a batch and its entries.

    Raises:
        MissingReferenceError: If the batch is unknown.
    """
    get_sale_batch(context, batch_id)
    data_manager.delete_sale_batch(context.workbook, batch_id)
    _invalidate_cache(context, _SALES_HISTORY)
    log.info("Deleted sale batch '%s'", batch_id)


def validate_batch(batch: data_manager.SaleBatch) -> None:
    """Check entry ids are unique and every date is a well-formed Shamsi date.

    Raises:
        BusinessRuleViolation: If two entries share an ``entry_id``.
        ValueError: On the first malformed date.
    """
    seen: set[str] = set()
    for entry in batch.entries:
        if entry.entry_id in seen:
            log.error("Sale batch '%s' repeats entry id '%s'", batch.batch_id, entry.entry_id)
            raise BusinessRuleViolation(f"Duplicate entry id in batch {batch.batch_id}: {entry.entry_id}")
        seen.add(entry.entry_id)
    for value in (batch.start_date, batch.end_date, *(entry.sale_date for entry in batch.entries)):
        if not shamsi.is_valid(value):
            log.error("Sale batch '%s' has invalid date '%s'", batch.batch_id, value)
            raise ValueError(f"Invalid Shamsi date in batch {batch.batch_id}: {value!r}")


def record_manual_sales(
    context: RuntimeContext,
    lines: Sequence[ManualSaleLine],
    *,
    sale_date: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.SaleBatch:
    """Validate manually entered lines and store them as one batch.

    Every entry gets a denormalised copy of its product's details so later
    catalog edits do not change history. The batch cost comes from the
    recipe calculator at the time of entry.

    Raises:
        BusinessRuleViolation: If ``lines`` is empty.
        MissingReferenceError: If a line references an unknown product.
        ValueError: For non-positive quantities, negative prices, or a
            malformed ``sale_date``.
    """
    if not lines:
        raise BusinessRuleViolation("At least one sale line is required")
    sale_date = shamsi.normalize(sale_date) if sale_date else shamsi.current_date()

    matched: List[Tuple[sales_import.MappedSaleRow, data_manager.ProductDefinition]] = []
    for position, line in enumerate(lines, start=1):
        product = get_product(context, line.product_id)
        require_positive_quantity(line.quantity)
        require_nonnegative_money(line.unit_price)
        row = sales_import.MappedSaleRow(
            row_number=position,
            product_code=product.code,
            product_name=product.name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            date=sale_date,
        )
        matched.append((row, product))

    moment = _resolve_timestamp(timestamp)
    batch = sales_import.build_sale_batch(
        matched,
        batch_id=_allocate_id("B", _ensure_sales_cache(context)["by_id"], moment),
        now_ms=_epoch_millis(moment),
        material_cost_of=build_cost_calculator(context),
    )
    return save_sales_batch(context, batch)


def import_sales_file(
    context: RuntimeContext,
    path: Path,
    mapping: sales_import.ColumnMapping,
    *,
    product_mappings: Optional[Mapping[str, str]] = None,
    create_missing: bool = False,
    timestamp: Optional[datetime] = None,
) -> ImportResult:
    """Import a sales spreadsheet as a single batch.

    Args:
        context (RuntimeContext): Active runtime context.
        path (Path): ``.csv`` or ``.xlsx`` file exported by the point of sale.
        mapping (sales_import.ColumnMapping): Header chosen for each field.
        product_mappings (Mapping[str, str] | None): Manual decisions from file
            product code to catalog ``product_id``.
        create_missing (bool): Create catalog products, with the configured
            default department and segment, for codes nobody resolved.
        timestamp (datetime | None): Used for ids and audit fields.

    Returns:
        ImportResult: The saved batch, or the unresolved codes when the import
            could not complete.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        sales_import.ImportValidationError: For unreadable files, bad
            mappings or malformed rows.
    """
    file_data = sales_import.read_sales_file(path)
    rows = sales_import.map_rows(file_data, mapping)
    reconciliation = sales_import.reconcile_products(rows, list_products(context), product_mappings)

    created: List[data_manager.ProductDefinition] = []
    if reconciliation.unmatched and create_missing:
        for unmatched in reconciliation.unmatched:
            created.append(
                add_product(
                    context,
                    code=unmatched.code,
                    name=unmatched.name or unmatched.code,
                    timestamp=timestamp,
                )
            )
        reconciliation = sales_import.reconcile_products(rows, list_products(context), product_mappings)

    if not reconciliation.is_complete:
        summary = sales_import.summarize(rows, unmapped_count=len(reconciliation.unmatched))
        log.warning(
            "Import of '%s' needs manual product mapping for %d codes; nothing saved",
            Path(path).name,
            len(reconciliation.unmatched),
        )
        return ImportResult(
            batch=None,
            summary=summary,
            unmatched=reconciliation.unmatched,
            created_products=tuple(created),
        )

    moment = _resolve_timestamp(timestamp)
    batch = sales_import.build_sale_batch(
        reconciliation.matched,
        batch_id=_allocate_id("B", _ensure_sales_cache(context)["by_id"], moment),
        now_ms=_epoch_millis(moment),
        material_cost_of=build_cost_calculator(context),
    )
    save_sales_batch(context, batch)
    log.info("Imported %d rows from '%s' as batch '%s'", len(rows), Path(path).name, batch.batch_id)
    return ImportResult(
        batch=batch,
        summary=sales_import.summarize(rows),
        created_products=tuple(created),
    )


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def get_sales_report(
    context: RuntimeContext,
    start: str,
    end: str,
    *,
    recipe_costs: bool = False,
) -> reporting.SalesReport:
    """Aggregate stored batches recorded within ``[start, end]``.

    Costs come from each batch's stored total unless ``recipe_costs`` asks
    for a recalculation at current material prices.
    """
    return reporting.build_sales_report(
        get_sales_history(context),
        start,
        end,
        material_cost_of=build_cost_calculator(context) if recipe_costs else None,
        catalog=product_catalog(context),
    )


def known_batch_ids(context: RuntimeContext, batch_ids: Iterable[str]) -> List[str]:
    """Drop duplicate and unknown ids from a selection, keeping request order.

    Unknown ids (stale or deleted batches) are logged and skipped so the
    remaining selection still produces a partial report.
    """
    stored = _ensure_sales_cache(context)["by_id"]
    known: List[str] = []
    for batch_id in dict.fromkeys(batch_ids):
        if batch_id in stored:
            known.append(batch_id)
        else:
            log.warning("Ignoring unknown sale batch id '%s' in report selection", batch_id)
    return known


def get_sales_report_for_batches(
    context: RuntimeContext,
    batch_ids: Iterable[str],
    *,
    recipe_costs: bool = False,
) -> reporting.SalesReport:
    return reporting.build_sales_report_for_batches(
        get_sales_history(context),
        known_batch_ids(context, batch_ids),
        material_cost_of=build_cost_calculator(context) if recipe_costs else None,
        catalog=product_catalog(context),
    )


def get_boston_data(context: RuntimeContext, batch_ids: Iterable[str]) -> List[boston.BostonData]:
    """Classify products on the Boston matrix over an explicit batch selection.

    Unknown batch ids are skipped; a selection with none left yields no rows.
    """
    wanted = known_batch_ids(context, batch_ids)
    selected = reporting.select_batches(get_sales_history(context), wanted)
    report = reporting.build_sales_report_for_batches(selected, wanted, catalog=product_catalog(context))
    return boston.build_boston_data(selected, report, catalog=product_catalog(context))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def generate_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier using UTC timestamps.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def _allocate_id(prefix: str, taken: Iterable[str], when: datetime) -> str:
    # Bulk creation can land several records in the same microsecond.
    taken = set(taken)
    base = generate_id(prefix=prefix, when=when)
    candidate = base
    suffix = 1
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


def _claim_code(
    by_code: Mapping[str, Any],
    code: Any,
    *,
    owner: Optional[str],
    id_field: str,
    label: str,
) -> str:
    """Canonicalise ``code`` and make sure no record other than ``owner`` holds it.

    Raises:
        BusinessRuleViolation: If the code is blank or already in use.
    """
    canonical = sales_import.canonicalize_code(code)
    if not canonical:
        raise BusinessRuleViolation(f"{label} code must not be empty")
    holder = by_code.get(canonical)
    if holder is not None and (owner is None or getattr(holder, id_field) != owner):
        log.warning("Rejected duplicate %s code '%s'", label.lower(), canonical)
        raise BusinessRuleViolation(f"{label} code already exists: {canonical}")
    return canonical


def _require_name(name: Any, *, label: str) -> str:
    cleaned = str(name or "").strip()
    if not cleaned:
        raise ValueError(f"{label} name must not be empty")
    return cleaned


def _checked_fields(record_type: type, fields: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {f.name for f in dataclasses.fields(record_type)} - {"created_at", "updated_at"}
    unknown = set(fields) - allowed
    if unknown:
        raise KeyError(f"Unknown {record_type.__name__} fields: {', '.join(sorted(unknown))}")
    values = dict(fields)
    # Ids come from the caller's record_id argument, never from the payload.
    for id_field in ("product_id", "material_id"):
        values.pop(id_field, None)
    return values


def require_positive_quantity(quantity: Decimal) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """
    if quantity <= Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)
