"""Enumerations and fixed values shared across the restaurant ERP modules.

Keeps workbook sheet names, collection identifiers and reporting thresholds in
one place so the data access layer (DAL), business logic layer (BLL) and the
CLI agree on them.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.1.0"

# Canonical Shamsi date layout used for every persisted date string.
SHAMSI_FORMAT = "%Y/%m/%d"

# Bucket key for entries whose department or production segment is unknown.
UNKNOWN_BUCKET = "نامشخص"

UNKNOWN_PRODUCT_NAME = "Unknown Product"
UNKNOWN_PRODUCT_CODE = "Unknown Code"

# Boston matrix thresholds, in percent. Fixed, not configurable.
MARKET_SHARE_THRESHOLD = Decimal("50")
MARKET_GROWTH_THRESHOLD = Decimal("0")


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "ProductDefinitions"
    MATERIALS = "Materials"
    RECIPE_INGREDIENTS = "RecipeIngredients"
    SALE_BATCHES = "SaleBatches"
    SALE_ENTRIES = "SaleEntries"
    INVENTORY_ENTRIES = "InventoryEntries"


class CollectionName(str, Enum):
    """Enumerate the record collections exposed through the sync layer."""

    PRODUCTS = "products"
    MATERIALS = "materials"
    SALES_HISTORY = "sales_history"


class BostonCategory(str, Enum):
    """Quadrants of the Boston (BCG) growth/share matrix."""

    STAR = "Star"
    CASH_COW = "Cash Cow"
    QUESTION_MARK = "Question Mark"
    DOG = "Dog"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "SHAMSI_FORMAT",
    "UNKNOWN_BUCKET",
    "UNKNOWN_PRODUCT_NAME",
    "UNKNOWN_PRODUCT_CODE",
    "MARKET_SHARE_THRESHOLD",
    "MARKET_GROWTH_THRESHOLD",
    "SheetName",
    "CollectionName",
    "BostonCategory",
]
