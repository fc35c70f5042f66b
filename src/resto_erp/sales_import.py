"""Spreadsheet import of sales lines.

The flow mirrors what an operator does with an exported point-of-sale file:

1. :func:`read_sales_file` loads headers and rows from ``.csv`` or ``.xlsx``.
2. A :class:`ColumnMapping` says which header holds the product code,
   quantity, unit price and date; :func:`map_rows` turns rows into typed
   :class:`MappedSaleRow` values.
3. :func:`reconcile_products` matches codes against the product catalog and
   lists the codes that still need a manual decision.
4. :func:`build_sale_batch` turns fully matched rows into a
   :class:`~resto_erp.data_manager.SaleBatch`.
"""

from __future__ import annotations

import csv
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import openpyxl

from . import log, shamsi
from .costing import MaterialCostFn
from .data_manager import ProductDefinition, ProductReference, SaleBatch, SaleEntry


ZERO = Decimal("0")
SUPPORTED_SUFFIXES = (".csv", ".xlsx")

_NAME_REPLACEMENTS = {
    "ي": "ی",
    "ك": "ک",
    "ۀ": "ه",
    "ة": "ه",
    "ؤ": "و",
    "إ": "ا",
    "أ": "ا",
    "ٱ": "ا",
    "ئ": "ی",
    "‌": " ",
}


class ImportValidationError(ValueError):
    """Raised when an uploaded file or its column mapping cannot be used."""


@dataclass(frozen=True)
class FileData:
    headers: Tuple[str, ...]
    rows: Tuple[Tuple[str, ...], ...]


@dataclass(frozen=True)
class ColumnMapping:
    """Header names chosen by the user for each semantic field."""

    product_code: str
    quantity: str
    unit_price: str
    date: str
    product_name: str = ""


@dataclass(frozen=True)
class MappedSaleRow:
    row_number: int
    product_code: str
    product_name: str
    quantity: Decimal
    unit_price: Decimal
    date: str

    @property
    def total_price(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class UnmatchedProduct:
    """A product code from the file that the catalog does not know."""

    code: str
    name: str
    occurrences: int
    possible_matches: Tuple[ProductDefinition, ...]


@dataclass(frozen=True)
class Reconciliation:
    matched: Tuple[Tuple[MappedSaleRow, ProductDefinition], ...]
    unmatched: Tuple[UnmatchedProduct, ...]

    @property
    def is_complete(self) -> bool:
        return not self.unmatched


@dataclass(frozen=True)
class ImportSummary:
    total_products: int
    total_quantity: Decimal
    total_revenue: Decimal
    unmapped_count: int


@dataclass
class _UnmatchedTally:
    name: str
    occurrences: int = 0
    possible_matches: List[ProductDefinition] = field(default_factory=list)


def _cell_text(value: object) -> str:
    # Excel date cells arrive as Gregorian datetime/date objects.
    if isinstance(value, (datetime, date)):
        return shamsi.format_date(value)
    return "" if value is None else str(value).strip()


def _finalize(raw_rows: Iterable[Sequence[object]], source: Path) -> FileData:
    cleaned = [tuple(_cell_text(cell) for cell in row) for row in raw_rows]
    cleaned = [row for row in cleaned if any(row)]
    if len(cleaned) < 2:
        log.error("Import file '%s' has no data rows", source)
        raise ImportValidationError(f"File is empty or has no data rows: {source.name}")
    headers = cleaned[0]
    width = len(headers)
    rows = tuple(tuple(row[:width]) + ("",) * (width - len(row)) for row in cleaned[1:])
    return FileData(headers=headers, rows=rows)


def read_csv_file(path: Path) -> FileData:
    with path.open("r", encoding="utf-8-sig", newline="") as handle:
        return _finalize(list(csv.reader(handle)), path)


def read_excel_file(path: Path) -> FileData:
    workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        raw_rows = list(sheet.iter_rows(values_only=True))
    finally:
        workbook.close()
    return _finalize(raw_rows, path)


def read_sales_file(path: Path) -> FileData:
    """Load the first sheet of an ``.xlsx`` file or a UTF-8 ``.csv`` file.

    Cells are returned as trimmed strings and fully blank rows are dropped.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ImportValidationError: For unsupported extensions or files without a
            header and at least one data row.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Import file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        data = read_csv_file(path)
    elif suffix == ".xlsx":
        data = read_excel_file(path)
    else:
        log.error("Unsupported import file type '%s'", suffix)
        raise ImportValidationError(
            f"Unsupported file type '{suffix}'; expected one of {', '.join(SUPPORTED_SUFFIXES)}"
        )

    log.info("Read %d rows with %d columns from '%s'", len(data.rows), len(data.headers), path.name)
    return data


def validate_mapping(mapping: ColumnMapping, headers: Sequence[str]) -> None:
    """Ensure mandatory fields are mapped onto headers present in the file.

    Raises:
        ImportValidationError: Listing every missing or unknown column.
    """

    check_columns(
        {
            "product_code": mapping.product_code,
            "quantity": mapping.quantity,
            "unit_price": mapping.unit_price,
            "date": mapping.date,
        },
        headers,
        optional={"product_name": mapping.product_name},
    )


def check_columns(
    required: Mapping[str, str],
    headers: Sequence[str],
    *,
    optional: Optional[Mapping[str, str]] = None,
) -> None:
    """Check field-to-header choices; optional fields may be left blank.

    Raises:
        ImportValidationError: Listing every missing or unknown column.
    """

    problems: List[str] = []
    for field_name, header in required.items():
        if not header:
            problems.append(f"{field_name} is not mapped")
        elif header not in headers:
            problems.append(f"{field_name} column '{header}' not found")
    for field_name, header in (optional or {}).items():
        if header and header not in headers:
            problems.append(f"{field_name} column '{header}' not found")

    if problems:
        log.error("Column mapping rejected: %s", "; ".join(problems))
        raise ImportValidationError("Invalid column mapping: " + "; ".join(problems))


def parse_amount(text: str) -> Decimal:
    """Parse a non-negative number, allowing thousands separators and Persian digits.

    Raises:
        ValueError: For blank, non-numeric or negative input.
    """

    cleaned = shamsi.to_latin_digits(text).replace(",", "").replace("٬", "").replace("٫", ".").strip()
    if not cleaned:
        raise ValueError("value is empty")
    try:
        value = Decimal(cleaned)
    except InvalidOperation as exc:
        raise ValueError(f"'{text}' is not a number") from exc
    if not value.is_finite():
        raise ValueError(f"'{text}' is not a number")
    if value < ZERO:
        raise ValueError(f"'{text}' is negative")
    return value


def map_rows(file_data: FileData, mapping: ColumnMapping) -> List[MappedSaleRow]:
    """Convert raw rows into :class:`MappedSaleRow` values.

    Row numbers in errors are 1-based spreadsheet rows, counting the header.

    Raises:
        ImportValidationError: On the first unusable row.
    """

    validate_mapping(mapping, file_data.headers)
    index = {header: position for position, header in enumerate(file_data.headers)}

    mapped: List[MappedSaleRow] = []
    for offset, row in enumerate(file_data.rows, start=2):
        code = canonicalize_code(row[index[mapping.product_code]])
        name = row[index[mapping.product_name]] if mapping.product_name else ""
        try:
            if not code:
                raise ValueError("product code is empty")
            quantity = parse_amount(row[index[mapping.quantity]])
            unit_price = parse_amount(row[index[mapping.unit_price]])
            sale_date = shamsi.normalize(row[index[mapping.date]])
        except ValueError as exc:
            log.error("Import row %d rejected: %s", offset, exc)
            raise ImportValidationError(f"Row {offset}: {exc}") from exc
        mapped.append(
            MappedSaleRow(
                row_number=offset,
                product_code=code,
                product_name=name,
                quantity=quantity,
                unit_price=unit_price,
                date=sale_date,
            )
        )
    return mapped


def summarize(rows: Sequence[MappedSaleRow], *, unmapped_count: int = 0) -> ImportSummary:
    return ImportSummary(
        total_products=len({row.product_code for row in rows}),
        total_quantity=sum((row.quantity for row in rows), ZERO),
        total_revenue=sum((row.total_price for row in rows), ZERO),
        unmapped_count=unmapped_count,
    )


def canonicalize_code(value: object) -> str:
    """Normalise product codes so ``"13"``, ``"13.0"`` and ``" 13 "`` agree."""

    text = shamsi.to_latin_digits(_cell_text(value))
    if not text:
        return ""
    try:
        number = Decimal(text.replace(",", ""))
    except InvalidOperation:
        return text
    if number.is_finite() and number == number.to_integral_value():
        return str(int(number))
    return text


def normalize_name(value: str) -> str:
    """Fold Arabic letter variants and spacing so Persian names compare equal."""

    text = _cell_text(value)
    for src, dst in _NAME_REPLACEMENTS.items():
        text = text.replace(src, dst)
    text = re.sub(r"[ً-ٰٟ]", "", text)
    return re.sub(r"\s+", " ", text).strip().lower()


def possible_matches(name: str, products: Iterable[ProductDefinition]) -> Tuple[ProductDefinition, ...]:
    needle = normalize_name(name)
    if not needle:
        return ()
    return tuple(product for product in products if needle in normalize_name(product.name))


def reconcile_products(
    rows: Sequence[MappedSaleRow],
    products: Sequence[ProductDefinition],
    manual_mappings: Optional[Mapping[str, str]] = None,
) -> Reconciliation:
    """Match file rows to catalog products by code.

    Args:
        rows (Sequence[MappedSaleRow]): Rows produced by :func:`map_rows`.
        products (Sequence[ProductDefinition]): Current catalog.
        manual_mappings (Mapping[str, str] | None): Operator decisions mapping
            a file code to a catalog ``product_id``. These take precedence over
            code matching.

    Returns:
        Reconciliation: Matched pairs in file order and one
            :class:`UnmatchedProduct` per distinct unknown code.
    """

    by_code: Dict[str, ProductDefinition] = {}
    for product in products:
        by_code.setdefault(canonicalize_code(product.code), product)
    by_id = {product.product_id: product for product in products}

    resolved: Dict[str, ProductDefinition] = {}
    for code, product_id in (manual_mappings or {}).items():
        product = by_id.get(product_id)
        if product is None:
            log.warning("Manual mapping for code '%s' targets unknown product '%s'", code, product_id)
            continue
        resolved[canonicalize_code(code)] = product

    matched: List[Tuple[MappedSaleRow, ProductDefinition]] = []
    unmatched: Dict[str, _UnmatchedTally] = {}
    for row in rows:
        product = resolved.get(row.product_code) or by_code.get(row.product_code)
        if product is not None:
            matched.append((row, product))
            continue
        tally = unmatched.get(row.product_code)
        if tally is None:
            tally = _UnmatchedTally(
                name=row.product_name,
                possible_matches=list(possible_matches(row.product_name, products)),
            )
            unmatched[row.product_code] = tally
        tally.occurrences += 1

    if unmatched:
        log.warning("Import has %d unmatched product codes", len(unmatched))

    return Reconciliation(
        matched=tuple(matched),
        unmatched=tuple(
            UnmatchedProduct(
                code=code,
                name=tally.name,
                occurrences=tally.occurrences,
                possible_matches=tuple(tally.possible_matches),
            )
            for code, tally in unmatched.items()
        ),
    )


def reference_for(product: ProductDefinition) -> ProductReference:
    return ProductReference(
        code=product.code,
        name=product.name,
        sale_department=product.sale_department,
        production_segment=product.production_segment,
    )


def build_sale_batch(
    matched: Sequence[Tuple[MappedSaleRow, ProductDefinition]],
    *,
    batch_id: str,
    now_ms: int,
    material_cost_of: Optional[MaterialCostFn] = None,
) -> SaleBatch:
    """Assemble a :class:`SaleBatch` from reconciled rows.

    ``total_price`` is fixed at ``quantity * unit_price`` here; the batch's
    dates span the earliest and latest row dates and its cost is the sum of
    ``material_cost_of`` over entries (zero without a costing function).

    Raises:
        ImportValidationError: If ``matched`` is empty.
    """

    if not matched:
        raise ImportValidationError("No sale rows to import")

    entries: List[SaleEntry] = []
    for position, (row, product) in enumerate(matched, start=1):
        entries.append(
            SaleEntry(
                entry_id=f"{batch_id}-{position:04d}",
                product_id=product.product_id,
                product=reference_for(product),
                quantity=row.quantity,
                unit_price=row.unit_price,
                total_price=row.total_price,
                sale_date=row.date,
                created_at=now_ms,
                updated_at=now_ms,
            )
        )

    dates = sorted({entry.sale_date for entry in entries})
    total_cost = ZERO
    if material_cost_of is not None:
        total_cost = sum((material_cost_of(entry) for entry in entries), ZERO)

    return SaleBatch(
        batch_id=batch_id,
        entries=tuple(entries),
        start_date=dates[0],
        end_date=dates[-1],
        total_revenue=sum((entry.total_price for entry in entries), ZERO),
        total_cost=total_cost,
        created_at=now_ms,
        updated_at=now_ms,
    )
