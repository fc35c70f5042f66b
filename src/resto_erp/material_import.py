"""Spreadsheet import of raw materials.

Files are read with :func:`~resto_erp.sales_import.read_sales_file`; headers
are either chosen by the operator or guessed from common Persian and English
titles. Each row is checked on its own so one bad line does not block the
rest: valid rows become :class:`MappedMaterialRow` values and the others are
reported as :class:`RejectedMaterialRow` with every reason found.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from . import log
from .data_manager import Material
from .sales_import import (
    FileData,
    canonicalize_code,
    check_columns,
    normalize_name,
    parse_amount,
)


_HEADER_PATTERNS: Dict[str, Tuple[Pattern[str], ...]] = {
    field_name: tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)
    for field_name, patterns in {
        "name": (r"^نام$", r"^name$", r"^title$", r"^نام.*کالا$", r"^نام.*متریال$"),
        "code": (r"^کد$", r"^code$", r"^id$", r"^شناسه$", r"^کد.*کالا$"),
        "unit": (r"^بخش$", r"^واحد$", r"^department$", r"^unit$"),
        "price": (r"^قیمت$", r"^price$", r"^cost$", r"^مبلغ$", r"^ارزش$"),
    }.items()
}


@dataclass(frozen=True)
class MaterialColumnMapping:
    """Header names holding each material field."""

    code: str
    name: str
    unit: str
    price: str


@dataclass(frozen=True)
class MappedMaterialRow:
    row_number: int
    code: str
    name: str
    unit: str
    price: Decimal


@dataclass(frozen=True)
class RejectedMaterialRow:
    row_number: int
    code: str
    name: str
    reasons: Tuple[str, ...]


def guess_material_mapping(headers: Sequence[str]) -> Optional[MaterialColumnMapping]:
    """Pick a header for every field, or return ``None`` if any field has no candidate.

    When several headers match the same field the last one wins.
    """

    chosen: Dict[str, str] = {}
    for header in headers:
        normalized = header.strip().lower()
        for field_name, patterns in _HEADER_PATTERNS.items():
            if any(pattern.search(normalized) for pattern in patterns):
                chosen[field_name] = header
    if len(chosen) < len(_HEADER_PATTERNS):
        log.debug("Could not guess material columns from headers %s", list(headers))
        return None
    return MaterialColumnMapping(**chosen)


def validate_material_mapping(mapping: MaterialColumnMapping, headers: Sequence[str]) -> None:
    """Raises :class:`ImportValidationError` when a field is unmapped or its header is absent."""

    check_columns(
        {"code": mapping.code, "name": mapping.name, "unit": mapping.unit, "price": mapping.price},
        headers,
    )


def map_material_rows(
    file_data: FileData,
    mapping: MaterialColumnMapping,
    existing: Iterable[Material] = (),
) -> Tuple[List[MappedMaterialRow], List[RejectedMaterialRow]]:
    """Split file rows into importable materials and rejected rows.

    A row is rejected when its name, code or unit is blank, its price is not
    a number above zero, or its code or name repeats an existing material or
    an earlier row of the same file. Codes compare canonically and names
    after Persian letter folding.

    Raises:
        ImportValidationError: If the mapping does not fit the file headers.
    """

    validate_material_mapping(mapping, file_data.headers)
    index = {header: position for position, header in enumerate(file_data.headers)}

    stored_codes = set()
    stored_names = set()
    for material in existing:
        stored_codes.add(canonicalize_code(material.code))
        stored_names.add(normalize_name(material.name))
    file_codes: set[str] = set()
    file_names: set[str] = set()

    accepted: List[MappedMaterialRow] = []
    rejected: List[RejectedMaterialRow] = []
    for offset, row in enumerate(file_data.rows, start=2):
        code = canonicalize_code(row[index[mapping.code]])
        name = row[index[mapping.name]].strip()
        unit = row[index[mapping.unit]].strip()
        folded = normalize_name(name)

        reasons: List[str] = []
        if not name:
            reasons.append("name is required")
        if not code:
            reasons.append("code is required")
        if not unit:
            reasons.append("unit is required")
        price = Decimal("0")
        try:
            price = parse_amount(row[index[mapping.price]])
        except ValueError as exc:
            reasons.append(f"price: {exc}")
        else:
            if price <= 0:
                reasons.append("price must be greater than zero")
        if (code and code in stored_codes) or (folded and folded in stored_names):
            reasons.append("code or name already exists")
        elif (code and code in file_codes) or (folded and folded in file_names):
            reasons.append("code or name repeats an earlier row")

        if code:
            file_codes.add(code)
        if folded:
            file_names.add(folded)

        if reasons:
            log.warning("Material import row %d rejected: %s", offset, "; ".join(reasons))
            rejected.append(RejectedMaterialRow(row_number=offset, code=code, name=name, reasons=tuple(reasons)))
            continue
        accepted.append(MappedMaterialRow(row_number=offset, code=code, name=name, unit=unit, price=price))

    log.info("Material import: %d rows accepted, %d rejected", len(accepted), len(rejected))
    return accepted, rejected
