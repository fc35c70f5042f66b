"""Export sales reports and Boston matrix rows to an ``.xlsx`` workbook."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.worksheet.worksheet import Worksheet

from . import log
from .boston import BostonData
from .reporting import BucketSummary, SalesReport


BUCKET_HEADERS = ("Name", "TotalUnits", "TotalRevenue", "TotalCost", "NetRevenue")
PRODUCT_HEADERS = (
    "Department",
    "ProductID",
    "Code",
    "Name",
    "Units",
    "Revenue",
    "MaterialCost",
    "NetRevenue",
)
BOSTON_HEADERS = ("ProductID", "Code", "Name", "Revenue", "MarketShare", "MarketGrowth", "Category")


def _sheet(workbook: openpyxl.Workbook, title: str, headers: Sequence[str]) -> Worksheet:
    worksheet = workbook.create_sheet(title=title)
    worksheet.append(list(headers))
    bold_font = Font(bold=True)
    for cell in worksheet[1]:
        cell.font = bold_font
    return worksheet


def _write_buckets(worksheet: Worksheet, buckets: Mapping[str, BucketSummary]) -> None:
    for name, bucket in buckets.items():
        worksheet.append(
            [name, bucket.total_units, bucket.total_revenue, bucket.total_cost, bucket.net_revenue]
        )


def export_report(
    report: SalesReport,
    boston_rows: Iterable[BostonData],
    destination: Path,
) -> Path:
    """Write ``report`` and optional Boston rows to ``destination``.

    Sheets: ``Overall``, ``Departments``, ``Segments`` and ``Products``
    (product lines grouped by department), plus ``Boston`` when rows are
    given. An existing file is overwritten.

    Returns:
        Path: Resolved path of the written workbook.
    """

    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    overall = _sheet(workbook, "Overall", ("Metric", "Value"))
    overall.append(["StartDate", report.time_range.start])
    overall.append(["EndDate", report.time_range.end])
    overall.append(["TotalUnits", report.overall.total_units])
    overall.append(["TotalRevenue", report.overall.total_revenue])
    overall.append(["TotalCost", report.overall.total_cost])
    overall.append(["NetRevenue", report.overall.net_revenue])

    _write_buckets(_sheet(workbook, "Departments", BUCKET_HEADERS), report.by_department)
    _write_buckets(_sheet(workbook, "Segments", BUCKET_HEADERS), report.by_production_segment)

    products = _sheet(workbook, "Products", PRODUCT_HEADERS)
    for department, bucket in report.by_department.items():
        for line in bucket.products:
            products.append(
                [
                    department,
                    line.product_id,
                    line.code,
                    line.name,
                    line.units,
                    line.revenue,
                    line.material_cost,
                    line.net_revenue,
                ]
            )

    rows = list(boston_rows)
    if rows:
        sheet = _sheet(workbook, "Boston", BOSTON_HEADERS)
        for row in rows:
            sheet.append(
                [
                    row.product_id,
                    row.code,
                    row.name,
                    row.revenue,
                    row.market_share,
                    row.market_growth,
                    row.category.value,
                ]
            )

    workbook.save(destination)
    log.info("Exported report to '%s'", destination)
    return destination
