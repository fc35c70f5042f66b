"""Sales aggregation engine.

Reduces a list of :class:`~resto_erp.data_manager.SaleBatch` records into a
:class:`SalesReport`: per-department and per-production-segment rollups with
per-product lines, plus overall totals. Batches are chosen either by a Shamsi
date range or by an explicit set of batch ids.

The functions here are pure. They never touch the workbook, never raise for
missing product data, and always return fresh report values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import log, shamsi
from .constants import UNKNOWN_BUCKET, UNKNOWN_PRODUCT_CODE, UNKNOWN_PRODUCT_NAME
from .costing import MaterialCostFn, allocate_stored_cost
from .data_manager import ProductDefinition, ProductReference, SaleBatch, SaleEntry


ZERO = Decimal("0")


@dataclass(frozen=True)
class ProductLine:
    """Per-product totals inside a department or segment bucket."""

    product_id: str
    name: str
    code: str
    units: Decimal
    revenue: Decimal
    material_cost: Decimal
    net_revenue: Decimal


@dataclass(frozen=True)
class BucketSummary:
    """Totals for one department or production segment."""

    total_units: Decimal
    total_revenue: Decimal
    total_cost: Decimal
    net_revenue: Decimal
    products: Tuple[ProductLine, ...]


@dataclass(frozen=True)
class OverallSummary:
    total_units: Decimal
    total_revenue: Decimal
    total_cost: Decimal
    net_revenue: Decimal


@dataclass(frozen=True)
class TimeRange:
    start: str
    end: str


@dataclass(frozen=True)
class SalesReport:
    """Aggregated view of the batches included in a report."""

    by_department: Mapping[str, BucketSummary]
    by_production_segment: Mapping[str, BucketSummary]
    overall: OverallSummary
    time_range: TimeRange

    @property
    def is_empty(self) -> bool:
        return not self.by_department and not self.by_production_segment


@dataclass
class _ProductTally:
    name: str
    code: str
    units: Decimal = ZERO
    revenue: Decimal = ZERO
    cost: Decimal = ZERO

    def freeze(self, product_id: str) -> ProductLine:
        return ProductLine(
            product_id=product_id,
            name=self.name,
            code=self.code,
            units=self.units,
            revenue=self.revenue,
            material_cost=self.cost,
            net_revenue=self.revenue - self.cost,
        )


@dataclass
class _BucketTally:
    units: Decimal = ZERO
    revenue: Decimal = ZERO
    cost: Decimal = ZERO
    products: Dict[str, _ProductTally] = field(default_factory=dict)

    def add(self, product_id: str, reference: Optional[ProductReference], entry: SaleEntry, cost: Decimal) -> None:
        self.units += entry.quantity
        self.revenue += entry.total_price
        self.cost += cost
        tally = self.products.get(product_id)
        if tally is None:
            name, code = product_labels(reference)
            tally = _ProductTally(name=name, code=code)
            self.products[product_id] = tally
        elif reference is not None and tally.name == UNKNOWN_PRODUCT_NAME:
            tally.name, tally.code = product_labels(reference)
        tally.units += entry.quantity
        tally.revenue += entry.total_price
        tally.cost += cost

    def freeze(self) -> BucketSummary:
        return BucketSummary(
            total_units=self.units,
            total_revenue=self.revenue,
            total_cost=self.cost,
            net_revenue=self.revenue - self.cost,
            products=tuple(tally.freeze(product_id) for product_id, tally in self.products.items()),
        )


def product_labels(reference: Optional[ProductReference]) -> Tuple[str, str]:
    """Return display ``(name, code)`` with fallbacks for missing references."""

    if reference is None:
        return UNKNOWN_PRODUCT_NAME, UNKNOWN_PRODUCT_CODE
    return reference.name or UNKNOWN_PRODUCT_NAME, reference.code or UNKNOWN_PRODUCT_CODE


def resolve_reference(
    entry: SaleEntry,
    catalog: Optional[Mapping[str, ProductDefinition]] = None,
) -> Optional[ProductReference]:
    """Find the product details used to group ``entry``.

    The denormalised reference stored on the entry wins; otherwise the current
    product catalog is consulted by ``product_id``.
    """

    if entry.product is not None:
        return entry.product
    if catalog:
        product = catalog.get(entry.product_id)
        if product is not None:
            return ProductReference(
                code=product.code,
                name=product.name,
                sale_department=product.sale_department,
                production_segment=product.production_segment,
            )
    return None


def bucket_keys(reference: Optional[ProductReference]) -> Tuple[str, str]:
    """Return the ``(department, segment)`` keys for a product reference.

    Missing references and blank names map to :data:`UNKNOWN_BUCKET` so they
    never collide with an empty-string key.
    """

    if reference is None:
        return UNKNOWN_BUCKET, UNKNOWN_BUCKET
    department = (reference.sale_department or "").strip() or UNKNOWN_BUCKET
    segment = (reference.production_segment or "").strip() or UNKNOWN_BUCKET
    return department, segment


def batch_in_range(batch: SaleBatch, start: str, end: str) -> bool:
    """Return ``True`` when the batch's dates fall inside ``[start, end]``."""

    return shamsi.compare(batch.start_date, start) >= 0 and shamsi.compare(batch.end_date, end) <= 0


def filter_batches_by_date(batches: Iterable[SaleBatch], start: str, end: str) -> List[SaleBatch]:
    """Keep batches recorded within the inclusive Shamsi range.

    Batches carrying an unreadable date are logged and skipped rather than
    aborting the whole report.
    """

    selected: List[SaleBatch] = []
    for batch in batches:
        try:
            if batch_in_range(batch, start, end):
                selected.append(batch)
        except ValueError:
            log.warning(
                "Skipping batch '%s' with invalid dates '%s'..'%s'",
                batch.batch_id,
                batch.start_date,
                batch.end_date,
            )
    return selected


def select_batches(batches: Iterable[SaleBatch], batch_ids: Iterable[str]) -> List[SaleBatch]:
    """Keep batches whose id was explicitly selected.

    An empty selection yields an empty list, never the full history.
    """

    wanted = set(batch_ids)
    if not wanted:
        return []
    return [batch for batch in batches if batch.batch_id in wanted]


def _date_order(first: str, second: str) -> int:
    try:
        return shamsi.compare(first, second)
    except ValueError:
        return (first > second) - (first < second)


def sort_batches_by_date(batches: Iterable[SaleBatch]) -> List[SaleBatch]:
    """Sort batches ascending by start date; ties keep their original order."""

    return sorted(batches, key=cmp_to_key(lambda a, b: _date_order(a.start_date, b.start_date)))


def span_of(batches: Sequence[SaleBatch]) -> TimeRange:
    """Earliest start and latest end across ``batches`` (empty strings if none)."""

    if not batches:
        return TimeRange(start="", end="")
    start = min((batch.start_date for batch in batches), key=cmp_to_key(_date_order))
    end = max((batch.end_date for batch in batches), key=cmp_to_key(_date_order))
    return TimeRange(start=start, end=end)


def empty_report(time_range: TimeRange) -> SalesReport:
    return SalesReport(
        by_department={},
        by_production_segment={},
        overall=OverallSummary(ZERO, ZERO, ZERO, ZERO),
        time_range=time_range,
    )


def aggregate(
    batches: Iterable[SaleBatch],
    *,
    time_range: TimeRange,
    material_cost_of: Optional[MaterialCostFn] = None,
    catalog: Optional[Mapping[str, ProductDefinition]] = None,
) -> SalesReport:
    """Reduce batches into a :class:`SalesReport` in a single pass.

    Every entry lands in exactly one department bucket and exactly one segment
    bucket, and is also added to the overall totals in the same step, so the
    bucket sums agree with ``overall`` by construction. Net revenue is derived
    once from the final sums at every level.

    Args:
        batches (Iterable[SaleBatch]): Batches already filtered by the caller.
        time_range (TimeRange): Bounds recorded on the report.
        material_cost_of (MaterialCostFn | None): Cost of a single entry. When
            omitted, each batch's stored ``total_cost`` is allocated across
            its entries.
        catalog (Mapping[str, ProductDefinition] | None): Products used to
            group entries that carry no denormalised reference.

    Returns:
        SalesReport: Fresh report value; empty buckets when no entries exist.
    """

    departments: Dict[str, _BucketTally] = {}
    segments: Dict[str, _BucketTally] = {}
    units = revenue = cost = ZERO
    batch_count = entry_count = 0

    for batch in batches:
        batch_count += 1
        if material_cost_of is None:
            entry_costs = allocate_stored_cost(batch)
        else:
            entry_costs = [material_cost_of(entry) for entry in batch.entries]
        for entry, entry_cost in zip(batch.entries, entry_costs):
            entry_count += 1

            reference = resolve_reference(entry, catalog)
            if reference is None:
                log.debug("Entry '%s' has no product reference; grouping as unknown", entry.entry_id)
            department, segment = bucket_keys(reference)
            departments.setdefault(department, _BucketTally()).add(entry.product_id, reference, entry, entry_cost)
            segments.setdefault(segment, _BucketTally()).add(entry.product_id, reference, entry, entry_cost)

            units += entry.quantity
            revenue += entry.total_price
            cost += entry_cost

    report = SalesReport(
        by_department={name: tally.freeze() for name, tally in departments.items()},
        by_production_segment={name: tally.freeze() for name, tally in segments.items()},
        overall=OverallSummary(
            total_units=units,
            total_revenue=revenue,
            total_cost=cost,
            net_revenue=revenue - cost,
        ),
        time_range=time_range,
    )
    log.info(
        "Aggregated %d entries from %d batches (revenue=%s, cost=%s)",
        entry_count,
        batch_count,
        revenue,
        cost,
    )
    return report


def build_sales_report(
    batches: Iterable[SaleBatch],
    start: str,
    end: str,
    *,
    material_cost_of: Optional[MaterialCostFn] = None,
    catalog: Optional[Mapping[str, ProductDefinition]] = None,
) -> SalesReport:
    """Report over every batch recorded within ``[start, end]``."""

    start = shamsi.normalize(start)
    end = shamsi.normalize(end)
    selected = filter_batches_by_date(batches, start, end)
    return aggregate(
        selected,
        time_range=TimeRange(start=start, end=end),
        material_cost_of=material_cost_of,
        catalog=catalog,
    )


def build_sales_report_for_batches(
    batches: Iterable[SaleBatch],
    batch_ids: Iterable[str],
    *,
    material_cost_of: Optional[MaterialCostFn] = None,
    catalog: Optional[Mapping[str, ProductDefinition]] = None,
) -> SalesReport:
    """Report over an explicit selection of batches.

    The time range spans the selected batches. Selecting nothing produces an
    all-zero report with empty buckets.
    """

    selected = select_batches(batches, batch_ids)
    if not selected:
        return empty_report(TimeRange(start="", end=""))
    return aggregate(
        selected,
        time_range=span_of(selected),
        material_cost_of=material_cost_of,
        catalog=catalog,
    )


def json_number(value: Decimal) -> Any:
    """Render a Decimal as an ``int`` when integral, otherwise a ``float``."""

    if value == value.to_integral_value():
        return int(value)
    return float(value)


def _bucket_to_dict(bucket: BucketSummary) -> Dict[str, Any]:
    return {
        "totalUnits": json_number(bucket.total_units),
        "totalRevenue": json_number(bucket.total_revenue),
        "totalCost": json_number(bucket.total_cost),
        "netRevenue": json_number(bucket.net_revenue),
        "products": [
            {
                "id": line.product_id,
                "name": line.name,
                "code": line.code,
                "units": json_number(line.units),
                "revenue": json_number(line.revenue),
                "materialCost": json_number(line.material_cost),
                "netRevenue": json_number(line.net_revenue),
            }
            for line in bucket.products
        ],
    }


def report_to_dict(report: SalesReport) -> Dict[str, Any]:
    """Serialise a report into plain JSON-ready dictionaries."""

    return {
        "byDepartment": {name: _bucket_to_dict(bucket) for name, bucket in report.by_department.items()},
        "byProductionSegment": {
            name: _bucket_to_dict(bucket) for name, bucket in report.by_production_segment.items()
        },
        "overall": {
            "totalUnits": json_number(report.overall.total_units),
            "totalRevenue": json_number(report.overall.total_revenue),
            "totalCost": json_number(report.overall.total_cost),
            "netRevenue": json_number(report.overall.net_revenue),
        },
        "timeRange": {"start": report.time_range.start, "end": report.time_range.end},
    }
