"""Boston (BCG) matrix classification of products.

Growth and share are computed only from batches the user explicitly selected.
Growth compares the revenue of a product's first and last sale entry in the
selection, ordered by batch date; it is a two-point delta, not a fitted trend.
Share is the product's revenue over the overall revenue of the report built
from the same selection, in hundredths of a percent; the shares of a selection
add up to exactly 100.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from . import log
from .constants import (
    MARKET_GROWTH_THRESHOLD,
    MARKET_SHARE_THRESHOLD,
    UNKNOWN_PRODUCT_NAME,
    BostonCategory,
)
from .data_manager import ProductDefinition, SaleBatch
from .reporting import SalesReport, json_number, product_labels, resolve_reference, sort_batches_by_date


ZERO = Decimal("0")
HUNDRED = Decimal("100")
SHARE_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class SalePoint:
    """One sale of a product inside the selected window."""

    date: str
    revenue: Decimal
    quantity: Decimal


@dataclass(frozen=True)
class BostonData:
    product_id: str
    name: str
    code: str
    market_growth: Decimal
    market_share: Decimal
    revenue: Decimal
    category: BostonCategory


def classify(market_share: Decimal, market_growth: Decimal) -> BostonCategory:
    """Place a product in a Boston matrix quadrant.

    Share of at least 50% is "high" and growth of at least 0% is "growing".
    """

    high_share = market_share >= MARKET_SHARE_THRESHOLD
    growing = market_growth >= MARKET_GROWTH_THRESHOLD
    if high_share and growing:
        return BostonCategory.STAR
    if high_share:
        return BostonCategory.CASH_COW
    if growing:
        return BostonCategory.QUESTION_MARK
    return BostonCategory.DOG


def market_growth(series: List[SalePoint]) -> Decimal:
    """Percentage change from the first to the last sale in ``series``.

    A missing or zero-revenue first sale yields ``0``.
    """

    if not series:
        return ZERO
    first = series[0].revenue
    if first == ZERO:
        return ZERO
    return (series[-1].revenue - first) / first * HUNDRED


def market_share(revenue: Decimal, overall_revenue: Decimal) -> Decimal:
    """Percentage of ``overall_revenue``, rounded down to :data:`SHARE_QUANTUM`."""

    if overall_revenue == ZERO:
        return ZERO
    return (revenue / overall_revenue * HUNDRED).quantize(SHARE_QUANTUM, rounding=ROUND_DOWN)


def distribute_shares(revenues: List[Decimal], overall_revenue: Decimal) -> List[Decimal]:
    """Shares for ``revenues`` that add up to exactly 100 when they cover the total.

    The remainder left by rounding goes to the product with the most revenue.
    When ``revenues`` do not add up to ``overall_revenue`` the rounded shares
    are returned unchanged.
    """

    shares = [market_share(revenue, overall_revenue) for revenue in revenues]
    if not revenues or overall_revenue == ZERO or sum(revenues, ZERO) != overall_revenue:
        return shares
    leader = max(range(len(revenues)), key=lambda index: revenues[index])
    shares[leader] += HUNDRED - sum(shares, ZERO)
    return shares


def build_boston_data(
    selected_batches: Iterable[SaleBatch],
    report: SalesReport,
    *,
    catalog: Optional[Mapping[str, ProductDefinition]] = None,
) -> List[BostonData]:
    """Compute one :class:`BostonData` row per product in the selection.

    Args:
        selected_batches (Iterable[SaleBatch]): The user's explicit selection.
            Passing the full history is the caller's mistake; an empty
            selection yields no rows.
        report (SalesReport): Report built over the same selection; its
            overall revenue is the share denominator.
        catalog (Mapping[str, ProductDefinition] | None): Used for labels of
            entries lacking a denormalised reference.

    Returns:
        list[BostonData]: Rows in order of each product's first sale.
    """

    series: Dict[str, List[SalePoint]] = {}
    labels: Dict[str, tuple[str, str]] = {}

    for batch in sort_batches_by_date(selected_batches):
        for entry in batch.entries:
            points = series.setdefault(entry.product_id, [])
            points.append(SalePoint(date=batch.start_date, revenue=entry.total_price, quantity=entry.quantity))
            reference = resolve_reference(entry, catalog)
            known = labels.get(entry.product_id)
            if known is None or (reference is not None and known[0] == UNKNOWN_PRODUCT_NAME):
                labels[entry.product_id] = product_labels(reference)

    revenues = [sum((point.revenue for point in points), ZERO) for points in series.values()]
    shares = distribute_shares(revenues, report.overall.total_revenue)
    rows: List[BostonData] = []
    for (product_id, points), revenue, share in zip(series.items(), revenues, shares):
        growth = market_growth(points)
        name, code = labels[product_id]
        rows.append(
            BostonData(
                product_id=product_id,
                name=name,
                code=code,
                market_growth=growth,
                market_share=share,
                revenue=revenue,
                category=classify(share, growth),
            )
        )

    log.info("Classified %d products on the Boston matrix", len(rows))
    return rows


def boston_to_dict(rows: Iterable[BostonData]) -> List[Dict[str, Any]]:
    return [
        {
            "id": row.product_id,
            "name": row.name,
            "code": row.code,
            "marketGrowth": json_number(row.market_growth),
            "marketShare": json_number(row.market_share),
            "revenue": json_number(row.revenue),
            "category": row.category.value,
        }
        for row in rows
    ]
