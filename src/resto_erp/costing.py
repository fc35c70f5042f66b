"""Raw-material costing for sale entries.

Reports treat costing as a black box returning a non-negative cost per sale
entry. Two sources are provided: a recipe-based calculator that prices
ingredients at current material prices, and an allocator that spreads the
cost stored on a batch across its entries when no calculator is supplied.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal
from typing import Callable, Dict, Iterable, List

from . import log
from .data_manager import Material, RecipeIngredient, SaleBatch, SaleEntry


MaterialCostFn = Callable[[SaleEntry], Decimal]

ZERO = Decimal("0")

# Precision of allocated costs; money is stored to the cent.
COST_QUANTUM = Decimal("0.01")


class RecipeCostCalculator:
    """Price sale entries from product recipes and material prices.

    A product may have several recipes; its unit cost is the cheapest one.
    Each recipe costs the sum of ``material price * amount`` over its
    ingredients. Ingredients that reference an unknown material contribute
    nothing, and products without any recipe cost zero.

    Instances are callable so they can be passed wherever a
    :data:`MaterialCostFn` is expected.
    """

    def __init__(self, ingredients: Iterable[RecipeIngredient], materials: Iterable[Material]) -> None:
        self._prices: Dict[str, Decimal] = {material.material_id: material.price for material in materials}
        self._recipes: Dict[str, Dict[str, List[RecipeIngredient]]] = {}
        for ingredient in ingredients:
            by_recipe = self._recipes.setdefault(ingredient.product_id, {})
            by_recipe.setdefault(ingredient.recipe_id, []).append(ingredient)
        self._unit_costs: Dict[str, Decimal] = {}

    def recipe_cost(self, ingredients: Iterable[RecipeIngredient]) -> Decimal:
        total = ZERO
        for ingredient in ingredients:
            price = self._prices.get(ingredient.material_id)
            if price is None:
                log.warning(
                    "Recipe '%s' references unknown material '%s'",
                    ingredient.recipe_id,
                    ingredient.material_id,
                )
                continue
            total += price * ingredient.amount
        return total

    def unit_cost(self, product_id: str) -> Decimal:
        cached = self._unit_costs.get(product_id)
        if cached is not None:
            return cached
        recipes = self._recipes.get(product_id)
        if not recipes:
            cost = ZERO
        else:
            cost = min(self.recipe_cost(lines) for lines in recipes.values())
        self._unit_costs[product_id] = cost
        return cost

    def __call__(self, entry: SaleEntry) -> Decimal:
        return self.unit_cost(entry.product_id) * entry.quantity


def allocate_stored_cost(batch: SaleBatch) -> List[Decimal]:
    """Distribute ``batch.total_cost`` over its entries.

    Each entry receives a share proportional to its ``total_price``. When the
    batch has no revenue the cost is split evenly instead. Shares are rounded
    down to :data:`COST_QUANTUM` and the last entry absorbs the remainder,
    so the shares always add up to the stored total.

    Returns:
        list[Decimal]: One share per entry, in ``batch.entries`` order.
    """

    if not batch.entries:
        return []
    revenue = sum((entry.total_price for entry in batch.entries), ZERO)
    if revenue == ZERO:
        weights = [Decimal("1")] * len(batch.entries)
        revenue = Decimal(len(batch.entries))
    else:
        weights = [entry.total_price for entry in batch.entries]

    shares = [
        (batch.total_cost * weight / revenue).quantize(COST_QUANTUM, rounding=ROUND_DOWN)
        for weight in weights[:-1]
    ]
    shares.append(batch.total_cost - sum(shares, ZERO))
    return shares
