"""Tests for recipe-based costing and stored-cost allocation."""

from __future__ import annotations

from decimal import Decimal

from resto_erp import costing, data_manager

from conftest import make_batch, make_entry


def _material(material_id: str, price: str) -> data_manager.Material:
    return data_manager.Material(material_id, material_id, material_id, "kg", Decimal(price), 0, 0)


def _line(recipe_id: str, product_id: str, material_id: str, amount: str) -> data_manager.RecipeIngredient:
    return data_manager.RecipeIngredient(recipe_id, product_id, material_id, Decimal(amount))


def test_unit_cost_sums_ingredients():
    calculator = costing.RecipeCostCalculator(
        [_line("R1", "A", "rice", "0.2"), _line("R1", "A", "meat", "0.15")],
        [_material("rice", "50"), _material("meat", "400")],
    )
    assert calculator.unit_cost("A") == Decimal("70")


def test_unit_cost_takes_cheapest_recipe():
    calculator = costing.RecipeCostCalculator(
        [_line("R1", "A", "meat", "1"), _line("R2", "A", "rice", "1")],
        [_material("rice", "10"), _material("meat", "40")],
    )
    assert calculator.unit_cost("A") == Decimal("10")


def test_unknown_material_contributes_nothing():
    calculator = costing.RecipeCostCalculator(
        [_line("R1", "A", "rice", "2"), _line("R1", "A", "ghost", "5")],
        [_material("rice", "10")],
    )
    assert calculator.unit_cost("A") == Decimal("20")


def test_product_without_recipe_costs_zero():
    calculator = costing.RecipeCostCalculator([], [])
    assert calculator(make_entry("A", quantity="3")) == Decimal("0")


def test_calling_calculator_multiplies_by_quantity():
    calculator = costing.RecipeCostCalculator([_line("R1", "A", "rice", "1")], [_material("rice", "12.5")])
    assert calculator(make_entry("A", quantity="4")) == Decimal("50.0")


def test_allocate_stored_cost_is_proportional_to_revenue():
    batch = make_batch(
        "B1",
        (
            make_entry("A", quantity="1", unit_price="300", entry_id="e1"),
            make_entry("B", quantity="1", unit_price="100", entry_id="e2"),
        ),
        total_cost="40",
    )
    assert costing.allocate_stored_cost(batch) == [Decimal("30"), Decimal("10")]


def test_allocate_stored_cost_splits_evenly_without_revenue():
    batch = make_batch(
        "B1",
        (
            make_entry("A", unit_price="0", entry_id="e1"),
            make_entry("B", unit_price="0", entry_id="e2"),
        ),
        total_cost="10",
    )
    assert costing.allocate_stored_cost(batch) == [Decimal("5"), Decimal("5")]


def test_allocate_stored_cost_empty_batch():
    assert costing.allocate_stored_cost(make_batch("B1", total_cost="10")) == []


def test_allocate_stored_cost_rounds_to_cents_and_keeps_total():
    batch = make_batch("B1", tuple(make_entry("A") for _ in range(3)), total_cost="100")

    shares = costing.allocate_stored_cost(batch)

    assert shares == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert sum(shares) == Decimal("100")


def test_allocate_stored_cost_uneven_revenue_keeps_total():
    batch = make_batch(
        "B1",
        (
            make_entry("A", unit_price="70"),
            make_entry("B", unit_price="20"),
            make_entry("C", unit_price="7"),
        ),
        total_cost="10",
    )

    shares = costing.allocate_stored_cost(batch)

    assert shares[:2] == [Decimal("7.21"), Decimal("2.06")]
    assert sum(shares) == Decimal("10")
    assert all(share >= 0 for share in shares)


def test_allocate_stored_cost_is_positional_for_repeated_entry_ids():
    batch = make_batch(
        "B1",
        (
            make_entry("A", unit_price="30", entry_id="dup"),
            make_entry("B", unit_price="10", entry_id="dup"),
        ),
        total_cost="40",
    )
    assert costing.allocate_stored_cost(batch) == [Decimal("30"), Decimal("10")]
