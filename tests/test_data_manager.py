"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from resto_erp import constants, data_manager
from resto_erp.setup_excel import SHEET_COLUMNS

from conftest import make_batch, make_entry, make_reference


PRODUCTS = constants.SheetName.PRODUCTS.value
SALE_BATCHES = constants.SheetName.SALE_BATCHES.value
SALE_ENTRIES = constants.SheetName.SALE_ENTRIES.value


def _product(product_id: str = "P1", code: str = "101", name: str = "Kebab") -> data_manager.ProductDefinition:
    return data_manager.ProductDefinition(
        product_id=product_id,
        code=code,
        name=name,
        sale_department="Hall",
        production_segment="Grill",
        created_at=1_700_000_000_000,
        updated_at=1_700_000_000_000,
    )


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent_directory(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=master_workbook.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    parser = data_manager.read_config(config_file)
    assert parser.get("System", "RestaurantName") == "Test Restaurant"
    assert parser.get("Defaults", "SaleDepartment") == "Hall"


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = configparser.ConfigParser()
    parser.read(bundle.config_path, encoding="utf-8")
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)
    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.default_sale_department == "Hall"
    assert settings.default_production_segment == "Kitchen"


def test_parse_settings_requires_expected_sections(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    assert isinstance(data_manager.open_workbook(master_workbook_path), OpenpyxlWorkbook)


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_created_workbook_has_expected_headers(master_workbook_path):
    workbook = openpyxl.load_workbook(master_workbook_path)
    for sheet_name, columns in SHEET_COLUMNS.items():
        header = [cell.value for cell in workbook[sheet_name][1]]
        assert header == list(columns)


def test_refresh_workbook_discards_unsaved_changes(master_workbook_path):
    original = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(original, _product())

    refreshed = data_manager.refresh_workbook(master_workbook_path)
    assert refreshed is not original
    assert list(data_manager.iter_products(refreshed)) == []


def test_append_product_round_trips_through_disk(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(workbook, _product())
    data_manager.save_workbook(workbook, master_workbook_path)

    rows = list(data_manager.iter_products(data_manager.open_workbook(master_workbook_path)))
    assert rows == [_product()]


def test_iter_products_coerces_numeric_codes_to_text(master_workbook_path):
    """Excel stores numeric-looking codes as numbers; they come back as text."""

    workbook = data_manager.open_workbook(master_workbook_path)
    workbook[PRODUCTS].append(["P7", 13, "Doogh", "Bar", "Cold", 1, 2])
    rows = list(data_manager.iter_products(workbook))
    assert rows[0].code == "13"


def test_iter_sale_batches_joins_entries(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    first = make_batch(
        "B1",
        (
            make_entry("P1", quantity="2", unit_price="100", reference=make_reference(), entry_id="B1-0001"),
            make_entry("P2", quantity="1", unit_price="50", entry_id="B1-0002"),
        ),
        total_cost="30",
    )
    second = make_batch("B2", (make_entry("P1", entry_id="B2-0001"),), date="1402/01/02")
    data_manager.append_sale_batch(workbook, first)
    data_manager.append_sale_batch(workbook, second)
    data_manager.save_workbook(workbook, master_workbook_path)

    batches = list(data_manager.iter_sale_batches(data_manager.open_workbook(master_workbook_path)))

    assert [batch.batch_id for batch in batches] == ["B1", "B2"]
    assert [entry.entry_id for entry in batches[0].entries] == ["B1-0001", "B1-0002"]
    assert batches[0].entries[0].product == make_reference()
    assert batches[0].entries[1].product is None
    assert batches[0].total_revenue == Decimal("250")
    assert batches[0].total_cost == Decimal("30")
    assert batches[1].start_date == "1402/01/02"


def test_iter_sale_batches_ignores_orphan_entries(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    workbook[SALE_ENTRIES].append(
        ["X-1", "GHOST", "P1", None, None, None, None, 1, 10, 10, "1402/01/01", 0, 0]
    )
    assert list(data_manager.iter_sale_batches(workbook)) == []


def test_iter_sale_batches_trusts_stored_totals(master_workbook_path):
    """TotalPrice is read as stored, not recomputed from quantity and price."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_sale_batch(
        workbook,
        make_batch("B1", (make_entry("P1", quantity="2", unit_price="100", total_price="150"),)),
    )
    batch = next(iter(data_manager.iter_sale_batches(workbook)))
    assert batch.entries[0].total_price == Decimal("150")


def test_delete_sale_batch_removes_batch_and_entries(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_sale_batch(workbook, make_batch("B1", (make_entry(), make_entry())))
    data_manager.append_sale_batch(workbook, make_batch("B2", (make_entry(),)))

    removed = data_manager.delete_sale_batch(workbook, "B1")

    assert removed == 1
    remaining = list(data_manager.iter_sale_batches(workbook))
    assert [batch.batch_id for batch in remaining] == ["B2"]
    entry_batches = [row[1] for row in workbook[SALE_ENTRIES].iter_rows(min_row=2, values_only=True)]
    assert entry_batches == ["B2"]


def test_delete_sale_batch_unknown_returns_zero(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    assert data_manager.delete_sale_batch(workbook, "NOPE") == 0


def test_update_product_modifies_existing_row(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(workbook, _product())

    data_manager.update_product(workbook, "P1", field_values={"Name": "Joojeh", "SaleDepartment": "Delivery"})

    row = next(iter(data_manager.iter_products(workbook)))
    assert row.name == "Joojeh"
    assert row.sale_department == "Delivery"


def test_update_product_missing_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.update_product(workbook, "NOPE", field_values={"Name": "X"})


def test_update_material_rejects_unknown_column(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_material(
        workbook,
        data_manager.Material("M1", "900", "Rice", "kg", Decimal("3.5"), 0, 0),
    )
    with pytest.raises(KeyError):
        data_manager.update_material(workbook, "M1", field_values={"Colour": "white"})


def test_locate_row_returns_row_index(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(workbook, _product("P1"))
    data_manager.append_product(workbook, _product("P2", code="102"))

    assert data_manager.locate_row(workbook, PRODUCTS, "ProductID", "P2") == 3
    assert data_manager.locate_row(workbook, PRODUCTS, "ProductID", "NOPE") is None


def test_locate_row_unknown_column_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.locate_row(workbook, PRODUCTS, "Missing", "x")


def test_serialize_product_matches_sheet_columns():
    values = data_manager.serialize_product(_product())
    assert len(values) == len(SHEET_COLUMNS[PRODUCTS])
    assert values[:3] == ["P1", "101", "Kebab"]


def test_serialize_sale_entry_blanks_missing_reference():
    entry = make_entry("P1", entry_id="E1")
    values = data_manager.serialize_sale_entry("B1", entry)
    assert len(values) == len(SHEET_COLUMNS[SALE_ENTRIES])
    assert values[:3] == ["E1", "B1", "P1"]
    assert values[3:7] == [None, None, None, None]


def test_deserialize_sale_entry_builds_reference_when_any_cell_present():
    batch_id, entry = data_manager.deserialize_sale_entry(
        ["E1", "B1", "P1", None, "Kebab", None, None, 2, 10, 20, "1402/01/01", 5, 6]
    )
    assert batch_id == "B1"
    assert entry.product == data_manager.ProductReference(
        code="", name="Kebab", sale_department="", production_segment=""
    )
    assert entry.quantity == Decimal("2")
    assert entry.created_at == 5


def test_deserialize_material_parses_price():
    record = data_manager.deserialize_material(["M1", 900, "Rice", "kg", 3.5, None, None])
    assert record.code == "900"
    assert record.price == Decimal("3.5")
    assert record.created_at == 0


def test_deserialize_material_reads_stock_when_present():
    record = data_manager.deserialize_material(["M1", "900", "Rice", "kg", 3.5, 1, 2, 12.5])
    assert record.stock == Decimal("12.5")
    assert data_manager.deserialize_material(["M1", "900", "Rice", "kg", 3.5, 1, 2]).stock == Decimal("0")


def test_serialize_material_matches_sheet_columns():
    material = data_manager.Material("M1", "900", "Rice", "kg", Decimal("3.5"), 1, 2, stock=Decimal("4"))
    values = data_manager.serialize_material(material)
    assert len(values) == len(SHEET_COLUMNS[constants.SheetName.MATERIALS.value])
    assert values[-1] == Decimal("4")


def test_inventory_entries_round_trip_through_disk(master_workbook_path):
    receipt = data_manager.InventoryEntry(
        entry_id="I1",
        material_id="M1",
        quantity=Decimal("10"),
        unit_price=Decimal("55.5"),
        discount=Decimal("5"),
        tax=Decimal("0"),
        shipping=Decimal("20"),
        total_price=Decimal("570"),
        entry_date="1402/01/10",
        seller="Bazaar",
        invoice_number="F-12",
        notes="",
        created_at=1_700_000_000_000,
    )
    assert len(data_manager.serialize_inventory_entry(receipt)) == len(
        SHEET_COLUMNS[constants.SheetName.INVENTORY_ENTRIES.value]
    )

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_inventory_entry(workbook, receipt)
    data_manager.save_workbook(workbook, master_workbook_path)

    assert list(data_manager.iter_inventory_entries(data_manager.open_workbook(master_workbook_path))) == [receipt]
