"""Tests for live collection snapshots and change notifications."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from resto_erp import core_logic
from resto_erp.constants import CollectionName
from resto_erp.sync import CollectionSync

from conftest import make_batch, make_entry


MOMENT = datetime(2024, 3, 20, 8, 30, tzinfo=UTC)


class Recorder:
    def __init__(self) -> None:
        self.calls: list[list] = []

    def __call__(self, records: list) -> None:
        self.calls.append(records)


def test_subscribe_delivers_current_snapshot(runtime_context):
    core_logic.add_product(runtime_context, code="101", name="Kebab", timestamp=MOMENT)
    recorder = Recorder()

    subscription = CollectionSync(runtime_context, "products").subscribe(recorder)

    assert subscription.active
    assert len(recorder.calls) == 1
    assert [product.code for product in recorder.calls[0]] == ["101"]


def test_write_notifies_every_sync_on_same_context(runtime_context):
    first = Recorder()
    second = Recorder()
    CollectionSync(runtime_context, CollectionName.PRODUCTS).subscribe(first)
    CollectionSync(runtime_context, CollectionName.PRODUCTS).subscribe(second)

    CollectionSync(runtime_context, "products").write("P-1", {"code": "7", "name": "Tea"})

    assert [product.name for product in first.calls[-1]] == ["Tea"]
    assert [product.name for product in second.calls[-1]] == ["Tea"]


def test_partial_write_merges_existing_product(runtime_context):
    sync = CollectionSync(runtime_context, "products")
    sync.write("P-1", {"code": "7", "name": "Tea", "sale_department": "Bar"})

    updated = sync.write("P-1", {"name": "Green Tea"})

    assert updated.name == "Green Tea"
    assert updated.sale_department == "Bar"
    assert [product.name for product in sync.snapshot()] == ["Green Tea"]


def test_write_cannot_duplicate_an_existing_code(runtime_context):
    core_logic.add_product(runtime_context, code="13", name="Kebab", timestamp=MOMENT)
    recorder = Recorder()
    sync = CollectionSync(runtime_context, "products")
    sync.subscribe(recorder)

    with pytest.raises(core_logic.BusinessRuleViolation):
        sync.write("PX", {"code": "13.0", "name": "Other Kebab"})

    assert [product.code for product in sync.snapshot()] == ["13"]
    assert len(recorder.calls) == 1


def test_last_write_wins(runtime_context):
    sync = CollectionSync(runtime_context, "materials")
    sync.write("M-1", {"code": "900", "name": "Rice", "price": "10"})
    sync.write("M-1", {"price": "12"})
    sync.write("M-1", {"price": "11.5"})

    assert sync.snapshot()[0].price == Decimal("11.5")


def test_cancelled_subscription_stops_deliveries(runtime_context):
    recorder = Recorder()
    sync = CollectionSync(runtime_context, "products")
    subscription = sync.subscribe(recorder)

    subscription.cancel()
    subscription.cancel()
    sync.write("P-1", {"code": "1", "name": "Ash"})

    assert not subscription.active
    assert len(recorder.calls) == 1


def test_failing_listener_does_not_block_others(runtime_context):
    def broken(records):
        raise RuntimeError("boom")

    recorder = Recorder()
    sync = CollectionSync(runtime_context, "products")
    sync.subscribe(broken)
    sync.subscribe(recorder)

    sync.write("P-1", {"code": "1", "name": "Ash"})

    assert len(recorder.calls) == 2


def test_collections_notify_independently(runtime_context):
    products = Recorder()
    CollectionSync(runtime_context, "products").subscribe(products)

    CollectionSync(runtime_context, "materials").write("M-1", {"code": "9", "name": "Salt"})

    assert len(products.calls) == 1


def test_sales_history_write_requires_whole_batch(runtime_context):
    sync = CollectionSync(runtime_context, "sales_history")
    with pytest.raises(TypeError):
        sync.write("B1", {"total_cost": "10"})


def test_sales_history_write_checks_batch_id(runtime_context):
    sync = CollectionSync(runtime_context, "sales_history")
    with pytest.raises(ValueError):
        sync.write("B1", make_batch("B2", (make_entry(),)))


def test_sales_history_write_rejects_repeated_entry_ids(runtime_context):
    sync = CollectionSync(runtime_context, "sales_history")
    batch = make_batch("B1", (make_entry(entry_id="dup"), make_entry(entry_id="dup")), total_cost="40")

    with pytest.raises(core_logic.BusinessRuleViolation):
        sync.write("B1", batch)

    assert sync.snapshot() == []


def test_sales_history_write_saves_then_replaces(runtime_context):
    recorder = Recorder()
    sync = CollectionSync(runtime_context, "sales_history")
    sync.subscribe(recorder)

    sync.write("B1", make_batch("B1", (make_entry(),), total_cost="10"))
    sync.write("B1", make_batch("B1", (make_entry(), make_entry()), total_cost="25"))

    history = sync.snapshot()
    assert [batch.batch_id for batch in history] == ["B1"]
    assert len(history[0].entries) == 2
    assert history[0].total_cost == Decimal("25")
    assert len(recorder.calls) == 3


def test_remove_deletes_batch_and_notifies(runtime_context):
    recorder = Recorder()
    sync = CollectionSync(runtime_context, "sales_history")
    sync.write("B1", make_batch("B1", (make_entry(),)))
    sync.subscribe(recorder)

    sync.remove("B1")

    assert recorder.calls[-1] == []


def test_unknown_collection_name_rejected(runtime_context):
    with pytest.raises(ValueError):
        CollectionSync(runtime_context, "customers")
