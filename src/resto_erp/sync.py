"""Live collections over the workbook store.

A :class:`CollectionSync` exposes one record collection (products, materials or
the sales history) as a snapshot that listeners receive on subscription and
again after every write or removal made through any ``CollectionSync`` bound to
the same :class:`~resto_erp.core_logic.RuntimeContext`. Writes are applied in
arrival order; the last write to a record wins.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Union

from . import core_logic, log
from .constants import CollectionName
from .data_manager import SaleBatch


Listener = Callable[[List[Any]], None]

_LISTENERS_BUCKET = "listeners"


class Subscription:
    """Handle returned by :meth:`CollectionSync.subscribe`."""

    def __init__(self, listeners: List[Listener], listener: Listener) -> None:
        self._listeners = listeners
        self._listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Stop deliveries. Calling it again does nothing."""
        if not self._active:
            return
        self._active = False
        try:
            self._listeners.remove(self._listener)
        except ValueError:
            log.debug("Listener already detached")


class CollectionSync:
    """Snapshot, subscribe, upsert and remove for a single collection."""

    def __init__(self, context: core_logic.RuntimeContext, collection: Union[str, CollectionName]) -> None:
        self.context = context
        self.collection = CollectionName(collection)

    def _listeners(self) -> List[Listener]:
        bucket: Dict[str, List[Listener]] = core_logic._get_cache_bucket(self.context, _LISTENERS_BUCKET)
        return bucket.setdefault(self.collection.value, [])

    def snapshot(self) -> List[Any]:
        if self.collection is CollectionName.PRODUCTS:
            return core_logic.list_products(self.context)
        if self.collection is CollectionName.MATERIALS:
            return core_logic.list_materials(self.context)
        return core_logic.get_sales_history(self.context)

    def subscribe(self, on_change: Listener) -> Subscription:
        """Register ``on_change`` and deliver the current snapshot to it at once."""
        listeners = self._listeners()
        listeners.append(on_change)
        subscription = Subscription(listeners, on_change)
        self._deliver(on_change, self.snapshot())
        return subscription

    def write(self, record_id: str, partial: Union[Mapping[str, Any], SaleBatch]) -> Any:
        """Upsert ``record_id``.

        Products and materials accept a partial field mapping merged into the
        stored record. Sales history only accepts a whole :class:`SaleBatch`
        whose id matches ``record_id``.

        Raises:
            TypeError: If a sales history write is not a ``SaleBatch``.
            ValueError: If the batch id and ``record_id`` disagree.
        """
        if self.collection is CollectionName.PRODUCTS:
            record = core_logic.write_product(self.context, record_id, partial)
        elif self.collection is CollectionName.MATERIALS:
            record = core_logic.write_material(self.context, record_id, partial)
        else:
            if not isinstance(partial, SaleBatch):
                raise TypeError("Sales history writes must supply a complete SaleBatch")
            if partial.batch_id != record_id:
                raise ValueError(f"Batch id '{partial.batch_id}' does not match '{record_id}'")
            if record_id in {batch.batch_id for batch in core_logic.get_sales_history(self.context)}:
                record = core_logic.replace_sales_batch(self.context, partial)
            else:
                record = core_logic.save_sales_batch(self.context, partial)
        self._notify()
        return record

    def remove(self, record_id: str) -> None:
        if self.collection is CollectionName.PRODUCTS:
            core_logic.delete_product(self.context, record_id)
        elif self.collection is CollectionName.MATERIALS:
            core_logic.delete_material(self.context, record_id)
        else:
            core_logic.delete_sales_batch(self.context, record_id)
        self._notify()

    def _notify(self) -> None:
        listeners = list(self._listeners())
        if not listeners:
            return
        records = self.snapshot()
        log.debug("Notifying %d listeners of '%s'", len(listeners), self.collection.value)
        for listener in listeners:
            self._deliver(listener, list(records))

    def _deliver(self, listener: Listener, records: List[Any]) -> None:
        try:
            listener(records)
        except Exception:
            log.exception("Listener for '%s' failed", self.collection.value)
