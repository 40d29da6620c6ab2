from __future__ import annotations

import logging
from dataclasses import dataclass, field

from stockbook.errors import StoreError
from stockbook.models import BatchRecord, Item
from stockbook.services.batches import load_batch_history
from stockbook.services.migration import MigrationReport, migrate_legacy_data
from stockbook.services.reconcile import refresh_item_batch_map
from stockbook.stores import BatchStore, ItemStore, SideCache

logger = logging.getLogger(__name__)


@dataclass
class InventorySnapshot:
    items: list[Item]
    history: list[BatchRecord]
    batch_map: dict[str, str]
    migration: MigrationReport = field(default_factory=MigrationReport)

    @property
    def stock(self) -> list[Item]:
        return [i for i in self.items if i.is_in_stock]

    @property
    def sold(self) -> list[Item]:
        return [i for i in self.items if i.is_sold]


def load_inventory(
    item_store: ItemStore,
    batch_store: BatchStore,
    cache: SideCache,
    *,
    reconcile: bool = True,
    auto_migrate: bool = True,
) -> InventorySnapshot:
    """
    Load the authoritative item set, batch history and side index.

    Runs the one-time cache migration first (a failed migration is logged and
    retried on the next load) and the batch-tag backfill last.
    """
    report = MigrationReport()
    if auto_migrate:
        try:
            report = migrate_legacy_data(item_store, batch_store, cache)
        except StoreError:
            logger.exception("Automatic migration of cached data failed")

    items = item_store.list_all()
    history = load_batch_history(batch_store, cache)
    batch_map = refresh_item_batch_map(items, cache, history, enabled=reconcile)
    return InventorySnapshot(items=items, history=history, batch_map=batch_map, migration=report)
