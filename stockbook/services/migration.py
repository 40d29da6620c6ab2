"""
One-time import of records kept only in the local side cache (the first
release stored everything client-side) into the persistent stores.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from stockbook.errors import ValidationError
from stockbook.models import (
    ALL_RETAINED,
    ALL_SELL,
    IN_STOCK,
    MIXED,
    SOLD,
    BatchRecord,
    normalize_condition,
    normalize_status,
)
from stockbook.services.pricing import batch_type_for
from stockbook.stores import (
    LEGACY_HISTORY_KEY,
    LEGACY_ITEMS_KEY,
    BatchStore,
    ItemStore,
    SideCache,
)
from stockbook.utils import iso_now, to_float, to_quantity

logger = logging.getLogger(__name__)

MIGRATED_SUFFIX = "_migrated"


@dataclass
class MigrationReport:
    items_migrated: int = 0
    batches_migrated: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.items_migrated or self.batches_migrated)


def _lenient(normalize, value, default: str) -> str:
    try:
        return normalize(value)
    except ValidationError:
        return default


def legacy_item_fields(raw: dict) -> dict:
    """Map a cached item (camelCase, possibly partial) to store fields."""
    status = _lenient(normalize_status, raw.get("status"), IN_STOCK)
    date = raw.get("date") or iso_now()
    sale_price = raw.get("salePrice", raw.get("sale_price"))
    sale_date = raw.get("saleDate", raw.get("sale_date")) or None
    return {
        "product_name": str(raw.get("productName") or raw.get("product_name") or "Product"),
        "purchase_price": to_float(raw.get("purchasePrice", raw.get("purchase_price"))),
        "sale_price": to_float(sale_price) if sale_price else None,
        "quantity": to_quantity(raw.get("quantity")),
        "date": date,
        "sale_date": (sale_date or date) if status == SOLD else None,
        "status": status,
        "condition": _lenient(normalize_condition, raw.get("condition"), "new"),
        "batch_ref": raw.get("batchRef") or raw.get("batch_ref") or None,
    }


def legacy_batch_record(raw: dict) -> BatchRecord:
    record = BatchRecord.from_dict(raw)
    record.id = None
    if record.items:
        record.batch_type = batch_type_for(record.items)
    elif record.batch_type not in (ALL_SELL, MIXED, ALL_RETAINED):
        record.batch_type = ALL_RETAINED
    if not record.created_at:
        record.created_at = iso_now()
    return record


def has_local_data(cache: SideCache) -> tuple[bool, bool]:
    items = cache.get(LEGACY_ITEMS_KEY)
    history = cache.get(LEGACY_HISTORY_KEY)
    return (
        isinstance(items, list) and len(items) > 0,
        isinstance(history, list) and len(history) > 0,
    )


def _archive(cache: SideCache, key: str) -> None:
    cache.rename(key, key + MIGRATED_SUFFIX)


def migrate_items(item_store: ItemStore, cache: SideCache) -> int:
    raw = cache.get(LEGACY_ITEMS_KEY)
    if raw is None:
        return 0
    if not isinstance(raw, list):
        logger.warning("Cached %s is not a list; skipping item migration", LEGACY_ITEMS_KEY)
        return 0
    rows = [legacy_item_fields(r) for r in raw if isinstance(r, dict)]
    if not rows:
        return 0

    created = item_store.create_many(rows)
    _archive(cache, LEGACY_ITEMS_KEY)
    logger.info("Migrated %d cached item(s) into the store", len(created))
    return len(created)


def migrate_batches(batch_store: BatchStore, cache: SideCache) -> int:
    raw = cache.get(LEGACY_HISTORY_KEY)
    if raw is None:
        return 0
    if not isinstance(raw, list):
        logger.warning("Cached %s is not a list; skipping batch migration", LEGACY_HISTORY_KEY)
        return 0
    records = [legacy_batch_record(r) for r in raw if isinstance(r, dict)]
    records = [r for r in records if r.batch_code]
    if not records:
        return 0

    stored = {r.batch_code for r in batch_store.list_all()}
    fresh = []
    for record in records:
        if record.batch_code in stored:
            logger.warning("Batch %s is already stored; not importing it again", record.batch_code)
            continue
        stored.add(record.batch_code)
        fresh.append(record)

    # one write per record; a failure leaves the cache key in place for a retry
    for record in fresh:
        batch_store.create(record)
    _archive(cache, LEGACY_HISTORY_KEY)
    logger.info("Migrated %d cached batch record(s) into the store", len(fresh))
    return len(fresh)


def migrate_legacy_data(
    item_store: ItemStore,
    batch_store: BatchStore,
    cache: SideCache,
    *,
    force: bool = False,
) -> MigrationReport:
    """
    Import cached items when the item store is empty, and cached batch history
    when the batch store is empty. ``force`` imports regardless.
    """
    report = MigrationReport()

    if force or not item_store.list_all():
        report.items_migrated = migrate_items(item_store, cache)

    if force or not batch_store.list_all():
        report.batches_migrated = migrate_batches(batch_store, cache)

    return report
