"""
Backfill of batch tags for stock rows written before items carried batch_ref.

Historical batches are matched against untagged in-stock items by product name
and condition; ties are broken by sale price, quantity and date distance. The
result only ever fills the side index (item id -> batch code) and never
touches an item's own batch_ref.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from stockbook.models import BatchRecord, Item, PricingLineItem
from stockbook.stores import SideCache, load_batch_map, save_batch_map
from stockbook.utils import normalize_text, parse_iso, round_money

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _match_key(item: Item, line: PricingLineItem, batch_ts: datetime) -> tuple:
    sale_match = round_money(item.sale_price or 0) == round_money(line.unit_sale_price or 0)
    qty_distance = abs(int(item.quantity or 0) - int(line.quantity))
    item_ts = parse_iso(item.date) or _EPOCH
    date_distance = abs((item_ts - batch_ts).total_seconds())
    return (0 if sale_match else 1, qty_distance, date_distance)


def reconcile_item_batch_map(
    items: list[Item],
    current_map: dict[str, str],
    history: list[BatchRecord],
) -> Optional[dict[str, str]]:
    """Return an updated item->batch map, or None when nothing new was tagged."""
    if not items:
        return None

    records = [r for r in history if r.batch_code]
    if not records:
        return None

    # newest first; undated records go last but are measured against "now"
    records.sort(key=lambda r: parse_iso(r.created_at) or _EPOCH, reverse=True)
    now = datetime.now(timezone.utc)

    next_map = dict(current_map)
    pool = [i for i in items if i.is_in_stock and not (i.batch_ref or next_map.get(i.id))]
    used: set[str] = set()
    tagged = 0

    for record in records:
        batch_ts = parse_iso(record.created_at) or now
        for line in record.items:
            if not line.is_sell or not line.product_name:
                continue

            wanted = normalize_text(line.product_name)
            candidates = [
                i
                for i in pool
                if i.id not in used
                and normalize_text(i.product_name) == wanted
                and (i.condition or "new") == line.condition
            ]
            if not candidates:
                continue

            best = min(candidates, key=lambda i: _match_key(i, line, batch_ts))
            next_map[best.id] = record.batch_code
            used.add(best.id)
            tagged += 1

    if not tagged:
        return None

    logger.info("Reconciled %d untagged stock item(s) to historical batches", tagged)
    return next_map


def refresh_item_batch_map(
    items: list[Item],
    cache: SideCache,
    history: list[BatchRecord],
    *,
    enabled: bool = True,
) -> dict[str, str]:
    """Load the side index, backfill it when enabled, and persist any change."""
    current = load_batch_map(cache)
    if not enabled:
        return current

    updated = reconcile_item_batch_map(items, current, history)
    if updated is None:
        return current

    save_batch_map(cache, updated)
    return updated
