from __future__ import annotations

import logging
import re
from typing import Optional

from stockbook.errors import PartialBatchFailure, StoreError, ValidationError
from stockbook.models import IN_STOCK, SELL, BatchRecord, Item, PricingLineItem
from stockbook.services.items import resolve_batch_ref
from stockbook.services.pricing import batch_type_for, clear_draft, price_batch
from stockbook.stores import (
    BatchStore,
    ItemStore,
    SideCache,
    read_cached_history,
    save_batch_map,
    write_cached_history,
)
from stockbook.utils import iso_now, round_money

logger = logging.getLogger(__name__)

HISTORY_CACHE_LIMIT = 50


def next_batch_code(history: list[BatchRecord], prefix: str = "T") -> str:
    """
    Sequential code from the history length: T-001, T-002, ...

    If the code is already taken (a batch was deleted in between) the index
    moves forward until it is free.
    """
    taken = {r.batch_code for r in history}
    idx = len(history) + 1
    while True:
        code = f"{prefix}-{idx:03d}"
        if code not in taken:
            return code
        idx += 1


def batch_label(batch_ref: Optional[str]) -> str:
    # pandas hands missing refs over as NaN
    if not isinstance(batch_ref, str) or not batch_ref:
        return "No batch"
    m = re.search(r"\d+", batch_ref)
    if not m:
        return batch_ref
    return f"No. {int(m.group(0))}"


def _find_existing_lot(
    inventory: list[Item],
    line: PricingLineItem,
    adjusted_unit_cost: int,
    batch_code: str,
    batch_map: dict[str, str],
) -> Optional[Item]:
    for stock in inventory:
        if (
            stock.status == IN_STOCK
            and stock.product_name == line.product_name
            and stock.condition == line.condition
            and round_money(stock.purchase_price) == adjusted_unit_cost
            and resolve_batch_ref(stock, batch_map) == batch_code
        ):
            return stock
    return None


def materialize_batch(
    item_store: ItemStore,
    batch_store: BatchStore,
    cache: SideCache,
    *,
    lines: list[PricingLineItem],
    total_paid: float,
    inventory: list[Item],
    history: list[BatchRecord],
    batch_map: Optional[dict[str, str]] = None,
    prefix: str = "T",
    history_limit: int = HISTORY_CACHE_LIMIT,
) -> BatchRecord:
    """
    Send a priced batch to stock.

    Sell lines become in-stock lots (merged into an existing lot of the same
    batch when name, condition and rounded cost match); then the batch summary
    is persisted. Writes are sequential and are not rolled back on failure.
    """
    if not lines:
        raise ValidationError("Add products to the batch first.")

    pricing = price_batch(total_paid, lines)
    batch_code = next_batch_code(history, prefix=prefix)
    batch_type = batch_type_for(lines)
    tags = dict(batch_map or {})
    written: list[str] = []

    logger.info(
        "Materializing batch %s (%s): %d line(s), paid %.2f, factor %.4f",
        batch_code,
        batch_type,
        len(lines),
        pricing.total_paid,
        pricing.allocation_factor,
    )

    try:
        for line in lines:
            if not line.is_sell:
                continue
            adjusted = round_money(line.listed_unit_price * pricing.allocation_factor)

            existing = _find_existing_lot(inventory, line, adjusted, batch_code, tags)
            if existing is not None:
                saved = item_store.update(
                    existing.id,
                    {
                        "quantity": int(existing.quantity) + int(line.quantity),
                        "sale_price": line.unit_sale_price,
                        "condition": line.condition,
                        "batch_ref": batch_code,
                    },
                )
                logger.debug("Merged %d x %s into lot %s", line.quantity, line.product_name, existing.id)
            else:
                saved = item_store.create(
                    {
                        "product_name": line.product_name,
                        "purchase_price": adjusted,
                        "sale_price": line.unit_sale_price,
                        "quantity": int(line.quantity),
                        "date": iso_now(),
                        "status": IN_STOCK,
                        "condition": line.condition,
                        "batch_ref": batch_code,
                    }
                )
                logger.debug("Created lot %s for %d x %s", saved.id, line.quantity, line.product_name)

            # tag even if the store dropped batch_ref (older schema)
            tags[saved.id] = batch_code
            written.append(saved.id)

        record = batch_store.create(
            BatchRecord(
                id=None,
                batch_code=batch_code,
                batch_type=batch_type,
                created_at=iso_now(),
                total_paid=pricing.total_paid,
                total_sell_revenue=pricing.total_sell_revenue,
                cash_profit=pricing.expected_profit,
                retained_value=pricing.retained_value,
                items_count=len(lines),
                items=[PricingLineItem(**li.to_dict()) for li in lines],
            )
        )
    except StoreError as e:
        logger.error("Batch %s failed after %d item write(s): %s", batch_code, len(written), e)
        if written:
            try:
                save_batch_map(cache, tags)
            except StoreError:
                logger.exception("Could not save batch tags for %s after the failed write", batch_code)
            raise PartialBatchFailure(batch_code, written, e) from e
        raise

    if written:
        save_batch_map(cache, tags)

    write_cached_history(cache, [record, *history], limit=history_limit)
    clear_draft(cache)
    logger.info("Batch %s saved (%d stock write(s))", batch_code, len(written))
    return record


def load_batch_history(batch_store: BatchStore, cache: SideCache, history_limit: int = HISTORY_CACHE_LIMIT) -> list[BatchRecord]:
    """Store first; the side cache is the fallback when the store is empty or down."""
    try:
        records = batch_store.list_all()
    except StoreError:
        logger.exception("Could not load batches from the store; using cached history")
        return read_cached_history(cache)

    if records:
        write_cached_history(cache, records, limit=history_limit)
        return records
    return read_cached_history(cache)


def delete_batch(
    item_store: ItemStore,
    batch_store: BatchStore,
    cache: SideCache,
    *,
    record: BatchRecord,
    items: list[Item],
    batch_map: Optional[dict[str, str]] = None,
) -> dict[str, str]:
    """
    Delete a batch and every item whose resolved batch ref is its code.

    Returns the side index without the deleted item ids.
    """
    tags = dict(batch_map or {})
    related = [i for i in items if resolve_batch_ref(i, tags) == record.batch_code]

    for item in related:
        item_store.delete(item.id)
    if record.id:
        batch_store.delete(record.id)

    for item in related:
        tags.pop(item.id, None)
    save_batch_map(cache, tags)

    if record.id:
        remaining = [r for r in read_cached_history(cache) if r.id != record.id]
    else:
        remaining = [r for r in read_cached_history(cache) if r.batch_code != record.batch_code]
    write_cached_history(cache, remaining)

    logger.info("Deleted batch %s and %d linked item(s)", record.batch_code, len(related))
    return tags


def batch_detail_lines(
    record: BatchRecord,
    items: list[Item],
    batch_map: Optional[dict[str, str]] = None,
) -> list[PricingLineItem]:
    """Line snapshots of a batch; legacy batches are rebuilt from tagged items."""
    if record.items:
        return list(record.items)
    return [
        PricingLineItem(
            id=i.id,
            product_name=i.product_name,
            quantity=int(i.quantity),
            listed_unit_price=float(i.purchase_price),
            unit_sale_price=float(i.sale_price or i.purchase_price),
            condition=i.condition,
            disposition=SELL,
        )
        for i in items
        if resolve_batch_ref(i, batch_map) == record.batch_code
    ]
