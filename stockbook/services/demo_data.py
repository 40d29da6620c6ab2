from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

from stockbook.db import ensure_schema
from stockbook.services.batches import load_batch_history, materialize_batch
from stockbook.services.items import create_item, sell_from_stock
from stockbook.services.pricing import build_line_item
from stockbook.stores import (
    BATCH_HISTORY_KEY,
    DRAFT_BATCH_KEY,
    ITEM_BATCH_MAP_KEY,
    SqliteBatchStore,
    SqliteItemStore,
    SideCache,
    load_batch_map,
)

DEMO_PRODUCTS = [
    ("Wireless earbuds", 18000, 32000),
    ("Smart watch", 45000, 70000),
    ("Phone case", 3000, 7500),
    ("USB-C charger", 6000, 11000),
    ("Bluetooth speaker", 25000, 41000),
]


def wipe_all(conn, cache: SideCache) -> None:
    # Keep schema, delete data (order matters for FKs).
    for t in ["batch_lines", "batches", "items"]:
        conn.execute(f"DELETE FROM {t};")
    conn.commit()
    for key in (ITEM_BATCH_MAP_KEY, BATCH_HISTORY_KEY, DRAFT_BATCH_KEY):
        cache.remove(key)


def load_demo_data(conn, cache: SideCache, *, seed: int = 7) -> None:
    rng = random.Random(seed)
    ensure_schema(conn)
    items = SqliteItemStore(conn)
    batches = SqliteBatchStore(conn)

    # Three bulk orders, each paid with a discount over the listed total
    for _ in range(3):
        picks = rng.sample(DEMO_PRODUCTS, k=3)
        lines = []
        for n, (name, listed, sale) in enumerate(picks):
            lines.append(
                build_line_item(
                    product_name=name,
                    quantity=rng.randint(1, 6),
                    listed_unit_price=listed,
                    unit_sale_price=sale,
                    disposition="keep" if n == 2 and rng.random() < 0.5 else "sell",
                )
            )
        listed_total = sum(li.listed_unit_price * li.quantity for li in lines)
        total_paid = round(listed_total * rng.uniform(0.7, 0.9))

        materialize_batch(
            items,
            batches,
            cache,
            lines=lines,
            total_paid=total_paid,
            inventory=items.list_all(),
            history=load_batch_history(batches, cache),
            batch_map=load_batch_map(cache),
        )

    # A few direct (non-batch) purchases
    now = datetime.now(timezone.utc)
    for name, listed, sale in rng.sample(DEMO_PRODUCTS, k=2):
        create_item(
            items,
            product_name=name,
            purchase_price=listed,
            sale_price=sale,
            quantity=rng.randint(1, 3),
            condition=rng.choice(["new", "lightly_used", "used"]),
            date=(now - timedelta(days=rng.randint(5, 20))).replace(microsecond=0).isoformat(),
        )

    # Sell part of the stock over the last days
    batch_map = load_batch_map(cache)
    for day, stock in enumerate(s for s in items.list_all() if s.is_in_stock):
        if day >= 5:
            break
        sell_from_stock(
            items,
            stock,
            rng.randint(1, stock.quantity),
            sale_date=(now - timedelta(days=day)).replace(microsecond=0).isoformat(),
            batch_map=batch_map,
        )
