"""
Shared fixtures: an in-memory sqlite database with the current schema, the
sqlite stores on top of it, and a side cache file under tmp_path.
"""

import pytest

from stockbook.db import connect, ensure_schema
from stockbook.models import IN_STOCK, Item, PricingLineItem, new_id
from stockbook.stores import JsonSideCache, SqliteBatchStore, SqliteItemStore


@pytest.fixture
def conn():
    c = connect(":memory:")
    ensure_schema(c)
    yield c
    c.close()


@pytest.fixture
def item_store(conn):
    return SqliteItemStore(conn)


@pytest.fixture
def batch_store(conn):
    return SqliteBatchStore(conn)


@pytest.fixture
def cache(tmp_path):
    return JsonSideCache(tmp_path / "side_cache.json")


@pytest.fixture
def make_item():
    def _make(**overrides) -> Item:
        fields = {
            "id": new_id(),
            "product_name": "Smart watch",
            "purchase_price": 40000.0,
            "quantity": 1,
            "date": "2026-03-01T10:00:00+00:00",
            "status": IN_STOCK,
            "condition": "new",
            "sale_price": 70000.0,
            "sale_date": None,
            "batch_ref": None,
        }
        fields.update(overrides)
        return Item(**fields)

    return _make


@pytest.fixture
def stock_row():
    """Store fields for an in-stock lot."""

    def _row(**overrides) -> dict:
        fields = {
            "product_name": "Smart watch",
            "purchase_price": 40000.0,
            "sale_price": 70000.0,
            "quantity": 3,
            "date": "2026-03-01T10:00:00+00:00",
            "status": IN_STOCK,
            "condition": "new",
        }
        fields.update(overrides)
        return fields

    return _row


def line(name, listed, qty=1, sale=0.0, disposition="sell", condition="new") -> PricingLineItem:
    return PricingLineItem(
        product_name=name,
        quantity=qty,
        listed_unit_price=float(listed),
        unit_sale_price=float(sale),
        condition=condition,
        disposition=disposition,
    )
