"""
Tests for batch codes, materializing a priced batch into stock, batch history
loading and cascade deletion.
"""

import pytest

from conftest import line
from stockbook.db import connect
from stockbook.errors import PartialBatchFailure, StoreError, ValidationError
from stockbook.models import ALL_RETAINED, MIXED, BatchRecord
from stockbook.schema import SCHEMA_SQL
from stockbook.services.batches import (
    batch_detail_lines,
    batch_label,
    delete_batch,
    load_batch_history,
    materialize_batch,
    next_batch_code,
)
from stockbook.services.items import sell_from_stock
from stockbook.services.pricing import load_draft, save_draft
from stockbook.stores import (
    BATCH_HISTORY_KEY,
    ITEM_BATCH_MAP_KEY,
    SqliteBatchStore,
    SqliteItemStore,
    load_batch_map,
    read_cached_history,
    write_cached_history,
)


def history_of(*codes):
    return [BatchRecord(id=None, batch_code=c, batch_type="all_sell", created_at="") for c in codes]


def mixed_lines():
    return [
        line("Smart watch", 50000, sale=70000),
        line("Earbuds", 15000, qty=2, sale=20000),
        line("Speaker", 10000, qty=2, disposition="keep"),
    ]


class FailingItemStore:
    """Delegates to a real store but fails the n-th create call."""

    def __init__(self, inner, fail_on):
        self.inner = inner
        self.fail_on = fail_on
        self.calls = 0

    def create(self, fields):
        self.calls += 1
        if self.calls == self.fail_on:
            raise StoreError("create_item", "disk full")
        return self.inner.create(fields)

    def __getattr__(self, name):
        return getattr(self.inner, name)


class TagWriteFailingCache:
    """Side cache that cannot persist the item-batch map."""

    def __init__(self, inner):
        self.inner = inner

    def set(self, key, value):
        if key == ITEM_BATCH_MAP_KEY:
            raise StoreError("write_side_cache", "read-only file")
        self.inner.set(key, value)

    def __getattr__(self, name):
        return getattr(self.inner, name)


class FailingBatchStore:
    def list_all(self):
        raise StoreError("list_batches", "offline")


class TestBatchCodes:
    def test_first_code(self):
        assert next_batch_code([]) == "T-001"

    def test_follows_history_length(self):
        assert next_batch_code(history_of("T-001", "T-002")) == "T-003"

    def test_skips_taken_code(self):
        assert next_batch_code(history_of("T-001", "T-003")) == "T-004"

    def test_custom_prefix(self):
        assert next_batch_code(history_of("B-001"), prefix="B") == "B-002"

    def test_label(self):
        assert batch_label(None) == "No batch"
        assert batch_label("T-007") == "No. 7"
        assert batch_label("legacy") == "legacy"

    def test_label_of_missing_frame_value(self):
        assert batch_label(float("nan")) == "No batch"


class TestMaterializeBatch:
    def test_creates_stock_for_sell_lines(self, item_store, batch_store, cache):
        record = materialize_batch(
            item_store, batch_store, cache, lines=mixed_lines(), total_paid=80000, inventory=[], history=[]
        )

        assert record.batch_code == "T-001"
        assert record.batch_type == MIXED
        assert record.items_count == 3
        assert record.total_sell_revenue == pytest.approx(110000)
        assert record.cash_profit == pytest.approx(46000)
        assert record.retained_value == pytest.approx(16000)

        stock = {i.product_name: i for i in item_store.list_all()}
        assert set(stock) == {"Smart watch", "Earbuds"}
        assert stock["Smart watch"].purchase_price == 40000
        assert stock["Earbuds"].purchase_price == 12000
        assert stock["Earbuds"].quantity == 2
        assert stock["Earbuds"].sale_price == 20000
        assert all(i.batch_ref == "T-001" for i in stock.values())

    def test_persists_record_history_and_map(self, item_store, batch_store, cache):
        save_draft(cache, 80000, mixed_lines())

        materialize_batch(item_store, batch_store, cache, lines=mixed_lines(), total_paid=80000, inventory=[], history=[])

        stored = batch_store.list_all()
        assert [r.batch_code for r in stored] == ["T-001"]
        assert [li.product_name for li in stored[0].items] == ["Smart watch", "Earbuds", "Speaker"]
        assert [r.batch_code for r in read_cached_history(cache)] == ["T-001"]
        assert set(load_batch_map(cache).values()) == {"T-001"}
        assert load_draft(cache) == (0.0, [])

    def test_adjusted_cost_is_rounded(self, item_store, batch_store, cache):
        lines = [line("Cable", 100, sale=300), line("Plug", 200, sale=300)]

        materialize_batch(item_store, batch_store, cache, lines=lines, total_paid=250, inventory=[], history=[])

        costs = sorted(i.purchase_price for i in item_store.list_all())
        assert costs == [83, 167]

    def test_merges_into_existing_lot_of_same_batch(self, item_store, batch_store, cache, stock_row):
        existing = item_store.create(stock_row(batch_ref="T-001", sale_price=65000.0))

        materialize_batch(
            item_store,
            batch_store,
            cache,
            lines=[line("Smart watch", 50000, sale=70000)],
            total_paid=40000,
            inventory=[existing],
            history=[],
        )

        items = item_store.list_all()
        assert len(items) == 1
        assert items[0].id == existing.id
        assert items[0].quantity == 4
        assert items[0].sale_price == 70000

    def test_merge_honours_side_index(self, item_store, batch_store, cache, stock_row):
        existing = item_store.create(stock_row())

        materialize_batch(
            item_store,
            batch_store,
            cache,
            lines=[line("Smart watch", 50000, sale=70000)],
            total_paid=40000,
            inventory=[existing],
            history=[],
            batch_map={existing.id: "T-001"},
        )

        items = item_store.list_all()
        assert len(items) == 1
        assert items[0].quantity == 4
        assert items[0].batch_ref == "T-001"

    def test_lot_of_another_batch_is_not_merged(self, item_store, batch_store, cache, stock_row):
        existing = item_store.create(stock_row(batch_ref="T-001"))

        materialize_batch(
            item_store,
            batch_store,
            cache,
            lines=[line("Smart watch", 50000, sale=70000)],
            total_paid=40000,
            inventory=[existing],
            history=history_of("T-001"),
        )

        assert len(item_store.list_all()) == 2

    def test_all_keep_batch_writes_no_items(self, item_store, batch_store, cache):
        record = materialize_batch(
            item_store,
            batch_store,
            cache,
            lines=[line("Speaker", 10000, qty=2, disposition="keep")],
            total_paid=15000,
            inventory=[],
            history=[],
        )

        assert record.batch_type == ALL_RETAINED
        assert record.retained_value == pytest.approx(15000)
        assert item_store.list_all() == []
        assert load_batch_map(cache) == {}

    def test_empty_batch_is_rejected(self, item_store, batch_store, cache):
        with pytest.raises(ValidationError):
            materialize_batch(item_store, batch_store, cache, lines=[], total_paid=100, inventory=[], history=[])

        assert batch_store.list_all() == []

    def test_code_follows_history(self, item_store, batch_store, cache):
        record = materialize_batch(
            item_store,
            batch_store,
            cache,
            lines=[line("Cable", 100, sale=300)],
            total_paid=100,
            inventory=[],
            history=history_of("T-001", "T-002"),
        )

        assert record.batch_code == "T-003"
        assert [r.batch_code for r in read_cached_history(cache)] == ["T-003", "T-001", "T-002"]


class TestMaterializeOnOlderSchema:
    @pytest.fixture
    def legacy_conn(self):
        c = connect(":memory:")
        c.execute(
            """
            CREATE TABLE items (
              id TEXT PRIMARY KEY,
              created_at TEXT NOT NULL,
              date TEXT,
              product_name TEXT NOT NULL,
              purchase_price REAL NOT NULL DEFAULT 0,
              sale_price REAL,
              quantity INTEGER NOT NULL DEFAULT 1,
              sale_date TEXT,
              status TEXT NOT NULL DEFAULT 'in_stock'
            )
            """
        )
        c.executescript(SCHEMA_SQL)
        yield c
        c.close()

    def test_side_index_tags_items_without_batch_column(self, legacy_conn, cache):
        item_store = SqliteItemStore(legacy_conn)

        materialize_batch(
            item_store,
            SqliteBatchStore(legacy_conn),
            cache,
            lines=[line("Cable", 100, sale=300)],
            total_paid=100,
            inventory=[],
            history=[],
        )

        [item] = item_store.list_all()
        assert item.batch_ref is None
        assert item.condition == "new"
        assert load_batch_map(cache) == {item.id: "T-001"}


class TestMaterializeFailures:
    def test_partial_failure_reports_written_items(self, item_store, batch_store, cache):
        failing = FailingItemStore(item_store, fail_on=2)

        with pytest.raises(PartialBatchFailure) as exc_info:
            materialize_batch(
                failing, batch_store, cache, lines=mixed_lines(), total_paid=80000, inventory=[], history=[]
            )

        err = exc_info.value
        assert err.batch_code == "T-001"
        assert len(err.written_ids) == 1
        assert err.code == "PARTIAL_BATCH_FAILURE"
        # written items stay tagged, no batch record is created
        assert load_batch_map(cache) == {err.written_ids[0]: "T-001"}
        assert batch_store.list_all() == []

    def test_tag_write_failure_does_not_hide_partial_failure(self, item_store, batch_store, cache):
        failing = FailingItemStore(item_store, fail_on=2)

        with pytest.raises(PartialBatchFailure) as exc_info:
            materialize_batch(
                failing,
                batch_store,
                TagWriteFailingCache(cache),
                lines=mixed_lines(),
                total_paid=80000,
                inventory=[],
                history=[],
            )

        assert len(exc_info.value.written_ids) == 1
        assert exc_info.value.cause.operation == "create_item"

    def test_failure_before_any_write_is_plain_store_error(self, item_store, batch_store, cache):
        failing = FailingItemStore(item_store, fail_on=1)

        with pytest.raises(StoreError) as exc_info:
            materialize_batch(
                failing, batch_store, cache, lines=mixed_lines(), total_paid=80000, inventory=[], history=[]
            )

        assert not isinstance(exc_info.value, PartialBatchFailure)
        assert item_store.list_all() == []


class TestBatchHistory:
    def test_store_records_refresh_the_cache(self, item_store, batch_store, cache):
        materialize_batch(
            item_store, batch_store, cache, lines=[line("Cable", 100, sale=300)], total_paid=100, inventory=[], history=[]
        )
        cache.remove(BATCH_HISTORY_KEY)

        history = load_batch_history(batch_store, cache)

        assert [r.batch_code for r in history] == ["T-001"]
        assert [r.batch_code for r in read_cached_history(cache)] == ["T-001"]

    def test_empty_store_falls_back_to_cache(self, batch_store, cache):
        write_cached_history(cache, history_of("T-001"))

        assert [r.batch_code for r in load_batch_history(batch_store, cache)] == ["T-001"]

    def test_store_failure_falls_back_to_cache(self, cache):
        write_cached_history(cache, history_of("T-002"))

        assert [r.batch_code for r in load_batch_history(FailingBatchStore(), cache)] == ["T-002"]


class TestDeleteBatch:
    def test_deletes_linked_items_including_sold_ones(self, item_store, batch_store, cache, stock_row):
        record = materialize_batch(
            item_store, batch_store, cache, lines=mixed_lines(), total_paid=80000, inventory=[], history=[]
        )
        unrelated = item_store.create(stock_row(product_name="Charger"))
        earbuds = next(i for i in item_store.list_all() if i.product_name == "Earbuds")
        sold = sell_from_stock(item_store, earbuds, 1, batch_map=load_batch_map(cache))
        assert sold.batch_ref == "T-001"

        remaining_map = delete_batch(
            item_store,
            batch_store,
            cache,
            record=record,
            items=item_store.list_all(),
            batch_map=load_batch_map(cache),
        )

        assert [i.id for i in item_store.list_all()] == [unrelated.id]
        assert batch_store.list_all() == []
        assert remaining_map == {}
        assert load_batch_map(cache) == {}
        assert read_cached_history(cache) == []

    def test_side_index_links_are_followed(self, item_store, batch_store, cache, stock_row):
        tagged = item_store.create(stock_row())
        record = history_of("T-001")[0]
        write_cached_history(cache, [record, *history_of("T-002")])

        remaining_map = delete_batch(
            item_store,
            batch_store,
            cache,
            record=record,
            items=[tagged],
            batch_map={tagged.id: "T-001", "other": "T-002"},
        )

        assert item_store.list_all() == []
        assert remaining_map == {"other": "T-002"}
        assert [r.batch_code for r in read_cached_history(cache)] == ["T-002"]


class TestBatchDetail:
    def test_stored_lines_are_returned(self):
        record = BatchRecord(
            id="b1", batch_code="T-001", batch_type=MIXED, created_at="", items=mixed_lines(), items_count=3
        )

        assert [li.product_name for li in batch_detail_lines(record, [])] == ["Smart watch", "Earbuds", "Speaker"]

    def test_legacy_record_is_rebuilt_from_tagged_items(self, make_item):
        own = make_item(batch_ref="T-001")
        mapped = make_item(product_name="Earbuds", purchase_price=12000.0, sale_price=None, quantity=2)
        other = make_item(product_name="Charger")
        record = history_of("T-001")[0]

        lines = batch_detail_lines(record, [own, mapped, other], {mapped.id: "T-001"})

        assert [li.product_name for li in lines] == ["Smart watch", "Earbuds"]
        assert lines[1].unit_sale_price == 12000.0
        assert lines[1].quantity == 2
        assert all(li.is_sell for li in lines)
