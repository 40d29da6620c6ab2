"""
Persistence seams used by the services.

The services only need the small ``ItemStore`` / ``BatchStore`` / ``SideCache``
surfaces below. The sqlite classes are the bundled implementation; every
sqlite failure is surfaced as ``StoreError`` so callers can reload state.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

from stockbook.db import q, table_columns, x, xn
from stockbook.errors import StoreError
from stockbook.models import (
    BatchRecord,
    Item,
    PricingLineItem,
    item_from_row,
    item_to_row,
    new_id,
)
from stockbook.utils import iso_now

logger = logging.getLogger(__name__)

# Side cache keys
ITEM_BATCH_MAP_KEY = "item_batch_map_v1"
BATCH_HISTORY_KEY = "batch_history_cache_v1"
DRAFT_BATCH_KEY = "pricing_batch_v1"
# Written only by the first release; read once by the migration.
LEGACY_ITEMS_KEY = "items_v1"
LEGACY_HISTORY_KEY = "pricing_batch_history_v1"


class ItemStore(Protocol):
    def list_all(self) -> list[Item]: ...

    def create(self, fields: dict) -> Item: ...

    def create_many(self, rows: Iterable[dict]) -> list[Item]: ...

    def update(self, item_id: str, fields: dict) -> Item: ...

    def delete(self, item_id: str) -> None: ...


class BatchStore(Protocol):
    def list_all(self) -> list[BatchRecord]: ...

    def create(self, record: BatchRecord) -> BatchRecord: ...

    def update(self, batch_id: str, fields: dict) -> BatchRecord: ...

    def delete(self, batch_id: str) -> None: ...


class SideCache(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...

    def rename(self, key: str, new_key: str) -> None: ...


# -------------------------
# sqlite items
# -------------------------

class SqliteItemStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _writable(self, row: dict) -> dict:
        # Older databases may miss optional columns (item_condition, batch_ref);
        # write what the table supports instead of failing the whole insert.
        cols = table_columns(self.conn, "items")
        dropped = sorted(k for k in row if k not in cols)
        if dropped:
            logger.warning("items table lacks column(s) %s; writing without them", ", ".join(dropped))
        return {k: v for k, v in row.items() if k in cols}

    def _get(self, item_id: str) -> Item:
        rows = q(self.conn, "SELECT * FROM items WHERE id=?", (item_id,))
        if not rows:
            raise StoreError("get_item", f"item {item_id} not found")
        return item_from_row(rows[0])

    def _insert_sql(self, row: dict) -> tuple[str, tuple]:
        cols = ", ".join(row)
        marks = ", ".join("?" for _ in row)
        return f"INSERT INTO items ({cols}) VALUES ({marks})", tuple(row.values())

    def _new_row(self, fields: dict) -> dict:
        row = {"id": new_id(), "created_at": iso_now()}
        row.update(item_to_row(fields))
        return self._writable(row)

    def list_all(self) -> list[Item]:
        try:
            rows = q(self.conn, "SELECT * FROM items ORDER BY COALESCE(date, created_at) DESC, created_at DESC")
        except sqlite3.Error as e:
            raise StoreError("list_items", str(e)) from e
        return [item_from_row(r) for r in rows]

    def create(self, fields: dict) -> Item:
        try:
            row = self._new_row(fields)
            sql, params = self._insert_sql(row)
            x(self.conn, sql, params)
            return self._get(row["id"])
        except sqlite3.Error as e:
            self.conn.rollback()
            raise StoreError("create_item", str(e)) from e

    def create_many(self, rows: Iterable[dict]) -> list[Item]:
        ids: list[str] = []
        try:
            with self.conn:
                for fields in rows:
                    row = self._new_row(fields)
                    sql, params = self._insert_sql(row)
                    self.conn.execute(sql, params)
                    ids.append(row["id"])
            return [self._get(i) for i in ids]
        except sqlite3.Error as e:
            raise StoreError("create_items", str(e)) from e

    def update(self, item_id: str, fields: dict) -> Item:
        row = self._writable(item_to_row(fields))
        try:
            if row:
                sets = ", ".join(f"{k}=?" for k in row)
                n = xn(self.conn, f"UPDATE items SET {sets} WHERE id=?", (*row.values(), item_id))
                if n == 0:
                    raise StoreError("update_item", f"item {item_id} not found")
            return self._get(item_id)
        except sqlite3.Error as e:
            self.conn.rollback()
            raise StoreError("update_item", str(e)) from e

    def delete(self, item_id: str) -> None:
        try:
            xn(self.conn, "DELETE FROM items WHERE id=?", (item_id,))
        except sqlite3.Error as e:
            self.conn.rollback()
            raise StoreError("delete_item", str(e)) from e


# -------------------------
# sqlite batches
# -------------------------

_BATCH_FIELDS = (
    "batch_code",
    "batch_type",
    "created_at",
    "total_paid",
    "total_sell_revenue",
    "cash_profit",
    "retained_value",
    "items_count",
)


def _line_from_row(r) -> PricingLineItem:
    return PricingLineItem(
        id=str(r["id"]),
        product_name=str(r["product_name"]),
        quantity=int(r["quantity"]),
        listed_unit_price=float(r["listed_unit_price"]),
        unit_sale_price=float(r["unit_sale_price"]),
        condition=str(r["item_condition"]),
        disposition=str(r["disposition"]),
    )


class SqliteBatchStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _lines_by_batch(self) -> dict[str, list[PricingLineItem]]:
        out: dict[str, list[PricingLineItem]] = {}
        for r in q(self.conn, "SELECT * FROM batch_lines ORDER BY batch_id, position"):
            out.setdefault(str(r["batch_id"]), []).append(_line_from_row(r))
        return out

    def _record(self, r, lines: list[PricingLineItem]) -> BatchRecord:
        return BatchRecord(
            id=str(r["id"]),
            batch_code=str(r["batch_code"]),
            batch_type=str(r["batch_type"]),
            created_at=str(r["created_at"]),
            total_paid=float(r["total_paid"]),
            total_sell_revenue=float(r["total_sell_revenue"]),
            cash_profit=float(r["cash_profit"]),
            retained_value=float(r["retained_value"]),
            items_count=int(r["items_count"]),
            items=lines,
        )

    def _get(self, batch_id: str) -> BatchRecord:
        rows = q(self.conn, "SELECT * FROM batches WHERE id=?", (batch_id,))
        if not rows:
            raise StoreError("get_batch", f"batch {batch_id} not found")
        lines = q(self.conn, "SELECT * FROM batch_lines WHERE batch_id=? ORDER BY position", (batch_id,))
        return self._record(rows[0], [_line_from_row(li) for li in lines])

    def list_all(self) -> list[BatchRecord]:
        try:
            rows = q(self.conn, "SELECT * FROM batches ORDER BY created_at DESC, batch_code DESC")
            lines = self._lines_by_batch()
        except sqlite3.Error as e:
            raise StoreError("list_batches", str(e)) from e
        return [self._record(r, lines.get(str(r["id"]), [])) for r in rows]

    def create(self, record: BatchRecord) -> BatchRecord:
        batch_id = new_id()
        try:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT INTO batches (
                        id, batch_code, batch_type, created_at,
                        total_paid, total_sell_revenue, cash_profit, retained_value, items_count
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        batch_id,
                        record.batch_code,
                        record.batch_type,
                        record.created_at or iso_now(),
                        float(record.total_paid),
                        float(record.total_sell_revenue),
                        float(record.cash_profit),
                        float(record.retained_value),
                        int(record.items_count),
                    ),
                )
                for pos, li in enumerate(record.items):
                    self.conn.execute(
                        """
                        INSERT INTO batch_lines (
                            batch_id, position, product_name, quantity,
                            listed_unit_price, unit_sale_price, item_condition, disposition
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            batch_id,
                            pos,
                            li.product_name,
                            int(li.quantity),
                            float(li.listed_unit_price),
                            float(li.unit_sale_price),
                            li.condition,
                            li.disposition,
                        ),
                    )
            return self._get(batch_id)
        except sqlite3.Error as e:
            raise StoreError("create_batch", str(e)) from e

    def update(self, batch_id: str, fields: dict) -> BatchRecord:
        row = {k: v for k, v in fields.items() if k in _BATCH_FIELDS}
        try:
            if row:
                sets = ", ".join(f"{k}=?" for k in row)
                n = xn(self.conn, f"UPDATE batches SET {sets} WHERE id=?", (*row.values(), batch_id))
                if n == 0:
                    raise StoreError("update_batch", f"batch {batch_id} not found")
            return self._get(batch_id)
        except sqlite3.Error as e:
            self.conn.rollback()
            raise StoreError("update_batch", str(e)) from e

    def delete(self, batch_id: str) -> None:
        try:
            with self.conn:
                self.conn.execute("DELETE FROM batch_lines WHERE batch_id=?", (batch_id,))
                self.conn.execute("DELETE FROM batches WHERE id=?", (batch_id,))
        except sqlite3.Error as e:
            raise StoreError("delete_batch", str(e)) from e


# -------------------------
# local side cache
# -------------------------

class JsonSideCache:
    """String-keyed JSON document on local disk (batch map, history cache, drafts)."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Side cache %s is unreadable; starting empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise StoreError("write_side_cache", str(e)) from e

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def rename(self, key: str, new_key: str) -> None:
        data = self._read()
        if key not in data:
            return
        data[new_key] = data.pop(key)
        self._write(data)

    def keys(self) -> list[str]:
        return sorted(self._read())


def load_batch_map(cache: SideCache) -> dict[str, str]:
    raw = cache.get(ITEM_BATCH_MAP_KEY)
    if not isinstance(raw, dict):
        return {}
    return {str(k): str(v) for k, v in raw.items() if v}


def save_batch_map(cache: SideCache, batch_map: dict[str, str]) -> None:
    cache.set(ITEM_BATCH_MAP_KEY, dict(batch_map))


def read_cached_history(cache: SideCache) -> list[BatchRecord]:
    raw = cache.get(BATCH_HISTORY_KEY)
    if not isinstance(raw, list):
        return []
    return [BatchRecord.from_dict(r) for r in raw if isinstance(r, dict)]


def write_cached_history(cache: SideCache, history: list[BatchRecord], limit: Optional[int] = None) -> None:
    records = history[:limit] if limit else history
    cache.set(BATCH_HISTORY_KEY, [r.to_dict() for r in records])
