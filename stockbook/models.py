from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from stockbook.errors import ValidationError
from stockbook.utils import to_float, to_quantity

IN_STOCK = "in_stock"
SOLD = "sold"
STATUSES = (IN_STOCK, SOLD)

CONDITION_NEW = "new"
CONDITIONS = ("new", "lightly_used", "used")
CONDITION_LABELS = {"new": "New", "lightly_used": "Lightly used", "used": "Used"}
# Values written by the first (Spanish-labelled) release.
LEGACY_CONDITIONS = {"nuevo": "new", "semi_uso": "lightly_used", "usado": "used"}

SELL = "sell"
KEEP = "keep"
DISPOSITIONS = (SELL, KEEP)

ALL_SELL = "all_sell"
MIXED = "mixed"
ALL_RETAINED = "all_retained"
LEGACY_BATCH_TYPES = {"venta": ALL_SELL, "mixta": MIXED, "retenido": ALL_RETAINED}


def new_id() -> str:
    return uuid.uuid4().hex


def _pick(d: dict, snake: str, camel: str, default: Any = None) -> Any:
    if d.get(snake) is not None:
        return d[snake]
    if d.get(camel) is not None:
        return d[camel]
    return default


def normalize_status(status: Optional[str]) -> str:
    if not status:
        return IN_STOCK
    s = str(status).strip().lower()
    if s in STATUSES:
        return s
    raise ValidationError("Invalid status. Use 'in_stock' or 'sold'.")


def normalize_condition(condition: Optional[str]) -> str:
    if not condition:
        return CONDITION_NEW
    c = str(condition).strip().lower()
    c = LEGACY_CONDITIONS.get(c, c)
    if c in CONDITIONS:
        return c
    raise ValidationError("Invalid condition. Use 'new', 'lightly_used' or 'used'.")


def normalize_disposition(disposition: Optional[str]) -> str:
    if not disposition:
        return SELL
    d = str(disposition).strip().lower()
    if d in DISPOSITIONS:
        return d
    raise ValidationError("Invalid disposition. Use 'sell' or 'keep'.")


@dataclass
class Item:
    id: str
    product_name: str
    purchase_price: float
    quantity: int
    date: str
    status: str = IN_STOCK
    condition: str = CONDITION_NEW
    sale_price: Optional[float] = None
    sale_date: Optional[str] = None
    batch_ref: Optional[str] = None

    @property
    def is_in_stock(self) -> bool:
        return self.status == IN_STOCK

    @property
    def is_sold(self) -> bool:
        return self.status == SOLD


# Field name -> items column
ITEM_COLUMNS = {
    "product_name": "product_name",
    "purchase_price": "purchase_price",
    "sale_price": "sale_price",
    "quantity": "quantity",
    "date": "date",
    "sale_date": "sale_date",
    "status": "status",
    "condition": "item_condition",
    "batch_ref": "batch_ref",
}


def item_from_row(row) -> Item:
    keys = set(row.keys())

    def col(name: str, default: Any = None) -> Any:
        return row[name] if name in keys else default

    sale_price = col("sale_price")
    return Item(
        id=str(row["id"]),
        product_name=str(row["product_name"]),
        purchase_price=to_float(row["purchase_price"]),
        sale_price=float(sale_price) if sale_price is not None else None,
        quantity=int(row["quantity"]),
        date=col("date") or col("created_at"),
        sale_date=col("sale_date") or None,
        status=str(row["status"]),
        condition=LEGACY_CONDITIONS.get(col("item_condition") or "", col("item_condition") or CONDITION_NEW),
        batch_ref=col("batch_ref") or None,
    )


def item_to_row(fields: dict) -> dict:
    """Map Item field names to column names, ignoring unknown keys."""
    return {ITEM_COLUMNS[k]: v for k, v in fields.items() if k in ITEM_COLUMNS}


@dataclass
class PricingLineItem:
    product_name: str
    quantity: int
    listed_unit_price: float
    unit_sale_price: float = 0.0
    condition: str = CONDITION_NEW
    disposition: str = SELL
    id: str = field(default_factory=new_id)

    @property
    def is_sell(self) -> bool:
        return self.disposition != KEEP

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PricingLineItem":
        """Lenient loader for cached/legacy payloads (camelCase accepted)."""
        d = data or {}
        return cls(
            id=str(d.get("id") or new_id()),
            product_name=str(_pick(d, "product_name", "productName", "") or ""),
            quantity=to_quantity(d.get("quantity")),
            listed_unit_price=to_float(_pick(d, "listed_unit_price", "listedUnitPrice", 0)),
            unit_sale_price=to_float(_pick(d, "unit_sale_price", "unitSalePrice", 0)),
            condition=LEGACY_CONDITIONS.get(str(d.get("condition") or ""), d.get("condition") or CONDITION_NEW),
            disposition=KEEP if d.get("disposition") == KEEP else SELL,
        )


@dataclass
class BatchRecord:
    id: Optional[str]
    batch_code: str
    batch_type: str
    created_at: str
    total_paid: float = 0.0
    total_sell_revenue: float = 0.0
    cash_profit: float = 0.0
    retained_value: float = 0.0
    items_count: int = 0
    items: list[PricingLineItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["items"] = [li.to_dict() for li in self.items]
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "BatchRecord":
        d = data or {}
        batch_type = str(_pick(d, "batch_type", "batchType", "") or "")
        raw_items = d.get("items")
        items = [PricingLineItem.from_dict(li) for li in raw_items if isinstance(li, dict)] if isinstance(raw_items, list) else []
        return cls(
            id=str(d["id"]) if d.get("id") is not None else None,
            batch_code=str(_pick(d, "batch_code", "batchCode", "") or ""),
            batch_type=LEGACY_BATCH_TYPES.get(batch_type, batch_type),
            created_at=str(_pick(d, "created_at", "createdAt", "") or ""),
            total_paid=to_float(_pick(d, "total_paid", "totalPaid", 0)),
            total_sell_revenue=to_float(_pick(d, "total_sell_revenue", "totalSellRevenue", 0)),
            cash_profit=to_float(_pick(d, "cash_profit", "cashProfit", 0)),
            retained_value=to_float(_pick(d, "retained_value", "retainedValue", 0)),
            items_count=int(to_float(_pick(d, "items_count", "itemsCount", len(items)))),
            items=items,
        )
