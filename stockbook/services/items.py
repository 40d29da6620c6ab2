from __future__ import annotations

import logging
from typing import Optional

from stockbook.errors import ValidationError
from stockbook.models import (
    IN_STOCK,
    SOLD,
    Item,
    normalize_condition,
    normalize_status,
)
from stockbook.stores import ItemStore
from stockbook.utils import iso_now, to_float, to_quantity

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("product_name", "purchase_price", "sale_price", "quantity", "date", "sale_date", "condition")


def resolve_batch_ref(item: Item, batch_map: Optional[dict[str, str]] = None) -> Optional[str]:
    """An item's own batch_ref wins; the side index is only a fallback."""
    if item.batch_ref:
        return item.batch_ref
    return (batch_map or {}).get(item.id) or None


def _price(value, label: str) -> float:
    p = to_float(value)
    if p < 0:
        raise ValidationError(f"{label} must be >= 0.")
    return p


def _optional_price(value, label: str) -> Optional[float]:
    if value is None:
        return None
    return _price(value, label)


def _sell_quantity(value) -> int:
    qty = to_float(value)
    if qty < 1 or not qty.is_integer():
        raise ValidationError("Quantity to sell must be a whole number of at least 1.")
    return int(qty)


def create_item(
    store: ItemStore,
    *,
    product_name: Optional[str],
    purchase_price,
    quantity=1,
    status: Optional[str] = IN_STOCK,
    condition: Optional[str] = None,
    sale_price=None,
    date: Optional[str] = None,
    sale_date: Optional[str] = None,
    batch_ref: Optional[str] = None,
) -> Item:
    status = normalize_status(status)
    now = iso_now()
    fields = {
        "product_name": str(product_name or "").strip() or "Unnamed product",
        "purchase_price": _price(purchase_price, "Purchase price"),
        "sale_price": _optional_price(sale_price, "Sale price"),
        "quantity": to_quantity(quantity),
        "date": date or now,
        "sale_date": (sale_date or date or now) if status == SOLD else None,
        "status": status,
        "condition": normalize_condition(condition),
        "batch_ref": batch_ref or None,
    }
    item = store.create(fields)
    logger.debug("Created %s item %s (%s x%d)", status, item.id, item.product_name, item.quantity)
    return item


def sell_from_stock(
    store: ItemStore,
    item: Item,
    quantity,
    *,
    sale_price=None,
    sale_date: Optional[str] = None,
    batch_map: Optional[dict[str, str]] = None,
) -> Item:
    """
    Sell part or all of a stock lot.

    A new sold record captures the sale; the source lot shrinks, or is deleted
    when the whole lot is sold. Returns the new sold item.
    """
    if not item.is_in_stock:
        raise ValidationError("Only in-stock items can be sold.")
    qty = _sell_quantity(quantity)
    if qty > int(item.quantity):
        raise ValidationError(f"Cannot sell {qty}. Only {item.quantity} in stock.")

    unit_sale = to_float(sale_price) or to_float(item.sale_price) or float(item.purchase_price)
    if unit_sale < 0:
        raise ValidationError("Sale price must be >= 0.")

    sold = store.create(
        {
            "product_name": item.product_name,
            "purchase_price": item.purchase_price,
            "sale_price": unit_sale,
            "quantity": qty,
            "date": item.date,
            "sale_date": sale_date or iso_now(),
            "status": SOLD,
            "condition": item.condition,
            "batch_ref": resolve_batch_ref(item, batch_map),
        }
    )

    remaining = int(item.quantity) - qty
    if remaining > 0:
        store.update(item.id, {"quantity": remaining})
    else:
        store.delete(item.id)

    logger.info("Sold %d x %s from lot %s (%d left)", qty, item.product_name, item.id, remaining)
    return sold


def find_matching_lot(
    items: list[Item],
    *,
    product_name: str,
    purchase_price: float,
    condition: str,
    batch_ref: Optional[str],
    batch_map: Optional[dict[str, str]] = None,
    exclude_id: Optional[str] = None,
) -> Optional[Item]:
    for i in items:
        if i.id == exclude_id or not i.is_in_stock:
            continue
        if (
            i.product_name == product_name
            and float(i.purchase_price) == float(purchase_price)
            and i.condition == condition
            and resolve_batch_ref(i, batch_map) == batch_ref
        ):
            return i
    return None


def return_to_stock(
    store: ItemStore,
    item: Item,
    items: list[Item],
    *,
    batch_map: Optional[dict[str, str]] = None,
    quantity=None,
    product_name: Optional[str] = None,
    purchase_price=None,
    sale_price=None,
    condition: Optional[str] = None,
    date: Optional[str] = None,
) -> Item:
    """
    Move a sold record back into stock.

    If a compatible in-stock lot exists (same name, purchase price, condition
    and resolved batch), the quantity is merged into it and the sold record is
    deleted. Otherwise the sold record itself becomes a stock lot.
    """
    if not item.is_sold:
        raise ValidationError("Only sold items can be returned to stock.")

    qty = to_quantity(quantity if quantity is not None else item.quantity)
    name = str(product_name or "").strip() or item.product_name
    cost = to_float(purchase_price) or float(item.purchase_price)
    cond = normalize_condition(condition or item.condition)
    ref = resolve_batch_ref(item, batch_map)

    lot = find_matching_lot(
        items,
        product_name=name,
        purchase_price=cost,
        condition=cond,
        batch_ref=ref,
        batch_map=batch_map,
        exclude_id=item.id,
    )
    if lot is not None:
        merged = store.update(lot.id, {"quantity": int(lot.quantity) + qty})
        store.delete(item.id)
        logger.info("Returned %d x %s merged into lot %s", qty, name, lot.id)
        return merged

    fields = {
        "product_name": name,
        "purchase_price": _price(cost, "Purchase price"),
        "quantity": qty,
        "status": IN_STOCK,
        "sale_date": None,
        "condition": cond,
        "batch_ref": ref,
    }
    if sale_price is not None:
        fields["sale_price"] = _price(sale_price, "Sale price")
    if date:
        fields["date"] = date
    converted = store.update(item.id, fields)
    logger.info("Returned sold item %s to stock", item.id)
    return converted


def edit_item(store: ItemStore, item: Item, changes: dict) -> Item:
    """Field-level edit without a status change."""
    unknown = sorted(k for k in changes if k not in EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(unknown)}")

    fields: dict = {}
    if "product_name" in changes:
        fields["product_name"] = str(changes["product_name"] or "").strip() or item.product_name
    if "purchase_price" in changes:
        fields["purchase_price"] = _price(changes["purchase_price"], "Purchase price")
    if "sale_price" in changes:
        fields["sale_price"] = _optional_price(changes["sale_price"], "Sale price")
    if "quantity" in changes:
        fields["quantity"] = to_quantity(changes["quantity"], default=item.quantity)
    if "date" in changes and changes["date"]:
        fields["date"] = changes["date"]
    if "condition" in changes:
        fields["condition"] = normalize_condition(changes["condition"])

    # sale_date is present iff the item is sold
    if item.is_sold:
        if changes.get("sale_date"):
            fields["sale_date"] = changes["sale_date"]
        elif not item.sale_date:
            fields["sale_date"] = iso_now()
    elif item.sale_date:
        fields["sale_date"] = None

    if not fields:
        return item
    return store.update(item.id, fields)


def save_item_edit(
    store: ItemStore,
    item: Item,
    changes: dict,
    items: list[Item],
    batch_map: Optional[dict[str, str]] = None,
) -> Item:
    """
    Apply an edit form submission, routing status changes to the lot-aware
    transitions (sell from stock / return to stock).
    """
    changes = dict(changes)
    new_status = normalize_status(changes.pop("status", None) or item.status)

    if item.is_in_stock and new_status == SOLD:
        return sell_from_stock(
            store,
            item,
            changes.get("quantity", item.quantity),
            sale_price=changes.get("sale_price"),
            sale_date=changes.get("sale_date") or changes.get("date"),
            batch_map=batch_map,
        )

    if item.is_sold and new_status == IN_STOCK:
        return return_to_stock(
            store,
            item,
            items,
            batch_map=batch_map,
            quantity=changes.get("quantity"),
            product_name=changes.get("product_name"),
            purchase_price=changes.get("purchase_price"),
            sale_price=changes.get("sale_price"),
            condition=changes.get("condition"),
            date=changes.get("date"),
        )

    return edit_item(store, item, changes)


def delete_item(store: ItemStore, item_id: str) -> None:
    store.delete(item_id)
    logger.info("Deleted item %s", item_id)
