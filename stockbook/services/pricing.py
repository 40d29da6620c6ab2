"""
Batch price allocation.

A bulk order is paid with one lump sum. The payment is spread over the line
items in proportion to their listed prices::

    allocation_factor  = total_paid / sum(listed_unit_price * quantity)
    adjusted_unit_cost = listed_unit_price * allocation_factor

Sell lines carry the expected revenue and profit; keep lines carry the
retained value (their imputed share of the payment).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from stockbook.errors import ValidationError
from stockbook.models import (
    ALL_RETAINED,
    ALL_SELL,
    KEEP,
    MIXED,
    PricingLineItem,
    normalize_condition,
    normalize_disposition,
)
from stockbook.stores import DRAFT_BATCH_KEY, SideCache
from stockbook.utils import safe_div, to_float, to_quantity

logger = logging.getLogger(__name__)


@dataclass
class LinePricing:
    line: PricingLineItem
    adjusted_unit_cost: float
    margin_percent: float
    line_profit: float
    retained_amount: float


@dataclass
class BatchPricing:
    total_paid: float
    listed_subtotal: float
    allocation_factor: float
    total_sell_revenue: float
    sell_cost_adjusted: float
    retained_value: float
    expected_profit: float
    effective_cost_to_recover: float
    total_economic_value: float
    lines: list[LinePricing] = field(default_factory=list)


def listed_subtotal(lines: Iterable[PricingLineItem]) -> float:
    return sum(float(li.listed_unit_price) * int(li.quantity) for li in lines)


def allocation_factor(total_paid: float, lines: Iterable[PricingLineItem]) -> float:
    subtotal = listed_subtotal(lines)
    if subtotal > 0:
        return float(total_paid) / subtotal
    return 1.0


def margin_percent(unit_sale_price: float, adjusted_unit_cost: float) -> float:
    if adjusted_unit_cost <= 0:
        return 0.0
    return safe_div(float(unit_sale_price) - float(adjusted_unit_cost), float(adjusted_unit_cost)) * 100.0


def batch_type_for(lines: list[PricingLineItem]) -> str:
    sell_count = sum(1 for li in lines if li.is_sell)
    if sell_count == 0:
        return ALL_RETAINED
    if sell_count == len(lines):
        return ALL_SELL
    return MIXED


def price_batch(total_paid: float, lines: list[PricingLineItem]) -> BatchPricing:
    """Compute the allocation factor and the batch economics.

    No validation of ``total_paid`` happens here; zero or negative payments
    simply produce the corresponding arithmetic.
    """
    paid = float(total_paid)
    subtotal = listed_subtotal(lines)
    factor = paid / subtotal if subtotal > 0 else 1.0

    revenue = 0.0
    sell_cost = 0.0
    retained = 0.0
    priced: list[LinePricing] = []

    for li in lines:
        qty = int(li.quantity)
        adjusted = float(li.listed_unit_price) * factor
        if li.is_sell:
            line_revenue = float(li.unit_sale_price) * qty
            line_cost = adjusted * qty
            revenue += line_revenue
            sell_cost += line_cost
            priced.append(
                LinePricing(
                    line=li,
                    adjusted_unit_cost=adjusted,
                    margin_percent=margin_percent(li.unit_sale_price, adjusted),
                    line_profit=line_revenue - line_cost,
                    retained_amount=0.0,
                )
            )
        else:
            retained += adjusted * qty
            priced.append(
                LinePricing(
                    line=li,
                    adjusted_unit_cost=adjusted,
                    margin_percent=0.0,
                    line_profit=0.0,
                    retained_amount=adjusted * qty,
                )
            )

    expected_profit = revenue - sell_cost
    return BatchPricing(
        total_paid=paid,
        listed_subtotal=subtotal,
        allocation_factor=factor,
        total_sell_revenue=revenue,
        sell_cost_adjusted=sell_cost,
        retained_value=retained,
        expected_profit=expected_profit,
        effective_cost_to_recover=max(paid - retained, 0.0),
        total_economic_value=expected_profit + retained,
        lines=priced,
    )


def build_line_item(
    *,
    product_name: Optional[str],
    quantity,
    listed_unit_price,
    unit_sale_price=None,
    disposition: Optional[str] = None,
    condition: Optional[str] = None,
) -> PricingLineItem:
    name = str(product_name or "").strip()
    listed = to_float(listed_unit_price)
    sale = to_float(unit_sale_price)
    disp = normalize_disposition(disposition)

    if not name or listed <= 0:
        raise ValidationError("Product name and listed unit price are required.")
    if disp != KEEP and sale <= 0:
        raise ValidationError("A line marked for sale needs a unit sale price.")

    return PricingLineItem(
        product_name=name,
        quantity=to_quantity(quantity),
        listed_unit_price=listed,
        unit_sale_price=sale if disp != KEEP else 0.0,
        condition=normalize_condition(condition),
        disposition=disp,
    )


# -------------------------
# In-progress batch (draft)
# -------------------------

def save_draft(cache: SideCache, total_paid: float, lines: list[PricingLineItem]) -> None:
    cache.set(DRAFT_BATCH_KEY, {"total_paid": float(total_paid), "items": [li.to_dict() for li in lines]})


def load_draft(cache: SideCache) -> tuple[float, list[PricingLineItem]]:
    raw = cache.get(DRAFT_BATCH_KEY)
    if not isinstance(raw, dict):
        return 0.0, []
    total = to_float(raw.get("total_paid", raw.get("totalPaid")))
    items = raw.get("items")
    if not isinstance(items, list):
        logger.warning("Draft batch in side cache has no item list; ignoring it")
        return total, []
    return total, [PricingLineItem.from_dict(li) for li in items if isinstance(li, dict)]


def clear_draft(cache: SideCache) -> None:
    cache.remove(DRAFT_BATCH_KEY)
