from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import pandas as pd

from stockbook.models import CONDITION_LABELS, Item
from stockbook.services.batches import batch_label
from stockbook.services.items import resolve_batch_ref
from stockbook.utils import safe_div

ITEM_FRAME_COLUMNS = [
    "id",
    "product_name",
    "condition",
    "quantity",
    "purchase_price",
    "sale_price",
    "status",
    "date",
    "sale_date",
    "batch_ref",
]


@dataclass
class DashboardMetrics:
    total_sales: float
    total_cost_sold: float
    net_profit: float
    units_sold: int
    profit_margin_pct: float
    stock_value: float
    stock_units: int
    sold_batches: int
    direct_sales: int


def items_frame(items: list[Item], batch_map: Optional[dict[str, str]] = None) -> pd.DataFrame:
    """One row per item, with the batch ref resolved through the side index."""
    rows = [
        {
            "id": i.id,
            "product_name": i.product_name,
            "condition": i.condition,
            "quantity": int(i.quantity),
            "purchase_price": float(i.purchase_price),
            "sale_price": float(i.sale_price) if i.sale_price is not None else None,
            "status": i.status,
            "date": i.date,
            "sale_date": i.sale_date,
            "batch_ref": resolve_batch_ref(i, batch_map),
        }
        for i in items
    ]
    df = pd.DataFrame(rows, columns=ITEM_FRAME_COLUMNS)
    df["sale_price"] = pd.to_numeric(df["sale_price"], errors="coerce")
    return df


def dashboard_metrics(items: list[Item], batch_map: Optional[dict[str, str]] = None) -> DashboardMetrics:
    # Always derived from the full item set; nothing here is stored.
    df = items_frame(items, batch_map)
    sold = df[df["status"] == "sold"]
    stock = df[df["status"] == "in_stock"]

    total_sales = float((sold["sale_price"].fillna(0) * sold["quantity"]).sum())
    total_cost = float((sold["purchase_price"] * sold["quantity"]).sum())
    net_profit = total_sales - total_cost

    return DashboardMetrics(
        total_sales=total_sales,
        total_cost_sold=total_cost,
        net_profit=net_profit,
        units_sold=int(sold["quantity"].sum()),
        profit_margin_pct=safe_div(net_profit, total_sales) * 100.0 if total_sales > 0 else 0.0,
        stock_value=float((stock["purchase_price"] * stock["quantity"]).sum()),
        stock_units=int(stock["quantity"].sum()),
        sold_batches=int(sold["batch_ref"].dropna().nunique()),
        direct_sales=int(sold["batch_ref"].isna().sum()),
    )


def profit_by_day(items: list[Item]) -> pd.DataFrame:
    """Profit per day of sale (falling back to the item date), oldest first."""
    df = items_frame(items)
    if df.empty:
        return pd.DataFrame(columns=["day", "profit"])

    when = pd.to_datetime(df["sale_date"].fillna(df["date"]), utc=True, errors="coerce", format="ISO8601")
    df = df.assign(
        day=when.dt.date,
        profit=(df["sale_price"].fillna(0) - df["purchase_price"]) * df["quantity"],
    ).dropna(subset=["day"])

    out = df.groupby("day", as_index=False)["profit"].sum().sort_values("day")
    return out.reset_index(drop=True)


def display_frame(items: list[Item], batch_map: Optional[dict[str, str]] = None) -> pd.DataFrame:
    """Table-friendly view used by the Streamlit pages."""
    df = items_frame(items, batch_map)
    df["condition"] = df["condition"].map(lambda c: CONDITION_LABELS.get(c, c))
    df["batch"] = df["batch_ref"].map(batch_label, na_action="ignore").fillna("No batch")
    df["line_value"] = df["purchase_price"] * df["quantity"]
    df["profit"] = (df["sale_price"].fillna(0) - df["purchase_price"]) * df["quantity"]
    return df.drop(columns=["batch_ref"])
