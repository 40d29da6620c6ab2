from __future__ import annotations

import streamlit as st

from stockbook.config import get_settings
from stockbook.db import ensure_schema, get_conn
from stockbook.logging_setup import setup_logging

st.set_page_config(page_title="Stockbook", page_icon="📒", layout="wide")

st.title("📒 Stockbook")
st.caption("Bulk-order cost allocation, stock lots and sales for a small resale business.")

settings = get_settings()
log_path = setup_logging(settings)
conn = get_conn(settings.db_path)
ensure_schema(conn)

with st.sidebar:
    st.subheader("Environment")
    st.write(f"**Data directory:** `{settings.data_dir}`")
    st.write(f"**Database:** `{settings.db_path.name}`")
    st.write(f"**Log file:** `{log_path.name}`")
    st.write(f"**Legacy batch backfill:** {'on' if settings.reconcile_legacy else 'off'}")

st.info(
    "Start in **🧾 Batch Pricing** to price a bulk order and send it to stock, then sell from **📦 Inventory**. "
    "**🧪 Data Management** can load demo data.",
    icon="ℹ️",
)
