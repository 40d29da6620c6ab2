from __future__ import annotations

from dataclasses import dataclass

import streamlit as st

from stockbook.config import Settings
from stockbook.db import ensure_schema, get_conn
from stockbook.logging_setup import setup_logging
from stockbook.services.inventory import InventorySnapshot, load_inventory
from stockbook.stores import JsonSideCache, SqliteBatchStore, SqliteItemStore


@dataclass
class Session:
    settings: Settings
    conn: object
    items: SqliteItemStore
    batches: SqliteBatchStore
    cache: JsonSideCache

    def load(self) -> InventorySnapshot:
        return load_inventory(self.items, self.batches, self.cache, reconcile=self.settings.reconcile_legacy)


def open_session(settings: Settings) -> Session:
    """Wire the sqlite stores and side cache for one Streamlit page run."""
    setup_logging(settings)
    conn = get_conn(settings.db_path)
    ensure_schema(conn)
    return Session(
        settings=settings,
        conn=conn,
        items=SqliteItemStore(conn),
        batches=SqliteBatchStore(conn),
        cache=JsonSideCache(settings.cache_path),
    )


FLASH_KEY = "stockbook_flash"


def flash(message: str) -> None:
    """Queue a success message to show on the run after st.rerun()."""
    st.session_state[FLASH_KEY] = message


def show_flash() -> None:
    message = st.session_state.pop(FLASH_KEY, None)
    if message:
        st.success(message)
