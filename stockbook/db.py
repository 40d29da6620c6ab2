from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Iterable

import streamlit as st

from stockbook.schema import SCHEMA_SQL


def connect(db_path: Path | str) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@st.cache_resource
def get_conn(db_path: Path) -> sqlite3.Connection:
    return connect(db_path)


def table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
    return {r["name"] for r in rows}


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    return column in table_columns(conn, table)


def ensure_schema(conn: sqlite3.Connection) -> None:
    # Create base schema (for new installs)
    conn.executescript(SCHEMA_SQL)

    # ---- migrations for existing installs ----
    if not _column_exists(conn, "items", "item_condition"):
        conn.execute("ALTER TABLE items ADD COLUMN item_condition TEXT NOT NULL DEFAULT 'new';")

    if not _column_exists(conn, "items", "batch_ref"):
        conn.execute("ALTER TABLE items ADD COLUMN batch_ref TEXT;")

    conn.commit()


def q(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
    cur = conn.execute(sql, tuple(params))
    rows = cur.fetchall()
    cur.close()
    return rows


def x(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> int:
    cur = conn.execute(sql, tuple(params))
    conn.commit()
    last = cur.lastrowid
    cur.close()
    return int(last or 0)


def xn(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> int:
    """Execute + commit, returning the number of affected rows."""
    cur = conn.execute(sql, tuple(params))
    conn.commit()
    n = cur.rowcount
    cur.close()
    return int(n)
