from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Iterable

import streamlit as st

from magazine.schema import SCHEMA_SQL


def connect(db_path: Path | str) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@st.cache_resource
def get_conn(db_path: Path) -> sqlite3.Connection:
    conn = connect(db_path)
    ensure_schema(conn)
    return conn


def ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    conn.commit()


def q(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
    cur = conn.execute(sql, tuple(params))
    rows = cur.fetchall()
    cur.close()
    return rows


def x(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = (), *, commit: bool = True) -> sqlite3.Cursor:
    """Executes one write. Callers inside a transaction pass commit=False."""
    cur = conn.execute(sql, tuple(params))
    if commit:
        conn.commit()
    return cur
