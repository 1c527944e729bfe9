from __future__ import annotations

import contextlib
import inspect
import itertools
import json
import logging
import sqlite3
import threading
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional

from magazine.db import q, x
from magazine.errors import StoreError, ValidationError
from magazine.schema import JSON_COLUMNS, TABLES, TIMESTAMPED_TABLES
from magazine.utils import iso_now

logger = logging.getLogger(__name__)

EVENTS = ("INSERT", "UPDATE", "DELETE")


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str                      # INSERT / UPDATE / DELETE
    row_id: Optional[int]           # None for bulk deletes
    row: Optional[dict] = None      # new row; the removed row for DELETE


@dataclass
class Subscription:
    table: str
    listener: Callable[[], Optional[Callable[[ChangeEvent], None]]]
    events: frozenset = field(default_factory=lambda: frozenset(EVENTS))
    id: int = 0

    @property
    def callback(self) -> Optional[Callable[[ChangeEvent], None]]:
        return self.listener()


class Store:
    """
    Row store over one SQLite connection.

    Offers per-table select/insert/update/upsert/delete, an atomic conditional
    increment, transactions, and change notifications. Notifications are
    delivered after commit; events from a rolled-back transaction are dropped.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._depth = 0
        self._pending: list[ChangeEvent] = []
        self._subscriptions: list[Subscription] = []
        self._sub_ids = itertools.count(1)
        self._columns: dict[str, frozenset] = {}
        # Streamlit sessions run on separate threads but share one connection.
        self._lock = threading.RLock()

    # ---- transactions ----

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextlib.contextmanager
    def transaction(self) -> Iterator["Store"]:
        """
        Groups writes so they commit together or not at all. Nested blocks
        join the outermost one; only the outermost block commits.
        """
        with self._lock:
            outermost = self._depth == 0
            if outermost and not self.conn.in_transaction:
                # Take the write lock up front so reads inside see a stable snapshot.
                try:
                    self.conn.execute("BEGIN IMMEDIATE")
                except sqlite3.Error as e:
                    raise StoreError(f"Could not start a transaction: {e}") from e
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outermost:
                    self.conn.rollback()
                    self._pending.clear()
                raise
            self._depth -= 1
            if outermost:
                try:
                    self.conn.commit()
                except sqlite3.Error as e:
                    self.conn.rollback()
                    self._pending.clear()
                    raise StoreError(f"Commit failed: {e}") from e
                pending, self._pending = self._pending, []
                for ev in pending:
                    self._dispatch(ev)

    # ---- subscriptions ----

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        events: Iterable[str] = EVENTS,
    ) -> Subscription:
        self._check_table(table)
        wanted = frozenset(str(e).upper() for e in events)
        unknown = wanted - set(EVENTS)
        if unknown:
            raise ValidationError(f"Unknown event type(s): {', '.join(sorted(unknown))}")
        sub_id = next(self._sub_ids)
        if inspect.ismethod(callback):
            # Held weakly; a discarded listener object drops its subscription.
            listener = weakref.WeakMethod(callback, lambda _ref: self._drop(sub_id))
        else:
            listener = lambda: callback  # noqa: E731
        sub = Subscription(table=table, listener=listener, events=wanted, id=sub_id)
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        self._drop(subscription.id)

    def listener_count(self, table: Optional[str] = None) -> int:
        return sum(1 for s in self._subscriptions if table is None or s.table == table)

    def _drop(self, sub_id: int) -> None:
        with self._lock:
            self._subscriptions = [s for s in self._subscriptions if s.id != sub_id]

    def _emit(self, event: ChangeEvent) -> None:
        if self.in_transaction:
            self._pending.append(event)
        else:
            self._dispatch(event)

    def _dispatch(self, event: ChangeEvent) -> None:
        for sub in list(self._subscriptions):
            if sub.table != event.table or event.event not in sub.events:
                continue
            callback = sub.callback
            if callback is None:
                self._drop(sub.id)
                continue
            try:
                callback(event)
            except Exception:
                logger.exception("Change listener failed for %s %s", event.table, event.event)

    # ---- reads ----

    def select(
        self,
        table: str,
        *,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[dict]:
        self._check_table(table)
        sql = f"SELECT * FROM {table}"
        clause, params = self._where(table, where)
        sql += clause
        if order_by:
            self._check_columns(table, [order_by])
            direction = "DESC" if descending else "ASC"
            sql += f" ORDER BY {order_by} {direction}, id {direction}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
            if offset:
                sql += " OFFSET ?"
                params.append(int(offset))
        return [self._decode(table, r) for r in self._read(sql, params)]

    def get(self, table: str, row_id: int) -> Optional[dict]:
        rows = self.select(table, where={"id": row_id})
        return rows[0] if rows else None

    def count(self, table: str, *, starts_with: Optional[Mapping[str, str]] = None) -> int:
        """Row count, optionally limited to rows whose column starts with a prefix."""
        self._check_table(table)
        sql = f"SELECT COUNT(*) AS n FROM {table}"
        params: list[Any] = []
        if starts_with:
            self._check_columns(table, starts_with)
            parts = []
            for col, prefix in starts_with.items():
                parts.append(f"{col} LIKE ? ESCAPE '\\'")
                params.append(_like_prefix(prefix))
            sql += " WHERE " + " AND ".join(parts)
        return int(self._read(sql, params)[0]["n"])

    def expiring_lots(self, start: str, end: str) -> list[dict]:
        """Lots with start <= expiry_date <= end, joined with product name and sku."""
        rows = self._read(
            """
            SELECT b.*, p.name AS product_name, p.sku
            FROM batches b
            JOIN products p ON p.id = b.product_id
            WHERE b.expiry_date >= ? AND b.expiry_date <= ?
            ORDER BY b.expiry_date ASC, b.id ASC
            """,
            [str(start), str(end)],
        )
        return [dict(r) for r in rows]

    # ---- writes ----

    def insert(self, table: str, values: Mapping[str, Any]) -> dict:
        self._check_table(table)
        data = self._encode(table, dict(values))
        data.pop("id", None)
        now = iso_now()
        data.setdefault("created_at", now)
        if table in TIMESTAMPED_TABLES:
            data["updated_at"] = now
        self._check_columns(table, data)

        cols = ", ".join(data)
        marks = ", ".join("?" for _ in data)
        cur = self._write(f"INSERT INTO {table} ({cols}) VALUES ({marks})", list(data.values()))
        row = self.get(table, int(cur.lastrowid))
        self._emit(ChangeEvent(table, "INSERT", row["id"], row))
        return row

    def update(self, table: str, row_id: int, values: Mapping[str, Any]) -> Optional[dict]:
        self._check_table(table)
        data = self._encode(table, dict(values))
        for k in ("id", "created_at"):
            data.pop(k, None)
        if table in TIMESTAMPED_TABLES:
            data["updated_at"] = iso_now()
        if not data:
            return self.get(table, row_id)
        self._check_columns(table, data)

        assignments = ", ".join(f"{k}=?" for k in data)
        cur = self._write(
            f"UPDATE {table} SET {assignments} WHERE id=?",
            [*data.values(), int(row_id)],
        )
        if cur.rowcount == 0:
            return None
        row = self.get(table, row_id)
        self._emit(ChangeEvent(table, "UPDATE", int(row_id), row))
        return row

    def upsert(self, table: str, rows: Iterable[Mapping[str, Any]], *, on_conflict: str) -> list[dict]:
        """
        Inserts each row, merging into the existing row that shares the
        `on_conflict` key. Rows apply in order, so the last row for a key wins.
        """
        self._check_table(table)
        self._check_columns(table, [on_conflict])
        out: list[dict] = []
        with self.transaction():
            for values in rows:
                data = self._encode(table, dict(values))
                if on_conflict not in data:
                    raise ValidationError(f"Upsert row is missing '{on_conflict}'.")
                for k in ("id", "created_at"):
                    data.pop(k, None)

                existing = self.select(table, where={on_conflict: data[on_conflict]})
                now = iso_now()
                insert_data = dict(data, created_at=now)
                if table in TIMESTAMPED_TABLES:
                    insert_data["updated_at"] = now
                    data["updated_at"] = now
                self._check_columns(table, insert_data)

                cols = ", ".join(insert_data)
                marks = ", ".join("?" for _ in insert_data)
                merge = [k for k in data if k != on_conflict]
                if merge:
                    action = "DO UPDATE SET " + ", ".join(f"{k}=excluded.{k}" for k in merge)
                else:
                    action = "DO NOTHING"
                self._write(
                    f"INSERT INTO {table} ({cols}) VALUES ({marks}) ON CONFLICT({on_conflict}) {action}",
                    list(insert_data.values()),
                )
                row = self.select(table, where={on_conflict: data[on_conflict]})[0]
                self._emit(ChangeEvent(table, "UPDATE" if existing else "INSERT", row["id"], row))
                out.append(row)
        return out

    def delete(self, table: str, row_id: int) -> bool:
        old = self.get(table, row_id)
        if old is None:
            return False
        self._write(f"DELETE FROM {table} WHERE id=?", [int(row_id)])
        self._emit(ChangeEvent(table, "DELETE", int(row_id), old))
        return True

    def delete_all(self, table: str) -> int:
        self._check_table(table)
        cur = self._write(f"DELETE FROM {table}")
        n = max(int(cur.rowcount), 0)
        if n:
            self._emit(ChangeEvent(table, "DELETE", None))
        return n

    def increment(self, table: str, row_id: int, column: str, delta: int, *, floor: int = 0) -> Optional[int]:
        """
        Atomic `column = column + delta` guarded by `column + delta >= floor`.
        Returns the new value, or None when the row is missing or the guard fails.
        """
        self._check_table(table)
        self._check_columns(table, [column])
        sets = f"{column} = {column} + ?"
        params: list[Any] = [int(delta)]
        if table in TIMESTAMPED_TABLES:
            sets += ", updated_at = ?"
            params.append(iso_now())
        params += [int(row_id), int(delta), int(floor)]

        with self.transaction():
            cur = self._write(
                f"UPDATE {table} SET {sets} WHERE id=? AND {column} + ? >= ?",
                params,
            )
            if cur.rowcount == 0:
                return None
            row = self.get(table, row_id)
            self._emit(ChangeEvent(table, "UPDATE", int(row_id), row))
        return int(row[column])

    # ---- internals ----

    def _read(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return q(self.conn, sql, params)
            except sqlite3.Error as e:
                logger.error("Read failed: %s", e)
                raise StoreError(f"Read failed: {e}") from e

    def _write(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                return x(self.conn, sql, params, commit=not self.in_transaction)
            except sqlite3.IntegrityError as e:
                if not self.in_transaction:
                    self.conn.rollback()
                raise ValidationError(_integrity_message(e)) from e
            except sqlite3.Error as e:
                if not self.in_transaction:
                    self.conn.rollback()
                logger.error("Write failed: %s", e)
                raise StoreError(f"Write failed: {e}") from e

    def _check_table(self, table: str) -> None:
        if table not in TABLES:
            raise ValidationError(f"Unknown table '{table}'.")

    def _check_columns(self, table: str, cols: Iterable[str]) -> None:
        if table not in self._columns:
            rows = self._read(f"PRAGMA table_info({table});")
            self._columns[table] = frozenset(r["name"] for r in rows)
        unknown = [c for c in cols if c not in self._columns[table]]
        if unknown:
            raise ValidationError(f"Unknown column(s) for {table}: {', '.join(unknown)}")

    def _where(self, table: str, where: Optional[Mapping[str, Any]]) -> tuple[str, list[Any]]:
        if not where:
            return "", []
        self._check_columns(table, where)
        parts, params = [], []
        for k, v in where.items():
            if v is None:
                parts.append(f"{k} IS NULL")
            else:
                parts.append(f"{k}=?")
                params.append(v)
        return " WHERE " + " AND ".join(parts), params

    def _encode(self, table: str, data: dict) -> dict:
        for col in JSON_COLUMNS.get(table, ()):
            if col in data and not isinstance(data[col], str):
                data[col] = json.dumps(data[col], default=str)
        return data

    def _decode(self, table: str, row: sqlite3.Row) -> dict:
        out = dict(row)
        for col in JSON_COLUMNS.get(table, ()):
            raw = out.get(col)
            if isinstance(raw, str):
                try:
                    out[col] = json.loads(raw)
                except ValueError:
                    logger.warning("Undecodable JSON in %s.%s (id=%s)", table, col, out.get("id"))
        return out


def _integrity_message(e: sqlite3.IntegrityError) -> str:
    msg = str(e)
    if "UNIQUE" in msg:
        column = msg.rsplit(".", 1)[-1]
        return f"A record with this {column} already exists."
    if "CHECK" in msg:
        return "Invalid value: names and SKUs must be non-empty, quantities and prices must not be negative."
    if "NOT NULL" in msg:
        column = msg.rsplit(".", 1)[-1]
        return f"Field '{column}' is required."
    return f"Constraint violation: {msg}"


def _like_prefix(prefix: str) -> str:
    escaped = str(prefix).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"
