"""
Store tests: row CRUD, upsert, conditional increment, transactions and
change notifications.
"""

import gc

import pytest

from magazine.db import ensure_schema
from magazine.errors import ValidationError
from magazine.store import ChangeEvent


def _product(sku="A-1", **extra):
    values = {"name": f"Item {sku}", "sku": sku, "price": 2.5, "quantity": 0}
    values.update(extra)
    return values


def test_insert_assigns_id_and_timestamps(store):
    row = store.insert("products", _product())

    assert isinstance(row["id"], int)
    assert row["created_at"]
    assert row["updated_at"] == row["created_at"]
    assert row["barcodes"] == []


def test_json_columns_round_trip(store):
    row = store.insert("products", _product(barcodes=["111", "222"]))
    assert store.get("products", row["id"])["barcodes"] == ["111", "222"]


def test_select_where_order_and_limit(store):
    for sku in ["C", "A", "B"]:
        store.insert("products", _product(sku=sku, name=sku))

    names = [r["name"] for r in store.select("products", order_by="name")]
    assert names == ["A", "B", "C"]

    top = store.select("products", order_by="name", descending=True, limit=2)
    assert [r["name"] for r in top] == ["C", "B"]

    assert [r["sku"] for r in store.select("products", where={"sku": "B"})] == ["B"]


def test_update_returns_none_for_missing_row(store):
    assert store.update("products", 999, {"name": "x"}) is None


def test_duplicate_sku_is_a_validation_error(store):
    store.insert("products", _product(sku="DUP"))
    with pytest.raises(ValidationError):
        store.insert("products", _product(sku="DUP"))
    assert store.count("products") == 1


def test_negative_quantity_rejected_by_schema(store):
    with pytest.raises(ValidationError):
        store.insert("products", _product(quantity=-1))


def test_unknown_table_and_column_rejected(store):
    with pytest.raises(ValidationError):
        store.select("nope")
    with pytest.raises(ValidationError):
        store.insert("products", _product(colour="red"))


def test_upsert_merges_on_key_last_row_wins(store):
    original = store.insert("products", _product(sku="SKU-1", name="Old", price=1.0, category="Keep"))

    rows = store.upsert(
        "products",
        [
            {"sku": "SKU-1", "name": "First", "price": 2.0},
            {"sku": "SKU-1", "name": "Second", "price": 3.0},
        ],
        on_conflict="sku",
    )

    assert store.count("products") == 1
    row = store.get("products", original["id"])
    assert row["name"] == "Second"
    assert row["price"] == 3.0
    # Columns not in the upsert payload are left alone
    assert row["category"] == "Keep"
    assert rows[-1]["id"] == original["id"]


def test_increment_respects_floor(store):
    row = store.insert("products", _product(quantity=5))

    assert store.increment("products", row["id"], "quantity", 3) == 8
    assert store.increment("products", row["id"], "quantity", -8) == 0
    assert store.increment("products", row["id"], "quantity", -1) is None
    assert store.get("products", row["id"])["quantity"] == 0


def test_increment_missing_row(store):
    assert store.increment("products", 12345, "quantity", 1) is None


def test_concurrent_style_increments_do_not_lose_updates(store):
    """Two sessions that both read 5 and then add their own delta both land."""
    row = store.insert("products", _product(quantity=5))
    seen_a = store.get("products", row["id"])["quantity"]
    seen_b = store.get("products", row["id"])["quantity"]
    assert seen_a == seen_b == 5

    store.increment("products", row["id"], "quantity", 2)
    store.increment("products", row["id"], "quantity", 3)

    assert store.get("products", row["id"])["quantity"] == 10


def test_transaction_rolls_back_all_writes(store):
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.insert("products", _product(sku="T-1"))
            store.insert("products", _product(sku="T-2"))
            raise RuntimeError("boom")

    assert store.count("products") == 0
    assert not store.in_transaction


def test_nested_transaction_commits_with_outer(store):
    with store.transaction():
        store.insert("products", _product(sku="N-1"))
        with store.transaction():
            store.insert("products", _product(sku="N-2"))
    assert store.count("products") == 2


def test_subscribers_get_events_after_commit(store):
    events = []
    store.subscribe("products", events.append)

    with store.transaction():
        row = store.insert("products", _product())
        assert events == []

    assert events == [ChangeEvent("products", "INSERT", row["id"], row)]

    store.update("products", row["id"], {"name": "Renamed"})
    store.delete("products", row["id"])
    assert [e.event for e in events] == ["INSERT", "UPDATE", "DELETE"]


def test_rolled_back_events_are_dropped(store):
    events = []
    store.subscribe("products", events.append)

    with pytest.raises(ValueError):
        with store.transaction():
            store.insert("products", _product())
            raise ValueError("abort")

    assert events == []


def test_subscription_filters_and_unsubscribe(store):
    inserts, audits = [], []
    sub = store.subscribe("products", inserts.append, events=["INSERT"])
    store.subscribe("audit_logs", audits.append)

    row = store.insert("products", _product())
    store.update("products", row["id"], {"name": "x"})
    assert len(inserts) == 1
    assert audits == []

    store.unsubscribe(sub)
    store.insert("products", _product(sku="B-2"))
    assert len(inserts) == 1


def test_failing_listener_does_not_break_writes(store):
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    store.subscribe("products", broken)
    store.subscribe("products", seen.append)

    store.insert("products", _product())
    assert store.count("products") == 1
    assert len(seen) == 1


def test_delete_all_emits_one_bulk_event(store):
    events = []
    store.insert("products", _product(sku="1"))
    store.insert("products", _product(sku="2"))
    store.subscribe("products", events.append)

    assert store.delete_all("products") == 2
    assert events == [ChangeEvent("products", "DELETE", None)]
    assert store.delete_all("products") == 0
    assert len(events) == 1


def test_unknown_event_type_rejected(store):
    with pytest.raises(ValidationError):
        store.subscribe("products", lambda e: None, events=["TRUNCATE"])


class _Listener:
    def __init__(self):
        self.seen = []

    def on_change(self, event):
        self.seen.append(event)


def test_bound_method_listeners_are_held_weakly(store):
    kept = _Listener()
    store.subscribe("products", kept.on_change)
    store.subscribe("products", _Listener().on_change)
    gc.collect()

    assert store.listener_count("products") == 1
    store.insert("products", _product())
    assert len(kept.seen) == 1


def test_plain_function_listeners_stay_subscribed(store):
    seen = []

    def listener(event):
        seen.append(event)

    store.subscribe("products", listener)
    del listener
    gc.collect()

    store.insert("products", _product())
    assert len(seen) == 1


def test_count_with_prefix(store):
    store.insert("products", _product(sku="AB-1"))
    store.insert("products", _product(sku="AB-2"))
    store.insert("products", _product(sku="ABX"))
    store.insert("products", _product(sku="A_%"))

    assert store.count("products", starts_with={"sku": "AB-"}) == 2
    assert store.count("products", starts_with={"sku": "A_"}) == 1
    assert store.count("products", starts_with={"sku": "ZZ"}) == 0
    with pytest.raises(ValidationError):
        store.count("products", starts_with={"nope": "x"})


def test_expiring_lots_joins_products(store):
    p = store.insert("products", _product(sku="LOT-P"))
    for code, expiry in [("L1", "2030-01-01"), ("L2", "2030-01-05"), ("L3", "2030-02-01")]:
        store.insert("batches", {"product_id": p["id"], "quantity": 1, "expiry_date": expiry, "batch_code": code})

    lots = store.expiring_lots("2030-01-01", "2030-01-05")

    assert [b["batch_code"] for b in lots] == ["L1", "L2"]
    assert lots[0]["product_name"] == "Item LOT-P"
    assert lots[0]["sku"] == "LOT-P"


def test_ensure_schema_is_idempotent(store):
    store.insert("products", _product(sku="KEEP"))

    ensure_schema(store.conn)

    assert store.count("products") == 1
