from datetime import date

import pytest

from magazine.errors import ProductNotFoundError, ValidationError
from magazine.services.batches import (
    create_batch,
    delete_batch,
    expiring_batches,
    list_batches,
    update_batch,
)


def test_create_batch_generates_sequential_codes(store, make_product):
    p = make_product(sku="ab 12")
    today = date.today().strftime("%Y%m%d")

    first = create_batch(store, product_id=p["id"], quantity=5, expiry_date="2030-01-01")
    second = create_batch(store, product_id=p["id"], quantity=5, expiry_date="2030-02-01")

    assert first["batch_code"] == f"AB12-{today}-001"
    assert second["batch_code"] == f"AB12-{today}-002"


def test_generated_code_skips_codes_in_use(store, make_product):
    p = make_product(sku="GAP")
    today = date.today().strftime("%Y%m%d")
    first = create_batch(store, product_id=p["id"], quantity=1, expiry_date="2030-01-01")
    create_batch(store, product_id=p["id"], quantity=1, expiry_date="2030-01-01")
    delete_batch(store, first["id"])

    third = create_batch(store, product_id=p["id"], quantity=1, expiry_date="2030-01-01")
    assert third["batch_code"] == f"GAP-{today}-003"


def test_create_batch_does_not_touch_quantity(store, ledger, make_product):
    p = make_product(quantity=4)
    create_batch(store, product_id=p["id"], quantity=50, expiry_date=date(2030, 1, 1), batch_code="LOT-A")
    assert ledger.get_total_stock(p["id"]) == 4


@pytest.mark.parametrize(
    "quantity,expiry",
    [(-1, "2030-01-01"), (1.5, "2030-01-01"), ("x", "2030-01-01"), (1, None), (1, "31/12/2030")],
)
def test_create_batch_validation(store, make_product, quantity, expiry):
    p = make_product()
    with pytest.raises(ValidationError):
        create_batch(store, product_id=p["id"], quantity=quantity, expiry_date=expiry)


def test_create_batch_unknown_product(store):
    with pytest.raises(ProductNotFoundError):
        create_batch(store, product_id=77, quantity=1, expiry_date="2030-01-01")


def test_duplicate_code_rejected(store, make_product):
    p = make_product()
    create_batch(store, product_id=p["id"], quantity=1, expiry_date="2030-01-01", batch_code="LOT-1")
    with pytest.raises(ValidationError):
        create_batch(store, product_id=p["id"], quantity=1, expiry_date="2030-01-01", batch_code="LOT-1")


def test_list_update_delete(store, make_product):
    a = make_product(sku="A")
    b = make_product(sku="B")
    create_batch(store, product_id=a["id"], quantity=1, expiry_date="2030-03-01", batch_code="A-LATE")
    early = create_batch(store, product_id=a["id"], quantity=1, expiry_date="2030-01-01", batch_code="A-EARLY")
    create_batch(store, product_id=b["id"], quantity=1, expiry_date="2029-01-01", batch_code="B-1")

    assert [x["batch_code"] for x in list_batches(store, a["id"])] == ["A-EARLY", "A-LATE"]
    assert len(list_batches(store)) == 3

    changed = update_batch(store, early["id"], {"quantity": 9, "expiry_date": "2030-04-01"})
    assert changed["quantity"] == 9
    assert [x["batch_code"] for x in list_batches(store, a["id"])] == ["A-LATE", "A-EARLY"]

    with pytest.raises(ValidationError):
        update_batch(store, early["id"], {"product_id": b["id"]})

    delete_batch(store, early["id"])
    with pytest.raises(ValidationError):
        delete_batch(store, early["id"])


def test_expiring_window_is_inclusive(store, make_product):
    p = make_product(sku="EXP")
    for code, expiry in [
        ("PAST", "2026-01-09"),
        ("TODAY", "2026-01-10"),
        ("EDGE", "2026-01-17"),
        ("LATER", "2026-01-18"),
    ]:
        create_batch(store, product_id=p["id"], quantity=1, expiry_date=expiry, batch_code=code)

    soon = expiring_batches(store, days=7, today=date(2026, 1, 10))

    assert [b["batch_code"] for b in soon] == ["TODAY", "EDGE"]
    assert soon[0]["sku"] == "EXP"
