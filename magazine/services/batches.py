from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Optional

from magazine.errors import ProductNotFoundError, ValidationError
from magazine.store import Store
from magazine.utils import parse_iso_date

logger = logging.getLogger(__name__)


def _normalize_sku_code(sku: str) -> str:
    # "ab 12/x" -> "AB12X"
    code = "".join(ch for ch in str(sku).upper() if ch.isalnum() or ch == "-")
    return code[:16] or "LOT"


def _generate_batch_code(store: Store, *, sku: str, on_date: date) -> str:
    """
    Consistent system code:
      {SKU}-{YYYYMMDD}-{NNN}

    Example:
      SKU-1-20260218-001
    """
    prefix = f"{_normalize_sku_code(sku)}-{on_date.strftime('%Y%m%d')}-"
    seq = store.count("batches", starts_with={"batch_code": prefix}) + 1

    # Deleted lots leave gaps; skip forward past any code still in use.
    while store.select("batches", where={"batch_code": f"{prefix}{seq:03d}"}):
        seq += 1
    return f"{prefix}{seq:03d}"


def _clean_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool):
        raise ValidationError("Batch quantity must be a whole number.")
    try:
        qty = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError("Batch quantity must be a whole number.")
    if qty != quantity and not isinstance(quantity, str):
        raise ValidationError("Batch quantity must be a whole number.")
    if qty < 0:
        raise ValidationError("Batch quantity must be >= 0.")
    return qty


def _clean_expiry(expiry_date: Any) -> str:
    if expiry_date in (None, ""):
        raise ValidationError("Expiry date is required.")
    try:
        return parse_iso_date(expiry_date).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid expiry date '{expiry_date}'. Use YYYY-MM-DD.")


def create_batch(
    store: Store,
    *,
    product_id: int,
    quantity: int,
    expiry_date,
    batch_code: Optional[str] = None,
) -> dict:
    product = store.get("products", product_id)
    if product is None:
        raise ProductNotFoundError(product_id)

    qty = _clean_quantity(quantity)
    expiry = _clean_expiry(expiry_date)
    code = (batch_code or "").strip() or _generate_batch_code(store, sku=product["sku"], on_date=date.today())

    batch = store.insert(
        "batches",
        {"product_id": int(product_id), "quantity": qty, "expiry_date": expiry, "batch_code": code},
    )
    logger.info("Recorded lot %s for %s (%s units, expires %s)", code, product["sku"], qty, expiry)
    return batch


def list_batches(store: Store, product_id: Optional[int] = None) -> list[dict]:
    where = {"product_id": int(product_id)} if product_id is not None else None
    return store.select("batches", where=where, order_by="expiry_date")


def update_batch(store: Store, batch_id: int, values: dict) -> dict:
    allowed = {"quantity", "expiry_date", "batch_code"}
    unknown = set(values) - allowed
    if unknown:
        raise ValidationError(f"Cannot change batch field(s): {', '.join(sorted(unknown))}")

    clean: dict[str, Any] = {}
    if "quantity" in values:
        clean["quantity"] = _clean_quantity(values["quantity"])
    if "expiry_date" in values:
        clean["expiry_date"] = _clean_expiry(values["expiry_date"])
    if "batch_code" in values:
        code = str(values["batch_code"] or "").strip()
        if not code:
            raise ValidationError("Batch code is required.")
        clean["batch_code"] = code

    batch = store.update("batches", batch_id, clean)
    if batch is None:
        raise ValidationError("Batch not found.")
    return batch


def delete_batch(store: Store, batch_id: int) -> None:
    if not store.delete("batches", batch_id):
        raise ValidationError("Batch not found.")


def expiring_batches(store: Store, *, days: int = 7, today: Optional[date] = None) -> list[dict]:
    """Lots expiring between today and today + days (inclusive), soonest first."""
    start = today or date.today()
    end = start + timedelta(days=int(days))
    return store.expiring_lots(start.isoformat(), end.isoformat())
