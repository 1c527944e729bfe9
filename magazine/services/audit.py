from __future__ import annotations

import logging
from typing import Any, Optional

from magazine.errors import ValidationError
from magazine.store import Store

logger = logging.getLogger(__name__)

SCAN_IN = "SCAN_IN"
SCAN_OUT = "SCAN_OUT"
ADJUST = "ADJUST"
CREATE = "CREATE"
UPDATE = "UPDATE"
DELETE = "DELETE"

AUDIT_ACTIONS = (SCAN_IN, SCAN_OUT, ADJUST, CREATE, UPDATE, DELETE)
STOCK_ACTIONS = frozenset({SCAN_IN, SCAN_OUT, ADJUST})

DEFAULT_LIMIT = 100


def append(store: Store, action: str, details: dict[str, Any], *, user_email: Optional[str] = None) -> dict:
    """
    Appends one audit entry. The entry is written even when the acting
    principal is unknown; user_email is then left empty.
    """
    action = str(action).strip().upper()
    if action not in AUDIT_ACTIONS:
        raise ValidationError(f"Unknown audit action '{action}'.")

    entry = store.insert(
        "audit_logs",
        {
            "user_email": (user_email or "").strip().lower() or None,
            "action": action,
            "details": dict(details or {}),
        },
    )
    logger.debug("Audit %s #%s by %s", action, entry["id"], entry["user_email"] or "unknown")
    return entry


def list_entries(store: Store, limit: int = DEFAULT_LIMIT) -> list[dict]:
    """Most recent first (created_at, then id, descending)."""
    limit = int(limit)
    if limit < 1:
        raise ValidationError("Limit must be at least 1.")
    return store.select("audit_logs", order_by="created_at", descending=True, limit=limit)


def clear(store: Store) -> int:
    n = store.delete_all("audit_logs")
    logger.warning("Audit trail cleared (%s entries removed)", n)
    return n


def describe(entry: dict) -> str:
    d = entry.get("details") or {}
    if not isinstance(d, dict):
        return str(d)
    name = d.get("product_name") or d.get("name") or f"#{d.get('product_id', '?')}"
    action = entry.get("action")

    if action == SCAN_IN:
        return f"{name}: +{d.get('added', 0)} (total {d.get('new_total', '?')})"
    if action == SCAN_OUT:
        return f"{name}: -{d.get('removed', 0)} (total {d.get('new_total', '?')})"
    if action == ADJUST:
        reason = f" ({d['reason']})" if d.get("reason") else ""
        return f"{name}: {d.get('old', '?')} -> {d.get('new', '?')}{reason}"
    if action == CREATE:
        return f"{name} [{d.get('sku', '')}] created"
    if action == UPDATE:
        fields = ", ".join(sorted((d.get("updates") or {}).keys()))
        return f"{name} updated: {fields}" if fields else f"{name} updated"
    if action == DELETE:
        return f"{name} [{d.get('sku', '')}] deleted"
    return name
