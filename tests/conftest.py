"""
Pytest fixtures for the inventory services.

Every test gets a fresh in-memory database, a Store over it, and ledgers
acting as an admin, a staff member, or nobody.
"""

import pytest

from magazine.auth import Principal, ROLE_ADMIN, ROLE_STAFF
from magazine.db import connect, ensure_schema
from magazine.services.ledger import StockLedger
from magazine.store import Store


@pytest.fixture
def conn():
    """Fresh in-memory database with the full schema."""
    c = connect(":memory:")
    ensure_schema(c)
    yield c
    c.close()


@pytest.fixture
def store(conn):
    return Store(conn)


@pytest.fixture
def admin():
    return Principal(email="admin@example.com", role=ROLE_ADMIN)


@pytest.fixture
def staff():
    return Principal(email="clerk@example.com", role=ROLE_STAFF)


@pytest.fixture
def ledger(store, admin):
    """Ledger acting as the admin principal."""
    led = StockLedger(store, admin)
    yield led
    led.close()


@pytest.fixture
def staff_ledger(store, staff):
    led = StockLedger(store, staff)
    yield led
    led.close()


@pytest.fixture
def make_product(ledger):
    """Factory: creates a product through the ledger with sensible defaults."""
    def _make(sku="SKU-1", name=None, price=9.99, quantity=0, **extra):
        return ledger.add_product(name=name or f"Product {sku}", sku=sku, price=price, quantity=quantity, **extra)
    return _make
