from __future__ import annotations


class MagazineError(Exception):
    """Base class for errors surfaced to the user as a notification."""


class ValidationError(MagazineError, ValueError):
    pass


class ProductNotFoundError(MagazineError, LookupError):
    def __init__(self, product_id):
        super().__init__(f"Product {product_id} not found.")
        self.product_id = product_id


class InsufficientStockError(MagazineError):
    def __init__(self, *, available: int, requested: int, product_name: str = ""):
        label = f" for {product_name}" if product_name else ""
        super().__init__(f"Insufficient stock{label}: {available} available, {requested} requested.")
        self.available = int(available)
        self.requested = int(requested)


class AuthenticationError(MagazineError):
    pass


class AuthorizationError(MagazineError, PermissionError):
    pass


class StoreError(MagazineError):
    """A write or read against the store failed; the operation was abandoned."""
