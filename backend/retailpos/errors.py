# Overview: Service-layer exception taxonomy shared by carts, checkout, inventory and reports.

from __future__ import annotations


class ServiceError(Exception):
    """Base class for business errors surfaced to API callers."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"success": False, "message": self.message}
        payload.update(self.details)
        return payload


class NotFoundError(ServiceError):
    """Cart, product or cart line is absent."""
    status_code = 404


class CartNotFoundError(NotFoundError):
    def __init__(self, message: str = "Cart not found", details: dict | None = None):
        super().__init__(message, details)


class ValidationError(ServiceError):
    """400-level input problem (bad quantity, missing field)."""


class InsufficientStockError(ServiceError):
    """Requested quantity exceeds what the inventory holds."""

    def __init__(self, available: int, product_id: int | None = None, message: str | None = None):
        super().__init__(
            message or f"Only {available} units available",
            details={"available_quantity": available},
        )
        self.available = available
        self.product_id = product_id


class EmptyCartError(ServiceError):
    def __init__(self, message: str = "Cannot checkout an empty cart"):
        super().__init__(message)


class ItemsUnavailableError(ServiceError):
    """
    One or more cart lines can no longer be fulfilled.

    Carries [{name, requested, available}] so the caller can adjust the cart
    and retry.
    """
    status_code = 409

    def __init__(self, items: list[dict], message: str = "Some items are no longer available"):
        super().__init__(message, details={"unavailable_items": items})
        self.items = items


class ConcurrencyConflictError(ServiceError):
    """A guarded stock decrement lost a race with another writer."""
    status_code = 409

    def __init__(self, product_id: int, requested: int):
        super().__init__(
            "Stock changed during checkout",
            details={"product_id": product_id, "requested": requested},
        )
        self.product_id = product_id
        self.requested = requested


class NotificationError(ServiceError):
    """Order confirmation could not be delivered. Never fails a checkout."""
    status_code = 502


class CommitOutcomeUnknownError(ServiceError):
    """
    The database failed while the COMMIT itself was in flight.

    The write may or may not have landed, so it is never retried blindly;
    the caller has to re-read state before trying again.
    """
    status_code = 503

    def __init__(self, message: str = "The outcome of the write is unknown; reload before retrying",
                 details: dict | None = None):
        super().__init__(message, details)


class ProductVersionConflictError(ServiceError):
    """An edit was based on a product version that has since changed."""
    status_code = 409

    def __init__(self, product_id: int, expected: int, current: int):
        super().__init__(
            "Product was modified by another request; reload and retry",
            details={"product_id": product_id, "expected_version": expected, "current_version": current},
        )
        self.product_id = product_id
        self.expected = expected
        self.current = current
