"""Custom exceptions for order pricing and promotions."""

from typing import Optional


class CommerceError(Exception):
    """Base exception for all pricing and promotion errors."""

    pass


class EmptyOrderError(CommerceError):
    """Raised when an order has no line items."""

    def __init__(self):
        super().__init__("Order must contain at least one item")


class InvalidQuantityError(CommerceError):
    """Raised when a line item quantity is below 1."""

    def __init__(self, index: int, quantity: int):
        self.index = index
        self.quantity = quantity
        super().__init__(f"Invalid quantity {quantity} for item {index}: must be at least 1")


class InvalidAdjustmentError(CommerceError):
    """Raised when tax or shipping is negative."""

    def __init__(self, name: str, value: float):
        self.name = name
        self.value = value
        super().__init__(f"Invalid {name}: {value} (must not be negative)")


class ProductNotFoundError(CommerceError):
    """Raised when a product price cannot be resolved."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class UsageExceededError(CommerceError):
    """Raised when a promotion has reached its usage cap."""

    def __init__(self, promotion_id: Optional[str], max_usage: int):
        self.promotion_id = promotion_id
        self.max_usage = max_usage
        super().__init__(
            f"Promotion {promotion_id} has reached its maximum usage ({max_usage})"
        )


class PromotionNotFoundError(CommerceError):
    """Raised when a promotion ID doesn't exist."""

    def __init__(self, promotion_id: str):
        self.promotion_id = promotion_id
        super().__init__(f"Promotion not found: {promotion_id}")


class OrderNotFoundError(CommerceError):
    """Raised when an order ID doesn't exist."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class DatabaseUnavailableError(CommerceError):
    """Raised when storage is needed but DATABASE_URL/DATABASE_NAME are unset."""

    def __init__(self):
        super().__init__("Database not configured. Check DATABASE_URL and DATABASE_NAME.")
