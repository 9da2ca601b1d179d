"""
Error taxonomy

Every failure the API reports is one of these. The status code travels with
the exception so routes never have to map them by hand.
"""


class StorefrontError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(StorefrontError):
    status_code = 400


class VerificationFailed(StorefrontError):
    status_code = 400

    def __init__(self, message: str = "Verification failed"):
        super().__init__(message)


class Unauthorized(StorefrontError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class OrderNotFound(StorefrontError):
    status_code = 404

    def __init__(self, order_id: str):
        super().__init__("Order not found")
        self.order_id = order_id


class PersistenceError(StorefrontError):
    status_code = 500


# -----------------
# Inventory
# -----------------

class InventoryError(StorefrontError):
    """A line item that cannot be fulfilled from current stock."""
    status_code = 400


class ProductNotFound(InventoryError):
    def __init__(self, product_id: str):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class VariantNotFound(InventoryError):
    def __init__(self, title: str, color: str):
        super().__init__(f"Variant {color} not found for product {title}")
        self.title = title
        self.color = color


class SizeNotFound(InventoryError):
    def __init__(self, title: str, color: str, size: str):
        super().__init__(f"Size {size} not available for {title}")
        self.title = title
        self.color = color
        self.size = size


class InsufficientStock(InventoryError):
    def __init__(self, title: str, color: str, size: str, available: int):
        super().__init__(f"Insufficient stock for {title} - {color} - {size}. Available: {available}")
        self.title = title
        self.color = color
        self.size = size
        self.available = available
