"""
Domain exceptions for order reconciliation
"""


class ReconciliationError(Exception):
    """Base exception for reconciliation errors"""

    retryable = False


class OrderNotFoundError(ReconciliationError):
    """Order not found"""

    def __init__(self, order_id):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class ProductNotFoundError(ReconciliationError):
    """Product not found"""

    def __init__(self, product_id):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class InvalidPaymentReferenceError(ReconciliationError):
    """Verified payment carries no usable order reference"""
    pass


class OrderNotPayableError(ReconciliationError):
    """Payment approved for an order that can no longer be approved"""
    pass


class PaymentAmountMismatchError(ReconciliationError):
    """Verified payment amount differs from the order total"""
    pass


class OrderNotCancellableError(ReconciliationError):
    """Order is not eligible for cancellation"""
    pass


class OrderNotShippableError(ReconciliationError):
    """Order cannot be marked as shipped"""
    pass


class InsufficientStockError(ReconciliationError):
    """Not enough stock to place an order"""
    pass


class StockIntegrityError(ReconciliationError):
    """Stock would go negative while applying an approval"""

    def __init__(self, product_id, stock, requested):
        super().__init__(
            f"Stock integrity violation for product {product_id}: "
            f"stock={stock}, requested={requested}"
        )
        self.product_id = product_id
        self.stock = stock
        self.requested = requested
