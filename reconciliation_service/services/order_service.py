"""
Order Service - order creation and lookups
"""
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from reconciliation_service.exceptions import InsufficientStockError, ProductNotFoundError
from reconciliation_service.models.order import OrderStatus, PaymentMethod
from reconciliation_service.repositories.order_repository import OrderRepository
from reconciliation_service.repositories.product_repository import ProductRepository
from reconciliation_service.schemas.order import OrderCreate, OrderResponse, OrderListResponse

logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")


class OrderService:
    """Service layer for order creation and retrieval"""

    def __init__(self, db: Session):
        self.db = db
        self.repository = OrderRepository(db)
        self.product_repository = ProductRepository(db)

    def get_all_orders(self, skip: int = 0, limit: int = 100) -> OrderListResponse:
        """Get all orders with pagination"""
        orders = self.repository.get_all(skip=skip, limit=limit)
        total = self.repository.count()

        return OrderListResponse(
            orders=[OrderResponse.model_validate(o) for o in orders],
            total=total
        )

    def get_order_by_id(self, order_id: int) -> Optional[OrderResponse]:
        """Get order by ID"""
        order = self.repository.get_by_id(order_id)
        if not order:
            return None
        return OrderResponse.model_validate(order)

    def create_order(self, order_data: OrderCreate) -> OrderResponse:
        """
        Create new order

        Steps:
        1. Lock referenced products
        2. Check stock availability
        3. Snapshot unit prices and calculate the total once
        4. Save order and items
        5. Bank-transfer orders reserve their stock immediately; the expiry
           sweep gives it back if the transfer never arrives

        Raises:
            ProductNotFoundError: If a product does not exist
            InsufficientStockError: If stock does not cover a requested quantity
        """
        quantities = {}
        for item in order_data.items:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

        try:
            products = self.product_repository.get_many_for_update(quantities.keys())

            for product_id, quantity in quantities.items():
                product = products.get(product_id)
                if product is None:
                    raise ProductNotFoundError(product_id)
                if product.stock < quantity:
                    raise InsufficientStockError(
                        f"Insufficient stock. Product ID: {product_id}, "
                        f"Requested: {quantity}, Available: {product.stock}"
                    )

            items = [
                {
                    "product_id": item.product_id,
                    "quantity": item.quantity,
                    "unit_price": Decimal(products[item.product_id].price).quantize(CENTS),
                }
                for item in order_data.items
            ]
            subtotal = sum((i["unit_price"] * i["quantity"] for i in items), Decimal("0"))
            shipping_cost = order_data.shipping_cost.quantize(CENTS)

            is_transfer = order_data.payment_method == PaymentMethod.BANK_TRANSFER.value
            order = self.repository.create(
                {
                    "user_id": order_data.user_id,
                    "customer_email": order_data.customer_email,
                    "total_amount": (subtotal + shipping_cost).quantize(CENTS),
                    "shipping_cost": shipping_cost,
                    "payment_method": order_data.payment_method,
                    "status": (
                        OrderStatus.PENDING_TRANSFER.value if is_transfer else OrderStatus.PENDING.value
                    ),
                    "stock_reserved": False,
                },
                items,
            )

            if is_transfer:
                self.product_repository.decrement_for_items(order.items)
                order.stock_reserved = True

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(order)
        logger.info(
            "order_created",
            order_id=order.id,
            status=order.status,
            total_amount=str(order.total_amount),
        )
        return OrderResponse.model_validate(order)
