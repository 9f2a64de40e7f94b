"""
SQLAlchemy Order and OrderItem models
"""
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from reconciliation_service.database import Base


class OrderStatus(str, Enum):
    PENDING = "pending"
    PENDING_TRANSFER = "pending_transfer"
    APPROVED = "approved"
    SHIPPED = "shipped"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    PROVIDER = "provider"
    BANK_TRANSFER = "bank_transfer"


# Statuses a verified payment may move to approved
PAYABLE_STATUSES = (OrderStatus.PENDING.value, OrderStatus.PENDING_TRANSFER.value)

# Statuses reached only after a successful approval
PAID_STATUSES = (OrderStatus.APPROVED.value, OrderStatus.SHIPPED.value)


class Order(Base):
    """Order database model"""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    customer_email = Column(String(255), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    shipping_cost = Column(Numeric(12, 2), nullable=False, default=0)
    payment_method = Column(String(50), nullable=False, default=PaymentMethod.PROVIDER.value)
    status = Column(String(50), nullable=False, default=OrderStatus.PENDING.value, index=True)
    stock_reserved = Column(Boolean, nullable=False, default=False)
    provider_transaction_id = Column(String(100), nullable=True, index=True)
    tracking_number = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint('total_amount >= 0', name='check_total_non_negative'),
        CheckConstraint(
            "status IN ('pending', 'pending_transfer', 'approved', 'shipped', 'cancelled')",
            name='check_order_status_valid'
        ),
    )

    def __repr__(self):
        return f"<Order(id={self.id}, status='{self.status}', total_amount={self.total_amount})>"


class OrderItem(Base):
    """Line item with the unit price captured at order time"""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_item_quantity_positive'),
    )

    def __repr__(self):
        return f"<OrderItem(order_id={self.order_id}, product_id={self.product_id}, quantity={self.quantity})>"
