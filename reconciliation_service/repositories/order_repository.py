"""
Order Repository - Data Access Layer

Methods here only flush; the caller owns the transaction so that order status
and product stock always change together.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from reconciliation_service.models.order import Order, OrderItem, OrderStatus


class OrderRepository:
    """Repository for Order ledger operations"""

    def __init__(self, db: Session):
        self.db = db

    def get_all(self, skip: int = 0, limit: int = 100) -> List[Order]:
        """Get all orders with pagination"""
        return self.db.query(Order).order_by(
            desc(Order.created_at)
        ).offset(skip).limit(limit).all()

    def get_by_id(self, order_id: int) -> Optional[Order]:
        """Get order by ID"""
        return self.db.query(Order).filter(Order.id == order_id).first()

    def get_for_update(self, order_id: int) -> Optional[Order]:
        """Get order by ID holding a row-level lock until the transaction ends"""
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalars().first()

    def create(self, order_data: dict, items: List[dict]) -> Order:
        """
        Create an order together with its items

        Args:
            order_data: Dictionary with order fields
            items: Dictionaries with product_id, quantity and unit_price

        Returns:
            Created order (flushed, not committed)
        """
        order = Order(**order_data)
        order.items = [OrderItem(**item) for item in items]
        self.db.add(order)
        self.db.flush()
        return order

    def get_stale_transfers_for_update(self, created_before: datetime) -> List[Order]:
        """Bank-transfer orders still unpaid and created before the cutoff"""
        stmt = (
            select(Order)
            .where(
                Order.status == OrderStatus.PENDING_TRANSFER.value,
                Order.created_at < created_before,
            )
            .order_by(Order.id)
            .with_for_update()
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_transfers_created_between(self, start: datetime, end: datetime) -> List[Order]:
        """Bank-transfer orders created in the window (start, end]"""
        return self.db.query(Order).filter(
            Order.status == OrderStatus.PENDING_TRANSFER.value,
            Order.created_at > start,
            Order.created_at <= end,
        ).order_by(Order.id).all()

    def count(self) -> int:
        """Get total count of orders"""
        return self.db.query(Order).count()
