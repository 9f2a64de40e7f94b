"""
Product Repository - stock counter access
"""
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from reconciliation_service.exceptions import ProductNotFoundError, StockIntegrityError
from reconciliation_service.models.order import OrderItem
from reconciliation_service.models.product import Product


class ProductRepository:
    """Repository for product stock operations"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, product_id: int) -> Optional[Product]:
        """Get product by ID"""
        return self.db.query(Product).filter(Product.id == product_id).first()

    def get_many_for_update(self, product_ids: Iterable[int]) -> Dict[int, Product]:
        """Lock products in ascending id order to keep lock acquisition deadlock-free"""
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        stmt = (
            select(Product)
            .where(Product.id.in_(ids))
            .order_by(Product.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {p.id: p for p in self.db.execute(stmt).scalars().all()}

    def decrement_for_items(self, items: List[OrderItem]) -> None:
        """
        Deduct item quantities from stock

        Raises:
            ProductNotFoundError: If an item references a missing product
            StockIntegrityError: If any product would go negative. Nothing is
                flushed in that case, so the caller's rollback leaves stock intact
        """
        products = self.get_many_for_update(item.product_id for item in items)
        required: Dict[int, int] = {}
        for item in items:
            required[item.product_id] = required.get(item.product_id, 0) + item.quantity

        for product_id, quantity in required.items():
            product = products.get(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            if product.stock - quantity < 0:
                raise StockIntegrityError(product_id, product.stock, quantity)

        for product_id, quantity in required.items():
            products[product_id].stock -= quantity
        self.db.flush()

    def restore_for_items(self, items: List[OrderItem]) -> None:
        """Give item quantities back to stock"""
        products = self.get_many_for_update(item.product_id for item in items)
        for item in items:
            product = products.get(item.product_id)
            if product is None:
                raise ProductNotFoundError(item.product_id)
            product.stock += item.quantity
        self.db.flush()
