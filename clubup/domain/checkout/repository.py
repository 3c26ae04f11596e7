"""Checkout repository - Database operations for checkout"""

from typing import Iterable, Optional

from sqlalchemy.orm import Session, joinedload

from ...models import Product


class CheckoutRepository:
    """Repository for checkout database operations"""

    @staticmethod
    def get_product(db: Session, product_id: int) -> Optional[Product]:
        """Get product with its seller loaded"""
        return (
            db.query(Product)
            .options(joinedload(Product.seller))
            .filter(Product.id == product_id)
            .first()
        )

    @staticmethod
    def get_products(db: Session, product_ids: Iterable[int]) -> dict[int, Product]:
        """Get products by ID, keyed by ID"""
        ids = list(set(product_ids))
        if not ids:
            return {}
        products = (
            db.query(Product)
            .options(joinedload(Product.seller))
            .filter(Product.id.in_(ids))
            .all()
        )
        return {product.id: product for product in products}
