"""
SqlProductCatalog -- ProductCatalog backed by the shared ``products`` table.

Read-only.  The surrounding application owns product CRUD; the kernel only
asks whether a product exists, what its category is, and what its alert
threshold is.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.catalog import ProductCategory, ProductInfo, SourceType
from inventory_kernel.exceptions import ProductNotFoundError
from inventory_kernel.models.product import Product


def _to_info(product: Product) -> ProductInfo:
    return ProductInfo(
        id=product.id,
        name=product.name,
        category=ProductCategory(product.category),
        unit=product.unit,
        source_type=SourceType(product.source_type) if product.source_type else None,
        min_stock_threshold=product.min_stock_threshold,
    )


class SqlProductCatalog:
    """ProductCatalog over the ORM ``Product`` mapping."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, product_id: UUID) -> ProductInfo | None:
        product = self.session.get(Product, product_id)
        return _to_info(product) if product is not None else None

    def require(self, product_id: UUID) -> ProductInfo:
        info = self.get(product_id)
        if info is None:
            raise ProductNotFoundError(str(product_id))
        return info

    def products_with_threshold(self) -> list[ProductInfo]:
        rows = self.session.execute(
            select(Product)
            .where(Product.min_stock_threshold.is_not(None))
            .order_by(Product.name)
        ).scalars()
        return [_to_info(p) for p in rows]
