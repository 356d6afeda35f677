"""
Product catalog contract.

The kernel does not own product records.  It only needs to know whether a
product exists, what category it belongs to (raw materials may not carry a
formula) and, for alerting, its minimum stock threshold.  Any object that
satisfies ``ProductCatalog`` can be injected; ``SqlProductCatalog`` in
``inventory_kernel.services.product_catalog`` reads the shared ``products``
table.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol, runtime_checkable
from uuid import UUID


class ProductCategory(str, Enum):
    RAW = "raw"
    SEMI = "semi"
    FINISHED = "finished"


class SourceType(str, Enum):
    MANUFACTURING = "manufacturing"
    TRADING = "trading"


@dataclass(frozen=True)
class ProductInfo:
    """Read-only view of a catalog product."""

    id: UUID
    name: str
    category: ProductCategory
    unit: str
    source_type: SourceType | None = None
    min_stock_threshold: Decimal | None = None

    @property
    def can_carry_formula(self) -> bool:
        return self.category is not ProductCategory.RAW


@runtime_checkable
class ProductCatalog(Protocol):
    """Lookup interface the kernel consumes."""

    def get(self, product_id: UUID) -> ProductInfo | None:
        """Return the product, or None if it does not exist."""
        ...

    def require(self, product_id: UUID) -> ProductInfo:
        """Return the product or raise ProductNotFoundError."""
        ...

    def products_with_threshold(self) -> list[ProductInfo]:
        """All products that have a minimum stock threshold configured."""
        ...
