"""
Module: inventory_kernel.models.product
Responsibility: ORM mapping of the shared ``products`` reference table.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain enums only.

The product catalog belongs to the surrounding application.  The kernel maps
the table so that SqlProductCatalog can read it and tests can seed it; no
kernel service writes to it.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base
from inventory_kernel.domain.catalog import ProductCategory, SourceType


class Product(Base):
    """Catalog product (read-only from the kernel's point of view)."""

    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    category: Mapped[ProductCategory] = mapped_column(String(20), nullable=False)

    source_type: Mapped[SourceType | None] = mapped_column(String(20), nullable=True)

    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="pcs")

    # Alerting threshold; NULL means the product is never alerted on
    min_stock_threshold: Mapped[Decimal | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Product {self.name} ({self.category})>"
