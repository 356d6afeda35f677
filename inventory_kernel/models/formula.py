"""
Module: inventory_kernel.models.formula
Responsibility: ORM persistence for bill-of-materials edges.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - No self-loop: CHECK parent_product_id <> component_product_id.
    - At most one direct edge per (parent, component) pair (unique index).
    - Acyclicity of the transitive closure is enforced by FormulaGraphService,
      which a single-row constraint cannot express.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString


class FormulaComponent(Base):
    """Edge parent -> component: one unit of parent consumes ``quantity_per_unit``."""

    __tablename__ = "formula_components"
    __table_args__ = (
        UniqueConstraint(
            "parent_product_id",
            "component_product_id",
            name="uq_formula_edge",
        ),
        CheckConstraint(
            "parent_product_id <> component_product_id",
            name="ck_formula_no_self_reference",
        ),
        Index("idx_formula_component", "component_product_id"),
    )

    parent_product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    component_product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    quantity_per_unit: Mapped[Decimal] = mapped_column(nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<FormulaComponent {self.parent_product_id} -> "
            f"{self.component_product_id} x{self.quantity_per_unit}>"
        )
