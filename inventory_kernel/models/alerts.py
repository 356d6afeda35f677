"""
Module: inventory_kernel.models.alerts
Responsibility: ORM persistence for low-stock alerts and their notifications.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced (by AlertEvaluator):
    - At most one unresolved StockAlert per product.
    - At most one unread Notification per open alert.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString


class StockAlert(Base):
    """A product's balance fell to or below its minimum threshold."""

    __tablename__ = "stock_alerts"
    __table_args__ = (
        Index("idx_stock_alert_product_open", "product_id", "is_resolved"),
    )

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Last evaluated balance, refreshed while the alert stays open
    current_stock: Mapped[Decimal] = mapped_column(nullable=False)

    min_threshold: Mapped[Decimal] = mapped_column(nullable=False)

    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        state = "resolved" if self.is_resolved else "open"
        return f"<StockAlert {state} product={self.product_id} {self.current_stock}/{self.min_threshold}>"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notification_product_unread", "product_id", "is_read"),
        Index("idx_notification_alert", "stock_alert_id"),
    )

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    stock_alert_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_alerts.id", ondelete="CASCADE"),
        nullable=False,
    )

    message: Mapped[str] = mapped_column(String(500), nullable=False)

    current_stock: Mapped[Decimal] = mapped_column(nullable=False)

    min_threshold: Mapped[Decimal] = mapped_column(nullable=False)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
