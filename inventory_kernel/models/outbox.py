"""
Module: inventory_kernel.models.outbox
Responsibility: Post-commit work queue for alert evaluation.
Architecture position: Kernel > Models.  May import from db/base.py only.

Rows are inserted in the same transaction as the ledger mutation that
affects a product, so the work item exists if and only if the mutation
committed.  AlertDispatcher processes pending rows after commit and stamps
``processed_at``; a failed evaluation leaves the row pending with
``attempts`` and ``last_error`` updated, giving at-least-once delivery.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString


class AlertOutboxEntry(Base):
    __tablename__ = "alert_outbox"
    __table_args__ = (
        Index("idx_alert_outbox_pending", "processed_at", "created_at"),
    )

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Operation that enqueued the work, e.g. "create_entry", "manufacture"
    source_operation: Mapped[str] = mapped_column(String(50), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_error: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    @property
    def is_pending(self) -> bool:
        return self.processed_at is None
