"""
Module: inventory_kernel.models.audit_log
Responsibility: ORM persistence for the ledger audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per ledger mutation, written in the mutation's transaction.
    - Rows are never modified except for ``is_flag`` (db/immutability.py).
    - ``entry_id`` is deliberately not a foreign key: the audit row of a
      delete outlives the ledger row it describes.

Payload shapes:
    create  -> new_data only
    update  -> old_data and new_data
    delete  -> old_data only
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Ledger mutation recorded by an audit row."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class AuditLogEntry(Base):
    """
    Before/after record of one ledger mutation.

    Contract:
        Written by AuditTrailService only.  Deleted only by
        ``delete_and_revert`` or an administrative purge.
    """

    __tablename__ = "inventory_audit_logs"
    __table_args__ = (
        Index("idx_audit_log_entry", "entry_id"),
        Index("idx_audit_log_action", "action"),
        Index("idx_audit_log_created", "created_at"),
        Index("idx_audit_log_user", "user_id"),
    )

    entry_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(20), nullable=False)

    old_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    new_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Review marker for human workflows, unrelated to revert
    is_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLogEntry {self.action} entry={self.entry_id}>"
