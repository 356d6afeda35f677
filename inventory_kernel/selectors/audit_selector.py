"""
Module: inventory_kernel.selectors.audit_selector
Responsibility: Read-only queries over the ledger audit trail.
Architecture position: Kernel > Selectors.  May import from models/, domain/
    and selectors/base.py.  MUST NOT import from services/.

The audit trail outlives the ledger rows it describes: ``entry_id`` is kept
after the row is deleted, so ``for_entry`` still returns the full history of
a deleted entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from inventory_kernel.domain.dtos import AuditLogRecord
from inventory_kernel.models.audit_log import AuditAction, AuditLogEntry
from inventory_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AuditLogFilter:
    action: AuditAction | None = None
    user_id: UUID | None = None
    entry_id: UUID | None = None
    is_flag: bool | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


class AuditSelector(BaseSelector[AuditLogEntry]):
    """Audit trail listings, newest first."""

    def get(self, audit_log_id: UUID) -> AuditLogRecord | None:
        log = self.session.get(AuditLogEntry, audit_log_id)
        return AuditLogRecord.from_model(log) if log is not None else None

    def for_entry(self, entry_id: UUID) -> list[AuditLogRecord]:
        """History of one ledger row, oldest first."""
        stmt = (
            select(AuditLogEntry)
            .where(AuditLogEntry.entry_id == entry_id)
            .order_by(AuditLogEntry.created_at, AuditLogEntry.id)
        )
        return [AuditLogRecord.from_model(log) for log in self.session.execute(stmt).scalars()]

    def list_logs(
        self,
        filters: AuditLogFilter | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditLogRecord]:
        f = filters or AuditLogFilter()
        stmt = select(AuditLogEntry)
        if f.action is not None:
            stmt = stmt.where(AuditLogEntry.action == AuditAction(f.action).value)
        if f.user_id is not None:
            stmt = stmt.where(AuditLogEntry.user_id == f.user_id)
        if f.entry_id is not None:
            stmt = stmt.where(AuditLogEntry.entry_id == f.entry_id)
        if f.is_flag is not None:
            stmt = stmt.where(AuditLogEntry.is_flag.is_(f.is_flag))
        if f.date_from is not None:
            stmt = stmt.where(AuditLogEntry.created_at >= f.date_from)
        if f.date_to is not None:
            stmt = stmt.where(AuditLogEntry.created_at <= f.date_to)

        stmt = (
            stmt.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id)
            .limit(limit)
            .offset(offset)
        )
        return [AuditLogRecord.from_model(log) for log in self.session.execute(stmt).scalars()]
