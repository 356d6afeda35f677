"""Selectors for the inventory kernel (read side)."""

from inventory_kernel.selectors.alert_selector import (
    AlertSelector,
    NotificationRecord,
    StockAlertRecord,
)
from inventory_kernel.selectors.audit_selector import AuditLogFilter, AuditSelector
from inventory_kernel.selectors.ledger_selector import LedgerEntryFilter, LedgerSelector

__all__ = [
    "AlertSelector",
    "AuditLogFilter",
    "AuditSelector",
    "LedgerEntryFilter",
    "LedgerSelector",
    "NotificationRecord",
    "StockAlertRecord",
]
