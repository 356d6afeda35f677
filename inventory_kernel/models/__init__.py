"""ORM models for the inventory kernel."""

from inventory_kernel.models.alerts import Notification, StockAlert
from inventory_kernel.models.audit_log import AuditAction, AuditLogEntry
from inventory_kernel.models.formula import FormulaComponent
from inventory_kernel.models.ledger_entry import LedgerEntry
from inventory_kernel.models.lock import KernelLock
from inventory_kernel.models.outbox import AlertOutboxEntry
from inventory_kernel.models.product import Product

__all__ = [
    "AlertOutboxEntry",
    "AuditAction",
    "AuditLogEntry",
    "FormulaComponent",
    "KernelLock",
    "LedgerEntry",
    "Notification",
    "Product",
    "StockAlert",
]
