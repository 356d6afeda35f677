"""Services for the inventory kernel (write side)."""

from inventory_kernel.services.alert_outbox import AlertDispatcher, AlertOutbox, DispatchReport
from inventory_kernel.services.alert_service import AlertEvaluator
from inventory_kernel.services.audit_trail_service import AuditTrailService
from inventory_kernel.services.formula_service import FormulaGraphService
from inventory_kernel.services.inventory_orchestrator import InventoryOrchestrator, KernelServices
from inventory_kernel.services.ledger_service import LedgerChange, LedgerService
from inventory_kernel.services.lock_service import LockService
from inventory_kernel.services.manufacturing_service import ManufacturingService
from inventory_kernel.services.product_catalog import SqlProductCatalog

__all__ = [
    "AlertDispatcher",
    "AlertEvaluator",
    "AlertOutbox",
    "AuditTrailService",
    "DispatchReport",
    "FormulaGraphService",
    "InventoryOrchestrator",
    "KernelServices",
    "LedgerChange",
    "LedgerService",
    "LockService",
    "ManufacturingService",
    "SqlProductCatalog",
]
