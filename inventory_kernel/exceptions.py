"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (an HTTP layer, a batch importer, a CLI) must map
failures to their own transport codes without parsing message strings.
Every error therefore has:
  1. a TYPED exception class (catch by type, not message)
  2. a stable ``kind`` shared by its whole category (NotFound, Validation, ...)
  3. a ``code`` attribute unique to the concrete class (machine-readable)
  4. structured DATA as attributes (ids, quantities) next to a readable message

Example:
    try:
        orchestrator.manufacture(request)
    except InsufficientComponentInventoryError as e:
        respond(409, code=e.code, component=e.component_id, short=e.shortfall)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- NotFoundError                      kind = NotFound
    |   +-- LedgerEntryNotFoundError
    |   +-- AuditLogNotFoundError
    |   +-- FormulaComponentNotFoundError
    |   +-- ProductNotFoundError
    |   +-- ReferenceNotFoundError
    |   +-- StockAlertNotFoundError
    |   +-- NotificationNotFoundError
    |
    +-- ValidationError                    kind = Validation
    |   +-- InvalidQuantityError
    |   +-- InvalidEntryTypeError
    |   +-- EmptyPatchError
    |   +-- RawMaterialFormulaError
    |
    +-- InventoryError
    |   +-- NegativeInventoryError         kind = NegativeInventory
    |   +-- InsufficientComponentInventoryError
    |                                      kind = InsufficientComponentInventory
    |
    +-- FormulaGraphError
    |   +-- SelfReferenceError             kind = SelfReference
    |   +-- CircularDependencyError        kind = CircularDependency
    |   +-- FormulaDepthExceededError      kind = FormulaDepthExceeded
    |   +-- ComponentAlreadyExistsError    kind = ComponentAlreadyExists
    |
    +-- RevertFailedError                  kind = RevertFailed
    +-- StorageFailureError                kind = StorageFailure
    +-- ImmutabilityViolationError         kind = Immutability

===============================================================================
PROPAGATION
===============================================================================

Validation and graph errors are raised before any write.  Errors raised
inside an orchestrated operation roll back the whole transaction.
StorageFailureError wraps SQLAlchemy errors and is never retried here.
Alert evaluation failures are logged by the dispatcher and never raised.
"""

from decimal import Decimal


def _qty(value) -> str:
    """Render a quantity without trailing zeros or exponent notation."""
    if isinstance(value, Decimal) and value.is_finite():
        return f"{value.normalize():f}"
    return str(value)


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification and inherit a ``kind`` from their category.
    """

    code: str = "INVENTORY_KERNEL_ERROR"
    kind: str = "InventoryKernel"


# Not found


class NotFoundError(InventoryKernelError):
    """A referenced record does not exist."""

    code: str = "NOT_FOUND"
    kind: str = "NotFound"


class LedgerEntryNotFoundError(NotFoundError):
    """Ledger entry with given ID was not found."""

    code: str = "LEDGER_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Ledger entry not found: {entry_id}")


class AuditLogNotFoundError(NotFoundError):
    """Audit log row with given ID was not found."""

    code: str = "AUDIT_LOG_NOT_FOUND"

    def __init__(self, audit_log_id: str):
        self.audit_log_id = audit_log_id
        super().__init__(f"Audit log not found: {audit_log_id}")


class FormulaComponentNotFoundError(NotFoundError):
    """No formula edge exists between the given parent and component."""

    code: str = "FORMULA_COMPONENT_NOT_FOUND"

    def __init__(self, parent_product_id: str, component_product_id: str):
        self.parent_product_id = parent_product_id
        self.component_product_id = component_product_id
        super().__init__(
            f"Formula component not found: {component_product_id} "
            f"is not a component of {parent_product_id}"
        )


class ProductNotFoundError(NotFoundError):
    """Product is unknown to the product catalog."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class ReferenceNotFoundError(NotFoundError):
    """No audited ledger rows carry the given reference id."""

    code: str = "REFERENCE_NOT_FOUND"

    def __init__(self, reference_id: str):
        self.reference_id = reference_id
        super().__init__(f"No audited ledger entries for reference: {reference_id}")


class StockAlertNotFoundError(NotFoundError):
    code: str = "STOCK_ALERT_NOT_FOUND"

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Stock alert not found: {alert_id}")


class NotificationNotFoundError(NotFoundError):
    code: str = "NOTIFICATION_NOT_FOUND"

    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification not found: {notification_id}")


# Validation


class ValidationError(InventoryKernelError):
    """Malformed or missing input, detected before any write."""

    code: str = "VALIDATION_ERROR"
    kind: str = "Validation"


class InvalidQuantityError(ValidationError):
    """Quantity must be a strictly positive decimal."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = value
        super().__init__(f"{field} must be a positive number, got {value!r}")


class InvalidEntryTypeError(ValidationError):
    code: str = "INVALID_ENTRY_TYPE"

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Unknown ledger entry type: {value!r}")


class EmptyPatchError(ValidationError):
    """An update was requested without any field to change."""

    code: str = "EMPTY_PATCH"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"No fields to update for ledger entry {entry_id}")


class RawMaterialFormulaError(ValidationError):
    """Raw materials are purchased, never manufactured from components."""

    code: str = "RAW_MATERIAL_FORMULA"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(
            f"Product {product_id} is a raw material and cannot carry a formula"
        )


# Inventory


class InventoryError(InventoryKernelError):
    """Base exception for stock-level violations."""

    code: str = "INVENTORY_ERROR"


class NegativeInventoryError(InventoryError):
    """
    The operation would drive a product's balance below zero.

    Raised by create/update/delete validation after the balance has been
    recomputed under lock.
    """

    code: str = "NEGATIVE_INVENTORY"
    kind: str = "NegativeInventory"

    def __init__(
        self,
        product_id: str,
        location_id: str,
        available: Decimal,
        resulting: Decimal,
    ):
        self.product_id = product_id
        self.location_id = location_id
        self.available = available
        self.resulting = resulting
        super().__init__(
            f"Negative inventory not allowed for product {product_id} at "
            f"location {location_id}: available {_qty(available)}, "
            f"resulting balance would be {_qty(resulting)}"
        )


class InsufficientComponentInventoryError(InventoryError):
    """Manufacturing pre-validation failed for a named component."""

    code: str = "INSUFFICIENT_COMPONENT_INVENTORY"
    kind: str = "InsufficientComponentInventory"

    def __init__(
        self,
        component_id: str,
        component_name: str,
        location_id: str,
        required: Decimal,
        available: Decimal,
    ):
        self.component_id = component_id
        self.component_name = component_name
        self.location_id = location_id
        self.required = required
        self.available = available
        self.shortfall = required - available
        super().__init__(
            f"Insufficient inventory for component {component_name}. "
            f"Required: {_qty(required)}, Available: {_qty(available)}, "
            f"Short by: {_qty(self.shortfall)}"
        )


# Formula graph


class FormulaGraphError(InventoryKernelError):
    """Base exception for bill-of-materials graph violations."""

    code: str = "FORMULA_GRAPH_ERROR"


class SelfReferenceError(FormulaGraphError):
    """A product cannot be a component of itself."""

    code: str = "SELF_REFERENCE"
    kind: str = "SelfReference"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(
            f"Self reference not allowed: product {product_id} cannot be "
            "a component of itself"
        )


class CircularDependencyError(FormulaGraphError):
    """
    Adding this edge would make a product an ancestor of itself.

    ``path`` lists the product ids from the new component back to the
    parent through existing edges, closing the cycle.
    """

    code: str = "CIRCULAR_DEPENDENCY"
    kind: str = "CircularDependency"

    def __init__(self, parent_product_id: str, component_product_id: str, path: list[str]):
        self.parent_product_id = parent_product_id
        self.component_product_id = component_product_id
        self.path = path
        path_str = " -> ".join([parent_product_id, *path])
        super().__init__(f"Circular dependency detected: {path_str}")


class FormulaDepthExceededError(FormulaGraphError):
    """The new edge would make a component chain longer than the ceiling."""

    code: str = "FORMULA_DEPTH_EXCEEDED"
    kind: str = "FormulaDepthExceeded"

    def __init__(
        self,
        parent_product_id: str,
        component_product_id: str,
        depth: int,
        max_depth: int,
    ):
        self.parent_product_id = parent_product_id
        self.component_product_id = component_product_id
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Adding {component_product_id} to {parent_product_id} creates a "
            f"component chain of depth {depth}, ceiling is {max_depth}"
        )


class ComponentAlreadyExistsError(FormulaGraphError):
    code: str = "COMPONENT_ALREADY_EXISTS"
    kind: str = "ComponentAlreadyExists"

    def __init__(self, parent_product_id: str, component_product_id: str):
        self.parent_product_id = parent_product_id
        self.component_product_id = component_product_id
        super().__init__(
            f"Component {component_product_id} already exists in the "
            f"formula of {parent_product_id}"
        )


# Revert


class RevertFailedError(InventoryKernelError):
    """
    The inverse of an audited mutation could not be applied.

    The underlying kernel error, when there is one, is chained as
    ``__cause__``.  Nothing is deleted when this is raised.
    """

    code: str = "REVERT_FAILED"
    kind: str = "RevertFailed"

    def __init__(self, audit_log_id: str, action: str, reason: str):
        self.audit_log_id = audit_log_id
        self.action = action
        self.reason = reason
        super().__init__(
            f"Failed to revert {action} recorded by audit log "
            f"{audit_log_id}: {reason}"
        )


# Storage


class StorageFailureError(InventoryKernelError):
    """Underlying transaction or connection error, not otherwise classified."""

    code: str = "STORAGE_FAILURE"
    kind: str = "StorageFailure"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")


# Immutability


class ImmutabilityViolationError(InventoryKernelError):
    """Attempted to modify a field that is frozen after insert."""

    code: str = "IMMUTABILITY_VIOLATION"
    kind: str = "Immutability"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
