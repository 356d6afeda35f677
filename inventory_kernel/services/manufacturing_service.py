"""
ManufacturingService -- expands one production event into ledger rows.

Responsibility:
    Turns "produce Q of parent P at location L" into one manufacturing_in
    row for P and one manufacturing_out row per direct component, all in the
    caller's transaction, each mirrored into the audit trail.

Architecture position:
    Kernel > Services.  Called by InventoryOrchestrator.  Composes
    FormulaGraphService (resolve), LedgerSelector (pre-validate),
    LedgerService (write) and AuditTrailService (mirror).

Steps:
    1. Resolve    -- read P's direct components.  No formula: write a
                     single manufacturing_in row and stop.
    2. Lock       -- take the stock locks of P and every component at L,
                     sorted, before any balance is read.
    3. Validate   -- for each component, required = per_unit * Q; if the
                     balance at L minus required is negative, raise
                     InsufficientComponentInventoryError for the FIRST short
                     component.  Nothing has been written at this point.
    4. Write      -- parent row first (id pre-allocated), then one row per
                     component with stored quantity -required.  Every row's
                     reference_id is str(parent row id).
    5. Mirror     -- one create audit row per ledger row.

Invariants enforced:
    MANUFACTURING_ATOMICITY -- validation precedes every write; a failure in
        step 4 or 5 propagates so the caller's transaction rolls back.
    REFERENCE_CORRELATION -- shared reference_id on all rows of the event.

Non-goals:
    Nested sub-assemblies are not expanded: a component that has its own
    formula is consumed from stock like any other component.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from inventory_kernel.domain.catalog import ProductCatalog
from inventory_kernel.domain.dtos import (
    LedgerEntryRecord,
    ManufacturingRequest,
    ManufacturingResult,
    NewLedgerEntry,
)
from inventory_kernel.domain.movements import EntryType, ZERO, require_positive
from inventory_kernel.exceptions import InsufficientComponentInventoryError
from inventory_kernel.invariants import KernelInvariant
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.formula import FormulaComponent
from inventory_kernel.selectors.ledger_selector import LedgerSelector
from inventory_kernel.services.audit_trail_service import AuditTrailService
from inventory_kernel.services.formula_service import FormulaGraphService
from inventory_kernel.services.ledger_service import LedgerChange, LedgerService
from inventory_kernel.services.lock_service import LockService

logger = get_logger("services.manufacturing")

PARENT_REASON = "Manufacturing production"
PARENT_REASON_NO_FORMULA = "Manufacturing production (no formula)"


def component_note(parent_product_id: UUID) -> str:
    return f"Auto-deducted for manufacturing product ID {parent_product_id}"


def component_reason(parent_product_id: UUID) -> str:
    return f"Auto-deducted component for manufacturing product ID {parent_product_id}"


class ManufacturingService:
    """
    Orchestrates one production event inside the caller's transaction.

    Contract:
        Either every ledger and audit row of the event is flushed, or an
        exception is raised before the first ledger write (validation) or
        propagates for the caller to roll back (storage).
    """

    def __init__(
        self,
        session: Session,
        catalog: ProductCatalog,
        ledger: LedgerService,
        formulas: FormulaGraphService,
        audit: AuditTrailService,
        selector: LedgerSelector,
        locks: LockService | None = None,
    ):
        self._session = session
        self._catalog = catalog
        self._ledger = ledger
        self._formulas = formulas
        self._audit = audit
        self._selector = selector
        self._locks = locks or LockService(session)

    def produce(self, request: ManufacturingRequest, actor_id: UUID) -> ManufacturingResult:
        """
        Run one production event.

        Raises:
            InvalidQuantityError: quantity_produced is not positive.
            ProductNotFoundError: the parent is unknown.
            InsufficientComponentInventoryError: a component is short.
        """
        quantity = require_positive("quantity_produced", request.quantity_produced)
        parent = self._catalog.require(request.parent_product_id)
        components = self._formulas.components(parent.id)

        parent_entry_id = uuid4()
        reference_id = str(parent_entry_id)

        if not components:
            change = self._write_parent(request, quantity, parent_entry_id, reference_id, actor_id)
            self._audit.record_change(
                change, actor_id, reason=self._parent_reason(request, PARENT_REASON_NO_FORMULA)
            )
            logger.info(
                "manufacturing_without_formula",
                extra={
                    "parent_product_id": str(parent.id),
                    "quantity_produced": str(quantity),
                    "entry_id": str(change.entry_id),
                },
            )
            return ManufacturingResult(
                parent_entry=LedgerEntryRecord.from_model(change.entry),
                component_entries=(),
                reference_id=reference_id,
                expanded=False,
                affected_product_ids=(parent.id,),
            )

        requirements = [(edge, edge.quantity_per_unit * quantity) for edge in components]

        self._locks.acquire_stock(
            [(parent.id, request.location_id)]
            + [(edge.component_product_id, request.location_id) for edge in components]
        )
        self._prevalidate(requirements, request.location_id)

        parent_change = self._write_parent(
            request, quantity, parent_entry_id, reference_id, actor_id
        )
        component_changes = [
            self._ledger.create(
                NewLedgerEntry(
                    product_id=edge.component_product_id,
                    location_id=request.location_id,
                    entry_type=EntryType.MANUFACTURING_OUT,
                    quantity=required,
                    reference_id=reference_id,
                    notes=component_note(parent.id),
                ),
                actor_id,
            )
            for edge, required in requirements
        ]

        self._audit.record_change(
            parent_change, actor_id, reason=self._parent_reason(request, PARENT_REASON)
        )
        for change in component_changes:
            self._audit.record_change(change, actor_id, reason=component_reason(parent.id))

        affected = (parent.id, *[edge.component_product_id for edge in components])
        logger.info(
            "manufacturing_completed",
            extra={
                "invariant": KernelInvariant.MANUFACTURING_ATOMICITY.value,
                "parent_product_id": str(parent.id),
                "quantity_produced": str(quantity),
                "location_id": str(request.location_id),
                "reference_id": reference_id,
                "component_count": len(component_changes),
            },
        )
        return ManufacturingResult(
            parent_entry=LedgerEntryRecord.from_model(parent_change.entry),
            component_entries=tuple(
                LedgerEntryRecord.from_model(c.entry) for c in component_changes
            ),
            reference_id=reference_id,
            expanded=True,
            affected_product_ids=affected,
        )

    def _prevalidate(
        self,
        requirements: list[tuple[FormulaComponent, Decimal]],
        location_id: UUID,
    ) -> None:
        for edge, required in requirements:
            available = self._selector.balance_for(edge.component_product_id, location_id)
            if available - required < ZERO:
                info = self._catalog.get(edge.component_product_id)
                name = info.name if info is not None else str(edge.component_product_id)
                logger.warning(
                    "manufacturing_component_short",
                    extra={
                        "parent_product_id": str(edge.parent_product_id),
                        "component_product_id": str(edge.component_product_id),
                        "location_id": str(location_id),
                        "required": str(required),
                        "available": str(available),
                    },
                )
                raise InsufficientComponentInventoryError(
                    component_id=str(edge.component_product_id),
                    component_name=name,
                    location_id=str(location_id),
                    required=required,
                    available=available,
                )

    def _write_parent(
        self,
        request: ManufacturingRequest,
        quantity: Decimal,
        entry_id: UUID,
        reference_id: str,
        actor_id: UUID,
    ) -> LedgerChange:
        return self._ledger.create(
            NewLedgerEntry(
                product_id=request.parent_product_id,
                location_id=request.location_id,
                entry_type=EntryType.MANUFACTURING_IN,
                quantity=quantity,
                reference_id=reference_id,
                notes=request.notes,
            ),
            actor_id,
            entry_id=entry_id,
        )

    @staticmethod
    def _parent_reason(request: ManufacturingRequest, base: str) -> str:
        if request.reference_id:
            return f"{base} (external reference {request.reference_id})"
        return base
