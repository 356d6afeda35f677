"""
LedgerService -- the only writer of stock movements.

Responsibility:
    Creates, updates and deletes ledger rows while holding the
    non-negative-balance invariant.  Every mutation returns a LedgerChange
    carrying JSON snapshots of the row before and after, which the caller
    mirrors into the audit trail in the same transaction.

Architecture position:
    Kernel > Services.  Called by InventoryOrchestrator, ManufacturingService
    and AuditTrailService (for compensating reverts).

Invariants enforced:
    NON_NEGATIVE_BALANCE -- every operation that can lower a
        (product, location) balance re-reads that balance under a lock and
        rejects the write if the result would be below zero:
          create  -- when the new row is a reduction
          update  -- when the row's contribution at a location shrinks
          delete  -- when the removed row was an increase
    DERIVED_BALANCE -- balances are read from LedgerSelector, never cached.

Failure modes:
    - InvalidQuantityError / InvalidEntryTypeError / EmptyPatchError before
      any write.
    - ProductNotFoundError if the catalog does not know the product.
    - LedgerEntryNotFoundError on update/delete of a missing row.
    - NegativeInventoryError when the balance check fails.

Audit relevance:
    The service itself writes no audit rows; it hands back the before/after
    snapshots so that exactly one audit row is recorded per mutation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.catalog import ProductCatalog
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import LedgerEntryPatch, NewLedgerEntry
from inventory_kernel.domain.movements import (
    ZERO,
    balance_effect,
    parse_entry_type,
    require_positive,
    stored_quantity,
)
from inventory_kernel.domain.snapshots import snapshot_entry
from inventory_kernel.exceptions import (
    EmptyPatchError,
    LedgerEntryNotFoundError,
    NegativeInventoryError,
    ValidationError,
)
from inventory_kernel.invariants import KernelInvariant
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.audit_log import AuditAction
from inventory_kernel.models.ledger_entry import LedgerEntry
from inventory_kernel.selectors.ledger_selector import LedgerSelector
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.lock_service import LockService

logger = get_logger("services.ledger")


@dataclass(frozen=True)
class LedgerChange:
    """
    One applied ledger mutation.

    ``old_data`` is None for a create, ``new_data`` is None for a delete.
    ``product_ids`` lists every product whose balance may have moved.
    """

    action: AuditAction
    entry_id: UUID
    old_data: dict | None
    new_data: dict | None
    product_ids: tuple[UUID, ...]
    entry: LedgerEntry


class LedgerService(BaseService[LedgerEntry]):
    """
    Service for appending, correcting and removing ledger rows.

    Contract:
        All writes happen inside the caller's transaction; the service only
        flushes.  Balance checks and the writes they guard run under the
        (product, location) lock taken via LockService.

    Non-goals:
        - Does NOT write audit rows (see AuditTrailService).
        - Does NOT evaluate stock alerts (see AlertOutbox).
    """

    def __init__(
        self,
        session: Session,
        catalog: ProductCatalog,
        clock: Clock | None = None,
        selector: LedgerSelector | None = None,
        locks: LockService | None = None,
    ):
        super().__init__(session)
        self._catalog = catalog
        self._clock = clock or SystemClock()
        self._selector = selector or LedgerSelector(session, self._clock)
        self._locks = locks or LockService(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, entry_id: UUID) -> LedgerEntry:
        entry = self.session.get(LedgerEntry, entry_id)
        if entry is None:
            raise LedgerEntryNotFoundError(str(entry_id))
        return entry

    def _load_for_update(self, entry_id: UUID) -> LedgerEntry:
        entry = self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.id == entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            raise LedgerEntryNotFoundError(str(entry_id))
        return entry

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        new: NewLedgerEntry,
        actor_id: UUID,
        entry_id: UUID | None = None,
        created_at: datetime | None = None,
    ) -> LedgerChange:
        """
        Append one movement.

        Preconditions:
            ``new.quantity`` is the positive magnitude of the movement.

        Args:
            new: The movement to record.
            actor_id: Recorded as ``user_id``.
            entry_id: Pre-allocated id, used when sibling rows must
                reference this row before it is flushed.
            created_at: Explicit timestamp, used when a revert restores a
                deleted row.  Defaults to the clock.

        Raises:
            NegativeInventoryError: a reduction would leave the balance < 0.
        """
        entry_type = parse_entry_type(new.entry_type)
        magnitude = require_positive("quantity", new.quantity)
        self._catalog.require(new.product_id)

        stored = stored_quantity(entry_type, magnitude)
        effect = balance_effect(entry_type, stored)

        self._locks.acquire_stock([(new.product_id, new.location_id)])
        if effect < ZERO:
            available = self._selector.balance_for(new.product_id, new.location_id)
            self._check_result(new.product_id, new.location_id, available, available + effect)

        entry = LedgerEntry(
            id=entry_id or uuid4(),
            product_id=new.product_id,
            location_id=new.location_id,
            user_id=actor_id,
            quantity=stored,
            entry_type=entry_type.value,
            reference_id=new.reference_id,
            notes=new.notes,
            created_at=created_at or self._clock.now(),
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "ledger_entry_created",
            extra={
                "entry_id": str(entry.id),
                "product_id": str(entry.product_id),
                "location_id": str(entry.location_id),
                "entry_type": entry_type.value,
                "quantity": str(stored),
                "reference_id": entry.reference_id,
            },
        )
        return LedgerChange(
            action=AuditAction.CREATE,
            entry_id=entry.id,
            old_data=None,
            new_data=snapshot_entry(entry),
            product_ids=(entry.product_id,),
            entry=entry,
        )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(
        self,
        entry_id: UUID,
        patch: LedgerEntryPatch,
        actor_id: UUID,
    ) -> LedgerChange:
        """
        Apply a partial correction to one row.

        Only fields present in ``patch`` are touched.  When the row's
        contribution at any location shrinks (smaller inbound quantity,
        larger outbound quantity, inbound turned outbound, or the row moved
        away from a location), that location's balance is re-validated with
        the row excluded and the new contribution added back.
        """
        if patch.is_empty():
            raise EmptyPatchError(str(entry_id))

        entry = self._load_for_update(entry_id)
        before = snapshot_entry(entry)
        changes = patch.provided()

        new_type = parse_entry_type(changes.get("entry_type", entry.entry_type))
        old_type = parse_entry_type(entry.entry_type)
        if "quantity" in changes:
            magnitude = require_positive("quantity", changes["quantity"])
        else:
            # Re-derive the magnitude so a type change flips the stored sign
            magnitude = abs(entry.quantity)
        new_stored = stored_quantity(new_type, magnitude)
        new_location = changes.get("location_id", entry.location_id)
        if new_location is None:
            raise ValidationError("location_id cannot be cleared")

        old_contribution = {entry.location_id: balance_effect(old_type, entry.quantity)}
        new_contribution = {new_location: balance_effect(new_type, new_stored)}
        affected = sorted({entry.location_id, new_location}, key=str)

        self._locks.acquire_stock([(entry.product_id, loc) for loc in affected])
        for location_id in affected:
            old_part = old_contribution.get(location_id, ZERO)
            new_part = new_contribution.get(location_id, ZERO)
            if new_part < old_part:
                remaining = self._selector.balance_excluding(
                    entry.product_id, location_id, entry.id
                )
                self._check_result(
                    entry.product_id,
                    location_id,
                    remaining + old_part,
                    remaining + new_part,
                )

        entry.quantity = new_stored
        entry.entry_type = new_type.value
        entry.location_id = new_location
        if "notes" in changes:
            entry.notes = changes["notes"]
        if "reference_id" in changes:
            entry.reference_id = changes["reference_id"]
        self.session.flush()

        after = snapshot_entry(entry)
        logger.info(
            "ledger_entry_updated",
            extra={
                "entry_id": str(entry.id),
                "product_id": str(entry.product_id),
                "fields": sorted(changes),
                "actor_id": str(actor_id),
            },
        )
        return LedgerChange(
            action=AuditAction.UPDATE,
            entry_id=entry.id,
            old_data=before,
            new_data=after,
            product_ids=(entry.product_id,),
            entry=entry,
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, entry_id: UUID, actor_id: UUID) -> LedgerChange:
        """
        Remove one row.

        Removing a reduction only raises the balance and is unconditional.
        Removing an increase re-validates the remaining balance, since other
        deductions may depend on it.
        """
        entry = self._load_for_update(entry_id)
        before = snapshot_entry(entry)
        effect = entry.effect

        self._locks.acquire_stock([(entry.product_id, entry.location_id)])
        if effect > ZERO:
            remaining = self._selector.balance_excluding(
                entry.product_id, entry.location_id, entry.id
            )
            self._check_result(
                entry.product_id, entry.location_id, remaining + effect, remaining
            )

        self.session.delete(entry)
        self.session.flush()

        logger.info(
            "ledger_entry_deleted",
            extra={
                "entry_id": str(entry_id),
                "product_id": str(entry.product_id),
                "location_id": str(entry.location_id),
                "actor_id": str(actor_id),
            },
        )
        return LedgerChange(
            action=AuditAction.DELETE,
            entry_id=entry_id,
            old_data=before,
            new_data=None,
            product_ids=(entry.product_id,),
            entry=entry,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_result(
        self,
        product_id: UUID,
        location_id: UUID,
        available: Decimal,
        resulting: Decimal,
    ) -> None:
        if resulting >= ZERO:
            return
        logger.warning(
            "negative_inventory_rejected",
            extra={
                "invariant": KernelInvariant.NON_NEGATIVE_BALANCE.value,
                "product_id": str(product_id),
                "location_id": str(location_id),
                "available": str(available),
                "resulting": str(resulting),
            },
        )
        raise NegativeInventoryError(
            product_id=str(product_id),
            location_id=str(location_id),
            available=available,
            resulting=resulting,
        )
