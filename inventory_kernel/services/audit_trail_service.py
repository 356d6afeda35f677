"""
AuditTrailService -- records ledger mutations and reverts them on request.

Responsibility:
    Appends one AuditLogEntry per ledger mutation (same transaction) and
    implements ``delete_and_revert``: optionally replay the logical inverse
    of the recorded mutation through LedgerService, then delete the audit
    row, as one atomic unit.

Architecture position:
    Kernel > Services.  Called by InventoryOrchestrator and
    ManufacturingService.  Uses LedgerService for compensating writes, so
    reverts go through the same validation as any other mutation.

Invariants enforced:
    AUDIT_COMPLETENESS -- ``record`` enforces payload shape per action:
        create -> new_data only, update -> both, delete -> old_data only.
    AUDIT_IMMUTABILITY -- only ``is_flag`` is ever changed (set_flag).
    Revert atomicity -- the inverse runs inside a savepoint; if it fails the
        savepoint is rolled back, the audit row stays, and RevertFailedError
        is raised with the original error chained.

Inverse of each action:
    create -> delete the ledger row it created (normal delete validation)
    update -> apply old_data back onto the row as a patch
    delete -> re-insert a row from old_data (normal create validation;
              product, location, actor, reference, notes and timestamp are
              restored, the id is new)

Failure modes:
    - AuditLogNotFoundError / ReferenceNotFoundError.
    - RevertFailedError when the inverse is rejected or a snapshot no longer
      deserialises to a valid ledger row.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import LedgerEntryPatch, NewLedgerEntry, RevertResult
from inventory_kernel.domain.movements import EntryType
from inventory_kernel.domain.snapshots import InvalidSnapshotError, parse_snapshot
from inventory_kernel.exceptions import (
    AuditLogNotFoundError,
    InventoryKernelError,
    ReferenceNotFoundError,
    RevertFailedError,
    ValidationError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.audit_log import AuditAction, AuditLogEntry
from inventory_kernel.models.ledger_entry import LedgerEntry
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.ledger_service import LedgerChange, LedgerService

logger = get_logger("services.audit_trail")


class AuditTrailService(BaseService[AuditLogEntry]):
    """
    Service for the ledger audit trail.

    Contract:
        ``record`` never flushes a row whose payload shape contradicts its
        action.  ``delete_and_revert`` either applies the inverse AND deletes
        the row, or changes nothing.

    Non-goals:
        - Does NOT decide who may revert; callers gate that on the actor's
          privileges before calling.
    """

    def __init__(
        self,
        session: Session,
        ledger: LedgerService,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._ledger = ledger
        self._clock = clock or SystemClock()

    # =========================================================================
    # Recording
    # =========================================================================

    def record(
        self,
        action: AuditAction | str,
        entry_id: UUID,
        actor_id: UUID,
        old_data: dict | None = None,
        new_data: dict | None = None,
        reason: str | None = None,
    ) -> AuditLogEntry:
        """Append one audit row for a ledger mutation."""
        try:
            action = AuditAction(action)
        except ValueError:
            raise ValidationError(f"Unknown audit action: {action!r}") from None

        if action is AuditAction.CREATE and (new_data is None or old_data is not None):
            raise ValidationError("create audit rows carry new_data only")
        if action is AuditAction.DELETE and (old_data is None or new_data is not None):
            raise ValidationError("delete audit rows carry old_data only")
        if action is AuditAction.UPDATE and (old_data is None or new_data is None):
            raise ValidationError("update audit rows carry old_data and new_data")

        log = AuditLogEntry(
            entry_id=entry_id,
            action=action.value,
            old_data=old_data,
            new_data=new_data,
            user_id=actor_id,
            reason=reason,
            is_flag=False,
            created_at=self._clock.now(),
        )
        self.session.add(log)
        self.session.flush()

        logger.info(
            "audit_log_recorded",
            extra={
                "audit_log_id": str(log.id),
                "action": action.value,
                "entry_id": str(entry_id),
                "actor_id": str(actor_id),
            },
        )
        return log

    def record_change(
        self,
        change: LedgerChange,
        actor_id: UUID,
        reason: str | None = None,
    ) -> AuditLogEntry:
        """Record the audit row for a LedgerService result."""
        return self.record(
            change.action,
            change.entry_id,
            actor_id,
            old_data=change.old_data,
            new_data=change.new_data,
            reason=reason,
        )

    def record_create(
        self, entry_id: UUID, actor_id: UUID, new_data: dict, reason: str | None = None
    ) -> AuditLogEntry:
        return self.record(AuditAction.CREATE, entry_id, actor_id, new_data=new_data, reason=reason)

    def record_update(
        self,
        entry_id: UUID,
        actor_id: UUID,
        old_data: dict,
        new_data: dict,
        reason: str | None = None,
    ) -> AuditLogEntry:
        return self.record(
            AuditAction.UPDATE, entry_id, actor_id, old_data=old_data, new_data=new_data, reason=reason
        )

    def record_delete(
        self, entry_id: UUID, actor_id: UUID, old_data: dict, reason: str | None = None
    ) -> AuditLogEntry:
        return self.record(AuditAction.DELETE, entry_id, actor_id, old_data=old_data, reason=reason)

    # =========================================================================
    # Flagging
    # =========================================================================

    def get(self, audit_log_id: UUID) -> AuditLogEntry:
        log = self.session.get(AuditLogEntry, audit_log_id)
        if log is None:
            raise AuditLogNotFoundError(str(audit_log_id))
        return log

    def set_flag(self, audit_log_id: UUID, is_flag: bool) -> AuditLogEntry:
        """Toggle the review marker.  Never touches the ledger."""
        log = self.get(audit_log_id)
        log.is_flag = bool(is_flag)
        self.session.flush()
        logger.info(
            "audit_log_flagged",
            extra={"audit_log_id": str(audit_log_id), "is_flag": log.is_flag},
        )
        return log

    # =========================================================================
    # Delete and revert
    # =========================================================================

    def delete_and_revert(
        self,
        audit_log_id: UUID,
        actor_id: UUID,
        revert: bool,
    ) -> RevertResult:
        """
        Delete one audit row, first replaying its inverse when ``revert``.

        The compensating mutation is itself recorded in the audit trail,
        with a reason naming the reverted row.

        Raises:
            AuditLogNotFoundError: no such audit row.
            RevertFailedError: the inverse could not be applied; nothing
                was changed.
        """
        log = self._load_for_update(audit_log_id)
        action = AuditAction(log.action)
        entry_id = log.entry_id

        with LogContext.bind(audit_log_id=str(audit_log_id)):
            change: LedgerChange | None = None
            if revert:
                savepoint = self.session.begin_nested()
                try:
                    change = self._apply_inverse(log, action, actor_id)
                    self.record_change(
                        change,
                        actor_id,
                        reason=f"Revert of audit log {audit_log_id} ({action.value})",
                    )
                    savepoint.commit()
                    logger.info(
                        "revert_applied",
                        extra={
                            "audit_log_id": str(audit_log_id),
                            "action": action.value,
                            "compensation": change.action.value,
                            "compensating_entry_id": str(change.entry_id),
                        },
                    )
                except InvalidSnapshotError as exc:
                    savepoint.rollback()
                    self._log_revert_failure(audit_log_id, action, exc)
                    raise RevertFailedError(
                        str(audit_log_id), action.value, f"invalid snapshot: {exc}"
                    ) from exc
                except InventoryKernelError as exc:
                    savepoint.rollback()
                    self._log_revert_failure(audit_log_id, action, exc)
                    raise RevertFailedError(str(audit_log_id), action.value, str(exc)) from exc

            # The savepoint rollback above expires the row; it is deleted only
            # once the inverse has succeeded.
            self.session.delete(log)
            self.session.flush()

            logger.info(
                "audit_log_deleted",
                extra={
                    "audit_log_id": str(audit_log_id),
                    "action": action.value,
                    "entry_id": str(entry_id),
                    "reverted": revert,
                    "actor_id": str(actor_id),
                },
            )

        return RevertResult(
            audit_log_id=audit_log_id,
            action=action.value,
            entry_id=entry_id,
            reverted=revert,
            compensating_entry_id=change.entry_id if change is not None else None,
            affected_product_ids=change.product_ids if change is not None else (),
        )

    def revert_event(self, reference_id: str, actor_id: UUID) -> list[RevertResult]:
        """
        Revert every row written by one correlated event (e.g. a production).

        Component deductions are reverted before the parent row so that
        removing the parent's inbound quantity is validated against a
        balance that no longer includes the deductions.  All-or-nothing.
        """
        entries = list(
            self.session.execute(
                select(LedgerEntry).where(LedgerEntry.reference_id == reference_id)
            ).scalars()
        )
        entry_ids = [e.id for e in entries]
        logs = []
        if entry_ids:
            logs = list(
                self.session.execute(
                    select(AuditLogEntry).where(
                        AuditLogEntry.entry_id.in_(entry_ids),
                        AuditLogEntry.action == AuditAction.CREATE.value,
                    )
                ).scalars()
            )
        if not logs:
            raise ReferenceNotFoundError(reference_id)

        kinds = {e.id: e.entry_type for e in entries}

        def order(log: AuditLogEntry) -> tuple[int, str]:
            is_parent = kinds.get(log.entry_id) != EntryType.MANUFACTURING_OUT.value
            return (1 if is_parent else 0, str(log.entry_id))

        savepoint = self.session.begin_nested()
        try:
            results = [
                self.delete_and_revert(log.id, actor_id, revert=True)
                for log in sorted(logs, key=order)
            ]
            savepoint.commit()
        except InventoryKernelError:
            savepoint.rollback()
            raise

        logger.info(
            "event_reverted",
            extra={
                "reference_id": reference_id,
                "reverted_rows": len(results),
                "actor_id": str(actor_id),
            },
        )
        return results

    # =========================================================================
    # Internals
    # =========================================================================

    def _load_for_update(self, audit_log_id: UUID) -> AuditLogEntry:
        log = self.session.execute(
            select(AuditLogEntry)
            .where(AuditLogEntry.id == audit_log_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if log is None:
            raise AuditLogNotFoundError(str(audit_log_id))
        return log

    def _apply_inverse(
        self,
        log: AuditLogEntry,
        action: AuditAction,
        actor_id: UUID,
    ) -> LedgerChange:
        if action is AuditAction.CREATE:
            return self._ledger.delete(log.entry_id, actor_id)

        snapshot = parse_snapshot(log.old_data)

        if action is AuditAction.UPDATE:
            patch = LedgerEntryPatch(
                quantity=snapshot.magnitude,
                entry_type=snapshot.entry_type,
                location_id=snapshot.location_id,
                notes=snapshot.notes,
                reference_id=snapshot.reference_id,
            )
            return self._ledger.update(log.entry_id, patch, actor_id)

        restored = NewLedgerEntry(
            product_id=snapshot.product_id,
            location_id=snapshot.location_id,
            entry_type=snapshot.entry_type,
            quantity=snapshot.magnitude,
            reference_id=snapshot.reference_id,
            notes=snapshot.notes,
        )
        return self._ledger.create(
            restored,
            snapshot.user_id or actor_id,
            created_at=snapshot.created_at,
        )

    def _log_revert_failure(self, audit_log_id: UUID, action: AuditAction, exc: Exception) -> None:
        logger.warning(
            "revert_failed",
            extra={
                "audit_log_id": str(audit_log_id),
                "action": action.value,
                "error_type": type(exc).__name__,
                "error_code": getattr(exc, "code", None),
                "detail": str(exc),
            },
        )
