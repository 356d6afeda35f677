"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The ledger is append-style: a movement is a fact.  Its quantity, type,
location and notes may be corrected through LedgerService.update (and that
correction is itself audited), but WHO recorded it, WHICH product it moved
and WHEN it was recorded never change.  Audit rows are stricter still: only
the human review flag may change.

SQLAlchemy fires ``before_update`` before the SQL is sent.  The listeners
below inspect attribute history and raise ImmutabilityViolationError when a
frozen column is dirty, which aborts the flush and leaves the database
untouched.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | Frozen columns                         | Mutable columns
----------------|----------------------------------------|---------------------------
LedgerEntry     | product_id, user_id, created_at        | quantity, entry_type,
                |                                        | location_id, notes,
                |                                        | reference_id
AuditLogEntry   | everything except is_flag              | is_flag

Deletes are not blocked here: ledger rows are deleted by audited delete and
revert, and audit rows by delete_and_revert.

===============================================================================
USAGE
===============================================================================

    from inventory_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()   # create_tables() does this

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

LEDGER_FROZEN_FIELDS = ("product_id", "user_id", "created_at")
AUDIT_MUTABLE_FIELDS = frozenset({"is_flag"})


def _changed_fields(target, names) -> list[str]:
    state = inspect(target)
    return [name for name in names if state.attrs[name].history.has_changes()]


def _block(entity_type: str, target, fields: list[str]) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "fields": fields,
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"fields {', '.join(fields)} cannot be modified",
    )


def _check_ledger_entry_immutability(mapper, connection, target):
    changed = _changed_fields(target, LEDGER_FROZEN_FIELDS)
    if changed:
        _block("LedgerEntry", target, changed)


def _check_audit_log_immutability(mapper, connection, target):
    names = [attr.key for attr in mapper.column_attrs if attr.key not in AUDIT_MUTABLE_FIELDS]
    changed = _changed_fields(target, names)
    if changed:
        _block("AuditLogEntry", target, changed)


def register_immutability_listeners() -> None:
    """Register the before_update listeners (idempotent)."""
    from inventory_kernel.models.audit_log import AuditLogEntry
    from inventory_kernel.models.ledger_entry import LedgerEntry

    if not event.contains(LedgerEntry, "before_update", _check_ledger_entry_immutability):
        event.listen(LedgerEntry, "before_update", _check_ledger_entry_immutability)
    if not event.contains(AuditLogEntry, "before_update", _check_audit_log_immutability):
        event.listen(AuditLogEntry, "before_update", _check_audit_log_immutability)


def unregister_immutability_listeners() -> None:
    """
    Remove the listeners.

    WARNING: Only use this in tests that need to write a forbidden change.
    """
    from inventory_kernel.models.audit_log import AuditLogEntry
    from inventory_kernel.models.ledger_entry import LedgerEntry

    if event.contains(LedgerEntry, "before_update", _check_ledger_entry_immutability):
        event.remove(LedgerEntry, "before_update", _check_ledger_entry_immutability)
    if event.contains(AuditLogEntry, "before_update", _check_audit_log_immutability):
        event.remove(AuditLogEntry, "before_update", _check_audit_log_immutability)
