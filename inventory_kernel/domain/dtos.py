"""
Module: inventory_kernel.domain.dtos
Responsibility: Frozen value objects that cross the kernel boundary -- the
    inputs of ledger and manufacturing commands and the plain records
    returned to callers.
Architecture position: Kernel > Domain.  Pure data, zero I/O.  Record
    ``from_model`` constructors read attributes only and never import ORM
    classes.

Records expose the persisted field names unchanged (``product_id``,
``entry_type``, ``reference_id``, ...) so an outer layer can serialise
them directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from inventory_kernel.domain.movements import EntryType, parse_entry_type


class _Unset:
    """Marker for a patch field that was not supplied."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NewLedgerEntry:
    """
    A movement to append to the ledger.

    ``quantity`` is always the positive magnitude; direction comes from
    ``entry_type``.
    """

    product_id: UUID
    location_id: UUID
    entry_type: EntryType
    quantity: Decimal
    reference_id: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class LedgerEntryPatch:
    """
    Partial update of a ledger entry.

    Fields left as UNSET are not touched.  ``notes`` and ``reference_id``
    may be set to None explicitly to clear them.
    """

    quantity: Decimal | None = UNSET
    entry_type: EntryType | None = UNSET
    location_id: UUID | None = UNSET
    notes: str | None = UNSET
    reference_id: str | None = UNSET

    def provided(self) -> dict[str, Any]:
        return {
            name: value
            for name, value in (
                ("quantity", self.quantity),
                ("entry_type", self.entry_type),
                ("location_id", self.location_id),
                ("notes", self.notes),
                ("reference_id", self.reference_id),
            )
            if value is not UNSET
        }

    def is_empty(self) -> bool:
        return not self.provided()


@dataclass(frozen=True)
class ManufacturingRequest:
    """One production event: make ``quantity_produced`` of a parent at a location."""

    parent_product_id: UUID
    quantity_produced: Decimal
    location_id: UUID
    notes: str | None = None
    reference_id: str | None = None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerEntryRecord:
    id: UUID
    product_id: UUID
    location_id: UUID
    user_id: UUID
    quantity: Decimal
    entry_type: EntryType
    reference_id: str | None
    notes: str | None
    created_at: datetime

    @classmethod
    def from_model(cls, entry) -> LedgerEntryRecord:
        return cls(
            id=entry.id,
            product_id=entry.product_id,
            location_id=entry.location_id,
            user_id=entry.user_id,
            quantity=entry.quantity,
            entry_type=parse_entry_type(entry.entry_type),
            reference_id=entry.reference_id,
            notes=entry.notes,
            created_at=entry.created_at,
        )


@dataclass(frozen=True)
class FormulaComponentRecord:
    id: UUID
    parent_product_id: UUID
    component_product_id: UUID
    quantity_per_unit: Decimal

    @classmethod
    def from_model(cls, edge) -> FormulaComponentRecord:
        return cls(
            id=edge.id,
            parent_product_id=edge.parent_product_id,
            component_product_id=edge.component_product_id,
            quantity_per_unit=edge.quantity_per_unit,
        )


@dataclass(frozen=True)
class AuditLogRecord:
    id: UUID
    entry_id: UUID
    action: str
    old_data: dict | None
    new_data: dict | None
    user_id: UUID
    reason: str | None
    is_flag: bool
    created_at: datetime

    @classmethod
    def from_model(cls, log) -> AuditLogRecord:
        return cls(
            id=log.id,
            entry_id=log.entry_id,
            action=str(getattr(log.action, "value", log.action)),
            old_data=log.old_data,
            new_data=log.new_data,
            user_id=log.user_id,
            reason=log.reason,
            is_flag=log.is_flag,
            created_at=log.created_at,
        )


@dataclass(frozen=True)
class StockBalance:
    """Derived stock on hand.  ``location_id`` is None for an all-location total."""

    product_id: UUID
    location_id: UUID | None
    quantity: Decimal


@dataclass(frozen=True)
class ManufacturingResult:
    """
    Outcome of one production event.

    ``expanded`` is False when the parent had no formula and a single
    manufacturing_in row was written.
    """

    parent_entry: LedgerEntryRecord
    component_entries: tuple[LedgerEntryRecord, ...]
    reference_id: str
    expanded: bool
    affected_product_ids: tuple[UUID, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RevertResult:
    """Outcome of deleting (and optionally reverting) one audit row."""

    audit_log_id: UUID
    action: str
    entry_id: UUID
    reverted: bool
    compensating_entry_id: UUID | None = None
    affected_product_ids: tuple[UUID, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AlertEvaluation:
    product_id: UUID
    balance: Decimal
    threshold: Decimal
    below_threshold: bool
    alert_id: UUID | None = None
    alert_opened: bool = False
    notification_created: bool = False
