"""
Snapshots -- JSON payloads stored in audit ``old_data`` / ``new_data``.

Responsibility:
    ``snapshot_entry`` turns a ledger row into a JSON-safe dict.
    ``parse_snapshot`` validates such a dict before a revert uses it.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Payloads stay opaque structured JSON rather than one column per ledger field,
so rows written by older or newer schemas remain readable.  Unknown keys are
ignored on parse.  Missing or malformed required keys raise
``InvalidSnapshotError``; the audit trail reports that as RevertFailedError.

Quantities are written as strings (Decimal-exact) and hold the STORED value,
i.e. negative for manufacturing_out.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from inventory_kernel.domain.movements import EntryType, magnitude_of

SNAPSHOT_VERSION = 1

REQUIRED_FIELDS = ("product_id", "location_id", "quantity", "entry_type")


class InvalidSnapshotError(ValueError):
    """An audit payload does not describe a valid ledger row."""


@dataclass(frozen=True)
class EntrySnapshot:
    product_id: UUID
    location_id: UUID
    quantity: Decimal
    entry_type: EntryType
    user_id: UUID | None = None
    reference_id: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    entry_id: UUID | None = None

    @property
    def magnitude(self) -> Decimal:
        return magnitude_of(self.entry_type, self.quantity)


def snapshot_entry(entry) -> dict[str, Any]:
    """Serialise a ledger row (ORM object or record) for the audit trail."""
    entry_type = EntryType(getattr(entry.entry_type, "value", entry.entry_type))
    return {
        "version": SNAPSHOT_VERSION,
        "id": str(entry.id),
        "product_id": str(entry.product_id),
        "location_id": str(entry.location_id),
        "user_id": str(entry.user_id) if entry.user_id is not None else None,
        "quantity": str(entry.quantity),
        "entry_type": entry_type.value,
        "reference_id": entry.reference_id,
        "notes": entry.notes,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def _uuid(payload: dict, key: str, required: bool) -> UUID | None:
    raw = payload.get(key)
    if raw is None:
        if required:
            raise InvalidSnapshotError(f"snapshot field {key!r} is missing")
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        raise InvalidSnapshotError(f"snapshot field {key!r} is not a UUID: {raw!r}") from None


def _optional_str(payload: dict, key: str) -> str | None:
    raw = payload.get(key)
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise InvalidSnapshotError(f"snapshot field {key!r} must be a string")
    return raw


def parse_snapshot(payload: Any) -> EntrySnapshot:
    """
    Validate an audit payload and return a typed snapshot.

    Raises:
        InvalidSnapshotError: if the payload is not a mapping, a required
            field is missing, or a value does not parse.  Also raised when
            the stored sign contradicts the entry type.
    """
    if not isinstance(payload, dict):
        raise InvalidSnapshotError(
            f"snapshot must be a JSON object, got {type(payload).__name__}"
        )
    missing = [key for key in REQUIRED_FIELDS if payload.get(key) is None]
    if missing:
        raise InvalidSnapshotError(f"snapshot is missing fields: {missing}")

    try:
        entry_type = EntryType(payload["entry_type"])
    except ValueError:
        raise InvalidSnapshotError(
            f"snapshot entry_type is invalid: {payload['entry_type']!r}"
        ) from None

    try:
        quantity = Decimal(str(payload["quantity"]))
    except InvalidOperation:
        raise InvalidSnapshotError(
            f"snapshot quantity is not numeric: {payload['quantity']!r}"
        ) from None
    if not quantity.is_finite() or magnitude_of(entry_type, quantity) <= 0:
        raise InvalidSnapshotError(
            f"snapshot quantity {quantity} is not valid for {entry_type.value}"
        )

    created_at = None
    raw_created = payload.get("created_at")
    if raw_created is not None:
        try:
            created_at = datetime.fromisoformat(str(raw_created))
        except ValueError:
            raise InvalidSnapshotError(
                f"snapshot created_at is not ISO-8601: {raw_created!r}"
            ) from None

    return EntrySnapshot(
        product_id=_uuid(payload, "product_id", required=True),
        location_id=_uuid(payload, "location_id", required=True),
        quantity=quantity,
        entry_type=entry_type,
        user_id=_uuid(payload, "user_id", required=False),
        reference_id=_optional_str(payload, "reference_id"),
        notes=_optional_str(payload, "notes"),
        created_at=created_at,
        entry_id=_uuid(payload, "id", required=False),
    )
