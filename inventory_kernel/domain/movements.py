"""
Movements -- entry types and the quantity sign convention.

Responsibility:
    Maps a ledger entry type and a caller-supplied magnitude to the value
    that is stored, and a stored value to its effect on the balance.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Sign convention:
    manual_in, manufacturing_in    stored +q, effect +q
    manual_out                     stored +q, effect -q
    manufacturing_out              stored -q, effect -q (summed verbatim)

    Callers always pass a positive magnitude; only this module decides signs.

Failure modes:
    - InvalidEntryTypeError for an unknown entry type string.
    - InvalidQuantityError for zero, negative, non-finite or non-numeric input.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from enum import Enum

from inventory_kernel.exceptions import InvalidEntryTypeError, InvalidQuantityError


class EntryType(str, Enum):
    """Kind of stock movement recorded by a ledger entry."""

    MANUAL_IN = "manual_in"
    MANUAL_OUT = "manual_out"
    MANUFACTURING_IN = "manufacturing_in"
    MANUFACTURING_OUT = "manufacturing_out"


INBOUND_TYPES: frozenset[EntryType] = frozenset(
    {EntryType.MANUAL_IN, EntryType.MANUFACTURING_IN}
)
OUTBOUND_TYPES: frozenset[EntryType] = frozenset(
    {EntryType.MANUAL_OUT, EntryType.MANUFACTURING_OUT}
)

ZERO = Decimal("0")


def parse_entry_type(value: EntryType | str) -> EntryType:
    if isinstance(value, EntryType):
        return value
    try:
        return EntryType(value)
    except ValueError:
        raise InvalidEntryTypeError(value) from None


def to_decimal(field: str, value: Decimal | int | str) -> Decimal:
    """Convert numeric input to Decimal without passing through binary floats."""
    if isinstance(value, bool):
        raise InvalidQuantityError(field, value)
    if isinstance(value, float):
        value = repr(value)
    try:
        result = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidQuantityError(field, value) from None
    if not result.is_finite():
        raise InvalidQuantityError(field, value)
    return result


def require_positive(field: str, value: Decimal | int | str) -> Decimal:
    result = to_decimal(field, value)
    if result <= ZERO:
        raise InvalidQuantityError(field, value)
    return result


def stored_quantity(entry_type: EntryType, magnitude: Decimal) -> Decimal:
    """Value persisted in ``ledger_entries.quantity`` for a positive magnitude."""
    if entry_type is EntryType.MANUFACTURING_OUT:
        return -magnitude
    return magnitude


def magnitude_of(entry_type: EntryType, stored: Decimal) -> Decimal:
    """Inverse of stored_quantity."""
    if entry_type is EntryType.MANUFACTURING_OUT:
        return -stored
    return stored


def balance_effect(entry_type: EntryType, stored: Decimal) -> Decimal:
    """Signed contribution of a stored row to its (product, location) balance."""
    if entry_type is EntryType.MANUAL_OUT:
        return -stored
    return stored


def is_reduction(entry_type: EntryType) -> bool:
    return entry_type in OUTBOUND_TYPES
