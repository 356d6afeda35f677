"""
Kernel Invariants Contract.

These invariants are structural law for the inventory kernel. They are
enforced inside the ledger, formula, manufacturing and audit services and
by the ORM immutability listeners. No setting may switch them off.

This module exists solely to declare them explicitly so that log records
and tests can name the rule they exercise.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    NON_NEGATIVE_BALANCE = "non_negative_balance"
    """The derived balance of a (product, location) pair never drops below
    zero after a committed create, update or delete. Enforced by
    LedgerService under a stock lock."""

    DERIVED_BALANCE = "derived_balance"
    """Stock on hand is always summed from the ledger on read. No stored or
    cached counter exists. Enforced by LedgerSelector."""

    MANUFACTURING_ATOMICITY = "manufacturing_atomicity"
    """A production event writes its parent row and every component row,
    or none of them. Enforced by ManufacturingService pre-validation and
    the orchestrator transaction."""

    REFERENCE_CORRELATION = "reference_correlation"
    """Every row written by one production event carries the parent row's
    id as reference_id."""

    AUDIT_COMPLETENESS = "audit_completeness"
    """Each ledger mutation commits together with exactly one audit row."""

    FORMULA_ACYCLICITY = "formula_acyclicity"
    """No product is, through any chain of components, a component of
    itself. Enforced by FormulaGraphService."""

    AUDIT_IMMUTABILITY = "audit_immutability"
    """Audit rows are never modified except for the review flag. Enforced
    by inventory_kernel.db.immutability."""


ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)
