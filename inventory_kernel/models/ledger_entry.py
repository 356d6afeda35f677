"""
Module: inventory_kernel.models.ledger_entry
Responsibility: ORM persistence for stock movements -- the ledger.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/movements.py only.

Invariants enforced:
    - Balances are never stored.  Stock on hand is the signed sum of these
      rows, computed by LedgerSelector on every read.
    - product_id, user_id and created_at never change after insert
      (db/immutability.py).  quantity, entry_type, location_id, notes and
      reference_id change only through LedgerService.update.
    - quantity is positive except for manufacturing_out rows, which store
      the deduction as a negative value.

Failure modes:
    - ImmutabilityViolationError on an attempt to change a frozen column.

Audit relevance:
    Every insert, update and delete of a LedgerEntry commits together with
    one AuditLogEntry describing it.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.domain.movements import EntryType, balance_effect, parse_entry_type


class LedgerEntry(Base):
    """
    One stock movement of a product at a location.

    Contract:
        Rows are written by LedgerService only.  ``reference_id`` groups the
        rows of one manufacturing event under the parent row's id.
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("idx_ledger_product_location", "product_id", "location_id"),
        Index("idx_ledger_reference", "reference_id"),
        Index("idx_ledger_created", "created_at"),
        Index("idx_ledger_type", "entry_type"),
    )

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    location_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Actor who recorded the movement
    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Stored value; see domain/movements.py for the sign convention
    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    entry_type: Mapped[EntryType] = mapped_column(String(30), nullable=False)

    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.entry_type} {self.quantity} "
            f"product={self.product_id} location={self.location_id}>"
        )

    @property
    def kind(self) -> EntryType:
        return parse_entry_type(self.entry_type)

    @property
    def effect(self) -> Decimal:
        """Signed contribution of this row to its balance."""
        return balance_effect(self.kind, self.quantity)
