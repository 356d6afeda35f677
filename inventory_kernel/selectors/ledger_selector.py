"""
Module: inventory_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries -- derived stock balances and entry
    listings.  Stock on hand is NEVER stored; every balance is the signed sum
    of ledger rows at query time.
Architecture position: Kernel > Selectors.  May import from models/, domain/
    and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    DERIVED_BALANCE -- no stored or cached balances.

Balance expression:
    SUM(CASE WHEN entry_type = 'manual_out' THEN -quantity ELSE quantity END)

    manufacturing_out rows already store a negative quantity and are summed
    verbatim.  Every other type stores a positive magnitude.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import LedgerEntryRecord, StockBalance
from inventory_kernel.domain.movements import EntryType, ZERO, parse_entry_type
from inventory_kernel.models.ledger_entry import LedgerEntry
from inventory_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class LedgerEntryFilter:
    """
    Listing filters.  All are optional and combine with AND.

    ``days`` restricts to entries created within the last N days of the
    selector's clock and is ignored when ``date_from`` is given.
    """

    entry_type: EntryType | None = None
    user_id: UUID | None = None
    location_id: UUID | None = None
    product_id: UUID | None = None
    reference_id: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    days: int | None = None


def signed_quantity():
    """Column expression for a row's contribution to its balance."""
    return case(
        (LedgerEntry.entry_type == EntryType.MANUAL_OUT.value, -LedgerEntry.quantity),
        else_=LedgerEntry.quantity,
    )


def _as_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


class LedgerSelector(BaseSelector[LedgerEntry]):
    """Derived balances and ledger listings."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def balance_for(self, product_id: UUID, location_id: UUID | None = None) -> Decimal:
        """Stock on hand for one product, at one location or across all."""
        stmt = select(func.sum(signed_quantity())).where(
            LedgerEntry.product_id == product_id
        )
        if location_id is not None:
            stmt = stmt.where(LedgerEntry.location_id == location_id)
        return _as_decimal(self.session.execute(stmt).scalar())

    def balance_excluding(
        self,
        product_id: UUID,
        location_id: UUID,
        entry_id: UUID,
    ) -> Decimal:
        """Balance at (product, location) as if ``entry_id`` did not exist."""
        stmt = select(func.sum(signed_quantity())).where(
            LedgerEntry.product_id == product_id,
            LedgerEntry.location_id == location_id,
            LedgerEntry.id != entry_id,
        )
        return _as_decimal(self.session.execute(stmt).scalar())

    def balance(
        self,
        product_id: UUID | None = None,
        location_id: UUID | None = None,
    ) -> list[StockBalance]:
        """
        Per-product balances, optionally restricted to one product and/or
        one location.  Products without any entries are not listed.
        """
        stmt = select(
            LedgerEntry.product_id,
            func.sum(signed_quantity()),
        ).group_by(LedgerEntry.product_id)
        if product_id is not None:
            stmt = stmt.where(LedgerEntry.product_id == product_id)
        if location_id is not None:
            stmt = stmt.where(LedgerEntry.location_id == location_id)

        rows = self.session.execute(stmt).all()
        balances = [
            StockBalance(product_id=pid, location_id=location_id, quantity=_as_decimal(total))
            for pid, total in rows
        ]
        return sorted(balances, key=lambda b: str(b.product_id))

    def balances_by_location(self, product_id: UUID) -> list[StockBalance]:
        stmt = (
            select(LedgerEntry.location_id, func.sum(signed_quantity()))
            .where(LedgerEntry.product_id == product_id)
            .group_by(LedgerEntry.location_id)
        )
        return sorted(
            (
                StockBalance(product_id=product_id, location_id=loc, quantity=_as_decimal(total))
                for loc, total in self.session.execute(stmt).all()
            ),
            key=lambda b: str(b.location_id),
        )

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def get(self, entry_id: UUID) -> LedgerEntryRecord | None:
        entry = self.session.get(LedgerEntry, entry_id)
        return LedgerEntryRecord.from_model(entry) if entry is not None else None

    def list_entries(
        self,
        filters: LedgerEntryFilter | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[LedgerEntryRecord]:
        """Entries matching ``filters``, newest first."""
        f = filters or LedgerEntryFilter()
        stmt = select(LedgerEntry)
        if f.entry_type is not None:
            stmt = stmt.where(LedgerEntry.entry_type == parse_entry_type(f.entry_type).value)
        if f.user_id is not None:
            stmt = stmt.where(LedgerEntry.user_id == f.user_id)
        if f.location_id is not None:
            stmt = stmt.where(LedgerEntry.location_id == f.location_id)
        if f.product_id is not None:
            stmt = stmt.where(LedgerEntry.product_id == f.product_id)
        if f.reference_id is not None:
            stmt = stmt.where(LedgerEntry.reference_id == f.reference_id)
        if f.date_from is not None:
            stmt = stmt.where(LedgerEntry.created_at >= f.date_from)
        elif f.days is not None:
            stmt = stmt.where(
                LedgerEntry.created_at >= self._clock.now() - timedelta(days=f.days)
            )
        if f.date_to is not None:
            stmt = stmt.where(LedgerEntry.created_at <= f.date_to)

        stmt = (
            stmt.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
            .limit(limit)
            .offset(offset)
        )
        return [LedgerEntryRecord.from_model(e) for e in self.session.execute(stmt).scalars()]

    def entries_for_reference(self, reference_id: str) -> list[LedgerEntryRecord]:
        """All rows of one correlated event, oldest first."""
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.reference_id == reference_id)
            .order_by(LedgerEntry.created_at, LedgerEntry.entry_type)
        )
        return [LedgerEntryRecord.from_model(e) for e in self.session.execute(stmt).scalars()]
