"""
LockService -- named row locks that serialise balance checks.

Responsibility:
    Before a service reads a balance it intends to validate, it acquires the
    lock row for that (product, location).  Concurrent writers to the same
    pair queue on the row until the first transaction ends, so two writers
    can never both pass a check against the same stale balance.

Architecture position:
    Kernel > Services.  Called by LedgerService, ManufacturingService and
    FormulaGraphService.

Invariants enforced:
    NON_NEGATIVE_BALANCE -- the check-then-write window is protected.
    Deadlock avoidance -- keys are always locked in sorted order.

Failure modes:
    - IntegrityError: concurrent creation of the same lock row (handled via
      savepoint rollback and re-select).

Implementation notes:
    PostgreSQL: ``SELECT ... FOR UPDATE`` holds the row until commit.
    SQLite: FOR UPDATE is ignored, but bumping ``version`` issues a write,
    which takes SQLite's database-wide write lock for the transaction.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.lock import KernelLock
from inventory_kernel.services.base import BaseService

logger = get_logger("services.locks")

FORMULA_GRAPH_KEY = "formula_graph"


def stock_lock_key(product_id: UUID, location_id: UUID) -> str:
    return f"stock:{product_id}:{location_id}"


class LockService(BaseService[KernelLock]):
    """
    Acquires kernel lock rows inside the caller's transaction.

    Non-goals:
        - Does NOT release locks; they end with the caller's transaction.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def acquire_stock(self, pairs: Iterable[tuple[UUID, UUID]]) -> list[str]:
        """Lock every (product_id, location_id) pair; returns the keys locked."""
        return self.acquire(stock_lock_key(p, loc) for p, loc in pairs)

    def acquire(self, keys: Iterable[str]) -> list[str]:
        ordered = sorted(set(keys))
        for key in ordered:
            self._acquire_one(key)
        if ordered:
            logger.debug("locks_acquired", extra={"lock_keys": ordered})
        return ordered

    def _select(self, key: str) -> KernelLock | None:
        return self.session.execute(
            select(KernelLock)
            .where(KernelLock.lock_key == key)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _acquire_one(self, key: str) -> None:
        lock = self._select(key)
        if lock is None:
            # First use of this key.  Another transaction may create it at the
            # same time; the savepoint keeps the caller's work intact.
            savepoint = self.session.begin_nested()
            try:
                lock = KernelLock(lock_key=key, version=1)
                self.session.add(lock)
                self.session.flush()
                savepoint.commit()
                return
            except IntegrityError:
                logger.debug("lock_row_race_retry", extra={"lock_key": key})
                savepoint.rollback()
                lock = self._select(key)
                if lock is None:
                    raise

        lock.version += 1
        self.session.flush()
