"""
AlertOutbox / AlertDispatcher -- post-commit alert evaluation.

Responsibility:
    AlertOutbox enqueues one work row per affected product inside the
    mutation's transaction.  AlertDispatcher, run after that transaction has
    committed, drains pending rows in a fresh session and hands each product
    to AlertEvaluator.

Architecture position:
    Kernel > Services.  InventoryOrchestrator enqueues during the unit of
    work and drains after commit.  A scheduler may also call
    ``AlertDispatcher.drain`` periodically to pick up rows left pending by a
    crash or a failed evaluation.

Invariants enforced:
    - A work row exists if and only if the triggering mutation committed.
    - Alert failures never surface to the mutation's caller: they are
      logged as ``alert_evaluation_failed`` and the row stays pending with
      ``attempts`` and ``last_error`` updated.
    - Each product is evaluated in its own savepoint so one failure does not
      discard the alerts raised for the other products of the batch.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.db.engine import session_scope
from inventory_kernel.domain.catalog import ProductCatalog
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.outbox import AlertOutboxEntry
from inventory_kernel.services.alert_service import AlertEvaluator
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.product_catalog import SqlProductCatalog

logger = get_logger("services.alert_outbox")

_MAX_ERROR_LENGTH = 1000


class AlertOutbox(BaseService[AlertOutboxEntry]):
    """Writes alert work rows in the caller's transaction."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def enqueue(self, product_ids: Iterable[UUID], source_operation: str) -> list[AlertOutboxEntry]:
        now = self._clock.now()
        rows = [
            AlertOutboxEntry(
                product_id=pid,
                source_operation=source_operation,
                created_at=now,
                attempts=0,
            )
            for pid in sorted(set(product_ids), key=str)
        ]
        self.session.add_all(rows)
        self.session.flush()
        if rows:
            logger.debug(
                "alert_work_enqueued",
                extra={"source_operation": source_operation, "products": len(rows)},
            )
        return rows

    def pending(self, limit: int) -> list[AlertOutboxEntry]:
        return list(
            self.session.execute(
                select(AlertOutboxEntry)
                .where(AlertOutboxEntry.processed_at.is_(None))
                .order_by(AlertOutboxEntry.created_at, AlertOutboxEntry.id)
                .limit(limit)
                .with_for_update(skip_locked=True)
            ).scalars()
        )


@dataclass(frozen=True)
class DispatchReport:
    """What one ``drain`` call did."""

    processed: int
    failed: int
    product_ids: tuple[UUID, ...] = ()

    @property
    def is_clean(self) -> bool:
        return self.failed == 0


class AlertDispatcher:
    """
    Drains the alert outbox.

    Contract:
        ``drain`` never raises.  Any exception from one product's evaluation
        rolls back that product's savepoint only.  A failure while opening
        or committing the drain session is logged and reported as a failed
        drain, since the caller's mutation has already committed.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        catalog_factory: Callable[[Session], ProductCatalog] | None = None,
        clock: Clock | None = None,
        batch_size: int = 500,
    ):
        self._session_factory = session_factory
        self._catalog_factory = catalog_factory or SqlProductCatalog
        self._clock = clock or SystemClock()
        self._batch_size = batch_size

    def drain(self) -> DispatchReport:
        processed = 0
        failed = 0
        products: list[UUID] = []
        try:
            with session_scope(self._session_factory) as session:
                outbox = AlertOutbox(session, self._clock)
                evaluator = AlertEvaluator(
                    session, self._catalog_factory(session), clock=self._clock
                )
                for row in outbox.pending(self._batch_size):
                    if self._process(session, evaluator, row):
                        processed += 1
                        products.append(row.product_id)
                    else:
                        failed += 1
        except Exception as exc:
            # The triggering mutation has committed; rows stay pending for the next drain
            logger.error(
                "alert_evaluation_failed",
                exc_info=True,
                extra={"stage": "drain", "error_type": type(exc).__name__, "detail": str(exc)},
            )
            return DispatchReport(processed=0, failed=processed + failed + 1)

        if processed or failed:
            logger.info(
                "alert_outbox_drained",
                extra={"processed": processed, "failed": failed},
            )
        return DispatchReport(processed=processed, failed=failed, product_ids=tuple(products))

    def _process(self, session: Session, evaluator: AlertEvaluator, row: AlertOutboxEntry) -> bool:
        row.attempts = (row.attempts or 0) + 1
        savepoint = session.begin_nested()
        try:
            evaluator.evaluate([row.product_id])
            savepoint.commit()
        except Exception as exc:
            savepoint.rollback()
            row.last_error = f"{type(exc).__name__}: {exc}"[:_MAX_ERROR_LENGTH]
            session.flush()
            logger.error(
                "alert_evaluation_failed",
                extra={
                    "product_id": str(row.product_id),
                    "source_operation": row.source_operation,
                    "attempts": row.attempts,
                    "error_type": type(exc).__name__,
                    "detail": str(exc),
                },
            )
            return False
        row.processed_at = self._clock.now()
        row.last_error = None
        session.flush()
        return True
