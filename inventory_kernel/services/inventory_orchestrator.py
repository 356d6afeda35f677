"""
InventoryOrchestrator -- public entry point of the inventory kernel.

Responsibility:
    Runs each caller-facing operation as one unit of work: open a session,
    build the kernel services over it, perform the mutation, mirror it into
    the audit trail, enqueue alert work for every affected product, commit.
    After the commit it drains the alert outbox in a fresh session.

Architecture position:
    Kernel > Services, top of the layer.  This is the only module (besides
    ``db.engine.session_scope``) that commits or rolls back.  KernelServices
    is the single place where services are constructed and wired.

Invariants enforced:
    - A ledger row, its audit row and its outbox rows commit together or not
      at all.
    - Alerting never fails a mutation: the drain runs after commit and
      absorbs evaluation errors (see AlertDispatcher).

Failure modes:
    - Kernel errors (NotFound, Validation, NegativeInventory, ...) roll back
      and propagate unchanged.
    - Any SQLAlchemyError rolls back and is raised as StorageFailureError
      with the original chained.

Usage:
    engine = init_engine_from_settings(settings)
    orchestrator = InventoryOrchestrator(create_session_factory(engine))
    record = orchestrator.create_entry(
        NewLedgerEntry(product_id, location_id, EntryType.MANUAL_IN, Decimal("10")),
        actor_id=user_id,
    )
"""

from __future__ import annotations

import time
from collections.abc import Callable, Generator, Iterable
from contextlib import contextmanager
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.config import KernelSettings
from inventory_kernel.domain.catalog import ProductCatalog
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import (
    AlertEvaluation,
    AuditLogRecord,
    FormulaComponentRecord,
    LedgerEntryPatch,
    LedgerEntryRecord,
    ManufacturingRequest,
    ManufacturingResult,
    NewLedgerEntry,
    RevertResult,
    StockBalance,
)
from inventory_kernel.exceptions import InventoryKernelError, StorageFailureError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.selectors.alert_selector import (
    AlertSelector,
    NotificationRecord,
    StockAlertRecord,
)
from inventory_kernel.selectors.audit_selector import AuditLogFilter, AuditSelector
from inventory_kernel.selectors.ledger_selector import LedgerEntryFilter, LedgerSelector
from inventory_kernel.services.alert_outbox import AlertDispatcher, AlertOutbox, DispatchReport
from inventory_kernel.services.alert_service import AlertEvaluator
from inventory_kernel.services.audit_trail_service import AuditTrailService
from inventory_kernel.services.formula_service import FormulaGraphService
from inventory_kernel.services.ledger_service import LedgerService
from inventory_kernel.services.lock_service import LockService
from inventory_kernel.services.manufacturing_service import ManufacturingService
from inventory_kernel.services.product_catalog import SqlProductCatalog

logger = get_logger("services.orchestrator")

CatalogFactory = Callable[[Session], ProductCatalog]


class KernelServices:
    """
    Every kernel service for one session, wired once.

    Contract:
        All services share the same Session, Clock, LockService and
        LedgerSelector.

    Non-goals:
        - Does NOT manage the transaction (InventoryOrchestrator does).
    """

    def __init__(
        self,
        session: Session,
        catalog: ProductCatalog,
        clock: Clock,
        settings: KernelSettings,
    ) -> None:
        self.session = session
        self.catalog = catalog
        self.clock = clock

        self.locks = LockService(session)
        self.ledger_selector = LedgerSelector(session, clock)
        self.audit_selector = AuditSelector(session)
        self.alert_selector = AlertSelector(session)

        self.ledger = LedgerService(session, catalog, clock, self.ledger_selector, self.locks)
        self.formulas = FormulaGraphService(
            session, catalog, clock, self.locks, max_depth=settings.max_formula_depth
        )
        self.audit = AuditTrailService(session, self.ledger, clock)
        self.manufacturing = ManufacturingService(
            session,
            catalog,
            self.ledger,
            self.formulas,
            self.audit,
            self.ledger_selector,
            self.locks,
        )
        self.alerts = AlertEvaluator(session, catalog, self.ledger_selector, clock)
        self.outbox = AlertOutbox(session, clock)


class InventoryOrchestrator:
    """
    Transactional façade over the kernel services.

    Guarantees:
        - Every public method commits on success and rolls back on failure.
        - Returned values are frozen records, safe to use after the session
          has closed.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        catalog_factory: CatalogFactory | None = None,
        clock: Clock | None = None,
        settings: KernelSettings | None = None,
        tenant_id: str | None = None,
        drain_alerts: bool = True,
    ):
        self._session_factory = session_factory
        self._catalog_factory = catalog_factory or SqlProductCatalog
        self._clock = clock or SystemClock()
        self._settings = settings or KernelSettings()
        self._tenant_id = tenant_id
        self._drain_after_commit = drain_alerts
        self._dispatcher = AlertDispatcher(
            session_factory,
            self._catalog_factory,
            self._clock,
            batch_size=self._settings.alert_batch_size,
        )

    # =========================================================================
    # Unit of work
    # =========================================================================

    @contextmanager
    def _unit_of_work(
        self,
        operation: str,
        actor_id: UUID | None = None,
    ) -> Generator[KernelServices, None, None]:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            tenant_id=self._tenant_id,
            operation=operation,
            actor_id=str(actor_id) if actor_id is not None else None,
        ):
            t0 = time.monotonic()
            session = self._session_factory()
            try:
                yield KernelServices(
                    session, self._catalog_factory(session), self._clock, self._settings
                )
                session.commit()
            except InventoryKernelError as exc:
                session.rollback()
                logger.warning(
                    "operation_rejected",
                    extra={"error_code": exc.code, "error_kind": exc.kind, "detail": str(exc)},
                )
                raise
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("operation_failed", exc_info=True)
                raise StorageFailureError(operation, str(exc)) from exc
            except Exception:
                session.rollback()
                logger.error("operation_failed", exc_info=True)
                raise
            finally:
                session.close()

            logger.info(
                "operation_completed",
                extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
            )

    def _after_commit(self, product_ids: Iterable[UUID]) -> None:
        if self._drain_after_commit and tuple(product_ids):
            self._dispatcher.drain()

    # =========================================================================
    # Ledger
    # =========================================================================

    def create_entry(
        self,
        new: NewLedgerEntry,
        actor_id: UUID,
        reason: str | None = None,
    ) -> LedgerEntryRecord:
        with self._unit_of_work("create_entry", actor_id) as k:
            change = k.ledger.create(new, actor_id)
            k.audit.record_change(change, actor_id, reason=reason)
            k.outbox.enqueue(change.product_ids, "create_entry")
            record = LedgerEntryRecord.from_model(change.entry)
        self._after_commit(change.product_ids)
        return record

    def update_entry(
        self,
        entry_id: UUID,
        patch: LedgerEntryPatch,
        actor_id: UUID,
        reason: str | None = None,
    ) -> LedgerEntryRecord:
        with self._unit_of_work("update_entry", actor_id) as k:
            change = k.ledger.update(entry_id, patch, actor_id)
            k.audit.record_change(change, actor_id, reason=reason)
            k.outbox.enqueue(change.product_ids, "update_entry")
            record = LedgerEntryRecord.from_model(change.entry)
        self._after_commit(change.product_ids)
        return record

    def delete_entry(
        self,
        entry_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> LedgerEntryRecord:
        """Delete a ledger row directly; the delete is audited like any mutation."""
        with self._unit_of_work("delete_entry", actor_id) as k:
            change = k.ledger.delete(entry_id, actor_id)
            k.audit.record_change(change, actor_id, reason=reason)
            k.outbox.enqueue(change.product_ids, "delete_entry")
            record = LedgerEntryRecord.from_model(change.entry)
        self._after_commit(change.product_ids)
        return record

    def get_entry(self, entry_id: UUID) -> LedgerEntryRecord:
        with self._unit_of_work("get_entry") as k:
            return LedgerEntryRecord.from_model(k.ledger.get(entry_id))

    def list_entries(
        self,
        filters: LedgerEntryFilter | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[LedgerEntryRecord]:
        with self._unit_of_work("list_entries") as k:
            return k.ledger_selector.list_entries(filters, limit=limit, offset=offset)

    def balance(
        self,
        product_id: UUID | None = None,
        location_id: UUID | None = None,
    ) -> list[StockBalance]:
        with self._unit_of_work("balance") as k:
            return k.ledger_selector.balance(product_id, location_id)

    def stock_on_hand(self, product_id: UUID, location_id: UUID | None = None) -> Decimal:
        with self._unit_of_work("stock_on_hand") as k:
            return k.ledger_selector.balance_for(product_id, location_id)

    # =========================================================================
    # Manufacturing
    # =========================================================================

    def manufacture(self, request: ManufacturingRequest, actor_id: UUID) -> ManufacturingResult:
        with self._unit_of_work("manufacture", actor_id) as k:
            result = k.manufacturing.produce(request, actor_id)
            k.outbox.enqueue(result.affected_product_ids, "manufacture")
        self._after_commit(result.affected_product_ids)
        return result

    # =========================================================================
    # Audit trail
    # =========================================================================

    def delete_audit_log(self, audit_log_id: UUID, actor_id: UUID, revert: bool) -> RevertResult:
        with self._unit_of_work("delete_audit_log", actor_id) as k:
            result = k.audit.delete_and_revert(audit_log_id, actor_id, revert)
            k.outbox.enqueue(result.affected_product_ids, "delete_audit_log")
        self._after_commit(result.affected_product_ids)
        return result

    def revert_event(self, reference_id: str, actor_id: UUID) -> list[RevertResult]:
        with self._unit_of_work("revert_event", actor_id) as k:
            results = k.audit.revert_event(reference_id, actor_id)
            affected = {pid for r in results for pid in r.affected_product_ids}
            k.outbox.enqueue(affected, "revert_event")
        self._after_commit(affected)
        return results

    def flag_audit_log(self, audit_log_id: UUID, is_flag: bool) -> AuditLogRecord:
        with self._unit_of_work("flag_audit_log") as k:
            return AuditLogRecord.from_model(k.audit.set_flag(audit_log_id, is_flag))

    def audit_history(self, entry_id: UUID) -> list[AuditLogRecord]:
        with self._unit_of_work("audit_history") as k:
            return k.audit_selector.for_entry(entry_id)

    def list_audit_logs(
        self,
        filters: AuditLogFilter | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditLogRecord]:
        with self._unit_of_work("list_audit_logs") as k:
            return k.audit_selector.list_logs(filters, limit=limit, offset=offset)

    # =========================================================================
    # Formulas
    # =========================================================================

    def add_formula_component(
        self,
        parent_product_id: UUID,
        component_product_id: UUID,
        quantity_per_unit: Decimal,
        actor_id: UUID | None = None,
    ) -> FormulaComponentRecord:
        with self._unit_of_work("add_formula_component", actor_id) as k:
            edge = k.formulas.add_component(
                parent_product_id, component_product_id, quantity_per_unit, actor_id
            )
            return FormulaComponentRecord.from_model(edge)

    def update_formula_component(
        self,
        parent_product_id: UUID,
        component_product_id: UUID,
        quantity_per_unit: Decimal,
    ) -> FormulaComponentRecord:
        with self._unit_of_work("update_formula_component") as k:
            edge = k.formulas.update_quantity(
                parent_product_id, component_product_id, quantity_per_unit
            )
            return FormulaComponentRecord.from_model(edge)

    def remove_formula_component(self, parent_product_id: UUID, component_product_id: UUID) -> None:
        with self._unit_of_work("remove_formula_component") as k:
            k.formulas.remove_component(parent_product_id, component_product_id)

    def clear_formula(self, parent_product_id: UUID) -> int:
        with self._unit_of_work("clear_formula") as k:
            return k.formulas.remove_all(parent_product_id)

    def formula_components(self, parent_product_id: UUID) -> list[FormulaComponentRecord]:
        with self._unit_of_work("formula_components") as k:
            return [FormulaComponentRecord.from_model(e) for e in k.formulas.components(parent_product_id)]

    # =========================================================================
    # Alerts
    # =========================================================================

    def evaluate_alerts(self, product_ids: Iterable[UUID] | None = None) -> list[AlertEvaluation]:
        """Evaluate synchronously; unlike the post-commit drain, errors propagate."""
        with self._unit_of_work("evaluate_alerts") as k:
            return k.alerts.evaluate(product_ids)

    def resolve_alert(self, alert_id: UUID) -> StockAlertRecord:
        with self._unit_of_work("resolve_alert") as k:
            return StockAlertRecord.from_model(k.alerts.resolve_alert(alert_id))

    def mark_notification_read(self, notification_id: UUID) -> None:
        with self._unit_of_work("mark_notification_read") as k:
            k.alerts.mark_notification_read(notification_id)

    def open_alerts(self, product_id: UUID | None = None) -> list[StockAlertRecord]:
        with self._unit_of_work("open_alerts") as k:
            return k.alert_selector.open_alerts(product_id)

    def unread_notifications(self, product_id: UUID | None = None) -> list[NotificationRecord]:
        with self._unit_of_work("unread_notifications") as k:
            return k.alert_selector.unread_notifications(product_id)

    def drain_alerts(self) -> DispatchReport:
        return self._dispatcher.drain()
