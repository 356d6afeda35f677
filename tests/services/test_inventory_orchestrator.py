"""
InventoryOrchestrator integration tests.

These run against a committing session factory, so every operation is a
real transaction.  Tests cover:
- Stock movements against a threshold, with post-commit alerting
- Manufacturing rejection leaving no trace, and a successful event
- Audited delete, delete-and-revert and event revert
- Formula management through the façade
- Rollback on kernel errors, StorageFailureError on storage errors
- Alert failures never failing the mutation
- LogContext binding per operation
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from inventory_kernel.domain.catalog import ProductCategory
from inventory_kernel.domain.dtos import LedgerEntryPatch, ManufacturingRequest, NewLedgerEntry
from inventory_kernel.domain.movements import EntryType
from inventory_kernel.exceptions import (
    CircularDependencyError,
    InsufficientComponentInventoryError,
    LedgerEntryNotFoundError,
    NegativeInventoryError,
    StorageFailureError,
)
from inventory_kernel.selectors.audit_selector import AuditLogFilter
from inventory_kernel.selectors.ledger_selector import LedgerEntryFilter
from inventory_kernel.services.inventory_orchestrator import InventoryOrchestrator
from inventory_kernel.services.product_catalog import SqlProductCatalog


class _DisconnectedCatalog:
    def __init__(self, session):
        pass

    def require(self, product_id):
        raise OperationalError("SELECT products", {}, Exception("server closed the connection"))

    get = require


class _AlertBlindCatalog:
    """Serves the ledger but fails every lookup made by alert evaluation."""

    def __init__(self, session, error=None):
        self._inner = SqlProductCatalog(session)
        self._error = error or StorageFailureError("catalog_lookup", "catalog offline")

    def require(self, product_id):
        return self._inner.require(product_id)

    def get(self, product_id):
        raise self._error

    def products_with_threshold(self):
        return self._inner.products_with_threshold()


@pytest.fixture
def orchestrator(session_factory, deterministic_clock):
    return InventoryOrchestrator(session_factory, clock=deterministic_clock)


@pytest.fixture
def location():
    return uuid4()


def _movement(product_id, location_id, entry_type, quantity):
    return NewLedgerEntry(product_id, location_id, entry_type, Decimal(quantity))


# =========================================================================
# Stock movements and alerting
# =========================================================================


class TestStockMovements:
    def test_threshold_scenario(
        self, orchestrator, make_committed_product, location, test_actor_id,
    ):
        product_id = make_committed_product("Milk", min_stock_threshold=Decimal("10"))

        orchestrator.create_entry(
            _movement(product_id, location, EntryType.MANUAL_IN, "5"), test_actor_id
        )
        orchestrator.create_entry(
            _movement(product_id, location, EntryType.MANUAL_OUT, "5"), test_actor_id
        )
        with pytest.raises(NegativeInventoryError):
            orchestrator.create_entry(
                _movement(product_id, location, EntryType.MANUAL_OUT, "1"), test_actor_id
            )

        assert orchestrator.stock_on_hand(product_id, location) == Decimal("0")
        [alert] = orchestrator.open_alerts(product_id)
        assert alert.current_stock == Decimal("0")
        assert len(orchestrator.unread_notifications(product_id)) == 1

    def test_rejected_movement_writes_no_audit_row(
        self, orchestrator, make_committed_product, location, test_actor_id,
    ):
        product_id = make_committed_product("Milk")

        with pytest.raises(NegativeInventoryError):
            orchestrator.create_entry(
                _movement(product_id, location, EntryType.MANUAL_OUT, "1"), test_actor_id
            )

        assert orchestrator.list_entries(LedgerEntryFilter(product_id=product_id)) == []
        assert orchestrator.list_audit_logs() == []

    def test_create_is_audited_with_reason(
        self, orchestrator, make_committed_product, location, test_actor_id,
    ):
        product_id = make_committed_product("Milk")

        record = orchestrator.create_entry(
            _movement(product_id, location, EntryType.MANUAL_IN, "3"),
            test_actor_id,
            reason="opening stock",
        )

        [log] = orchestrator.audit_history(record.id)
        assert log.action == "create"
        assert log.reason == "opening stock"
        assert log.user_id == test_actor_id
        assert log.new_data["product_id"] == str(product_id)

    def test_update_is_audited(
        self, orchestrator, make_committed_product, location, test_actor_id,
    ):
        product_id = make_committed_product("Milk")
        record = orchestrator.create_entry(
            _movement(product_id, location, EntryType.MANUAL_IN, "3"), test_actor_id
        )

        updated = orchestrator.update_entry(
            record.id, LedgerEntryPatch(quantity=Decimal("8")), test_actor_id, reason="recount"
        )

        assert updated.quantity == Decimal("8")
        history = orchestrator.audit_history(record.id)
        assert [h.action for h in history] == ["create", "update"]
        assert history[-1].reason == "recount"

    def test_delete_entry_is_audited(
        self, orchestrator, make_committed_product, location, test_actor_id,
    ):
        product_id = make_committed_product("Milk")
        record = orchestrator.create_entry(
            _movement(product_id, location, EntryType.MANUAL_IN, "3"), test_actor_id
        )

        orchestrator.delete_entry(record.id, test_actor_id)

        with pytest.raises(LedgerEntryNotFoundError):
            orchestrator.get_entry(record.id)
        assert [h.action for h in orchestrator.audit_history(record.id)] == ["create", "delete"]

    def test_balance_lists_products(
        self, orchestrator, make_committed_product, location, test_actor_id,
    ):
        milk = make_committed_product("Milk")
        orchestrator.create_entry(
            _movement(milk, location, EntryType.MANUAL_IN, "4"), test_actor_id
        )

        [balance] = orchestrator.balance(milk)

        assert balance.quantity == Decimal("4")


class TestPostCommitAlerts:
    def test_alert_raised_only_when_drained(
        self, session_factory, deterministic_clock, make_committed_product, location,
        test_actor_id,
    ):
        orchestrator = InventoryOrchestrator(
            session_factory, clock=deterministic_clock, drain_alerts=False
        )
        product_id = make_committed_product("Milk", min_stock_threshold=Decimal("10"))
        orchestrator.create_entry(
            _movement(product_id, location, EntryType.MANUAL_IN, "2"), test_actor_id
        )
        assert orchestrator.open_alerts(product_id) == []

        report = orchestrator.drain_alerts()

        assert report.processed == 1
        assert len(orchestrator.open_alerts(product_id)) == 1

    @pytest.mark.parametrize(
        "error",
        [
            StorageFailureError("catalog_lookup", "catalog offline"),
            ConnectionError("catalog unreachable"),
            ValueError("unknown category"),
        ],
        ids=["kernel", "connection", "value"],
    )
    def test_alert_failure_does_not_fail_mutation(
        self, session_factory, deterministic_clock, make_committed_product, location,
        test_actor_id, captured_logs, error,
    ):
        orchestrator = InventoryOrchestrator(
            session_factory,
            lambda s: _AlertBlindCatalog(s, error),
            clock=deterministic_clock,
        )
        product_id = make_committed_product("Milk", min_stock_threshold=Decimal("10"))

        record = orchestrator.create_entry(
            _movement(product_id, location, EntryType.MANUAL_IN, "2"), test_actor_id
        )

        assert orchestrator.get_entry(record.id).quantity == Decimal("2")
        assert orchestrator.open_alerts(product_id) == []
        assert any(r["message"] == "alert_evaluation_failed" for r in captured_logs())

    def test_evaluate_and_resolve(
        self, session_factory, deterministic_clock, make_committed_product, test_actor_id,
    ):
        orchestrator = InventoryOrchestrator(
            session_factory, clock=deterministic_clock, drain_alerts=False
        )
        product_id = make_committed_product("Milk", min_stock_threshold=Decimal("1"))

        [evaluation] = orchestrator.evaluate_alerts([product_id])
        resolved = orchestrator.resolve_alert(evaluation.alert_id)

        assert resolved.is_resolved
        assert orchestrator.open_alerts(product_id) == []
        assert orchestrator.unread_notifications(product_id) == []


# =========================================================================
# Manufacturing
# =========================================================================


class TestManufacture:
    @pytest.fixture
    def recipe(self, orchestrator, make_committed_product, location, test_actor_id):
        parent = make_committed_product("Jam", category=ProductCategory.FINISHED)
        component = make_committed_product("Berries", category=ProductCategory.RAW)
        orchestrator.add_formula_component(parent, component, Decimal("2"), test_actor_id)
        orchestrator.create_entry(
            _movement(component, location, EntryType.MANUAL_IN, "10"), test_actor_id
        )
        return parent, component

    def test_short_component_leaves_no_trace(
        self, orchestrator, recipe, location, test_actor_id,
    ):
        parent, component = recipe
        logs_before = len(orchestrator.list_audit_logs())

        with pytest.raises(InsufficientComponentInventoryError) as exc_info:
            orchestrator.manufacture(
                ManufacturingRequest(parent, Decimal("6"), location), test_actor_id
            )

        assert exc_info.value.shortfall == Decimal("2")
        assert orchestrator.stock_on_hand(component, location) == Decimal("10")
        assert orchestrator.list_entries(LedgerEntryFilter(product_id=parent)) == []
        assert len(orchestrator.list_audit_logs()) == logs_before

    def test_successful_event(self, orchestrator, recipe, location, test_actor_id):
        parent, component = recipe

        result = orchestrator.manufacture(
            ManufacturingRequest(parent, Decimal("5"), location), test_actor_id
        )

        assert orchestrator.stock_on_hand(parent, location) == Decimal("5")
        assert orchestrator.stock_on_hand(component, location) == Decimal("0")
        rows = orchestrator.list_entries(LedgerEntryFilter(reference_id=result.reference_id))
        assert len(rows) == 2

    def test_revert_event_restores_stock(self, orchestrator, recipe, location, test_actor_id):
        parent, component = recipe
        result = orchestrator.manufacture(
            ManufacturingRequest(parent, Decimal("5"), location), test_actor_id
        )

        results = orchestrator.revert_event(result.reference_id, test_actor_id)

        assert all(r.reverted for r in results)
        assert orchestrator.stock_on_hand(parent, location) == Decimal("0")
        assert orchestrator.stock_on_hand(component, location) == Decimal("10")


# =========================================================================
# Audit trail
# =========================================================================


class TestAuditOperations:
    def test_delete_audit_log_with_revert(
        self, orchestrator, make_committed_product, location, test_actor_id,
    ):
        product_id = make_committed_product("Milk")
        record = orchestrator.create_entry(
            _movement(product_id, location, EntryType.MANUAL_IN, "3"), test_actor_id
        )
        [log] = orchestrator.audit_history(record.id)

        result = orchestrator.delete_audit_log(log.id, test_actor_id, revert=True)

        assert result.reverted
        assert orchestrator.stock_on_hand(product_id, location) == Decimal("0")
        [compensation] = orchestrator.audit_history(record.id)
        assert compensation.action == "delete"
        assert compensation.reason == f"Revert of audit log {log.id} (create)"

    def test_delete_audit_log_without_revert(
        self, orchestrator, make_committed_product, location, test_actor_id,
    ):
        product_id = make_committed_product("Milk")
        record = orchestrator.create_entry(
            _movement(product_id, location, EntryType.MANUAL_IN, "3"), test_actor_id
        )
        [log] = orchestrator.audit_history(record.id)

        orchestrator.delete_audit_log(log.id, test_actor_id, revert=False)

        assert orchestrator.audit_history(record.id) == []
        assert orchestrator.stock_on_hand(product_id, location) == Decimal("3")

    def test_flag_and_filter(
        self, orchestrator, make_committed_product, location, test_actor_id,
    ):
        product_id = make_committed_product("Milk")
        record = orchestrator.create_entry(
            _movement(product_id, location, EntryType.MANUAL_IN, "3"), test_actor_id
        )
        [log] = orchestrator.audit_history(record.id)

        flagged = orchestrator.flag_audit_log(log.id, True)

        assert flagged.is_flag
        assert [r.id for r in orchestrator.list_audit_logs(AuditLogFilter(is_flag=True))] == [log.id]


# =========================================================================
# Formulas
# =========================================================================


class TestFormulaOperations:
    def test_add_update_remove(self, orchestrator, make_committed_product):
        parent = make_committed_product("Jam", category=ProductCategory.FINISHED)
        sugar = make_committed_product("Sugar")
        fruit = make_committed_product("Fruit")

        orchestrator.add_formula_component(parent, sugar, Decimal("1"))
        orchestrator.add_formula_component(parent, fruit, Decimal("2"))
        orchestrator.update_formula_component(parent, sugar, Decimal("1.5"))
        orchestrator.remove_formula_component(parent, fruit)

        [edge] = orchestrator.formula_components(parent)
        assert edge.component_product_id == sugar
        assert edge.quantity_per_unit == Decimal("1.5")

    def test_clear_formula(self, orchestrator, make_committed_product):
        parent = make_committed_product("Jam", category=ProductCategory.FINISHED)
        orchestrator.add_formula_component(parent, make_committed_product("A"), Decimal("1"))
        orchestrator.add_formula_component(parent, make_committed_product("B"), Decimal("1"))

        assert orchestrator.clear_formula(parent) == 2
        assert orchestrator.formula_components(parent) == []

    def test_cycle_rejected(self, orchestrator, make_committed_product):
        a = make_committed_product("A", category=ProductCategory.SEMI)
        b = make_committed_product("B", category=ProductCategory.SEMI)
        orchestrator.add_formula_component(a, b, Decimal("1"))

        with pytest.raises(CircularDependencyError):
            orchestrator.add_formula_component(b, a, Decimal("1"))

        assert orchestrator.formula_components(b) == []


# =========================================================================
# Transactions and logging
# =========================================================================


class TestTransactions:
    def test_storage_error_is_wrapped(
        self, session_factory, deterministic_clock, location, test_actor_id, captured_logs,
    ):
        orchestrator = InventoryOrchestrator(
            session_factory, _DisconnectedCatalog, clock=deterministic_clock
        )

        with pytest.raises(StorageFailureError) as exc_info:
            orchestrator.create_entry(
                _movement(uuid4(), location, EntryType.MANUAL_IN, "1"), test_actor_id
            )

        assert exc_info.value.operation == "create_entry"
        assert exc_info.value.kind == "StorageFailure"
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert any(r["message"] == "operation_failed" for r in captured_logs())

    def test_kernel_error_is_logged_and_propagated(
        self, orchestrator, make_committed_product, location, test_actor_id, captured_logs,
    ):
        product_id = make_committed_product("Milk")

        with pytest.raises(NegativeInventoryError):
            orchestrator.create_entry(
                _movement(product_id, location, EntryType.MANUAL_OUT, "1"), test_actor_id
            )

        rejected = [r for r in captured_logs() if r["message"] == "operation_rejected"]
        assert rejected[0]["error_code"] == "NEGATIVE_INVENTORY"
        assert rejected[0]["operation"] == "create_entry"

    def test_log_context_is_bound_per_operation(
        self, session_factory, deterministic_clock, make_committed_product, location,
        test_actor_id, captured_logs,
    ):
        orchestrator = InventoryOrchestrator(
            session_factory, clock=deterministic_clock, tenant_id="acme"
        )
        product_id = make_committed_product("Milk")

        orchestrator.create_entry(
            _movement(product_id, location, EntryType.MANUAL_IN, "1"), test_actor_id
        )

        [completed] = [r for r in captured_logs() if r["message"] == "operation_completed"]
        assert completed["operation"] == "create_entry"
        assert completed["tenant_id"] == "acme"
        assert completed["actor_id"] == str(test_actor_id)
        assert "correlation_id" in completed
