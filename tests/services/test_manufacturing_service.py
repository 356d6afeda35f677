"""
ManufacturingService unit tests.

Tests cover:
- Expansion: one manufacturing_in plus one manufacturing_out per direct component
- Correlation: every row of the event carries the parent row id
- Pre-validation: the first short component aborts the event with no rows written
- Fallback without a formula
- One level of expansion only
- Audit mirror and reasons
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from inventory_kernel.domain.catalog import ProductCategory
from inventory_kernel.domain.dtos import ManufacturingRequest
from inventory_kernel.domain.movements import EntryType
from inventory_kernel.exceptions import (
    InsufficientComponentInventoryError,
    InvalidQuantityError,
    ProductNotFoundError,
)
from inventory_kernel.models.audit_log import AuditLogEntry
from inventory_kernel.models.ledger_entry import LedgerEntry
from inventory_kernel.services.manufacturing_service import (
    PARENT_REASON,
    PARENT_REASON_NO_FORMULA,
    component_note,
    component_reason,
)


def _count(session, model) -> int:
    return session.execute(select(func.count()).select_from(model)).scalar_one()


@pytest.fixture
def bread(make_product):
    return make_product("Bread", category=ProductCategory.FINISHED)


@pytest.fixture
def flour(make_product):
    return make_product("Flour", category=ProductCategory.RAW)


@pytest.fixture
def yeast(make_product):
    return make_product("Yeast", category=ProductCategory.RAW)


@pytest.fixture
def bread_formula(formula_service, deterministic_clock, bread, flour, yeast):
    formula_service.add_component(bread.id, flour.id, Decimal("2"))
    deterministic_clock.tick()
    formula_service.add_component(bread.id, yeast.id, Decimal("0.5"))


def _request(parent, quantity, location_id, **kwargs):
    return ManufacturingRequest(
        parent_product_id=parent.id,
        quantity_produced=Decimal(quantity),
        location_id=location_id,
        **kwargs,
    )


class TestExpansion:
    def test_writes_parent_and_component_rows(
        self, manufacturing_service, ledger_selector, stock_in, bread_formula,
        bread, flour, yeast, location_id, test_actor_id,
    ):
        stock_in(flour.id, location_id, "20")
        stock_in(yeast.id, location_id, "5")

        result = manufacturing_service.produce(_request(bread, "6", location_id), test_actor_id)

        assert result.expanded
        assert result.parent_entry.entry_type is EntryType.MANUFACTURING_IN
        assert result.parent_entry.quantity == Decimal("6")
        deductions = {e.product_id: e.quantity for e in result.component_entries}
        assert deductions == {flour.id: Decimal("-12"), yeast.id: Decimal("-3")}
        assert ledger_selector.balance_for(bread.id, location_id) == Decimal("6")
        assert ledger_selector.balance_for(flour.id, location_id) == Decimal("8")
        assert ledger_selector.balance_for(yeast.id, location_id) == Decimal("2")

    def test_all_rows_share_parent_id_as_reference(
        self, manufacturing_service, ledger_selector, stock_in, bread_formula,
        bread, flour, yeast, location_id, test_actor_id,
    ):
        stock_in(flour.id, location_id, "20")
        stock_in(yeast.id, location_id, "5")

        result = manufacturing_service.produce(_request(bread, "2", location_id), test_actor_id)

        assert result.reference_id == str(result.parent_entry.id)
        rows = ledger_selector.entries_for_reference(result.reference_id)
        assert len(rows) == 3
        assert {r.reference_id for r in rows} == {result.reference_id}

    def test_component_rows_carry_note(
        self, manufacturing_service, stock_in, bread_formula,
        bread, flour, yeast, location_id, test_actor_id,
    ):
        stock_in(flour.id, location_id, "20")
        stock_in(yeast.id, location_id, "5")

        result = manufacturing_service.produce(
            _request(bread, "1", location_id, notes="batch 7"), test_actor_id
        )

        assert result.parent_entry.notes == "batch 7"
        assert {e.notes for e in result.component_entries} == {component_note(bread.id)}

    def test_affected_products(
        self, manufacturing_service, stock_in, bread_formula,
        bread, flour, yeast, location_id, test_actor_id,
    ):
        stock_in(flour.id, location_id, "20")
        stock_in(yeast.id, location_id, "5")

        result = manufacturing_service.produce(_request(bread, "1", location_id), test_actor_id)

        assert set(result.affected_product_ids) == {bread.id, flour.id, yeast.id}

    def test_only_direct_components_consumed(
        self, manufacturing_service, formula_service, ledger_selector, stock_in,
        make_product, location_id, test_actor_id,
    ):
        cake = make_product("Cake", category=ProductCategory.FINISHED)
        batter = make_product("Batter", category=ProductCategory.SEMI)
        egg = make_product("Egg", category=ProductCategory.RAW)
        formula_service.add_component(cake.id, batter.id, Decimal("1"))
        formula_service.add_component(batter.id, egg.id, Decimal("3"))
        stock_in(batter.id, location_id, "2")

        result = manufacturing_service.produce(_request(cake, "2", location_id), test_actor_id)

        assert [e.product_id for e in result.component_entries] == [batter.id]
        assert ledger_selector.balance_for(egg.id, location_id) == Decimal("0")


class TestPreValidation:
    def test_short_component_rejects_whole_event(
        self, session, manufacturing_service, formula_service, ledger_selector, stock_in,
        make_product, location_id, test_actor_id,
    ):
        parent = make_product("P", category=ProductCategory.FINISHED)
        component = make_product("C", category=ProductCategory.RAW)
        formula_service.add_component(parent.id, component.id, Decimal("2"))
        stock_in(component.id, location_id, "10")
        ledger_rows = _count(session, LedgerEntry)
        audit_rows = _count(session, AuditLogEntry)

        with pytest.raises(InsufficientComponentInventoryError) as exc_info:
            manufacturing_service.produce(_request(parent, "6", location_id), test_actor_id)

        err = exc_info.value
        assert err.component_id == str(component.id)
        assert err.required == Decimal("12")
        assert err.available == Decimal("10")
        assert err.shortfall == Decimal("2")
        assert "Short by: 2" in str(err)
        assert _count(session, LedgerEntry) == ledger_rows
        assert _count(session, AuditLogEntry) == audit_rows
        assert ledger_selector.balance_for(component.id, location_id) == Decimal("10")

    def test_reports_first_short_component(
        self, manufacturing_service, stock_in, bread_formula,
        bread, flour, yeast, location_id, test_actor_id,
    ):
        stock_in(flour.id, location_id, "1")

        with pytest.raises(InsufficientComponentInventoryError) as exc_info:
            manufacturing_service.produce(_request(bread, "2", location_id), test_actor_id)

        assert exc_info.value.component_name == "Flour"

    def test_stock_at_other_location_does_not_count(
        self, manufacturing_service, stock_in, bread_formula,
        bread, flour, yeast, location_id, test_actor_id,
    ):
        stock_in(flour.id, uuid4(), "100")
        stock_in(yeast.id, uuid4(), "100")

        with pytest.raises(InsufficientComponentInventoryError):
            manufacturing_service.produce(_request(bread, "1", location_id), test_actor_id)

    def test_non_positive_quantity(self, manufacturing_service, bread, location_id, test_actor_id):
        with pytest.raises(InvalidQuantityError):
            manufacturing_service.produce(_request(bread, "0", location_id), test_actor_id)

    def test_unknown_parent(self, manufacturing_service, location_id, test_actor_id):
        request = ManufacturingRequest(uuid4(), Decimal("1"), location_id)
        with pytest.raises(ProductNotFoundError):
            manufacturing_service.produce(request, test_actor_id)


class TestWithoutFormula:
    def test_falls_back_to_single_row(
        self, session, manufacturing_service, ledger_selector, bread, location_id, test_actor_id,
    ):
        result = manufacturing_service.produce(_request(bread, "4", location_id), test_actor_id)

        assert not result.expanded
        assert result.component_entries == ()
        assert result.parent_entry.entry_type is EntryType.MANUFACTURING_IN
        assert ledger_selector.balance_for(bread.id, location_id) == Decimal("4")
        log = session.execute(
            select(AuditLogEntry).where(AuditLogEntry.entry_id == result.parent_entry.id)
        ).scalar_one()
        assert log.reason == PARENT_REASON_NO_FORMULA


class TestAuditMirror:
    def test_one_create_audit_row_per_ledger_row(
        self, session, manufacturing_service, stock_in, bread_formula,
        bread, flour, yeast, location_id, test_actor_id,
    ):
        stock_in(flour.id, location_id, "20")
        stock_in(yeast.id, location_id, "5")

        result = manufacturing_service.produce(
            _request(bread, "1", location_id, reference_id="WO-42"), test_actor_id
        )

        entry_ids = [result.parent_entry.id] + [e.id for e in result.component_entries]
        logs = {
            log.entry_id: log
            for log in session.execute(
                select(AuditLogEntry).where(AuditLogEntry.entry_id.in_(entry_ids))
            ).scalars()
        }
        assert set(logs) == set(entry_ids)
        assert all(log.action == "create" and log.old_data is None for log in logs.values())
        assert logs[result.parent_entry.id].reason == f"{PARENT_REASON} (external reference WO-42)"
        for entry in result.component_entries:
            assert logs[entry.id].reason == component_reason(bread.id)
