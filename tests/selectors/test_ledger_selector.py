"""
LedgerSelector tests: derived balances and listings.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.dtos import NewLedgerEntry
from inventory_kernel.domain.movements import EntryType
from inventory_kernel.selectors.ledger_selector import LedgerEntryFilter


@pytest.fixture
def record(ledger_service, deterministic_clock, test_actor_id):
    def _record(product_id, location_id, entry_type, quantity, actor_id=None, **kwargs):
        deterministic_clock.tick()
        return ledger_service.create(
            NewLedgerEntry(product_id, location_id, entry_type, Decimal(quantity), **kwargs),
            actor_id or test_actor_id,
        ).entry

    return _record


class TestBalances:
    def test_signed_sum_over_all_types(
        self, ledger_selector, record, make_product, location_id,
    ):
        flour = make_product("Flour")
        record(flour.id, location_id, EntryType.MANUAL_IN, "10")
        record(flour.id, location_id, EntryType.MANUFACTURING_IN, "5")
        record(flour.id, location_id, EntryType.MANUAL_OUT, "3")
        record(flour.id, location_id, EntryType.MANUFACTURING_OUT, "4")

        assert ledger_selector.balance_for(flour.id, location_id) == Decimal("8")

    def test_no_entries_is_zero(self, ledger_selector):
        assert ledger_selector.balance_for(uuid4()) == Decimal("0")

    def test_balance_groups_by_product(
        self, ledger_selector, record, make_product, location_id,
    ):
        flour = make_product("Flour")
        sugar = make_product("Sugar")
        other_location = uuid4()
        record(flour.id, location_id, EntryType.MANUAL_IN, "2")
        record(flour.id, other_location, EntryType.MANUAL_IN, "3")
        record(sugar.id, location_id, EntryType.MANUAL_IN, "7")

        totals = {b.product_id: b.quantity for b in ledger_selector.balance()}
        at_location = {b.product_id: b.quantity for b in ledger_selector.balance(location_id=location_id)}

        assert totals == {flour.id: Decimal("5"), sugar.id: Decimal("7")}
        assert at_location == {flour.id: Decimal("2"), sugar.id: Decimal("7")}

    def test_balances_by_location(
        self, ledger_selector, record, make_product, location_id,
    ):
        flour = make_product("Flour")
        other_location = uuid4()
        record(flour.id, location_id, EntryType.MANUAL_IN, "2")
        record(flour.id, other_location, EntryType.MANUAL_IN, "3")

        by_location = {b.location_id: b.quantity for b in ledger_selector.balances_by_location(flour.id)}

        assert by_location == {location_id: Decimal("2"), other_location: Decimal("3")}

    def test_balance_excluding_one_row(
        self, ledger_selector, record, make_product, location_id,
    ):
        flour = make_product("Flour")
        receipt = record(flour.id, location_id, EntryType.MANUAL_IN, "6")
        record(flour.id, location_id, EntryType.MANUAL_OUT, "2")

        assert ledger_selector.balance_excluding(flour.id, location_id, receipt.id) == Decimal("-2")


class TestListing:
    def test_newest_first_with_paging(
        self, ledger_selector, record, make_product, location_id,
    ):
        flour = make_product("Flour")
        first = record(flour.id, location_id, EntryType.MANUAL_IN, "1")
        second = record(flour.id, location_id, EntryType.MANUAL_IN, "2")

        assert [e.id for e in ledger_selector.list_entries()] == [second.id, first.id]
        assert [e.id for e in ledger_selector.list_entries(limit=1, offset=1)] == [first.id]

    def test_filters_combine(
        self, ledger_selector, record, make_product, location_id,
    ):
        flour = make_product("Flour")
        other_actor = uuid4()
        record(flour.id, location_id, EntryType.MANUAL_IN, "5")
        wanted = record(flour.id, location_id, EntryType.MANUAL_OUT, "1", actor_id=other_actor)
        record(flour.id, location_id, EntryType.MANUAL_OUT, "1")

        found = ledger_selector.list_entries(
            LedgerEntryFilter(entry_type="manual_out", user_id=other_actor, location_id=location_id)
        )

        assert [e.id for e in found] == [wanted.id]
        assert found[0].entry_type is EntryType.MANUAL_OUT

    def test_days_window(
        self, ledger_selector, record, make_product, location_id, deterministic_clock,
    ):
        flour = make_product("Flour")
        record(flour.id, location_id, EntryType.MANUAL_IN, "1")
        deterministic_clock.advance(3 * 24 * 3600)
        recent = record(flour.id, location_id, EntryType.MANUAL_IN, "1")

        found = ledger_selector.list_entries(LedgerEntryFilter(days=1))

        assert [e.id for e in found] == [recent.id]

    def test_entries_for_reference(
        self, ledger_selector, record, make_product, location_id,
    ):
        flour = make_product("Flour")
        record(flour.id, location_id, EntryType.MANUAL_IN, "1", reference_id="PO-7")
        record(flour.id, location_id, EntryType.MANUAL_IN, "1", reference_id="PO-8")

        rows = ledger_selector.entries_for_reference("PO-7")

        assert [r.reference_id for r in rows] == ["PO-7"]

    def test_get_missing_returns_none(self, ledger_selector):
        assert ledger_selector.get(uuid4()) is None
