"""
Property-based tests for the sign convention.

Any positive magnitude, under any entry type, must survive the round trip
through the stored value, and the balance effect must point the way the
entry type says.
"""

from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from inventory_kernel.domain.movements import (
    EntryType,
    balance_effect,
    is_reduction,
    magnitude_of,
    stored_quantity,
)

magnitudes = st.decimals(
    min_value=Decimal("0.000000001"),
    max_value=Decimal("999999999"),
    places=9,
    allow_nan=False,
    allow_infinity=False,
)
entry_types = st.sampled_from(list(EntryType))


@settings(max_examples=200)
@given(entry_type=entry_types, magnitude=magnitudes)
def test_magnitude_survives_storage(entry_type, magnitude):
    assert magnitude_of(entry_type, stored_quantity(entry_type, magnitude)) == magnitude


@settings(max_examples=200)
@given(entry_type=entry_types, magnitude=magnitudes)
def test_effect_direction_follows_entry_type(entry_type, magnitude):
    effect = balance_effect(entry_type, stored_quantity(entry_type, magnitude))

    assert abs(effect) == magnitude
    assert (effect < 0) == is_reduction(entry_type)

