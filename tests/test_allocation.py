from decimal import Decimal

import pytest

from allocation import (
    AllocationTarget,
    allocate,
    allocate_equal,
    allocate_by_weight,
    allocate_by_percentage,
    allocate_manual,
    expense_total,
    is_balanced,
    percentage_total,
    plates_for_order,
    reconcile_delta,
    targets_from_payload,
    validate_bulk,
)
from sessions import parse_meal_type_amounts


def _targets(*weights):
    return [AllocationTarget(id=f"o{i}", weight=w) for i, w in enumerate(weights)]


def test_equal_split_last_target_absorbs_rounding():
    out = allocate_equal(Decimal("1000"), _targets(None, None, None))
    assert [a.amount for a in out] == [Decimal("333.33"), Decimal("333.33"), Decimal("333.34")]
    assert sum(a.amount for a in out) == Decimal("1000")
    assert is_balanced(Decimal("1000"), out)


def test_equal_split_of_nothing_is_empty():
    assert allocate_equal(Decimal("500"), []) == []


def test_by_weight_is_proportional():
    out = allocate_by_weight(Decimal("1000"), _targets(60, 40))
    assert [a.amount for a in out] == [Decimal("600.00"), Decimal("400.00")]
    assert [a.percentage for a in out] == [Decimal("60"), Decimal("40")]


def test_by_weight_uses_default_for_unknown_headcount():
    out = allocate_by_weight(Decimal("900"), _targets(None, 200), default_weight=100)
    assert out[0].weight == Decimal("100")
    assert out[0].amount == Decimal("300.00")
    assert out[1].amount == Decimal("600.00")


def test_allocation_does_not_mutate_inputs():
    targets = _targets(10, 30)
    allocate_by_weight(Decimal("400"), targets)
    assert targets[0].amount == Decimal("0.00")
    assert targets[0].percentage is None


def test_percentage_split_is_not_renormalised():
    targets = _targets(None, None)
    out = allocate_by_percentage(Decimal("1000"), targets, {"o0": 50, "o1": 30})
    assert [a.amount for a in out] == [Decimal("500.00"), Decimal("300.00")]
    assert percentage_total(out) == Decimal("80")
    assert reconcile_delta(Decimal("1000"), out) == Decimal("200.00")
    assert not is_balanced(Decimal("1000"), out)


def test_percentage_split_defaults_to_even_share():
    out = allocate_by_percentage(Decimal("300"), _targets(None, None, None))
    assert all(a.amount == Decimal("100.00") for a in out)


def test_manual_keeps_typed_amounts_and_zero_fills_new_targets():
    out = allocate_manual(_targets(None, None), {"o0": "250.5"})
    assert [a.amount for a in out] == [Decimal("250.50"), Decimal("0.00")]


def test_dispatch_reuses_previous_values_for_manual():
    previous = [AllocationTarget(id="o1", amount=Decimal("70"))]
    out = allocate("manual", Decimal("100"), _targets(None, None), previous)
    assert [a.amount for a in out] == [Decimal("0.00"), Decimal("70.00")]
    assert reconcile_delta(Decimal("100"), out) == Decimal("30.00")


def test_validate_bulk_requires_two_targets():
    out = allocate("equal", Decimal("100"), _targets(None))
    assert validate_bulk("equal", Decimal("100"), out) == "Select at least 2 orders for a bulk expense"


def test_validate_bulk_rejects_unbalanced_equal_split():
    out = allocate("equal", Decimal("100"), _targets(None, None))
    out[0].amount = Decimal("10")
    assert "do not match" in validate_bulk("equal", Decimal("100"), out)


def test_validate_bulk_is_permissive_for_percentage():
    out = allocate("by-percentage", Decimal("100"), _targets(None, None), targets_from_payload([
        {"id": "o0", "percentage": 20}, {"id": "o1", "percentage": 20},
    ]))
    assert validate_bulk("by-percentage", Decimal("100"), out) is None


def test_validate_bulk_unknown_method():
    assert validate_bulk("random", Decimal("1"), []).startswith("Unknown allocation method")


def test_plates_for_order_prefers_headcount():
    sessions = parse_meal_type_amounts({"a": {"amount": 1, "numberOfMembers": 30}})
    assert plates_for_order(120, sessions) == 120
    assert plates_for_order(None, sessions) == 30
    assert plates_for_order(0, {}) is None


def test_plates_for_order_reads_plate_counts():
    sessions = parse_meal_type_amounts({
        "a": {"amount": 1, "numberOfPlates": 40},
        "b": {"amount": 1, "numberOfMembers": 10},
        "c": 500,
    })
    assert plates_for_order(None, sessions) == 50


def test_targets_from_payload_skips_rows_without_id():
    out = targets_from_payload([{"amount": 5}, {"id": "x", "amount": "12.345"}, "junk"])
    assert len(out) == 1
    assert out[0].amount == Decimal("12.35")


@pytest.mark.parametrize("category,details,amount,expected", [
    ("chef", {"method": "plate-wise", "plates": 100, "perPlateAmount": 25}, 0, Decimal("2500.00")),
    ("labours", {"numberOfLabours": 4, "perUnitAmount": 650}, 0, Decimal("2600.00")),
    ("boys", {"dressedBoys": 3, "dressedBoyAmount": 500, "nonDressedBoys": 2, "nonDressedBoyAmount": 400},
     0, Decimal("2300.00")),
    ("gas", None, "1200.499", Decimal("1200.50")),
])
def test_expense_total(category, details, amount, expected):
    assert expense_total(category, details, amount) == expected


@pytest.mark.parametrize("position", [0, 1, 2])
def test_by_weight_share_never_drops_as_weight_grows(position):
    previous = None
    for w in range(1, 301, 7):
        weights = [37, 53, 11]
        weights[position] = w
        out = allocate_by_weight(Decimal("1000.01"), _targets(*weights))
        share = out[position].amount
        assert sum(a.amount for a in out) == Decimal("1000.01")
        if previous is not None:
            assert share >= previous
        previous = share
