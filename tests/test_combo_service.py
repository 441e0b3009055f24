"""Combo matching, repeated application and savings allocation."""
from decimal import Decimal

from pricing.model import ComboType, SpecificVariants
from pricing.services.combo_service import allocate_savings, resolve_combos

from conftest import NOW, make_combo, make_order


def test_missing_item_quantity_means_no_combo():
    combo = make_combo("duo", [("A", 1), ("B", 2)], price=150, original=200)
    res = resolve_combos(make_order(("A", 1, 100), ("B", 1, 50)), [combo], NOW)
    assert res.applied == []
    assert res.subtotal == Decimal("150.00")
    assert all(not p.combo_allocations for p in res.lines)


def test_bundle_replaces_matched_contribution():
    combo = make_combo("duo", [("A", 1), ("B", 2)], price=150, original=200)
    res = resolve_combos(make_order(("A", 1, 100), ("B", 2, 50)), [combo], NOW)
    assert [a.combo_id for a in res.applied] == ["duo"]
    assert res.applied[0].savings == Decimal("50.00")
    assert res.original_subtotal == Decimal("200.00")
    assert res.subtotal == Decimal("150.00")
    assert res.remaining == [0, 0]


def test_bundle_applies_as_many_times_as_possible():
    combo = make_combo("duo", [("A", 1), ("B", 2)], price=150, original=200)
    res = resolve_combos(make_order(("A", 3, 100), ("B", 5, 50)), [combo], NOW)
    # two full bundles, one A and one B left over
    assert len(res.applied) == 2
    assert res.remaining == [1, 1]
    assert res.subtotal == Decimal("300.00") + Decimal("150.00")
    a_line = res.lines[0]
    assert a_line.combo_quantity == 2
    assert a_line.combo_savings == Decimal("50.00")


def test_unit_consumed_by_one_combo_is_not_reused():
    first = make_combo("ab", [("A", 1), ("B", 1)], price=120, original=150)
    second = make_combo("ac", [("A", 1), ("C", 1)], price=100, original=130)
    order = make_order(("A", 1, 100), ("B", 1, 50), ("C", 1, 30))
    res = resolve_combos(order, [first, second], NOW)
    assert [a.combo_id for a in res.applied] == ["ab"]
    assert res.remaining == [0, 0, 1]


def test_variant_restricted_item():
    item_mode = SpecificVariants(frozenset({"red"}))
    combo = make_combo("reds", [("A", 2, item_mode)], price=150, original=200)
    assert resolve_combos(make_order(("A", 2, 100, "blue")), [combo], NOW).applied == []
    res = resolve_combos(make_order(("A", 1, 100, "blue"), ("A", 2, 100, "red")), [combo], NOW)
    assert res.remaining == [1, 0]
    assert res.lines[1].combo_savings == Decimal("50.00")


def test_combo_priced_above_cart_prices_is_skipped():
    combo = make_combo("bad", [("A", 1), ("B", 1)], price=300, original=300)
    res = resolve_combos(make_order(("A", 1, 100), ("B", 1, 50)), [combo], NOW)
    assert res.applied == []
    assert res.subtotal == Decimal("150.00")


def test_inactive_and_out_of_window_combos_are_ignored():
    inactive = make_combo("off", [("A", 1)], price=50, original=100, status="INACTIVE")
    expired = make_combo("old", [("A", 1)], price=50, original=100, end_date=NOW.replace(year=2025))
    res = resolve_combos(make_order(("A", 1, 100)), [inactive, expired], NOW)
    assert res.applied == []


def test_bogo_combo_pools_matching_units():
    combo = make_combo("bogo", [("A", 1)], price=0, ctype=ComboType.BOGO, buy_quantity=1, get_quantity=1)
    res = resolve_combos(make_order(("A", 3, 20)), [combo], NOW)
    assert len(res.applied) == 1
    assert res.applied[0].savings == Decimal("20.00")
    assert res.subtotal == Decimal("40.00")
    assert res.remaining == [0]


def test_bogo_combo_needs_a_full_group():
    combo = make_combo("bogo", [("A", 1)], price=0, ctype=ComboType.BOGO, buy_quantity=2, get_quantity=1)
    res = resolve_combos(make_order(("A", 2, 20)), [combo], NOW)
    assert res.applied == []


def test_allocation_sums_to_savings():
    shares = allocate_savings(Decimal("10.00"), {0: Decimal("10"), 1: Decimal("10"), 2: Decimal("10")})
    assert sum(shares.values()) == Decimal("10.00")
    assert shares[0] == Decimal("3.34")
    assert shares[1] == shares[2] == Decimal("3.33")


def test_allocation_is_proportional():
    shares = allocate_savings(Decimal("30"), {0: Decimal("100"), 1: Decimal("200")})
    assert shares == {0: Decimal("10.00"), 1: Decimal("20.00")}


def test_allocation_with_nothing_to_split():
    assert allocate_savings(Decimal("0"), {0: Decimal("10")}) == {0: Decimal("0")}


def test_line_allocations_add_up_to_combo_savings():
    combo = make_combo("trio", [("A", 1), ("B", 1), ("C", 1)], price="20.00", original="30.01")
    order = make_order(("A", 1, "10.00"), ("B", 1, "10.00"), ("C", 1, "10.01"))
    res = resolve_combos(order, [combo], NOW)
    total_alloc = sum(p.combo_savings for p in res.lines)
    assert total_alloc == res.applied[0].savings == Decimal("10.01")


def test_allocation_never_exceeds_a_line_contribution():
    shares = allocate_savings(Decimal("2.99"), {0: Decimal("1.00"), 1: Decimal("1.00"), 2: Decimal("1.00")})
    assert sum(shares.values()) == Decimal("2.99")
    assert all(share <= Decimal("1.00") for share in shares.values())
    assert shares == {0: Decimal("1.00"), 1: Decimal("1.00"), 2: Decimal("0.99")}


def test_nearly_free_combo_keeps_line_totals_non_negative():
    combo = make_combo("penny", [("A", 1), ("B", 1), ("C", 1)], price="0.01", original="3.00")
    order = make_order(("A", 1, "1.00"), ("B", 1, "1.00"), ("C", 1, "1.00"))
    res = resolve_combos(order, [combo], NOW)
    assert [p.line_total for p in res.lines] == [Decimal("0.00"), Decimal("0.00"), Decimal("0.01")]
    assert res.subtotal == Decimal("0.01")


def test_eligible_subtotal_uses_post_combo_totals():
    combo = make_combo("duo", [("A", 1), ("B", 1)], price="150", original="200")
    res = resolve_combos(make_order(("A", 1, 100), ("B", 1, 100), ("C", 1, 50)), [combo], NOW)
    assert res.eligible_subtotal(lambda line: line.product_id == "A") == Decimal("75.00")
    assert res.eligible_subtotal(lambda line: line.product_id != "A") == Decimal("125.00")
